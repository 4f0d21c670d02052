from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Generic, TypeVar, Union

import httpx

from vocab_mastery.storage.models import EXERCISE_TYPES, exercise_problem

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Generated(Generic[T]):
    content: T
    model: str = ""


@dataclass
class GenerationError:
    reason: str


GenerationResult = Union[Generated[T], GenerationError]


@dataclass
class DefinitionContent:
    definition: str
    translation: str = ""
    pronunciation: str = ""
    collocations: list[str] = field(default_factory=list)
    synonyms: list[str] = field(default_factory=list)
    related_words: list[str] = field(default_factory=list)
    usage_notes: str = ""


@dataclass
class ExerciseDraft:
    exercise_type: str
    question: str
    correct_answer: str
    options: list[str]
    explanation: str = ""


@dataclass
class SentenceFeedback:
    is_correct: bool | None
    feedback: str
    corrected_sentence: str = ""
    grammar_tips: str = ""
    better_example: str = ""
    encouragement: str = ""

    def to_payload(self) -> dict:
        return {
            "isCorrect": self.is_correct,
            "feedback": self.feedback,
            "correctedSentence": self.corrected_sentence,
            "grammarTips": self.grammar_tips,
            "betterExample": self.better_example,
            "encouragement": self.encouragement,
        }


class LLMService:
    """OpenAI-compatible chat-completions client producing vocabulary content.

    Every public method returns ``Generated`` or ``GenerationError``; transport
    errors, timeouts and malformed model output never escape as exceptions.
    """

    def __init__(self, *, model_override: str | None = None, timeout: float = 20.0) -> None:
        self.provider = os.getenv("VOCAB_MASTERY_LLM_PROVIDER", "openai").strip().lower()
        self.base_url = os.getenv("VOCAB_MASTERY_LLM_BASE_URL")
        self.model = os.getenv("VOCAB_MASTERY_LLM_MODEL")
        if model_override:
            self.model = str(model_override).strip()
        self.timeout = timeout

        if self.provider == "deepseek":
            self.api_key = os.getenv("DEEPSEEK_API_KEY")
            self.base_url = self.base_url or "https://api.deepseek.com/v1"
            self.model = self.model or "deepseek-chat"
        else:
            self.api_key = os.getenv("OPENAI_API_KEY")
            self.base_url = self.base_url or "https://api.openai.com/v1"
            self.model = self.model or "gpt-4o-mini"

    def available(self) -> bool:
        return bool(self.api_key)

    def generate_definition(self, term: str, hints: dict | None = None) -> GenerationResult[DefinitionContent]:
        hints = hints or {}
        hint_lines = [
            f"{key}: {str(hints[key]).strip()}"
            for key in ("word_type", "example_sentence", "original", "definition", "translation", "explanation")
            if str(hints.get(key) or "").strip()
        ]
        instruction = (
            "You are an expert IELTS vocabulary instructor. "
            "Return one JSON object only with fields: "
            "definition (clear English definition, 1-2 sentences), "
            "translation (Vietnamese translation), "
            "pronunciation (IPA), "
            "collocations (2-3 strings), synonyms (2-3 academic synonyms), "
            "relatedWords (2-3 strings), usageNotes (when and how to use it)."
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": instruction},
                {
                    "role": "user",
                    "content": f"term={term}\ncontext:\n" + ("\n".join(hint_lines) or "none") + "\nJSON only.",
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        parsed = self._request_json(payload, purpose=f"definition for {term!r}")
        if isinstance(parsed, GenerationError):
            return parsed

        definition = str(parsed.get("definition") or "").strip()
        if not definition:
            return GenerationError("definition missing from model output")
        return Generated(
            DefinitionContent(
                definition=definition,
                translation=str(parsed.get("translation") or parsed.get("vietnameseTranslation") or "").strip(),
                pronunciation=str(parsed.get("pronunciation") or "").strip(),
                collocations=_str_list(parsed.get("collocations")),
                synonyms=_str_list(parsed.get("synonyms")),
                related_words=_str_list(parsed.get("relatedWords") or parsed.get("related_words")),
                usage_notes=str(parsed.get("usageNotes") or parsed.get("usage_notes") or "").strip(),
            ),
            model=self.model,
        )

    def generate_exercises(self, term: str, definition: str, example: str) -> GenerationResult[list[ExerciseDraft]]:
        instruction = (
            "You are an expert IELTS vocabulary teacher. Generate exactly 2 multiple-choice exercises. "
            "Exercise 1 has type mcq_meaning and tests the meaning of the word. "
            "Exercise 2 has type mcq_context and asks which sentence uses the word correctly; "
            "use simple words in the sentences and only test the target vocabulary. "
            "Each exercise has 4 options, exactly one equal to correctAnswer, with plausible distractors "
            "and the correct answer shuffled. "
            "Return JSON: {\"exercises\": [{\"type\", \"question\", \"correctAnswer\", \"options\", \"explanation\"}]}."
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": instruction},
                {
                    "role": "user",
                    "content": f"word={term}\ndefinition={definition}\nexample={example}\nJSON only.",
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.4,
        }
        parsed = self._request_json(payload, purpose=f"exercises for {term!r}")
        if isinstance(parsed, GenerationError):
            return parsed
        return parse_exercise_drafts(parsed.get("exercises"))

    def check_sentence(
        self,
        term: str,
        sentence: str,
        definition: str,
        example: str,
    ) -> GenerationResult[SentenceFeedback]:
        instruction = (
            "You are an expert IELTS writing tutor. A student wrote a sentence using a vocabulary word. "
            "Judge whether the word is used correctly in context, whether the grammar is correct and "
            "whether the sentence is natural and suitable for academic writing. Be brief and encouraging. "
            "Return JSON: {\"isCorrect\": bool, \"feedback\", \"correctedSentence\", \"grammarTips\", "
            "\"betterExample\", \"encouragement\"}."
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": instruction},
                {
                    "role": "user",
                    "content": (
                        f"word={term}\ndefinition={definition}\ngood example={example}\n"
                        f"student sentence={sentence}\nJSON only."
                    ),
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0.2,
        }
        parsed = self._request_json(payload, purpose=f"sentence check for {term!r}")
        if isinstance(parsed, GenerationError):
            return parsed

        verdict = parsed.get("isCorrect")
        feedback = str(parsed.get("feedback") or "").strip()
        if not isinstance(verdict, bool) or not feedback:
            return GenerationError("sentence verdict missing from model output")
        return Generated(
            SentenceFeedback(
                is_correct=verdict,
                feedback=feedback,
                corrected_sentence=str(parsed.get("correctedSentence") or sentence).strip(),
                grammar_tips=str(parsed.get("grammarTips") or "").strip(),
                better_example=str(parsed.get("betterExample") or "").strip(),
                encouragement=str(parsed.get("encouragement") or "").strip(),
            ),
            model=self.model,
        )

    def _request_json(self, payload: dict, *, purpose: str) -> dict | GenerationError:
        if not self.available():
            return GenerationError("unavailable: missing llm api key")
        try:
            data = self._chat_completion(payload, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning("Content generator timed out after %ss producing %s", self.timeout, purpose)
            return GenerationError("timeout")
        except httpx.HTTPError as exc:
            logger.warning("Content generator request failed producing %s: %s", purpose, exc)
            return GenerationError(f"http error: {exc}")
        except ValueError:
            logger.warning("Content generator sent an undecodable response producing %s", purpose)
            return GenerationError("undecodable response")

        content = _extract_content(data) if isinstance(data, dict) else ""
        if not content:
            return GenerationError("empty model output")
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Content generator returned non-JSON output for %s", purpose)
            return GenerationError("malformed model output")
        if not isinstance(parsed, dict):
            return GenerationError("model output is not a JSON object")
        return parsed

    def _chat_completion(self, payload: dict, *, timeout: float = 20.0) -> dict:
        url = self.base_url.rstrip("/") + "/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        with httpx.Client(timeout=timeout) as client:
            resp = client.post(url, headers=headers, json=payload)
            resp.raise_for_status()
            return resp.json()


def parse_exercise_drafts(raw: object) -> GenerationResult[list[ExerciseDraft]]:
    if not isinstance(raw, list):
        return GenerationError("exercises missing from model output")
    drafts: dict[str, ExerciseDraft] = {}
    for item in raw:
        if not isinstance(item, dict):
            continue
        options = item.get("options")
        if not isinstance(options, list):
            continue
        draft = ExerciseDraft(
            exercise_type=str(item.get("type") or "").strip(),
            question=str(item.get("question") or "").strip(),
            correct_answer=str(item.get("correctAnswer") or "").strip(),
            options=[str(option).strip() for option in options],
            explanation=str(item.get("explanation") or "").strip(),
        )
        problem = exercise_problem(draft.exercise_type, draft.question, draft.correct_answer, draft.options)
        if problem:
            logger.info("Dropping generated exercise: %s", problem)
            continue
        drafts.setdefault(draft.exercise_type, draft)
    if len(drafts) < len(EXERCISE_TYPES):
        return GenerationError(f"expected {len(EXERCISE_TYPES)} valid exercises, got {len(drafts)}")
    return Generated([drafts[exercise_type] for exercise_type in EXERCISE_TYPES])


def _extract_content(payload: dict) -> str:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message")
    if not isinstance(message, dict):
        return ""
    content = message.get("content") or ""
    if isinstance(content, list):
        texts: list[str] = []
        for item in content:
            if isinstance(item, dict) and item.get("type") == "text":
                texts.append(str(item.get("text", "")))
        return "\n".join(texts).strip()
    return str(content).strip()


def _str_list(value: object) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]
