from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime

MASTERY_STATES = ("new", "learning", "practiced", "mastered")
EXERCISE_TYPES = ("mcq_meaning", "mcq_context")
OPTIONS_PER_EXERCISE = 4


class RowDecodeError(ValueError):
    pass


@dataclass
class VocabularyDefinition:
    id: int
    term: str
    definition: str
    translation: str = ""
    pronunciation: str = ""
    word_type: str = "word"
    collocations: list[str] = field(default_factory=list)
    synonyms: list[str] = field(default_factory=list)
    related_words: list[str] = field(default_factory=list)
    usage_notes: str = ""
    example_sentences: list[str] = field(default_factory=list)
    band_level: str = ""
    times_used: int = 1
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict, *, tags: list[str] | None = None) -> "VocabularyDefinition":
        data = dict(row)
        term = str(data.get("term") or "").strip()
        definition = str(data.get("definition") or "").strip()
        if not term or not definition:
            raise RowDecodeError(f"vocabulary row {data.get('id')} lacks term or definition")
        times_used = int(data.get("times_used") or 0)
        if times_used < 1:
            raise RowDecodeError(f"vocabulary row {data.get('id')} has usage counter {times_used}")
        return cls(
            id=int(data["id"]),
            term=term,
            definition=definition,
            translation=str(data.get("translation") or ""),
            pronunciation=str(data.get("pronunciation") or ""),
            word_type=str(data.get("word_type") or "word"),
            collocations=json_list(data.get("collocations")),
            synonyms=json_list(data.get("synonyms")),
            related_words=json_list(data.get("related_words")),
            usage_notes=str(data.get("usage_notes") or ""),
            example_sentences=json_list(data.get("example_sentences")),
            band_level=str(data.get("band_level") or ""),
            times_used=times_used,
            tags=list(tags or []),
        )

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "term": self.term,
            "definition": self.definition,
            "translation": self.translation,
            "pronunciation": self.pronunciation,
            "wordType": self.word_type,
            "collocations": self.collocations,
            "synonyms": self.synonyms,
            "relatedWords": self.related_words,
            "usageNotes": self.usage_notes,
            "exampleSentences": self.example_sentences,
            "bandLevel": self.band_level,
            "timesUsed": self.times_used,
            "tags": self.tags,
        }


@dataclass
class ExerciseBankItem:
    id: int | None
    vocabulary_id: int
    exercise_type: str
    question: str
    correct_answer: str
    options: list[str]
    explanation: str = ""
    difficulty_level: str = "medium"
    times_used: int = 0
    success_rate: float | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict) -> "ExerciseBankItem":
        data = dict(row)
        options = json_list(data.get("options"))
        item = cls(
            id=int(data["id"]),
            vocabulary_id=int(data["vocabulary_id"]),
            exercise_type=str(data.get("exercise_type") or ""),
            question=str(data.get("question") or ""),
            correct_answer=str(data.get("correct_answer") or ""),
            options=options,
            explanation=str(data.get("explanation") or ""),
            difficulty_level=str(data.get("difficulty_level") or "medium"),
            times_used=int(data.get("times_used") or 0),
            success_rate=None if data.get("success_rate") is None else float(data["success_rate"]),
        )
        problem = exercise_problem(item.exercise_type, item.question, item.correct_answer, item.options)
        if problem:
            raise RowDecodeError(f"exercise row {item.id}: {problem}")
        return item

    def to_payload(self) -> dict:
        return {
            "id": self.id,
            "vocabularyId": self.vocabulary_id,
            "type": self.exercise_type,
            "question": self.question,
            "correctAnswer": self.correct_answer,
            "options": self.options,
            "explanation": self.explanation,
            "difficultyLevel": self.difficulty_level,
            "timesUsed": self.times_used,
            "successRate": self.success_rate,
        }


@dataclass
class ExerciseAttempt:
    learner_id: str
    learning_record_id: int
    exercise_id: int | None
    exercise_type: str
    is_correct: bool
    time_taken_seconds: float | None = None


@dataclass
class LearningRecord:
    id: int
    learner_id: str
    vocabulary_id: int
    source_type: str
    essay_ref: str | None
    example_sentence: str
    mastery_level: str
    next_review_at: datetime
    last_reviewed_at: datetime | None
    review_count: int
    exercises_completed: int
    exercises_correct: int
    pronunciation_plays: int
    created_at: str | None = None
    vocabulary: VocabularyDefinition | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row | dict) -> "LearningRecord":
        data = dict(row)
        state = str(data.get("mastery_level") or "")
        if state not in MASTERY_STATES:
            raise RowDecodeError(f"learning record {data.get('id')} has unknown mastery level {state!r}")
        next_review_at = parse_timestamp(data.get("next_review_at"))
        if next_review_at is None:
            raise RowDecodeError(f"learning record {data.get('id')} has no next review time")
        review_count = int(data.get("review_count") or 0)
        if review_count < 0:
            raise RowDecodeError(f"learning record {data.get('id')} has negative review count")
        return cls(
            id=int(data["id"]),
            learner_id=str(data["learner_id"]),
            vocabulary_id=int(data["vocabulary_id"]),
            source_type=str(data.get("source_type") or ""),
            essay_ref=data.get("essay_ref"),
            example_sentence=str(data.get("example_sentence") or ""),
            mastery_level=state,
            next_review_at=next_review_at,
            last_reviewed_at=parse_timestamp(data.get("last_reviewed_at")),
            review_count=review_count,
            exercises_completed=int(data.get("exercises_completed") or 0),
            exercises_correct=int(data.get("exercises_correct") or 0),
            pronunciation_plays=int(data.get("pronunciation_plays") or 0),
            created_at=data.get("created_at"),
        )

    def to_payload(self) -> dict:
        payload = {
            "id": self.id,
            "learningRecordId": self.id,
            "vocabularyId": self.vocabulary_id,
            "sourceType": self.source_type,
            "essayRef": self.essay_ref,
            "exampleSentence": self.example_sentence,
            "masteryState": self.mastery_level,
            "nextReviewAt": self.next_review_at.isoformat(),
            "lastReviewedAt": self.last_reviewed_at.isoformat() if self.last_reviewed_at else None,
            "reviewCount": self.review_count,
            "exercisesCompleted": self.exercises_completed,
            "exercisesCorrect": self.exercises_correct,
            "pronunciationPlays": self.pronunciation_plays,
            "createdAt": self.created_at,
        }
        if self.vocabulary is not None:
            payload["vocabulary"] = self.vocabulary.to_payload()
        return payload


def exercise_problem(exercise_type: str, question: str, correct_answer: str, options: list) -> str | None:
    if exercise_type not in EXERCISE_TYPES:
        return f"unknown exercise type {exercise_type!r}"
    if not str(question).strip():
        return "empty question"
    if not str(correct_answer).strip():
        return "empty correct answer"
    if len(options) != OPTIONS_PER_EXERCISE:
        return f"expected {OPTIONS_PER_EXERCISE} options, got {len(options)}"
    if sum(1 for option in options if option == correct_answer) != 1:
        return "correct answer must match exactly one option"
    return None


def json_list(value: object) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value]
    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError as exc:
        raise RowDecodeError(f"invalid JSON list: {value!r}") from exc
    if not isinstance(parsed, list):
        raise RowDecodeError(f"expected JSON list, got {type(parsed).__name__}")
    return [str(item) for item in parsed]


def parse_timestamp(value: object) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise RowDecodeError(f"invalid timestamp {text!r}") from exc


def attempt_values(attempt: ExerciseAttempt) -> dict:
    values = asdict(attempt)
    values["saved_vocabulary_id"] = values.pop("learning_record_id")
    values["is_correct"] = int(bool(values["is_correct"]))
    return values
