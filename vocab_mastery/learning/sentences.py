from __future__ import annotations

import logging
from dataclasses import dataclass

from vocab_mastery.errors import ValidationError
from vocab_mastery.learning.records import get_record
from vocab_mastery.services.llm import GenerationError, LLMService, SentenceFeedback
from vocab_mastery.storage.db import Database

logger = logging.getLogger(__name__)

RECENT_SENTENCES = 5
MAX_SENTENCE_LENGTH = 500


@dataclass
class SentenceCheck:
    sentence_id: int
    feedback: SentenceFeedback
    # generated | fallback
    source: str


def check_sentence(
    db: Database,
    generator: LLMService,
    *,
    learner_id: str,
    record_id: int,
    sentence: str,
) -> SentenceCheck:
    record = get_record(db, learner_id=learner_id, record_id=record_id)
    text = " ".join(str(sentence or "").split())
    if not text:
        raise ValidationError("sentence", "is required")
    if len(text) > MAX_SENTENCE_LENGTH:
        raise ValidationError("sentence", f"must be at most {MAX_SENTENCE_LENGTH} characters")

    vocabulary = record.vocabulary
    term = vocabulary.term if vocabulary else ""
    definition = vocabulary.definition if vocabulary else ""
    known_examples = vocabulary.example_sentences if vocabulary else []
    example = record.example_sentence or next(iter(known_examples), "")

    result = generator.check_sentence(term, text, definition, example)
    if isinstance(result, GenerationError):
        logger.warning("Sentence check failed for %r (%s); returning fallback feedback", term, result.reason)
        feedback, source = fallback_feedback(term, text, example), "fallback"
    else:
        feedback, source = result.content, "generated"

    sentence_id = db.record_sentence(
        learner_id=record.learner_id,
        learning_record_id=record.id,
        sentence=text,
        is_correct=feedback.is_correct,
        feedback=feedback.to_payload(),
        feedback_source=source,
    )
    return SentenceCheck(sentence_id=sentence_id, feedback=feedback, source=source)


def recent_sentences(db: Database, *, learner_id: str, record_id: int) -> list[dict]:
    record = get_record(db, learner_id=learner_id, record_id=record_id)
    return db.list_sentences(record.learner_id, record.id, limit=RECENT_SENTENCES)


def fallback_feedback(term: str, sentence: str, example: str) -> SentenceFeedback:
    # Unjudged: correctness stays unknown.
    return SentenceFeedback(
        is_correct=None,
        feedback=f"Good attempt at using \"{term}\" in a sentence! Keep practicing to improve your vocabulary usage.",
        corrected_sentence=sentence,
        better_example=example,
        encouragement="Great effort! Continue practicing to master this word.",
    )
