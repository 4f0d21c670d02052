from __future__ import annotations

import logging
from dataclasses import dataclass

from vocab_mastery.exercises.generator import fallback_exercises
from vocab_mastery.services.llm import ExerciseDraft, GenerationError, LLMService
from vocab_mastery.storage.db import Database
from vocab_mastery.storage.models import ExerciseBankItem

logger = logging.getLogger(__name__)

CACHE_THRESHOLD = 2
SOURCE_CACHE = "cache"
SOURCE_GENERATED = "generated"


@dataclass
class ExerciseSet:
    exercises: list[ExerciseBankItem]
    source: str
    persisted: bool


def resolve_exercises(
    db: Database,
    generator: LLMService,
    *,
    vocabulary_id: int,
    term: str,
    definition: str,
    example: str,
) -> ExerciseSet:
    existing = db.list_exercises(vocabulary_id)
    if len(existing) >= CACHE_THRESHOLD:
        logger.info("Reusing %d banked exercises for %r", len(existing), term)
        db.record_exercise_reuse([item.id for item in existing if item.id is not None])
        return ExerciseSet(exercises=db.list_exercises(vocabulary_id), source=SOURCE_CACHE, persisted=True)

    logger.info("Generating exercises for %r (%d banked)", term, len(existing))
    result = generator.generate_exercises(term, definition, example)
    if isinstance(result, GenerationError):
        logger.warning("Exercise generation failed for %r (%s); serving fallback", term, result.reason)
        drafts = fallback_exercises(term, definition, example)
        return ExerciseSet(
            exercises=[_unsaved(vocabulary_id, draft) for draft in drafts],
            source=SOURCE_GENERATED,
            persisted=False,
        )

    saved: list[ExerciseBankItem] = []
    for draft in result.content:
        item, _ = db.get_or_create_exercise(
            vocabulary_id,
            draft.exercise_type,
            lambda draft=draft: {
                "question": draft.question,
                "correct_answer": draft.correct_answer,
                "options": draft.options,
                "explanation": draft.explanation,
                "difficulty_level": "medium",
                "times_used": 1,
            },
        )
        saved.append(item)
    return ExerciseSet(exercises=saved, source=SOURCE_GENERATED, persisted=True)


def _unsaved(vocabulary_id: int, draft: ExerciseDraft) -> ExerciseBankItem:
    return ExerciseBankItem(
        id=None,
        vocabulary_id=vocabulary_id,
        exercise_type=draft.exercise_type,
        question=draft.question,
        correct_answer=draft.correct_answer,
        options=list(draft.options),
        explanation=draft.explanation,
        times_used=0,
    )
