from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from vocab_mastery.errors import NotFoundError, ValidationError
from vocab_mastery.exercises.bank import ExerciseSet, resolve_exercises
from vocab_mastery.learning.records import get_record, list_due, require_learner
from vocab_mastery.scheduler.srs import MasteryUpdate, next_state, session_success_rate
from vocab_mastery.services.llm import LLMService
from vocab_mastery.storage.db import Database
from vocab_mastery.storage.models import EXERCISE_TYPES, ExerciseAttempt, LearningRecord

UTC = timezone.utc
logger = logging.getLogger(__name__)


@dataclass
class PracticeItem:
    record: LearningRecord
    exercises: ExerciseSet


@dataclass
class SessionOutcome:
    record: LearningRecord
    update: MasteryUpdate


def next_practice_item(
    db: Database,
    generator: LLMService,
    *,
    learner_id: str,
    now: datetime | None = None,
) -> PracticeItem | None:
    due = list_due(db, learner_id=learner_id, limit=1, now=now)
    if not due:
        return None
    record = due[0]
    vocabulary = record.vocabulary
    if vocabulary is None:
        raise NotFoundError(f"vocabulary {record.vocabulary_id} not found")
    example = record.example_sentence or next(iter(vocabulary.example_sentences), "")
    exercises = resolve_exercises(
        db,
        generator,
        vocabulary_id=vocabulary.id,
        term=vocabulary.term,
        definition=vocabulary.definition,
        example=example,
    )
    return PracticeItem(record=record, exercises=exercises)


def exercises_for(
    db: Database,
    generator: LLMService,
    *,
    vocabulary_id: int,
    term: str | None = None,
    definition: str | None = None,
    example: str | None = None,
) -> ExerciseSet:
    vocabulary = db.get_definition(vocabulary_id)
    if vocabulary is None:
        raise NotFoundError(f"vocabulary {vocabulary_id} not found")
    return resolve_exercises(
        db,
        generator,
        vocabulary_id=vocabulary.id,
        term=(term or "").strip() or vocabulary.term,
        definition=(definition or "").strip() or vocabulary.definition,
        example=(example or "").strip() or next(iter(vocabulary.example_sentences), ""),
    )


def record_attempt(
    db: Database,
    *,
    learner_id: str,
    record_id: int,
    exercise_type: str,
    exercise_id: int | None = None,
    is_correct: bool | None = None,
    answer: str | None = None,
    time_taken_seconds: float | None = None,
) -> tuple[int, bool]:
    record = get_record(db, learner_id=learner_id, record_id=record_id)
    if exercise_type not in EXERCISE_TYPES:
        raise ValidationError("exerciseType", f"must be one of {list(EXERCISE_TYPES)}")

    if exercise_id is not None:
        exercise = db.get_exercise(exercise_id)
        if exercise is None or exercise.vocabulary_id != record.vocabulary_id:
            raise NotFoundError(f"exercise {exercise_id} not found")
        if answer is not None:
            is_correct = answer == exercise.correct_answer
    if is_correct is None:
        raise ValidationError("isCorrect", "is required unless an answer to a banked exercise is given")

    attempt_id = db.record_attempt(
        ExerciseAttempt(
            learner_id=record.learner_id,
            learning_record_id=record.id,
            exercise_id=exercise_id,
            exercise_type=exercise_type,
            is_correct=bool(is_correct),
            time_taken_seconds=time_taken_seconds,
        )
    )
    return attempt_id, bool(is_correct)


def complete_session(
    db: Database,
    *,
    learner_id: str,
    record_id: int,
    exercises_completed: int,
    exercises_correct: int,
    pronunciation_played: bool = False,
    now: datetime | None = None,
) -> SessionOutcome:
    learner_id = require_learner(learner_id)
    success_rate = session_success_rate(exercises_completed, exercises_correct)
    now = now or datetime.now(UTC)
    decisions: list[MasteryUpdate] = []

    def decide(record: LearningRecord) -> MasteryUpdate:
        update = next_state(record.mastery_level, success_rate, record.review_count, now=now)
        decisions.append(update)
        return update

    updated = db.apply_practice_session(
        learner_id=learner_id,
        record_id=record_id,
        decide=decide,
        exercises_completed=exercises_completed,
        exercises_correct=exercises_correct,
        pronunciation_played=pronunciation_played,
        now=now,
    )
    update = decisions[-1]
    logger.info(
        "Record %s rescheduled: %s band, now %s, next review in %sh",
        record_id,
        update.band,
        update.mastery_state,
        update.hours,
    )
    return SessionOutcome(record=updated, update=update)
