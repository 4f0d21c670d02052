from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from vocab_mastery.errors import NotFoundError, ValidationError
from vocab_mastery.scheduler.srs import NEW
from vocab_mastery.services.llm import LLMService
from vocab_mastery.storage.db import Database
from vocab_mastery.storage.models import LearningRecord, VocabularyDefinition
from vocab_mastery.vocabulary.catalog import DefinitionContext, resolve_definition

UTC = timezone.utc
logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
COLLECTION_FILTERS = {"all", "due", "by_essay"}


@dataclass
class SourceMetadata:
    source_type: str
    essay_ref: str | None = None
    example_sentence: str = ""


@dataclass
class SaveOutcome:
    record: LearningRecord
    definition: VocabularyDefinition
    created: bool


def save(
    db: Database,
    generator: LLMService,
    *,
    learner_id: str,
    term: str,
    source: SourceMetadata,
    context: DefinitionContext | None = None,
    now: datetime | None = None,
    max_examples: int = 10,
) -> SaveOutcome:
    learner_id = require_learner(learner_id)
    if not str(source.source_type or "").strip():
        raise ValidationError("sourceType", "is required")

    catalog = resolve_definition(db, generator, term, context, max_examples=max_examples)
    definition = catalog.definition
    now = now or datetime.now(UTC)

    record, created = db.get_or_create_learning_record(
        learner_id,
        definition.id,
        lambda: {
            "source_type": source.source_type.strip(),
            "essay_ref": source.essay_ref,
            "example_sentence": source.example_sentence.strip(),
            "mastery_level": NEW,
            "next_review_at": now,
            "review_count": 0,
            "exercises_completed": 0,
            "exercises_correct": 0,
            "pronunciation_plays": 0,
        },
    )
    if not created:
        logger.info("Learner %s already saved %r as record %s", learner_id, definition.term, record.id)
    record.vocabulary = definition
    return SaveOutcome(record=record, definition=definition, created=created)


def list_due(db: Database, *, learner_id: str, limit: int, now: datetime | None = None) -> list[LearningRecord]:
    learner_id = require_learner(learner_id)
    return db.list_due_records(learner_id, now=now or datetime.now(UTC), limit=_page_size(limit))


def list_collection(
    db: Database,
    *,
    learner_id: str,
    filter_name: str = "all",
    essay_ref: str | None = None,
    limit: int = 50,
    offset: int = 0,
    now: datetime | None = None,
) -> dict:
    learner_id = require_learner(learner_id)
    normalized = str(filter_name or "all").strip().lower()
    if normalized not in COLLECTION_FILTERS:
        raise ValidationError("filter", f"must be one of {sorted(COLLECTION_FILTERS)}")
    essay = str(essay_ref or "").strip()
    if normalized == "by_essay" and not essay:
        raise ValidationError("essayId", "is required for the by_essay filter")
    now = now or datetime.now(UTC)

    filters = {
        "due_before": now if normalized == "due" else None,
        "essay_ref": essay if normalized == "by_essay" else None,
    }
    records = db.list_learning_records(
        learner_id,
        **filters,
        limit=_page_size(limit),
        offset=max(0, int(offset)),
    )
    stats = db.mastery_statistics(learner_id, now=now)
    due_count = stats.pop("due")
    return {
        "items": records,
        "statistics": stats,
        "due_count": due_count,
        "total": db.count_learning_records(learner_id, **filters),
    }


def list_essays(db: Database, *, learner_id: str) -> list[dict]:
    """Essays the learner saved words from, most words first."""
    return db.list_essay_sources(require_learner(learner_id))


def get_record(db: Database, *, learner_id: str, record_id: int) -> LearningRecord:
    record = db.get_learning_record(require_learner(learner_id), record_id)
    if record is None:
        raise NotFoundError(f"learning record {record_id} not found")
    return record


def remove(db: Database, *, learner_id: str, record_id: int) -> None:
    if not db.delete_learning_record(require_learner(learner_id), record_id):
        raise NotFoundError(f"learning record {record_id} not found")
    logger.info("Learner %s removed learning record %s", learner_id, record_id)


def require_learner(learner_id: str | None) -> str:
    normalized = str(learner_id or "").strip()
    if not normalized:
        raise ValidationError("learnerId", "is required")
    return normalized


def _page_size(limit: int) -> int:
    return max(1, min(int(limit), MAX_PAGE_SIZE))
