from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from conftest import FakeGenerator

from vocab_mastery.errors import NotFoundError, ValidationError
from vocab_mastery.learning import records
from vocab_mastery.vocabulary.catalog import DefinitionContext

UTC = timezone.utc
NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


def _save(db, generator, term, learner_id="learner-1", now=NOW, sentence="An example sentence."):
    return records.save(
        db,
        generator,
        learner_id=learner_id,
        term=term,
        source=records.SourceMetadata(source_type="essay_correction", essay_ref="essay-7", example_sentence=sentence),
        context=DefinitionContext(example_sentence=sentence),
        now=now,
    )


def test_save_creates_new_record_due_immediately(temp_db, generator):
    outcome = _save(temp_db, generator, "Ubiquitous")

    record = outcome.record
    assert outcome.created is True
    assert record.mastery_level == "new"
    assert record.next_review_at == NOW
    assert record.review_count == 0
    assert record.source_type == "essay_correction"
    assert record.essay_ref == "essay-7"
    assert record.vocabulary.term == "ubiquitous"


def test_save_twice_returns_existing_record(temp_db, generator):
    first = _save(temp_db, generator, "ubiquitous")
    second = _save(temp_db, generator, "  UBIQUITOUS ")

    assert second.created is False
    assert second.record.id == first.record.id
    assert second.definition.times_used == 2


def test_two_learners_share_definition_but_not_records(temp_db, generator):
    first = _save(temp_db, generator, "ubiquitous", learner_id="alice")
    second = _save(temp_db, generator, "ubiquitous", learner_id="bob")

    assert first.definition.id == second.definition.id
    assert first.record.id != second.record.id
    assert second.definition.times_used == 2
    assert len(generator.definition_calls) == 1


def test_save_requires_learner_and_source(temp_db, generator):
    with pytest.raises(ValidationError):
        _save(temp_db, generator, "ubiquitous", learner_id="  ")
    with pytest.raises(ValidationError):
        records.save(
            temp_db,
            generator,
            learner_id="learner-1",
            term="ubiquitous",
            source=records.SourceMetadata(source_type=""),
        )


def test_list_due_orders_by_review_time_and_excludes_future(temp_db, generator):
    later = _save(temp_db, generator, "mitigate", now=NOW - timedelta(hours=1))
    earlier = _save(temp_db, generator, "ubiquitous", now=NOW - timedelta(hours=5))
    _save(temp_db, generator, "resilient", now=NOW + timedelta(days=1))
    _save(temp_db, generator, "pervasive", learner_id="someone-else", now=NOW - timedelta(days=3))

    due = records.list_due(temp_db, learner_id="learner-1", limit=10, now=NOW)

    assert [record.id for record in due] == [earlier.record.id, later.record.id]
    assert records.list_due(temp_db, learner_id="learner-1", limit=1, now=NOW)[0].id == earlier.record.id


def test_collection_reports_statistics(temp_db, generator):
    _save(temp_db, generator, "mitigate", now=NOW - timedelta(hours=1))
    _save(temp_db, generator, "resilient", now=NOW + timedelta(days=1))

    everything = records.list_collection(temp_db, learner_id="learner-1", now=NOW)
    due_only = records.list_collection(temp_db, learner_id="learner-1", filter_name="due", now=NOW)

    assert everything["total"] == 2
    assert everything["due_count"] == 1
    assert everything["statistics"] == {"total": 2, "new": 2, "learning": 0, "practiced": 0, "mastered": 0}
    assert [record.vocabulary.term for record in due_only["items"]] == ["mitigate"]
    assert due_only["total"] == 1


def test_collection_rejects_unknown_filter(temp_db):
    with pytest.raises(ValidationError):
        records.list_collection(temp_db, learner_id="learner-1", filter_name="mastered")


def test_remove_only_touches_own_records(temp_db, generator):
    outcome = _save(temp_db, generator, "ubiquitous", learner_id="alice")

    with pytest.raises(NotFoundError):
        records.remove(temp_db, learner_id="bob", record_id=outcome.record.id)

    records.remove(temp_db, learner_id="alice", record_id=outcome.record.id)

    with pytest.raises(NotFoundError):
        records.get_record(temp_db, learner_id="alice", record_id=outcome.record.id)
    assert temp_db.get_definition(outcome.definition.id) is not None


def test_concurrent_saves_create_one_record(temp_db):
    slow = FakeGenerator(delay=0.05)

    def save(_):
        return _save(temp_db, slow, "ubiquitous")

    with ThreadPoolExecutor(max_workers=4) as pool:
        outcomes = list(pool.map(save, range(4)))

    assert len({outcome.record.id for outcome in outcomes}) == 1
    assert sum(1 for outcome in outcomes if outcome.created) == 1
    assert records.list_collection(temp_db, learner_id="learner-1", now=NOW)["total"] == 1
    assert temp_db.get_definition_by_term("ubiquitous").times_used == 4


def test_collection_filters_by_essay(temp_db, generator):
    for term, essay in (("ubiquitous", "essay-1"), ("mitigate", "essay-2"), ("resilient", "essay-2")):
        records.save(
            temp_db,
            generator,
            learner_id="learner-1",
            term=term,
            source=records.SourceMetadata(source_type="essay_correction", essay_ref=essay),
            now=NOW,
        )

    collection = records.list_collection(temp_db, learner_id="learner-1", filter_name="by_essay", essay_ref="essay-2")

    assert collection["total"] == 2
    assert {record.vocabulary.term for record in collection["items"]} == {"mitigate", "resilient"}
    assert [(row["essay_ref"], row["word_count"]) for row in records.list_essays(temp_db, learner_id="learner-1")] == [
        ("essay-2", 2),
        ("essay-1", 1),
    ]
    with pytest.raises(ValidationError):
        records.list_collection(temp_db, learner_id="learner-1", filter_name="by_essay")
