from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest
from conftest import FakeGenerator

from vocab_mastery.errors import ValidationError
from vocab_mastery.vocabulary.catalog import DefinitionContext, normalize_term, resolve_definition


def test_normalize_term_collapses_case_and_whitespace():
    assert normalize_term("  Ubiquitous   Computing ") == "ubiquitous computing"


def test_first_resolve_generates_and_stores_definition(temp_db, generator):
    result = resolve_definition(
        temp_db,
        generator,
        "Ubiquitous",
        DefinitionContext(example_sentence="Phones are ubiquitous.", tags=["Technology", "technology"]),
    )

    assert result.created is True
    assert result.content_source == "generated"
    assert result.definition.term == "ubiquitous"
    assert result.definition.times_used == 1
    assert result.definition.synonyms == ["omnipresent", "pervasive"]
    assert result.definition.example_sentences == ["Phones are ubiquitous."]
    assert result.definition.tags == ["technology"]
    assert generator.definition_calls == ["ubiquitous"]


def test_second_resolve_reuses_definition_without_generating(temp_db, generator):
    resolve_definition(temp_db, generator, "ubiquitous", DefinitionContext(example_sentence="First use."))
    again = resolve_definition(temp_db, generator, "UBIQUITOUS", DefinitionContext(example_sentence="Second use."))

    assert again.created is False
    assert again.content_source == "cache"
    assert again.definition.times_used == 2
    assert again.definition.example_sentences == ["First use.", "Second use."]
    assert len(generator.definition_calls) == 1


def test_reuse_does_not_duplicate_or_overflow_examples(temp_db, generator):
    resolve_definition(temp_db, generator, "mitigate", DefinitionContext(example_sentence="One."))
    resolve_definition(temp_db, generator, "mitigate", DefinitionContext(example_sentence="One."))
    result = resolve_definition(
        temp_db, generator, "mitigate", DefinitionContext(example_sentence="Two."), max_examples=1
    )

    assert result.definition.example_sentences == ["One."]
    assert result.definition.times_used == 3


def test_client_supplied_content_skips_generator(temp_db, generator):
    result = resolve_definition(
        temp_db,
        generator,
        "mitigate",
        DefinitionContext(definition="make less severe", translation="giam nhe", explanation="formal verb"),
    )

    assert result.content_source == "client"
    assert result.definition.definition == "make less severe"
    assert result.definition.usage_notes == "formal verb"
    assert generator.definition_calls == []


def test_generator_failure_stores_fallback(temp_db):
    result = resolve_definition(temp_db, FakeGenerator(failing=True), "resilient")

    assert result.created is True
    assert result.content_source == "fallback"
    assert result.definition.definition == "Meaning of resilient"
    assert result.definition.translation == "Translation of resilient"
    assert result.definition.tags == ["general"]


def test_blank_term_is_rejected(temp_db, generator):
    with pytest.raises(ValidationError):
        resolve_definition(temp_db, generator, "   ")


def test_attach_tags_is_idempotent(temp_db, generator):
    result = resolve_definition(temp_db, generator, "ubiquitous", DefinitionContext(tags=["academic"]))

    temp_db.attach_tags(result.definition.id, ["Academic", "environment"])
    temp_db.attach_tags(result.definition.id, ["environment"])

    assert temp_db.list_tags(result.definition.id) == ["academic", "environment"]


def test_concurrent_resolves_share_one_definition(temp_db):
    slow = FakeGenerator(delay=0.05)

    def resolve(_):
        return resolve_definition(temp_db, slow, "ubiquitous")

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(resolve, range(4)))

    ids = {result.definition.id for result in results}
    created = [result for result in results if result.created]
    assert len(ids) == 1
    assert len(created) == 1
    assert temp_db.get_definition_by_term("ubiquitous").times_used == 4
