from __future__ import annotations

import logging
from dataclasses import dataclass, field

from vocab_mastery.errors import ValidationError
from vocab_mastery.services.llm import DefinitionContent, GenerationError, LLMService
from vocab_mastery.storage.db import Database
from vocab_mastery.storage.models import VocabularyDefinition

logger = logging.getLogger(__name__)

DEFAULT_TAGS = ("general",)
DEFAULT_BAND_LEVEL = "Band 6.0-7.0"


@dataclass
class DefinitionContext:
    example_sentence: str = ""
    word_type: str = "word"
    original: str = ""
    definition: str | None = None
    translation: str | None = None
    explanation: str | None = None
    tags: list[str] = field(default_factory=lambda: list(DEFAULT_TAGS))
    level: str = DEFAULT_BAND_LEVEL

    def hints(self) -> dict:
        return {
            "word_type": self.word_type,
            "example_sentence": self.example_sentence,
            "original": self.original,
            "definition": self.definition,
            "translation": self.translation,
            "explanation": self.explanation,
        }


@dataclass
class CatalogResult:
    definition: VocabularyDefinition
    created: bool
    # cache | generated | client | fallback
    content_source: str


def normalize_term(term: str) -> str:
    return " ".join(str(term or "").split()).casefold()


def resolve_definition(
    db: Database,
    generator: LLMService,
    term: str,
    context: DefinitionContext | None = None,
    *,
    max_examples: int = 10,
) -> CatalogResult:
    context = context or DefinitionContext()
    normalized = normalize_term(term)
    if not normalized:
        raise ValidationError("term", "is required")

    produced: dict[str, str] = {}

    def build_row() -> dict:
        content, source = _definition_content(generator, normalized, context)
        produced["source"] = source
        examples = [context.example_sentence.strip()] if context.example_sentence.strip() else []
        return {
            "definition": content.definition,
            "translation": content.translation,
            "pronunciation": content.pronunciation,
            "word_type": context.word_type or "word",
            "collocations": content.collocations,
            "synonyms": _unique(content.synonyms),
            "related_words": _unique(content.related_words),
            "usage_notes": content.usage_notes,
            "example_sentences": examples,
            "band_level": context.level or DEFAULT_BAND_LEVEL,
            "times_used": 1,
        }

    definition, created = db.get_or_create_definition(normalized, build_row)
    if not created:
        logger.info("Reusing vocabulary definition for %r", normalized)
        definition = db.record_definition_reuse(
            definition.id,
            example_sentence=context.example_sentence,
            max_examples=max_examples,
        )
        return CatalogResult(definition=definition, created=False, content_source="cache")

    logger.info("Stored new vocabulary definition for %r (%s)", normalized, produced.get("source"))
    if context.tags:
        db.attach_tags(definition.id, context.tags)
        definition.tags = db.list_tags(definition.id)
    return CatalogResult(definition=definition, created=True, content_source=produced.get("source", "generated"))


def _definition_content(
    generator: LLMService,
    term: str,
    context: DefinitionContext,
) -> tuple[DefinitionContent, str]:
    definition_hint = (context.definition or "").strip()
    translation_hint = (context.translation or "").strip()
    if definition_hint and translation_hint:
        return (
            DefinitionContent(
                definition=definition_hint,
                translation=translation_hint,
                usage_notes=(context.explanation or "").strip(),
            ),
            "client",
        )

    result = generator.generate_definition(term, context.hints())
    if isinstance(result, GenerationError):
        logger.warning("Definition generation failed for %r (%s); storing fallback", term, result.reason)
        return fallback_definition(term, context), "fallback"
    return result.content, "generated"


def fallback_definition(term: str, context: DefinitionContext) -> DefinitionContent:
    return DefinitionContent(
        definition=(context.definition or "").strip() or f"Meaning of {term}",
        translation=(context.translation or "").strip() or f"Translation of {term}",
        usage_notes=(context.explanation or "").strip(),
    )


def _unique(values: list[str]) -> list[str]:
    seen: set[str] = set()
    cleaned: list[str] = []
    for value in values:
        key = value.casefold()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(value)
    return cleaned
