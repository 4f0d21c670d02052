from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import vocab_mastery.app as app_module
from vocab_mastery.services.llm import (
    DefinitionContent,
    ExerciseDraft,
    Generated,
    GenerationError,
    SentenceFeedback,
)
from vocab_mastery.storage.db import Database


class FakeGenerator:
    def __init__(self, *, failing: bool = False, delay: float = 0.0) -> None:
        self.failing = failing
        self.delay = delay
        self.definition_calls: list[str] = []
        self.exercise_calls: list[str] = []
        self.sentence_calls: list[str] = []
        self._lock = threading.Lock()

    def available(self) -> bool:
        return not self.failing

    def generate_definition(self, term, hints=None):
        with self._lock:
            self.definition_calls.append(term)
        if self.delay:
            time.sleep(self.delay)
        if self.failing:
            return GenerationError("timeout")
        return Generated(
            DefinitionContent(
                definition=f"Generated definition of {term}",
                translation=f"Generated translation of {term}",
                pronunciation=f"/{term}/",
                collocations=[f"{term} presence"],
                synonyms=["omnipresent", "pervasive", "Pervasive"],
                related_words=["ubiquity"],
                usage_notes="Formal register.",
            ),
            model="fake",
        )

    def generate_exercises(self, term, definition, example):
        with self._lock:
            self.exercise_calls.append(term)
        if self.delay:
            time.sleep(self.delay)
        if self.failing:
            return GenerationError("malformed model output")
        return Generated(
            [
                ExerciseDraft(
                    exercise_type="mcq_meaning",
                    question=f"What does '{term}' mean?",
                    correct_answer=definition,
                    options=["Rare", definition, "Hidden", "Ancient"],
                    explanation="Matches the definition.",
                ),
                ExerciseDraft(
                    exercise_type="mcq_context",
                    question=f"Choose the sentence where '{term}' is used correctly:",
                    correct_answer=f"Phones are {term} today.",
                    options=[
                        f"I {term} the door.",
                        f"She ran {term} to school.",
                        f"Phones are {term} today.",
                        f"The {term} barked.",
                    ],
                    explanation="Adjective describing something found everywhere.",
                ),
            ]
        )

    def check_sentence(self, term, sentence, definition, example):
        with self._lock:
            self.sentence_calls.append(sentence)
        if self.failing:
            return GenerationError("timeout")
        correct = term.lower() in sentence.lower()
        return Generated(
            SentenceFeedback(
                is_correct=correct,
                feedback="Well used." if correct else f"The sentence does not use '{term}'.",
                corrected_sentence=sentence if correct else example,
                grammar_tips="",
                better_example=example,
                encouragement="Keep going!",
            ),
            model="fake",
        )


@pytest.fixture()
def temp_db(tmp_path):
    db = Database(tmp_path / "vocab_mastery_test.db")
    db.initialize()
    return db


@pytest.fixture()
def generator():
    return FakeGenerator()


@pytest.fixture()
def client(temp_db, generator, monkeypatch):
    monkeypatch.setattr(app_module, "db", temp_db)
    monkeypatch.setattr(app_module, "generator", generator)
    with TestClient(app_module.app) as c:
        yield c


def learner_headers(learner_id: str = "learner-1") -> dict:
    return {"X-Learner-Id": learner_id}
