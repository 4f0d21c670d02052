from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveVocabularyRequest(CamelModel):
    term: str = Field(min_length=1, max_length=120)
    type: Literal["word", "phrase", "collocation"] = "word"
    original: str = ""
    example_sentence: str = Field(min_length=1)
    source_type: Literal["essay_correction", "ideas_generator", "manual"]
    essay_ref: str | None = None
    definition: str | None = None
    translation: str | None = None
    explanation: str | None = None
    tags: list[str] = Field(default_factory=lambda: ["general"])
    level: str = Field(default="Band 6.0-7.0")


class PracticeResultRequest(CamelModel):
    learning_record_id: int
    exercises_completed: int = Field(ge=0, le=100)
    exercises_correct: int = Field(ge=0, le=100)
    pronunciation_played: bool = False

    @model_validator(mode="after")
    def correct_within_completed(self) -> "PracticeResultRequest":
        if self.exercises_correct > self.exercises_completed:
            raise ValueError("exercisesCorrect cannot exceed exercisesCompleted")
        return self


class ExercisesRequest(CamelModel):
    vocabulary_id: int
    term: str = Field(min_length=1)
    definition: str | None = None
    example_sentence: str | None = None


class SentenceCheckRequest(CamelModel):
    learning_record_id: int
    sentence: str = Field(min_length=1, max_length=500)


class ExerciseAttemptRequest(CamelModel):
    learning_record_id: int
    exercise_id: int | None = None
    exercise_type: Literal["mcq_meaning", "mcq_context"]
    is_correct: bool | None = None
    answer: str | None = None
    time_taken_seconds: float | None = Field(default=None, ge=0)
