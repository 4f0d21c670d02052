from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from vocab_mastery.api.schemas import (
    ExerciseAttemptRequest,
    ExercisesRequest,
    PracticeResultRequest,
    SaveVocabularyRequest,
    SentenceCheckRequest,
)
from vocab_mastery.config import configure_logging, load_settings
from vocab_mastery.errors import NotAuthenticatedError, NotFoundError, ValidationError
from vocab_mastery.exercises.bank import SOURCE_CACHE, ExerciseSet
from vocab_mastery.learning import records, sentences, session
from vocab_mastery.services.llm import LLMService
from vocab_mastery.storage.db import Database
from vocab_mastery.vocabulary.catalog import DefinitionContext

logger = logging.getLogger(__name__)

settings = load_settings()
db = Database()
generator = LLMService(timeout=settings.generator_timeout)

WIRE_SOURCES = {SOURCE_CACHE: "database"}


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging(settings.log_level)
    db.initialize()
    logger.info("Vocabulary store ready at %s (generator available: %s)", db.db_path, generator.available())
    yield


app = FastAPI(title="Vocabulary Mastery", version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def current_learner(x_learner_id: str | None = Header(default=None)) -> str:
    try:
        return _require_identity(x_learner_id)
    except NotAuthenticatedError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/api/vocabulary/save", status_code=201)
def save_vocabulary(
    req: SaveVocabularyRequest,
    response: Response,
    learner_id: str = Depends(current_learner),
) -> dict:
    context = DefinitionContext(
        example_sentence=req.example_sentence,
        word_type=req.type,
        original=req.original,
        definition=req.definition,
        translation=req.translation,
        explanation=req.explanation,
        tags=req.tags,
        level=req.level,
    )
    try:
        outcome = records.save(
            db,
            generator,
            learner_id=learner_id,
            term=req.term,
            source=records.SourceMetadata(
                source_type=req.source_type,
                essay_ref=req.essay_ref,
                example_sentence=req.example_sentence,
            ),
            context=context,
            max_examples=settings.max_example_sentences,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if not outcome.created:
        response.status_code = 200
        return {"message": "already saved", "learningRecordId": outcome.record.id}

    definition = outcome.definition
    return {
        "message": "Vocabulary saved successfully",
        "learningRecordId": outcome.record.id,
        "vocabularyId": definition.id,
        "term": definition.term,
        "definition": definition.definition,
        "translation": definition.translation,
        "exampleSentence": outcome.record.example_sentence,
        "tags": definition.tags,
        "masteryState": outcome.record.mastery_level,
        "nextReviewAt": outcome.record.next_review_at.isoformat(),
    }


@app.get("/api/vocabulary")
def list_vocabulary(
    filter_name: str = Query(default="all", alias="filter"),
    essay_id: str | None = Query(default=None, alias="essayId"),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    learner_id: str = Depends(current_learner),
) -> dict:
    try:
        collection = records.list_collection(
            db,
            learner_id=learner_id,
            filter_name=filter_name,
            essay_ref=essay_id,
            limit=limit,
            offset=offset,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "items": [record.to_payload() for record in collection["items"]],
        "statistics": collection["statistics"],
        "dueCount": collection["due_count"],
        "total": collection["total"],
    }


@app.get("/api/vocabulary/essays")
def list_essays(learner_id: str = Depends(current_learner)) -> dict:
    essays = [
        {"essayId": row["essay_ref"], "wordCount": row["word_count"], "firstSavedAt": row["first_saved_at"]}
        for row in records.list_essays(db, learner_id=learner_id)
    ]
    return {"essays": essays, "total": len(essays)}


@app.post("/api/vocabulary/check-sentence")
def check_sentence(req: SentenceCheckRequest, learner_id: str = Depends(current_learner)) -> dict:
    try:
        result = sentences.check_sentence(
            db,
            generator,
            learner_id=learner_id,
            record_id=req.learning_record_id,
            sentence=req.sentence,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"sentenceId": result.sentence_id, "feedback": result.feedback.to_payload(), "source": result.source}


@app.get("/api/vocabulary/check-sentence")
def sentence_history(
    learning_record_id: int = Query(alias="learningRecordId"),
    learner_id: str = Depends(current_learner),
) -> dict:
    try:
        rows = sentences.recent_sentences(db, learner_id=learner_id, record_id=learning_record_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {
        "sentences": [
            {
                "id": row["id"],
                "sentence": row["sentence"],
                "isCorrect": row["is_correct"],
                "feedback": row["feedback"],
                "source": row["feedback_source"],
                "createdAt": row["created_at"],
            }
            for row in rows
        ]
    }


@app.delete("/api/vocabulary/{learning_record_id}")
def delete_vocabulary(learning_record_id: int, learner_id: str = Depends(current_learner)) -> dict:
    try:
        records.remove(db, learner_id=learner_id, record_id=learning_record_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"message": "Vocabulary deleted successfully"}


@app.get("/api/vocabulary/practice")
def practice_due(
    limit: int | None = Query(default=None, ge=1, le=100),
    learner_id: str = Depends(current_learner),
) -> dict:
    items = records.list_due(db, learner_id=learner_id, limit=limit or settings.practice_limit)
    return {"items": [record.to_payload() for record in items], "count": len(items)}


@app.get("/api/vocabulary/practice/next")
def practice_next(learner_id: str = Depends(current_learner)) -> dict:
    try:
        item = session.next_practice_item(db, generator, learner_id=learner_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if item is None:
        return {"item": None, "exercises": [], "source": None}
    return {"item": item.record.to_payload(), **_exercise_payload(item.exercises)}


@app.post("/api/vocabulary/practice")
def practice_session_result(req: PracticeResultRequest, learner_id: str = Depends(current_learner)) -> dict:
    try:
        outcome = session.complete_session(
            db,
            learner_id=learner_id,
            record_id=req.learning_record_id,
            exercises_completed=req.exercises_completed,
            exercises_correct=req.exercises_correct,
            pronunciation_played=req.pronunciation_played,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {
        "message": "Practice session completed",
        "masteryState": outcome.record.mastery_level,
        "nextReviewAt": outcome.record.next_review_at.isoformat(),
        "reviewCount": outcome.record.review_count,
        "successRatePercent": round(outcome.update.success_rate * 100),
    }


@app.post("/api/vocabulary/exercises")
def exercises_for(req: ExercisesRequest, learner_id: str = Depends(current_learner)) -> dict:
    try:
        exercise_set = session.exercises_for(
            db,
            generator,
            vocabulary_id=req.vocabulary_id,
            term=req.term,
            definition=req.definition,
            example=req.example_sentence,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _exercise_payload(exercise_set)


@app.put("/api/vocabulary/exercises/attempt")
def exercise_attempt(req: ExerciseAttemptRequest, learner_id: str = Depends(current_learner)) -> dict:
    try:
        attempt_id, is_correct = session.record_attempt(
            db,
            learner_id=learner_id,
            record_id=req.learning_record_id,
            exercise_type=req.exercise_type,
            exercise_id=req.exercise_id,
            is_correct=req.is_correct,
            answer=req.answer,
            time_taken_seconds=req.time_taken_seconds,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"message": "Attempt recorded", "attemptId": attempt_id, "isCorrect": is_correct}


def _exercise_payload(exercise_set: ExerciseSet) -> dict:
    return {
        "exercises": [item.to_payload() for item in exercise_set.exercises],
        "source": WIRE_SOURCES.get(exercise_set.source, "ai_generated"),
    }


def _require_identity(raw: str | None) -> str:
    learner_id = str(raw or "").strip()
    if not learner_id:
        raise NotAuthenticatedError("learner identity required")
    return learner_id
