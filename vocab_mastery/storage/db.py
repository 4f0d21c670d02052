from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Protocol, Sequence

from vocab_mastery.config import DB_PATH
from vocab_mastery.errors import NotFoundError
from vocab_mastery.storage.models import (
    MASTERY_STATES,
    ExerciseAttempt,
    ExerciseBankItem,
    LearningRecord,
    VocabularyDefinition,
    attempt_values,
)

UTC = timezone.utc
logger = logging.getLogger(__name__)

# Tables created through get_or_create, with the columns of their unique key.
UNIQUE_KEYS: dict[str, tuple[str, ...]] = {
    "vocabulary_definitions": ("term",),
    "vocabulary_tags": ("name",),
    "vocabulary_definition_tags": ("vocabulary_id", "tag_id"),
    "vocabulary_exercise_bank": ("vocabulary_id", "exercise_type"),
    "saved_vocabulary": ("learner_id", "vocabulary_id"),
}


class ScheduleDecision(Protocol):
    mastery_state: str
    next_review_at: datetime


class Database:
    def __init__(self, db_path: Path = DB_PATH) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self):
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    @contextmanager
    def write_transaction(self):
        """Connection holding the database write lock until the block exits."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            yield conn

    def initialize(self) -> None:
        schema_path = Path(__file__).with_name("schema.sql")
        with self.connect() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.executescript(schema_path.read_text(encoding="utf-8"))

    def get_or_create(
        self,
        table: str,
        key: dict,
        factory: Callable[[], dict],
    ) -> tuple[dict, bool]:
        """Return the row for ``key``, inserting ``factory()`` values when it is absent.

        ``factory`` runs outside any connection so slow producers never hold
        the database lock. When a concurrent writer inserts the same key first,
        the insert is dropped by the unique constraint and the existing row is
        returned with ``created`` False.
        """
        columns = UNIQUE_KEYS.get(table)
        if columns is None or set(columns) != set(key):
            raise ValueError(f"get_or_create is not configured for {table} keyed by {sorted(key)}")

        existing = self._select_by_key(table, key)
        if existing is not None:
            return existing, False

        values = {**factory(), **key}
        names = list(values)
        placeholders = ",".join(["?"] * len(names))
        with self.connect() as conn:
            row = conn.execute(
                f"""
                INSERT INTO {table} ({', '.join(names)})
                VALUES ({placeholders})
                ON CONFLICT({', '.join(columns)}) DO NOTHING
                RETURNING *
                """,
                tuple(_encode(values[name]) for name in names),
            ).fetchone()
        if row is not None:
            return dict(row), True

        logger.debug("Concurrent insert into %s for %s; using the existing row", table, key)
        existing = self._select_by_key(table, key)
        if existing is None:
            raise RuntimeError(f"row for {key} vanished from {table}")
        return existing, False

    def _select_by_key(self, table: str, key: dict) -> dict | None:
        clauses = " AND ".join(f"{column} = ?" for column in key)
        with self.connect() as conn:
            row = conn.execute(f"SELECT * FROM {table} WHERE {clauses}", tuple(key.values())).fetchone()
        return dict(row) if row else None

    # Shared vocabulary catalog

    def get_definition(self, vocabulary_id: int) -> VocabularyDefinition | None:
        with self.connect() as conn:
            found = _load_definitions(conn, [vocabulary_id])
        return found.get(vocabulary_id)

    def get_definition_by_term(self, term: str) -> VocabularyDefinition | None:
        row = self._select_by_key("vocabulary_definitions", {"term": term})
        return self.get_definition(int(row["id"])) if row else None

    def get_or_create_definition(
        self,
        term: str,
        factory: Callable[[], dict],
    ) -> tuple[VocabularyDefinition, bool]:
        row, created = self.get_or_create("vocabulary_definitions", {"term": term}, factory)
        definition = self.get_definition(int(row["id"]))
        if definition is None:
            raise NotFoundError(f"vocabulary {row['id']} not found")
        return definition, created

    def record_definition_reuse(
        self,
        vocabulary_id: int,
        *,
        example_sentence: str | None = None,
        max_examples: int = 10,
    ) -> VocabularyDefinition:
        with self.write_transaction() as conn:
            cur = conn.execute(
                "UPDATE vocabulary_definitions SET times_used = times_used + 1 WHERE id = ?",
                (vocabulary_id,),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"vocabulary {vocabulary_id} not found")
            sentence = " ".join(str(example_sentence or "").split())
            if sentence:
                row = conn.execute(
                    "SELECT example_sentences FROM vocabulary_definitions WHERE id = ?",
                    (vocabulary_id,),
                ).fetchone()
                examples = _json_loads(row["example_sentences"])
                if sentence not in examples and len(examples) < max_examples:
                    conn.execute(
                        "UPDATE vocabulary_definitions SET example_sentences = ? WHERE id = ?",
                        (_json_dumps([*examples, sentence]), vocabulary_id),
                    )
            found = _load_definitions(conn, [vocabulary_id])
        return found[vocabulary_id]

    def attach_tags(self, vocabulary_id: int, tags: Iterable[str]) -> list[str]:
        attached: list[str] = []
        for name in _sanitize_str_list(list(tags), limit=20):
            tag_name = name.lower()
            tag, _ = self.get_or_create(
                "vocabulary_tags",
                {"name": tag_name},
                lambda tag_name=tag_name: {"description": f"{tag_name} related vocabulary"},
            )
            self.get_or_create(
                "vocabulary_definition_tags",
                {"vocabulary_id": vocabulary_id, "tag_id": int(tag["id"])},
                dict,
            )
            attached.append(tag_name)
        return attached

    def list_tags(self, vocabulary_id: int) -> list[str]:
        with self.connect() as conn:
            return _load_tags(conn, [vocabulary_id]).get(vocabulary_id, [])

    # Exercise bank

    def list_exercises(self, vocabulary_id: int) -> list[ExerciseBankItem]:
        with self.connect() as conn:
            rows = conn.execute(
                "SELECT * FROM vocabulary_exercise_bank WHERE vocabulary_id = ? ORDER BY id",
                (vocabulary_id,),
            ).fetchall()
        return [ExerciseBankItem.from_row(row) for row in rows]

    def get_exercise(self, exercise_id: int) -> ExerciseBankItem | None:
        with self.connect() as conn:
            row = conn.execute("SELECT * FROM vocabulary_exercise_bank WHERE id = ?", (exercise_id,)).fetchone()
        return ExerciseBankItem.from_row(row) if row else None

    def record_exercise_reuse(self, exercise_ids: Sequence[int]) -> None:
        if not exercise_ids:
            return
        placeholders = ",".join(["?"] * len(exercise_ids))
        with self.connect() as conn:
            conn.execute(
                f"UPDATE vocabulary_exercise_bank SET times_used = times_used + 1 WHERE id IN ({placeholders})",
                tuple(exercise_ids),
            )

    def get_or_create_exercise(
        self,
        vocabulary_id: int,
        exercise_type: str,
        factory: Callable[[], dict],
    ) -> tuple[ExerciseBankItem, bool]:
        row, created = self.get_or_create(
            "vocabulary_exercise_bank",
            {"vocabulary_id": vocabulary_id, "exercise_type": exercise_type},
            factory,
        )
        return ExerciseBankItem.from_row(row), created

    def record_attempt(self, attempt: ExerciseAttempt) -> int:
        values = attempt_values(attempt)
        with self.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO vocabulary_exercise_attempts
                (learner_id, saved_vocabulary_id, exercise_id, exercise_type, is_correct, time_taken_seconds)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    values["learner_id"],
                    values["saved_vocabulary_id"],
                    values["exercise_id"],
                    values["exercise_type"],
                    values["is_correct"],
                    values["time_taken_seconds"],
                ),
            )
            if attempt.exercise_id is not None:
                conn.execute(
                    """
                    UPDATE vocabulary_exercise_bank
                    SET success_rate = (
                        SELECT AVG(is_correct * 1.0)
                        FROM vocabulary_exercise_attempts
                        WHERE exercise_id = ?
                    )
                    WHERE id = ?
                    """,
                    (attempt.exercise_id, attempt.exercise_id),
                )
            return int(cur.lastrowid)

    def list_attempts(self, learning_record_id: int) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM vocabulary_exercise_attempts
                WHERE saved_vocabulary_id = ?
                ORDER BY id
                """,
                (learning_record_id,),
            ).fetchall()
        items: list[dict] = []
        for row in rows:
            obj = dict(row)
            obj["is_correct"] = bool(obj["is_correct"])
            items.append(obj)
        return items

    # Personal learning records

    def get_or_create_learning_record(
        self,
        learner_id: str,
        vocabulary_id: int,
        factory: Callable[[], dict],
    ) -> tuple[LearningRecord, bool]:
        row, created = self.get_or_create(
            "saved_vocabulary",
            {"learner_id": learner_id, "vocabulary_id": vocabulary_id},
            factory,
        )
        return LearningRecord.from_row(row), created

    def get_learning_record(self, learner_id: str, record_id: int) -> LearningRecord | None:
        with self.connect() as conn:
            row = conn.execute(
                "SELECT * FROM saved_vocabulary WHERE id = ? AND learner_id = ?",
                (record_id, learner_id),
            ).fetchone()
            if row is None:
                return None
            return _attach_vocabulary(conn, [LearningRecord.from_row(row)])[0]

    def list_due_records(self, learner_id: str, *, now: datetime, limit: int) -> list[LearningRecord]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM saved_vocabulary
                WHERE learner_id = ? AND next_review_at <= ?
                ORDER BY next_review_at ASC, id ASC
                LIMIT ?
                """,
                (learner_id, format_timestamp(now), max(1, int(limit))),
            ).fetchall()
            return _attach_vocabulary(conn, [LearningRecord.from_row(row) for row in rows])

    def list_learning_records(
        self,
        learner_id: str,
        *,
        due_before: datetime | None = None,
        essay_ref: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[LearningRecord]:
        clauses, params = _record_filters(learner_id, due_before=due_before, essay_ref=essay_ref)
        params.extend([max(1, int(limit)), max(0, int(offset))])
        with self.connect() as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM saved_vocabulary
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                tuple(params),
            ).fetchall()
            return _attach_vocabulary(conn, [LearningRecord.from_row(row) for row in rows])

    def count_learning_records(
        self,
        learner_id: str,
        *,
        due_before: datetime | None = None,
        essay_ref: str | None = None,
    ) -> int:
        clauses, params = _record_filters(learner_id, due_before=due_before, essay_ref=essay_ref)
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) AS cnt FROM saved_vocabulary WHERE {' AND '.join(clauses)}",
                tuple(params),
            ).fetchone()
        return int(row["cnt"] if row else 0)

    def list_essay_sources(self, learner_id: str) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT essay_ref, COUNT(*) AS word_count, MIN(created_at) AS first_saved_at
                FROM saved_vocabulary
                WHERE learner_id = ? AND essay_ref IS NOT NULL AND essay_ref != ''
                GROUP BY essay_ref
                ORDER BY word_count DESC, essay_ref ASC
                """,
                (learner_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def mastery_statistics(self, learner_id: str, *, now: datetime) -> dict:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT mastery_level, COUNT(*) AS cnt
                FROM saved_vocabulary
                WHERE learner_id = ?
                GROUP BY mastery_level
                """,
                (learner_id,),
            ).fetchall()
            due = conn.execute(
                "SELECT COUNT(*) AS cnt FROM saved_vocabulary WHERE learner_id = ? AND next_review_at <= ?",
                (learner_id, format_timestamp(now)),
            ).fetchone()
        stats = {state: 0 for state in MASTERY_STATES}
        for row in rows:
            stats[str(row["mastery_level"])] = int(row["cnt"])
        return {"total": sum(stats.values()), **stats, "due": int(due["cnt"] if due else 0)}

    def delete_learning_record(self, learner_id: str, record_id: int) -> bool:
        with self.connect() as conn:
            cur = conn.execute(
                "DELETE FROM saved_vocabulary WHERE id = ? AND learner_id = ?",
                (record_id, learner_id),
            )
        return bool(cur.rowcount)

    def apply_practice_session(
        self,
        *,
        learner_id: str,
        record_id: int,
        decide: Callable[[LearningRecord], ScheduleDecision],
        exercises_completed: int,
        exercises_correct: int,
        pronunciation_played: bool,
        now: datetime,
    ) -> LearningRecord:
        """Read, reschedule and write one learning record under the write lock."""
        with self.write_transaction() as conn:
            row = conn.execute(
                "SELECT * FROM saved_vocabulary WHERE id = ? AND learner_id = ?",
                (record_id, learner_id),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"learning record {record_id} not found")
            decision = decide(LearningRecord.from_row(row))
            conn.execute(
                """
                UPDATE saved_vocabulary
                SET mastery_level = ?,
                    next_review_at = ?,
                    last_reviewed_at = ?,
                    review_count = review_count + 1,
                    exercises_completed = exercises_completed + ?,
                    exercises_correct = exercises_correct + ?,
                    pronunciation_plays = pronunciation_plays + ?
                WHERE id = ?
                """,
                (
                    decision.mastery_state,
                    format_timestamp(decision.next_review_at),
                    format_timestamp(now),
                    int(exercises_completed),
                    int(exercises_correct),
                    int(bool(pronunciation_played)),
                    record_id,
                ),
            )
            updated = conn.execute("SELECT * FROM saved_vocabulary WHERE id = ?", (record_id,)).fetchone()
        return LearningRecord.from_row(updated)

    # Sentence practice

    def record_sentence(
        self,
        *,
        learner_id: str,
        learning_record_id: int,
        sentence: str,
        is_correct: bool | None,
        feedback: dict,
        feedback_source: str,
    ) -> int:
        with self.connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO student_sentences
                (learner_id, saved_vocabulary_id, sentence, is_correct, feedback, feedback_source)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    learner_id,
                    learning_record_id,
                    sentence,
                    None if is_correct is None else int(bool(is_correct)),
                    json.dumps(feedback, ensure_ascii=False),
                    feedback_source,
                ),
            )
            return int(cur.lastrowid)

    def list_sentences(self, learner_id: str, learning_record_id: int, *, limit: int = 5) -> list[dict]:
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM student_sentences
                WHERE learner_id = ? AND saved_vocabulary_id = ?
                ORDER BY id DESC
                LIMIT ?
                """,
                (learner_id, learning_record_id, max(1, int(limit))),
            ).fetchall()
        items: list[dict] = []
        for row in rows:
            obj = dict(row)
            obj["is_correct"] = None if obj["is_correct"] is None else bool(obj["is_correct"])
            try:
                feedback = json.loads(obj["feedback"] or "{}")
            except json.JSONDecodeError:
                feedback = {}
            obj["feedback"] = feedback if isinstance(feedback, dict) else {}
            items.append(obj)
        return items


def _record_filters(
    learner_id: str,
    *,
    due_before: datetime | None = None,
    essay_ref: str | None = None,
) -> tuple[list[str], list[object]]:
    clauses = ["learner_id = ?"]
    params: list[object] = [learner_id]
    if due_before is not None:
        clauses.append("next_review_at <= ?")
        params.append(format_timestamp(due_before))
    if essay_ref is not None:
        clauses.append("essay_ref = ?")
        params.append(essay_ref)
    return clauses, params


def format_timestamp(value: datetime) -> str:
    # Fixed-width UTC text keeps lexical order equal to chronological order.
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _attach_vocabulary(conn: sqlite3.Connection, records: list[LearningRecord]) -> list[LearningRecord]:
    definitions = _load_definitions(conn, [record.vocabulary_id for record in records])
    for record in records:
        record.vocabulary = definitions.get(record.vocabulary_id)
    return records


def _load_definitions(conn: sqlite3.Connection, vocabulary_ids: Sequence[int]) -> dict[int, VocabularyDefinition]:
    ids = sorted({int(item) for item in vocabulary_ids})
    if not ids:
        return {}
    placeholders = ",".join(["?"] * len(ids))
    rows = conn.execute(
        f"SELECT * FROM vocabulary_definitions WHERE id IN ({placeholders})",
        tuple(ids),
    ).fetchall()
    tags = _load_tags(conn, ids)
    return {
        int(row["id"]): VocabularyDefinition.from_row(row, tags=tags.get(int(row["id"]), []))
        for row in rows
    }


def _load_tags(conn: sqlite3.Connection, vocabulary_ids: Sequence[int]) -> dict[int, list[str]]:
    if not vocabulary_ids:
        return {}
    placeholders = ",".join(["?"] * len(vocabulary_ids))
    rows = conn.execute(
        f"""
        SELECT dt.vocabulary_id, t.name
        FROM vocabulary_definition_tags dt
        JOIN vocabulary_tags t ON t.id = dt.tag_id
        WHERE dt.vocabulary_id IN ({placeholders})
        ORDER BY t.name
        """,
        tuple(vocabulary_ids),
    ).fetchall()
    tags: dict[int, list[str]] = {}
    for row in rows:
        tags.setdefault(int(row["vocabulary_id"]), []).append(str(row["name"]))
    return tags


def _encode(value: object) -> object:
    if isinstance(value, (list, tuple, set)):
        return _json_dumps(list(value))
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, bool):
        return int(value)
    return value


def _json_dumps(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _json_loads(value: str | None) -> list:
    if not value:
        return []
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return []
    return parsed if isinstance(parsed, list) else []


def _sanitize_str_list(values: Sequence[str] | None, *, limit: int = 6) -> list[str]:
    if not values:
        return []
    cleaned: list[str] = []
    seen: set[str] = set()
    for value in values:
        text = " ".join(str(value).split()).strip()
        if not text:
            continue
        lowered = text.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        cleaned.append(text)
        if len(cleaned) >= limit:
            break
    return cleaned
