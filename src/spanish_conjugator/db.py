from __future__ import annotations

import json
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Literal, Mapping, Sequence

from .config import DATA_DIR
from .models import Attempt, MasteryRecord

logger = logging.getLogger(__name__)

DB_PATH_ENV = "SPANISH_CONJUGATOR_DB_PATH"
DEFAULT_DB_PATH = DATA_DIR / "spanish_conjugator.db"
DB_PATH = Path(os.environ.get(DB_PATH_ENV, DEFAULT_DB_PATH))

# Columns each syncable table accepts, besides ``id``, ``user_id`` and ``payload``.
TABLE_COLUMNS: dict[str, tuple[str, ...]] = {
    "attempts": (
        "item_id",
        "lemma",
        "mood",
        "tense",
        "person",
        "correct",
        "latency_ms",
        "hints_used",
        "error_tags",
        "created_at",
        "updated_at",
    ),
    "mastery": ("mood", "tense", "score", "n", "weighted_n", "updated_at"),
    "schedules": (
        "mood",
        "tense",
        "person",
        "interval_days",
        "ease",
        "reps",
        "lapses",
        "leech",
        "stability",
        "difficulty",
        "last_review",
        "next_due",
        "updated_at",
    ),
    "sessions": ("started_at", "updated_at"),
    "challenges": ("date", "updated_at"),
}


_active_connection: ContextVar[sqlite3.Connection | None] = ContextVar("active_connection", default=None)


@contextmanager
def connect() -> Iterator[sqlite3.Connection]:
    """Yield a SQLite connection and commit when the block exits cleanly.

    Inside ``transaction()`` the shared connection is yielded instead and the
    commit is left to the outer block.
    """

    active = _active_connection.get()
    if active is not None:
        yield active
        return
    connection = _open_connection()
    try:
        yield connection
        connection.commit()
    finally:
        connection.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Run every database call in the block on one connection and commit once.

    An exception rolls back everything written inside the block.
    """

    active = _active_connection.get()
    if active is not None:
        yield active
        return
    connection = _open_connection()
    token = _active_connection.set(connection)
    try:
        yield connection
        connection.commit()
    except BaseException:
        connection.rollback()
        raise
    finally:
        _active_connection.reset(token)
        connection.close()


def _open_connection() -> sqlite3.Connection:
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    connection = sqlite3.connect(DB_PATH)
    connection.row_factory = sqlite3.Row
    return connection


def now_iso(value: datetime | None = None) -> str:
    """Return the current UTC timestamp (seconds precision) as ISO 8601."""

    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    else:
        moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="seconds")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string or epoch milliseconds into an aware UTC datetime."""

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, bool):
        return None
    elif isinstance(value, (int, float)):
        try:
            moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        try:
            moment = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def init_db() -> None:
    """Initialise the database schema if tables are missing."""

    with connect() as connection:
        _create_tables(connection)


def _create_tables(connection: sqlite3.Connection) -> None:
    _drop_if_schema_mismatch(
        connection,
        "schedules",
        required={"id", "user_id", "mood", "tense", "person", "next_due", "stability", "difficulty"},
    )
    connection.executescript(
        """
        CREATE TABLE IF NOT EXISTS attempts (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            item_id TEXT NOT NULL DEFAULT '',
            lemma TEXT NOT NULL DEFAULT '',
            mood TEXT NOT NULL DEFAULT '',
            tense TEXT NOT NULL DEFAULT '',
            person TEXT NOT NULL DEFAULT '',
            correct INTEGER NOT NULL DEFAULT 0,
            latency_ms INTEGER NOT NULL DEFAULT 0,
            hints_used INTEGER NOT NULL DEFAULT 0,
            error_tags TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            PRIMARY KEY (user_id, id)
        );
        CREATE INDEX IF NOT EXISTS idx_attempts_user ON attempts(user_id);
        CREATE INDEX IF NOT EXISTS idx_attempts_created ON attempts(created_at);

        CREATE TABLE IF NOT EXISTS mastery (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            mood TEXT NOT NULL DEFAULT '',
            tense TEXT NOT NULL DEFAULT '',
            score REAL NOT NULL DEFAULT 50,
            n INTEGER NOT NULL DEFAULT 0,
            weighted_n REAL NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            PRIMARY KEY (user_id, id)
        );
        CREATE INDEX IF NOT EXISTS idx_mastery_user ON mastery(user_id);

        CREATE TABLE IF NOT EXISTS schedules (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            mood TEXT NOT NULL DEFAULT '',
            tense TEXT NOT NULL DEFAULT '',
            person TEXT NOT NULL DEFAULT '',
            interval_days REAL NOT NULL DEFAULT 0,
            ease REAL NOT NULL DEFAULT 2.5,
            reps INTEGER NOT NULL DEFAULT 0,
            lapses INTEGER NOT NULL DEFAULT 0,
            leech INTEGER NOT NULL DEFAULT 0,
            stability REAL,
            difficulty REAL,
            last_review TEXT,
            next_due TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            PRIMARY KEY (user_id, id)
        );
        CREATE INDEX IF NOT EXISTS idx_schedules_user ON schedules(user_id);
        CREATE INDEX IF NOT EXISTS idx_schedules_next_due ON schedules(next_due);

        CREATE TABLE IF NOT EXISTS sessions (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            started_at TEXT,
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            PRIMARY KEY (user_id, id)
        );
        CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);

        CREATE TABLE IF NOT EXISTS challenges (
            id TEXT NOT NULL,
            user_id TEXT NOT NULL,
            date TEXT NOT NULL DEFAULT '',
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}',
            PRIMARY KEY (user_id, id)
        );
        CREATE INDEX IF NOT EXISTS idx_challenges_user ON challenges(user_id);

        CREATE TABLE IF NOT EXISTS expert_settings (
            user_id TEXT PRIMARY KEY,
            updated_at TEXT NOT NULL,
            payload TEXT NOT NULL DEFAULT '{}'
        );
        """
    )


def _drop_if_schema_mismatch(connection: sqlite3.Connection, table: str, *, required: set[str]) -> None:
    if table not in _existing_tables(connection):
        return
    columns = _get_columns(connection, table)
    if not required.issubset(columns):
        logger.warning("Dropping table %s with outdated schema", table)
        connection.execute(f"DROP TABLE {table}")


def _existing_tables(connection: sqlite3.Connection) -> set[str]:
    rows = connection.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return {str(row["name"]) for row in rows}


def _get_columns(connection: sqlite3.Connection, table: str) -> set[str]:
    rows = connection.execute(f"PRAGMA table_info({table})").fetchall()
    return {str(row["name"]) for row in rows}


def _loads(raw: str | None, default: Any) -> Any:
    try:
        return json.loads(raw) if raw else default
    except json.JSONDecodeError:
        logger.warning("Discarding malformed JSON column value")
        return default


# Generic upserts


def upsert_row(
    connection: sqlite3.Connection,
    table: str,
    record_id: str,
    user_id: str,
    fields: Mapping[str, Any],
    payload: Mapping[str, Any] | None = None,
) -> Literal["inserted", "updated"]:
    """Insert or update one row of a syncable table inside an open transaction.

    Rows are keyed by ``(user_id, id)`` so two users may reuse the same id.
    """

    if table not in TABLE_COLUMNS:
        raise ValueError(f"Unsupported table: {table}")
    allowed = TABLE_COLUMNS[table]
    record = {key: value for key, value in fields.items() if key in allowed}
    record["payload"] = json.dumps(dict(payload or {}), ensure_ascii=False, default=str)

    existing = connection.execute(
        f"SELECT id FROM {table} WHERE user_id = ? AND id = ?", (user_id, record_id)
    ).fetchone()
    if existing:
        assignments = ", ".join(f"{column} = ?" for column in record)
        connection.execute(
            f"UPDATE {table} SET {assignments} WHERE user_id = ? AND id = ?",
            (*record.values(), user_id, record_id),
        )
        return "updated"

    record = {"id": record_id, "user_id": user_id, **record}
    columns = ", ".join(record)
    placeholders = ", ".join("?" for _ in record)
    connection.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(record.values()))
    return "inserted"


def fetch_rows(table: str, user_id: str, *, order_by: str | None = None) -> list[dict[str, Any]]:
    """Return every row a user owns in ``table`` with the payload decoded."""

    if table not in TABLE_COLUMNS:
        raise ValueError(f"Unsupported table: {table}")
    order = f" ORDER BY {order_by}" if order_by else ""
    with connect() as connection:
        rows = connection.execute(f"SELECT * FROM {table} WHERE user_id = ?{order}", (user_id,)).fetchall()
    result: list[dict[str, Any]] = []
    for row in rows:
        data = dict(row)
        data["payload"] = _loads(data.get("payload"), {})
        result.append(data)
    return result


# Attempts


def insert_attempt(attempt: Attempt) -> str:
    attempt_id = attempt.id or uuid.uuid4().hex
    created_at = attempt.created_at or now_iso()
    fields = {
        "item_id": attempt.item_id,
        "lemma": attempt.lemma,
        "mood": attempt.mood,
        "tense": attempt.tense,
        "person": attempt.person,
        "correct": int(attempt.correct),
        "latency_ms": int(attempt.latency_ms),
        "hints_used": int(attempt.hints_used),
        "error_tags": json.dumps(list(attempt.error_tags)),
        "created_at": created_at,
        "updated_at": created_at,
    }
    with connect() as connection:
        upsert_row(connection, "attempts", attempt_id, attempt.user_id, fields)
    attempt.id = attempt_id
    attempt.created_at = created_at
    return attempt_id


def _row_to_attempt(row: sqlite3.Row) -> Attempt:
    return Attempt(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        item_id=str(row["item_id"]),
        lemma=str(row["lemma"]),
        mood=str(row["mood"]),
        tense=str(row["tense"]),
        person=str(row["person"]),
        correct=bool(row["correct"]),
        latency_ms=int(row["latency_ms"]),
        hints_used=int(row["hints_used"]),
        error_tags=list(_loads(row["error_tags"], [])),
        created_at=str(row["created_at"]),
    )


def fetch_attempts(
    user_id: str,
    *,
    since: str | None = None,
    until: str | None = None,
) -> list[Attempt]:
    """Attempts for a user in chronological order, optionally bounded by ISO timestamps."""

    clauses = ["user_id = ?"]
    params: list[Any] = [user_id]
    if since:
        clauses.append("created_at >= ?")
        params.append(since)
    if until:
        clauses.append("created_at < ?")
        params.append(until)
    query = f"SELECT * FROM attempts WHERE {' AND '.join(clauses)} ORDER BY created_at, id"
    with connect() as connection:
        rows = connection.execute(query, params).fetchall()
    return [_row_to_attempt(row) for row in rows]


# Mastery


def mastery_id(user_id: str, mood: str, tense: str) -> str:
    return f"{user_id}|{mood}|{tense}"


def upsert_mastery(records: Sequence[MasteryRecord]) -> None:
    with connect() as connection:
        for record in records:
            upsert_row(
                connection,
                "mastery",
                mastery_id(record.user_id, record.mood, record.tense),
                record.user_id,
                {
                    "mood": record.mood,
                    "tense": record.tense,
                    "score": record.score,
                    "n": record.n,
                    "weighted_n": record.weighted_n,
                    "updated_at": record.updated_at,
                },
            )


def fetch_mastery(user_id: str) -> list[MasteryRecord]:
    with connect() as connection:
        rows = connection.execute(
            "SELECT * FROM mastery WHERE user_id = ? ORDER BY mood, tense",
            (user_id,),
        ).fetchall()
    return [
        MasteryRecord(
            user_id=str(row["user_id"]),
            mood=str(row["mood"]),
            tense=str(row["tense"]),
            score=float(row["score"]),
            n=int(row["n"]),
            weighted_n=float(row["weighted_n"]),
            updated_at=str(row["updated_at"]),
        )
        for row in rows
    ]


# Schedules


def fetch_schedule_row(user_id: str, schedule_id: str) -> sqlite3.Row | None:
    with connect() as connection:
        return connection.execute(
            "SELECT * FROM schedules WHERE user_id = ? AND id = ?", (user_id, schedule_id)
        ).fetchone()


def fetch_schedule_rows(user_id: str, *, due_before: str | None = None) -> list[sqlite3.Row]:
    query = "SELECT * FROM schedules WHERE user_id = ?"
    params: list[Any] = [user_id]
    if due_before is not None:
        query += " AND next_due <= ?"
        params.append(due_before)
    query += " ORDER BY next_due"
    with connect() as connection:
        return connection.execute(query, params).fetchall()


def save_schedule_row(schedule_id: str, user_id: str, fields: Mapping[str, Any]) -> None:
    with connect() as connection:
        upsert_row(connection, "schedules", schedule_id, user_id, fields)


# Challenges and expert settings


def fetch_challenge_record(user_id: str, record_id: str) -> dict[str, Any] | None:
    with connect() as connection:
        row = connection.execute(
            "SELECT payload FROM challenges WHERE user_id = ? AND id = ?", (user_id, record_id)
        ).fetchone()
    if row is None:
        return None
    return _loads(row["payload"], {})


def save_challenge_record(record_id: str, user_id: str, date: str, payload: Mapping[str, Any]) -> None:
    with connect() as connection:
        upsert_row(connection, "challenges", record_id, user_id, {"date": date, "updated_at": now_iso()}, payload)


def fetch_expert_settings(user_id: str) -> dict[str, Any] | None:
    with connect() as connection:
        row = connection.execute("SELECT payload FROM expert_settings WHERE user_id = ?", (user_id,)).fetchone()
    if row is None:
        return None
    return _loads(row["payload"], None)


def save_expert_settings(user_id: str, payload: Mapping[str, Any]) -> None:
    with connect() as connection:
        connection.execute(
            """
            INSERT INTO expert_settings (user_id, updated_at, payload)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET updated_at = excluded.updated_at, payload = excluded.payload
            """,
            (user_id, now_iso(), json.dumps(dict(payload), ensure_ascii=False)),
        )


__all__ = [
    "DB_PATH",
    "TABLE_COLUMNS",
    "connect",
    "fetch_attempts",
    "fetch_challenge_record",
    "fetch_expert_settings",
    "fetch_mastery",
    "fetch_rows",
    "fetch_schedule_row",
    "fetch_schedule_rows",
    "init_db",
    "insert_attempt",
    "mastery_id",
    "now_iso",
    "parse_timestamp",
    "save_challenge_record",
    "save_expert_settings",
    "save_schedule_row",
    "transaction",
    "upsert_mastery",
    "upsert_row",
]
