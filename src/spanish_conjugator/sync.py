"""Bulk upload and export of progress records for a single user."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Mapping

from fastapi import APIRouter, Header, HTTPException, Request

from . import db
from .errors import InvalidRecordError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/progress")

# Record field -> column, per table. Timestamps are normalised separately.
FIELD_COLUMNS: dict[str, dict[str, str]] = {
    "attempts": {
        "itemId": "item_id",
        "lemma": "lemma",
        "mood": "mood",
        "tense": "tense",
        "person": "person",
        "correct": "correct",
        "latencyMs": "latency_ms",
        "hintsUsed": "hints_used",
        "errorTags": "error_tags",
    },
    "mastery": {
        "mood": "mood",
        "tense": "tense",
        "score": "score",
        "n": "n",
        "weightedN": "weighted_n",
    },
    "schedules": {
        "mood": "mood",
        "tense": "tense",
        "person": "person",
        "interval": "interval_days",
        "ease": "ease",
        "reps": "reps",
        "lapses": "lapses",
        "leech": "leech",
        "stability": "stability",
        "difficulty": "difficulty",
    },
    "sessions": {},
    "challenges": {"date": "date"},
}
SCALAR_TYPES = (str, int, float, bool)
EXPORT_ORDER: dict[str, str] = {
    "attempts": "created_at ASC",
    "mastery": "updated_at DESC",
    "schedules": "next_due ASC",
    "sessions": "updated_at DESC",
}


def require_user(user_id: str | None) -> str:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return user_id.strip()


def normalize_date(
    value: Any,
    field_name: str,
    record_id: str,
    now: str,
    *,
    use_now_when_missing: bool = False,
    table: str = "",
) -> str | None:
    """ISO timestamp for ``value``; invalid values are logged and replaced with ``now``."""
    if value is None or value == "":
        return now if use_now_when_missing else None
    moment = db.parse_timestamp(value)
    if moment is not None:
        return db.now_iso(moment)
    logger.warning("[sync:%s] Invalid %s for record %s; using current timestamp", table, field_name, record_id)
    return now


def _column_value(table: str, record_id: str, key: str, column: str, value: Any) -> Any:
    if column == "error_tags":
        return json.dumps(list(value) if isinstance(value, (list, tuple)) else [], default=str)
    if column in {"correct", "leech"}:
        return int(bool(value))
    if not isinstance(value, SCALAR_TYPES):
        raise InvalidRecordError(table, record_id, key)
    return value


def record_fields(table: str, record: Mapping[str, Any], record_id: str, now: str) -> dict[str, Any]:
    """Columns for one uploaded record.

    Raises ``InvalidRecordError`` when a scalar column receives an object or list.
    """
    fields = {
        column: _column_value(table, record_id, key, column, record[key])
        for key, column in FIELD_COLUMNS[table].items()
        if record.get(key) is not None
    }
    fields["updated_at"] = now

    if table == "attempts":
        fields["created_at"] = normalize_date(
            record.get("createdAt"), "createdAt", record_id, now, use_now_when_missing=True, table=table
        )
    elif table == "schedules":
        fields["next_due"] = normalize_date(
            record.get("nextDue"), "nextDue", record_id, now, use_now_when_missing=True, table=table
        )
        last_review = normalize_date(record.get("lastReview"), "lastReview", record_id, now, table=table)
        if last_review:
            fields["last_review"] = last_review
    elif table == "sessions":
        updated_at = normalize_date(
            record.get("updatedAt"), "updatedAt", record_id, now, use_now_when_missing=True, table=table
        )
        fields["updated_at"] = updated_at
        started = record.get("startedAt", record.get("timestamp"))
        fields["started_at"] = (
            updated_at if started is None else normalize_date(started, "startedAt", record_id, now, table=table)
        )
    return fields


def _record_id(table: str, record: Mapping[str, Any]) -> str | None:
    key = record.get("id")
    if not key and table == "sessions":
        key = record.get("sessionId")
    return str(key) if key else None


def bulk_upsert(table: str, user_id: str, records: list[Any]) -> dict[str, Any]:
    """Upsert ``records`` for ``user_id`` in a single transaction."""
    now = db.now_iso(datetime.now(timezone.utc))
    uploaded = 0
    updated = 0
    with db.connect() as connection:
        for record in records:
            if not isinstance(record, Mapping):
                continue
            record_id = _record_id(table, record)
            if record_id is None:
                continue
            payload = {**record, "userId": user_id}
            fields = record_fields(table, record, record_id, now)
            outcome = db.upsert_row(connection, table, record_id, user_id, fields, payload)
            if outcome == "inserted":
                uploaded += 1
            else:
                updated += 1
    logger.info("Synced %s for %s: %d new, %d updated", table, user_id, uploaded, updated)
    return {"success": True, "uploaded": uploaded, "updated": updated}


def _export_record(table: str, row: Mapping[str, Any]) -> dict[str, Any]:
    payload = row.get("payload") or {}
    if payload:
        return payload
    # Rows written by the engine itself carry no client payload.
    record: dict[str, Any] = {"id": row["id"], "userId": row["user_id"]}
    for key, column in FIELD_COLUMNS[table].items():
        value = row.get(column)
        if column == "error_tags":
            value = json.loads(value or "[]")
        elif column in {"correct", "leech"}:
            value = bool(value)
        record[key] = value
    for column, key in (("created_at", "createdAt"), ("next_due", "nextDue"), ("updated_at", "updatedAt")):
        if row.get(column) is not None:
            record[key] = row[column]
    return record


def export_progress(user_id: str) -> dict[str, Any]:
    result: dict[str, Any] = {"userId": user_id}
    for table, order in EXPORT_ORDER.items():
        result[table] = [_export_record(table, row) for row in db.fetch_rows(table, user_id, order_by=order)]
    return result


@router.post("/{kind}/bulk")
async def upload_bulk(kind: str, request: Request, x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    user_id = require_user(x_user_id)
    if kind not in FIELD_COLUMNS:
        raise HTTPException(status_code=404, detail=f"Unknown progress collection: {kind}")
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Request body must be JSON") from None
    records = body.get("records") if isinstance(body, dict) else None
    if not isinstance(records, list):
        raise HTTPException(status_code=400, detail="Body must contain a records list")
    if not records:
        return {"success": True, "uploaded": 0, "updated": 0}
    try:
        return bulk_upsert(kind, user_id, records)
    except InvalidRecordError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from None


@router.get("/export")
async def export(x_user_id: str | None = Header(default=None)) -> dict[str, Any]:
    return export_progress(require_user(x_user_id))


__all__ = [
    "FIELD_COLUMNS",
    "bulk_upsert",
    "export_progress",
    "normalize_date",
    "record_fields",
    "require_user",
    "router",
]
