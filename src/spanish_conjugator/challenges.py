"""Daily challenges evaluated against a per-day metrics snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

from . import db
from .errors import UnknownChallengeError
from .events import CHALLENGE_COMPLETED, emit
from .models import Attempt

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ChallengeDefinition:
    id: str
    title: str
    description: str
    metric: str
    target: float
    reward: Mapping[str, Any] = field(default_factory=dict)
    minimum_attempts: int = 0


CHALLENGE_DEFINITIONS: tuple[ChallengeDefinition, ...] = (
    ChallengeDefinition(
        id="attempts-20",
        title="Practice challenge",
        description="Complete 20 attempts today to keep your rhythm.",
        metric="attemptsToday",
        target=20,
        reward={"type": "xp", "value": 20},
    ),
    ChallengeDefinition(
        id="accuracy-85",
        title="Sharp accuracy",
        description="Keep at least 85% correct with 10 or more attempts.",
        metric="accuracyToday",
        target=85,
        minimum_attempts=10,
        reward={"type": "booster", "value": "accuracy"},
    ),
    ChallengeDefinition(
        id="streak-5",
        title="Hot streak",
        description="Get 5 correct answers in a row today.",
        metric="bestStreakToday",
        target=5,
        reward={"type": "streak", "value": 5},
    ),
    ChallengeDefinition(
        id="focus-10",
        title="Total focus",
        description="Accumulate 10 minutes of active practice today.",
        metric="focusMinutesToday",
        target=10,
        reward={"type": "token", "value": 1},
    ),
)
_DEFINITIONS_BY_ID = {definition.id: definition for definition in CHALLENGE_DEFINITIONS}


def _utc(value: datetime | None) -> datetime:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def day_key(now: datetime | None = None) -> str:
    return _utc(now).date().isoformat()


def challenge_record_id(user_id: str, now: datetime | None = None) -> str:
    return f"{user_id}|{day_key(now)}"


def daily_metrics(attempts: Sequence[Attempt], now: datetime | None = None) -> dict[str, float]:
    """Metrics for the UTC day containing ``now``; attempts from other days are ignored."""
    today = day_key(now)
    todays = [attempt for attempt in attempts if (attempt.created_at or "")[:10] == today]
    correct = sum(1 for attempt in todays if attempt.correct)

    best_streak = 0
    streak = 0
    for attempt in todays:
        streak = streak + 1 if attempt.correct else 0
        best_streak = max(best_streak, streak)

    return {
        "attemptsToday": len(todays),
        "accuracyToday": round(100 * correct / len(todays), 2) if todays else 0,
        "bestStreakToday": best_streak,
        "focusMinutesToday": round(sum(max(0, attempt.latency_ms) for attempt in todays) / 60000, 1),
    }


def _progress(definition: ChallengeDefinition, metrics: Mapping[str, float]) -> dict[str, Any]:
    value = metrics.get(definition.metric) or 0
    target = definition.target
    percentage = min(100, round(value / target * 100)) if target > 0 else 0
    return {"value": value, "target": target, "percentage": percentage}


def requirement_met(definition: ChallengeDefinition, metrics: Mapping[str, float]) -> bool:
    value = metrics.get(definition.metric) or 0
    if definition.minimum_attempts and (metrics.get("attemptsToday") or 0) < definition.minimum_attempts:
        return False
    return value >= definition.target


def _persisted_entries(record: Mapping[str, Any] | None, date: str) -> dict[str, dict[str, Any]]:
    stored: dict[str, dict[str, Any]] = {}
    if record and record.get("date") == date:
        for entry in record.get("challenges") or ():
            stored[entry.get("id")] = entry
    return {
        definition.id: {
            "id": definition.id,
            "status": stored.get(definition.id, {}).get("status") or "pending",
            "completedAt": stored.get(definition.id, {}).get("completedAt"),
        }
        for definition in CHALLENGE_DEFINITIONS
    }


def _save(user_id: str, date: str, record: Mapping[str, Any] | None, entries: Mapping[str, dict[str, Any]], now_iso: str) -> None:
    created_at = record.get("createdAt") if record and record.get("date") == date else now_iso
    db.save_challenge_record(
        f"{user_id}|{date}",
        user_id,
        date,
        {
            "id": f"{user_id}|{date}",
            "userId": user_id,
            "date": date,
            "challenges": list(entries.values()),
            "createdAt": created_at,
            "updatedAt": now_iso,
        },
    )


def _announce(user_id: str, definition: ChallengeDefinition, now_iso: str) -> None:
    emit(
        CHALLENGE_COMPLETED,
        {"userId": user_id, "challengeId": definition.id, "reward": dict(definition.reward), "emittedAt": now_iso},
    )


def evaluate_challenges(
    user_id: str,
    metrics: Mapping[str, float],
    now: datetime | None = None,
) -> dict[str, Any]:
    """Apply ``metrics`` to today's record. Completion never reverts within a day."""
    if not user_id:
        raise ValueError("user_id is required for daily challenges")
    moment = _utc(now)
    date = day_key(moment)
    now_iso = db.now_iso(moment)
    record = db.fetch_challenge_record(user_id, f"{user_id}|{date}")
    entries = _persisted_entries(record, date)
    mutated = record is None or record.get("date") != date

    challenges: list[dict[str, Any]] = []
    for definition in CHALLENGE_DEFINITIONS:
        entry = entries[definition.id]
        met = requirement_met(definition, metrics)
        if met and entry["status"] != "completed":
            entry["status"] = "completed"
            entry["completedAt"] = now_iso
            mutated = True
            logger.info("User %s completed challenge %s", user_id, definition.id)
            _announce(user_id, definition, now_iso)
        challenges.append(
            {
                "id": definition.id,
                "title": definition.title,
                "description": definition.description,
                "metric": definition.metric,
                "target": definition.target,
                "reward": dict(definition.reward),
                "status": entry["status"],
                "completedAt": entry["completedAt"],
                "progress": _progress(definition, metrics),
                "requirementMet": met,
            }
        )

    if mutated:
        _save(user_id, date, record, entries, now_iso)
    return {"date": date, "metrics": dict(metrics), "challenges": challenges}


def get_daily_challenge_status(user_id: str, now: datetime | None = None) -> dict[str, Any]:
    """Today's challenges for ``user_id``, creating the day's record on first query."""
    moment = _utc(now)
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    attempts = db.fetch_attempts(user_id, since=db.now_iso(start), until=db.now_iso(start + timedelta(days=1)))
    return evaluate_challenges(user_id, daily_metrics(attempts, moment), moment)


def mark_challenge_completed(user_id: str, challenge_id: str, now: datetime | None = None) -> dict[str, Any]:
    if not user_id:
        raise ValueError("user_id is required for daily challenges")
    definition = _DEFINITIONS_BY_ID.get(challenge_id)
    if definition is None:
        raise UnknownChallengeError(challenge_id)

    moment = _utc(now)
    date = day_key(moment)
    now_iso = db.now_iso(moment)
    record = db.fetch_challenge_record(user_id, f"{user_id}|{date}")
    entries = _persisted_entries(record, date)
    entry = entries[challenge_id]
    if entry["status"] != "completed":
        entry["status"] = "completed"
        entry["completedAt"] = now_iso
        _save(user_id, date, record, entries, now_iso)
        _announce(user_id, definition, now_iso)
    return {"date": date, "challenges": list(entries.values())}


def get_challenge_definitions() -> list[ChallengeDefinition]:
    return list(CHALLENGE_DEFINITIONS)


__all__ = [
    "CHALLENGE_DEFINITIONS",
    "ChallengeDefinition",
    "challenge_record_id",
    "daily_metrics",
    "evaluate_challenges",
    "get_challenge_definitions",
    "get_daily_challenge_status",
    "mark_challenge_completed",
    "requirement_met",
]
