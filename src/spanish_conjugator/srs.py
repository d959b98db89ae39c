"""Spaced repetition scheduling per (user, mood, tense, person) cell.

Two schedulers share one ``Schedule`` record: an SM-2 style interval ladder
and an FSRS-4.5 stability/difficulty model. FSRS is used when enabled and
falls back to SM-2 whenever the stored state cannot be trusted.
"""

from __future__ import annotations

import logging
import math
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Mapping, Sequence

from . import db
from .config import (
    EASE_FAIL_PENALTY,
    EASE_GOOD_BONUS,
    EASE_HINT_PENALTY,
    FSRS,
    HINT_INTERVAL_FACTOR,
    SRS_ADVANCED,
    SRS_INTERVALS,
)
from .expert_mode import get_active_fsrs_config, get_active_srs_config, get_active_srs_intervals

logger = logging.getLogger(__name__)

DAY_SECONDS = 86400
DECAY = -0.5
FACTOR = 19 / 81
MIN_DIFFICULTY = 1.0
MAX_DIFFICULTY = 10.0
MIN_STABILITY = 0.1
DUE_SOON_WINDOW = timedelta(hours=1)


class Rating(IntEnum):
    AGAIN = 1
    HARD = 2
    GOOD = 3
    EASY = 4


@dataclass(slots=True)
class Schedule:
    user_id: str
    mood: str
    tense: str
    person: str
    interval: float = 0.0
    ease: float = 2.5
    reps: int = 0
    lapses: int = 0
    leech: bool = False
    stability: float | None = None
    difficulty: float | None = None
    last_review: str | None = None
    next_due: str = ""

    @property
    def id(self) -> str:
        return schedule_id(self.user_id, self.mood, self.tense, self.person)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "mood": self.mood,
            "tense": self.tense,
            "person": self.person,
            "interval": self.interval,
            "ease": self.ease,
            "reps": self.reps,
            "lapses": self.lapses,
            "leech": self.leech,
            "stability": self.stability,
            "difficulty": self.difficulty,
            "lastReview": self.last_review,
            "nextDue": self.next_due,
        }


def schedule_id(user_id: str, mood: str, tense: str, person: str) -> str:
    return f"{user_id}|{mood}|{tense}|{person}"


def _utc(value: datetime | None) -> datetime:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


# Conversions between the SM-2 and FSRS views of the same card


def interval_to_stability(interval_days: float) -> float:
    return max(MIN_STABILITY, interval_days * 0.9)


def ease_to_difficulty(ease: float) -> float:
    normalized = (ease - 1.3) / (3.2 - 1.3)
    return _clamp(10 - normalized * 9, MIN_DIFFICULTY, MAX_DIFFICULTY)


def difficulty_to_ease(difficulty: float) -> float:
    normalized = (10 - difficulty) / 9
    return 1.3 + normalized * (3.2 - 1.3)


def calculate_retrievability(stability: float | None, elapsed_days: float) -> float:
    """Exponential recall estimate used for reporting."""
    return math.exp(-max(0.0, elapsed_days) / max(stability or MIN_STABILITY, MIN_STABILITY))


def determine_rating(
    correct: bool,
    hints_used: int = 0,
    latency_ms: int | None = None,
    error_tags: Sequence[str] = (),
    config: Mapping[str, Any] | None = None,
) -> Rating:
    if not correct:
        return Rating.HARD if list(error_tags) == ["accent"] else Rating.AGAIN

    rating = Rating.HARD if hints_used > 0 else Rating.GOOD
    if latency_ms:
        speed = (config or SRS_ADVANCED).get("SPEED") or SRS_ADVANCED["SPEED"]
        if latency_ms < speed["FAST_GUESS_MS"]:
            rating = Rating.EASY if hints_used == 0 else Rating.GOOD
        elif latency_ms > speed["SLOW_MS"]:
            rating = Rating(max(Rating.HARD, rating - 1))
    return rating


def _apply_fuzz(interval: float, ratio: float, rng: random.Random) -> float:
    if ratio <= 0 or interval <= 2:
        return interval
    return interval * (1 + rng.uniform(-ratio, ratio))


def calculate_next_interval_sm2(
    schedule: Schedule,
    correct: bool,
    hints_used: int = 0,
    *,
    now: datetime | None = None,
    intervals: Sequence[float] | None = None,
    config: Mapping[str, Any] | None = None,
    rng: random.Random | None = None,
) -> Schedule:
    """Advance ``schedule`` along the interval ladder; returns an updated copy."""
    config = config or SRS_ADVANCED
    ladder = list(intervals or SRS_INTERVALS)
    rng = rng or random.Random()
    moment = _utc(now)
    ease_min = float(config.get("EASE_MIN", 1.3))
    ease_max = float(config.get("EASE_MAX", 3.2))
    ease = schedule.ease or float(config.get("EASE_START", 2.5))
    reps, lapses, interval = schedule.reps, schedule.lapses, schedule.interval

    if not correct:
        lapses += 1
        reps = 0
        interval = 1
        ease = max(ease_min, ease - EASE_FAIL_PENALTY)
    else:
        if reps < len(ladder):
            interval = ladder[reps]
        else:
            interval = round(interval * ease)
        reps += 1
        if hints_used > 0:
            interval = interval * HINT_INTERVAL_FACTOR
            ease = max(ease_min, ease - EASE_HINT_PENALTY)
        else:
            ease = min(ease_max, ease + EASE_GOOD_BONUS)
        interval = _apply_fuzz(interval, float(config.get("FUZZ_RATIO", 0)), rng)

    interval = max(1, round(interval))
    return replace(
        schedule,
        interval=float(interval),
        ease=round(ease, 4),
        reps=reps,
        lapses=lapses,
        leech=lapses >= int(config.get("LEECH_THRESHOLD", 8)),
        last_review=db.now_iso(moment),
        next_due=db.now_iso(moment + timedelta(days=interval)),
    )


def _weights(config: Mapping[str, Any]) -> Sequence[float]:
    weights = config.get("WEIGHTS") or FSRS["WEIGHTS"]
    if len(weights) < 17:
        raise ValueError("FSRS weights need 17 parameters")
    return weights


def _initial_stability(rating: Rating, config: Mapping[str, Any], weights: Sequence[float]) -> float:
    table = config.get("INITIAL_STABILITY") or {}
    value = table.get(int(rating), table.get(str(int(rating))))
    return float(value) if value is not None else weights[rating - 1]


def _initial_difficulty(rating: int, weights: Sequence[float]) -> float:
    return _clamp(weights[4] - (rating - 3) * weights[5], MIN_DIFFICULTY, MAX_DIFFICULTY)


def _power_retrievability(elapsed_days: float, stability: float) -> float:
    return (1 + FACTOR * elapsed_days / stability) ** DECAY


def _next_interval(stability: float, retention: float, maximum: float) -> float:
    interval = stability / FACTOR * (retention ** (1 / DECAY) - 1)
    return _clamp(round(interval), 1, maximum)


def calculate_next_interval_fsrs(
    schedule: Schedule,
    correct: bool,
    hints_used: int = 0,
    *,
    latency_ms: int | None = None,
    error_tags: Sequence[str] = (),
    now: datetime | None = None,
    fsrs_config: Mapping[str, Any] | None = None,
    srs_config: Mapping[str, Any] | None = None,
    intervals: Sequence[float] | None = None,
    rng: random.Random | None = None,
) -> Schedule:
    """FSRS-4.5 review step. Invalid state falls back to the SM-2 ladder."""
    fsrs_config = fsrs_config or FSRS
    srs_config = srs_config or SRS_ADVANCED
    moment = _utc(now)
    rating = determine_rating(correct, hints_used, latency_ms, error_tags, srs_config)
    try:
        weights = _weights(fsrs_config)
        retention = float(fsrs_config.get("REQUEST_RETENTION", 0.9))
        maximum = float(fsrs_config.get("MAXIMUM_INTERVAL", 365))
        if not 0 < retention < 1:
            raise ValueError(f"Request retention out of range: {retention}")

        if schedule.reps == 0:
            stability = _initial_stability(rating, fsrs_config, weights)
            difficulty = _initial_difficulty(rating, weights)
        else:
            stability = schedule.stability or interval_to_stability(max(1.0, schedule.interval))
            difficulty = schedule.difficulty or ease_to_difficulty(schedule.ease)
            last = db.parse_timestamp(schedule.last_review) or moment
            elapsed = max(0.01, (moment - last).total_seconds() / DAY_SECONDS)
            recall = _power_retrievability(elapsed, stability)
            next_difficulty = difficulty - weights[6] * (rating - 3)
            next_difficulty = weights[7] * _initial_difficulty(3, weights) + (1 - weights[7]) * next_difficulty
            if rating == Rating.AGAIN:
                stability = (
                    weights[11]
                    * difficulty ** -weights[12]
                    * ((stability + 1) ** weights[13] - 1)
                    * math.exp(weights[14] * (1 - recall))
                )
            else:
                hard_penalty = weights[15] if rating == Rating.HARD else 1.0
                easy_bonus = weights[16] if rating == Rating.EASY else 1.0
                stability = stability * (
                    1
                    + math.exp(weights[8])
                    * (11 - difficulty)
                    * stability ** -weights[9]
                    * (math.exp(weights[10] * (1 - recall)) - 1)
                    * hard_penalty
                    * easy_bonus
                )
            difficulty = _clamp(next_difficulty, MIN_DIFFICULTY, MAX_DIFFICULTY)

        stability = max(MIN_STABILITY, stability)
        if not (math.isfinite(stability) and math.isfinite(difficulty)):
            raise ValueError("Non-finite FSRS state")
        interval = _next_interval(stability, retention, maximum)
    except (ValueError, OverflowError, ZeroDivisionError, TypeError):
        logger.error("FSRS scheduling failed for %s, falling back to SM-2", schedule.id, exc_info=True)
        return calculate_next_interval_sm2(
            schedule, correct, hints_used, now=moment, intervals=intervals, config=srs_config, rng=rng
        )

    lapses = schedule.lapses + (1 if rating == Rating.AGAIN else 0)
    return replace(
        schedule,
        interval=float(interval),
        ease=round(difficulty_to_ease(difficulty), 4),
        reps=schedule.reps + 1,
        lapses=lapses,
        leech=lapses >= int(srs_config.get("LEECH_THRESHOLD", 8)),
        stability=round(stability, 4),
        difficulty=round(difficulty, 4),
        last_review=db.now_iso(moment),
        next_due=db.now_iso(moment + timedelta(days=interval)),
    )


# Persistence


def _row_to_schedule(row: Any) -> Schedule:
    return Schedule(
        user_id=str(row["user_id"]),
        mood=str(row["mood"]),
        tense=str(row["tense"]),
        person=str(row["person"]),
        interval=float(row["interval_days"]),
        ease=float(row["ease"]),
        reps=int(row["reps"]),
        lapses=int(row["lapses"]),
        leech=bool(row["leech"]),
        stability=float(row["stability"]) if row["stability"] is not None else None,
        difficulty=float(row["difficulty"]) if row["difficulty"] is not None else None,
        last_review=row["last_review"],
        next_due=str(row["next_due"]),
    )


def save_schedule(schedule: Schedule) -> None:
    db.save_schedule_row(
        schedule.id,
        schedule.user_id,
        {
            "mood": schedule.mood,
            "tense": schedule.tense,
            "person": schedule.person,
            "interval_days": schedule.interval,
            "ease": schedule.ease,
            "reps": schedule.reps,
            "lapses": schedule.lapses,
            "leech": int(schedule.leech),
            "stability": schedule.stability,
            "difficulty": schedule.difficulty,
            "last_review": schedule.last_review,
            "next_due": schedule.next_due,
            "updated_at": schedule.last_review or db.now_iso(),
        },
    )


def get_schedule(user_id: str, mood: str, tense: str, person: str) -> Schedule | None:
    row = db.fetch_schedule_row(user_id, schedule_id(user_id, mood, tense, person))
    return _row_to_schedule(row) if row is not None else None


def get_schedules(user_id: str) -> list[Schedule]:
    return [_row_to_schedule(row) for row in db.fetch_schedule_rows(user_id)]


def get_due_schedules(user_id: str, now: datetime | None = None) -> list[Schedule]:
    """Schedules whose next review is at or before ``now``, soonest first."""
    return [_row_to_schedule(row) for row in db.fetch_schedule_rows(user_id, due_before=db.now_iso(_utc(now)))]


def update_schedule(
    user_id: str,
    mood: str,
    tense: str,
    person: str,
    correct: bool,
    hints_used: int = 0,
    *,
    latency_ms: int | None = None,
    error_tags: Sequence[str] = (),
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> Schedule:
    """Apply one review outcome to a cell's schedule using the user's active configuration."""
    moment = _utc(now)
    srs_config = get_active_srs_config(user_id)
    fsrs_config = get_active_fsrs_config(user_id)
    intervals = get_active_srs_intervals(user_id)
    current = get_schedule(user_id, mood, tense, person) or Schedule(
        user_id=user_id,
        mood=mood,
        tense=tense,
        person=person,
        ease=float(srs_config.get("EASE_START", 2.5)),
        next_due=db.now_iso(moment),
    )
    if fsrs_config.get("ENABLED"):
        updated = calculate_next_interval_fsrs(
            current,
            correct,
            hints_used,
            latency_ms=latency_ms,
            error_tags=error_tags,
            now=moment,
            fsrs_config=fsrs_config,
            srs_config=srs_config,
            intervals=intervals,
            rng=rng,
        )
    else:
        updated = calculate_next_interval_sm2(
            current, correct, hints_used, now=moment, intervals=intervals, config=srs_config, rng=rng
        )
    save_schedule(updated)
    if updated.leech and not current.leech:
        logger.info("Cell %s became a leech after %d lapses", updated.id, updated.lapses)
    return updated


__all__ = [
    "DUE_SOON_WINDOW",
    "Rating",
    "Schedule",
    "calculate_next_interval_fsrs",
    "calculate_next_interval_sm2",
    "calculate_retrievability",
    "determine_rating",
    "difficulty_to_ease",
    "ease_to_difficulty",
    "get_due_schedules",
    "get_schedule",
    "get_schedules",
    "interval_to_stability",
    "save_schedule",
    "schedule_id",
    "update_schedule",
]
