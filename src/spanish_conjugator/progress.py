"""Record a graded attempt and propagate it to history, schedules, mastery and challenges."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from . import db
from .challenges import get_daily_challenge_status
from .events import ATTEMPT_RECORDED, emit
from .generator import update_history
from .grader import GradeResult
from .mastery import recompute_mastery
from .models import Attempt, DrillItem, History, HistoryEntry, MasteryRecord, Verb
from .srs import Schedule, update_schedule

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AttemptOutcome:
    attempt: Attempt
    history_entry: HistoryEntry | None
    schedule: Schedule
    mastery: list[MasteryRecord] = field(default_factory=list)
    challenges: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "attemptId": self.attempt.id,
            "correct": self.attempt.correct,
            "schedule": self.schedule.to_dict(),
            "mastery": [
                {"mood": record.mood, "tense": record.tense, "score": record.score, "n": record.n}
                for record in self.mastery
            ],
            "challenges": self.challenges,
        }


def record_attempt(
    user_id: str,
    item: DrillItem,
    result: GradeResult,
    *,
    latency_ms: int = 0,
    hints_used: int = 0,
    history: History | None = None,
    lookup: Mapping[str, Verb] | None = None,
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> AttemptOutcome:
    """Persist one answer and update everything derived from it.

    The attempt, its schedule and the recomputed mastery are written in one
    transaction. ``history`` is updated in place when given, after the write
    succeeds. Challenge evaluation failures are logged and leave the outcome
    without challenge data.
    """
    if not user_id:
        raise ValueError("user_id is required to record an attempt")
    moment = now or datetime.now(timezone.utc)
    attempt = Attempt(
        user_id=user_id,
        item_id=item.id,
        lemma=item.lemma,
        mood=item.mood,
        tense=item.tense,
        person=item.person,
        correct=result.correct,
        latency_ms=max(0, int(latency_ms)),
        hints_used=max(0, int(hints_used)),
        error_tags=list(result.error_tags),
        created_at=db.now_iso(moment),
    )
    with db.transaction():
        db.insert_attempt(attempt)
        schedule = update_schedule(
            user_id,
            item.mood,
            item.tense,
            item.person,
            result.correct,
            attempt.hints_used,
            latency_ms=attempt.latency_ms,
            error_tags=attempt.error_tags,
            now=moment,
            rng=rng,
        )
        mastery = recompute_mastery(user_id, moment, lookup)
    entry = update_history(history, item.form, result.correct) if history is not None else None

    challenges: dict[str, Any] = {}
    try:
        challenges = get_daily_challenge_status(user_id, moment)
    except Exception:
        logger.warning("Daily challenge evaluation failed for %s", user_id, exc_info=True)

    emit(
        ATTEMPT_RECORDED,
        {
            "userId": user_id,
            "attemptId": attempt.id,
            "itemId": item.id,
            "correct": attempt.correct,
            "mood": item.mood,
            "tense": item.tense,
            "person": item.person,
        },
    )
    return AttemptOutcome(attempt, entry, schedule, mastery, challenges)


__all__ = ["AttemptOutcome", "record_attempt"]
