"""Dashboard aggregations over attempts, mastery and schedules.

Every loader degrades to an empty or zeroed structure on failure and logs a
warning instead of raising.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import statistics
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping

from . import db
from .config import ANALYTICS_TIMEOUT_MS, DEFAULT_AVG_LATENCY_MS, MASTERY_ACHIEVED, MASTERY_ATTENTION
from .corpus import verb_lookup
from .mastery import compute_cell_mastery
from .srs import DUE_SOON_WINDOW, get_due_schedules

logger = logging.getLogger(__name__)

TIME_RANGES: dict[str, int | None] = {
    "all_time": None,
    "last_7_days": 7,
    "last_30_days": 30,
    "last_90_days": 90,
}
RADAR_AXES = ("accuracy", "speed", "consistency", "lexicalBreadth", "transfer")


def _utc(value: datetime | None) -> datetime:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def mastery_color_class(score: float) -> str:
    if score >= MASTERY_ACHIEVED:
        return "mastery-high"
    if score >= MASTERY_ATTENTION:
        return "mastery-medium"
    return "mastery-low"


def _cutoff(time_range: str, now: datetime) -> str | None:
    days = TIME_RANGES.get(time_range)
    return db.now_iso(now - timedelta(days=days)) if days else None


def heat_map(
    user_id: str,
    time_range: str = "all_time",
    now: datetime | None = None,
    person: str | None = None,
) -> list[dict[str, Any]]:
    """Mastery per mood|tense for the chosen window, with attempt counts and last attempt."""
    try:
        moment = _utc(now)
        attempts = db.fetch_attempts(user_id, since=_cutoff(time_range, moment))
        if person:
            attempts = [attempt for attempt in attempts if attempt.person == person]

        counts: dict[tuple[str, str], int] = defaultdict(int)
        latest: dict[tuple[str, str], str] = {}
        for attempt in attempts:
            key = (attempt.mood, attempt.tense)
            counts[key] += 1
            latest[key] = max(latest.get(key, ""), attempt.created_at)

        if time_range == "all_time" and not person:
            stored = db.fetch_mastery(user_id)
            scores = {(record.mood, record.tense): record.score for record in stored}
            for record in stored:
                counts.setdefault((record.mood, record.tense), record.n)
        else:
            scores = {}
        if not scores:
            cells = compute_cell_mastery(attempts, verb_lookup(), moment)
            scores = {key: cell.score for key, cell in cells.items()}

        result: list[dict[str, Any]] = []
        for mood, tense in sorted(set(scores) | set(counts)):
            count = counts.get((mood, tense), 0)
            if time_range != "all_time" and count == 0:
                continue
            score = scores.get((mood, tense), 0.0)
            result.append(
                {
                    "mood": mood,
                    "tense": tense,
                    "score": score,
                    "count": count,
                    "colorClass": mastery_color_class(score),
                    "lastAttempt": latest.get((mood, tense)),
                }
            )
        return result
    except Exception:
        logger.warning("Heat map unavailable for %s", user_id, exc_info=True)
        return []


def _empty_radar() -> dict[str, float]:
    return {axis: 0.0 for axis in RADAR_AXES}


def competency_radar(user_id: str, now: datetime | None = None) -> dict[str, float]:
    """Five 0-100 axes; all zero when the user has no data."""
    try:
        attempts = db.fetch_attempts(user_id)
        mastery = db.fetch_mastery(user_id)
        if not attempts and not mastery:
            return _empty_radar()

        scores = [record.score for record in mastery]
        if not scores and attempts:
            scores = [cell.score for cell in compute_cell_mastery(attempts, verb_lookup(), _utc(now)).values()]
        average = statistics.fmean(scores) if scores else 0.0
        latencies = [attempt.latency_ms for attempt in attempts if attempt.latency_ms > 0]
        avg_latency = statistics.fmean(latencies) if latencies else DEFAULT_AVG_LATENCY_MS
        deviation = statistics.pstdev(scores) if len(scores) > 1 else 0.0
        moods = {attempt.mood for attempt in attempts} | {record.mood for record in mastery}
        tenses = {attempt.tense for attempt in attempts} | {record.tense for record in mastery}
        lemmas = {attempt.lemma for attempt in attempts if attempt.lemma}

        def bounded(value: float) -> float:
            return round(max(0.0, min(100.0, value)), 2)

        return {
            "accuracy": bounded(average),
            "speed": bounded(100 - avg_latency / 100),
            "consistency": bounded(100 - deviation * 2),
            "lexicalBreadth": bounded(len(lemmas) * 3),
            "transfer": bounded(len(moods) * len(tenses) / 10 * average),
        }
    except Exception:
        logger.warning("Competency radar unavailable for %s", user_id, exc_info=True)
        return _empty_radar()


def srs_stats(user_id: str, now: datetime | None = None) -> dict[str, int]:
    """Count schedules due by the end of today and those due within the next hour."""
    try:
        moment = _utc(now)
        end_of_day = moment.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
        due_today = get_due_schedules(user_id, end_of_day)
        soon = db.now_iso(moment + DUE_SOON_WINDOW)
        due_now = [schedule for schedule in due_today if schedule.next_due <= soon]
        return {"dueNow": len(due_now), "dueToday": len(due_today)}
    except Exception:
        logger.warning("SRS stats unavailable for %s", user_id, exc_info=True)
        return {"dueNow": 0, "dueToday": 0}


def user_stats(user_id: str) -> dict[str, Any]:
    try:
        attempts = db.fetch_attempts(user_id)
        mastery = db.fetch_mastery(user_id)
        correct = sum(1 for attempt in attempts if attempt.correct)
        latencies = [attempt.latency_ms for attempt in attempts if attempt.latency_ms > 0]
        return {
            "totalAttempts": len(attempts),
            "correctAttempts": correct,
            "accuracy": round(100 * correct / len(attempts), 2) if attempts else 0.0,
            "averageLatencyMs": round(statistics.fmean(latencies)) if latencies else 0,
            "cellsPracticed": len(mastery),
            "averageMastery": round(statistics.fmean(r.score for r in mastery), 2) if mastery else 0.0,
            "lastAttempt": attempts[-1].created_at if attempts else None,
        }
    except Exception:
        logger.warning("User stats unavailable for %s", user_id, exc_info=True)
        return {
            "totalAttempts": 0,
            "correctAttempts": 0,
            "accuracy": 0.0,
            "averageLatencyMs": 0,
            "cellsPracticed": 0,
            "averageMastery": 0.0,
            "lastAttempt": None,
        }


class AnalyticsLoader:
    """Runs analytics loads with a time budget, keeping one in-flight load per key.

    Starting a load for a key that is already loading cancels the older one,
    whose caller then receives the default value.
    """

    def __init__(self, timeout_ms: int = ANALYTICS_TIMEOUT_MS) -> None:
        self.timeout_ms = timeout_ms
        self._tasks: dict[str, asyncio.Future[Any]] = {}

    @property
    def in_flight(self) -> list[str]:
        return [key for key, task in self._tasks.items() if not task.done()]

    def cancel(self, key: str) -> bool:
        task = self._tasks.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for key in list(self._tasks):
            self.cancel(key)

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        if inspect.iscoroutinefunction(func):
            return await func(*args)
        return await asyncio.to_thread(func, *args)

    async def load(
        self,
        key: str,
        func: Callable[..., Any] | Callable[..., Awaitable[Any]],
        *args: Any,
        timeout_ms: int | None = None,
        default: Any = None,
    ) -> Any:
        self.cancel(key)
        task = asyncio.ensure_future(self._run(func, *args))
        self._tasks[key] = task
        budget = timeout_ms if timeout_ms is not None else self.timeout_ms
        try:
            return await asyncio.wait_for(task, timeout=budget / 1000)
        except asyncio.TimeoutError:
            logger.warning("Analytics load %s exceeded %d ms", key, budget)
            return default
        except asyncio.CancelledError:
            if task.cancelled() and self._tasks.get(key) is not task:
                logger.debug("Analytics load %s superseded by a newer request", key)
                return default
            raise
        except Exception:
            logger.warning("Analytics load %s failed", key, exc_info=True)
            return default
        finally:
            if self._tasks.get(key) is task:
                del self._tasks[key]

    async def load_all(
        self,
        loaders: Mapping[str, Callable[[], Any]],
        *,
        timeout_ms: int | None = None,
    ) -> dict[str, Any]:
        """Run every loader concurrently; a failing or slow loader yields ``None``."""
        keys = list(loaders)
        results = await asyncio.gather(*(self.load(key, loaders[key], timeout_ms=timeout_ms) for key in keys))
        return dict(zip(keys, results))


__all__ = [
    "AnalyticsLoader",
    "RADAR_AXES",
    "TIME_RANGES",
    "competency_radar",
    "heat_map",
    "mastery_color_class",
    "srs_stats",
    "user_stats",
]
