"""Tests for challenges.py: daily metrics and monotonic completion."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from spanish_conjugator import db, events
from spanish_conjugator.challenges import (
    challenge_record_id,
    daily_metrics,
    evaluate_challenges,
    get_challenge_definitions,
    get_daily_challenge_status,
    mark_challenge_completed,
)
from spanish_conjugator.errors import UnknownChallengeError
from spanish_conjugator.models import Attempt

NOW = datetime(2024, 5, 2, 15, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    db.DB_PATH = tmp_path / "challenges-test.db"
    db.init_db()
    events.clear_handlers()
    yield
    events.clear_handlers()


def _attempt(correct: bool, when: datetime, latency_ms: int = 2000) -> Attempt:
    return Attempt(
        user_id="u1",
        item_id="hablar-1s",
        lemma="hablar",
        mood="indicative",
        tense="pres",
        person="1s",
        correct=correct,
        latency_ms=latency_ms,
        created_at=db.now_iso(when),
    )


def _status(result, challenge_id):
    return next(entry for entry in result["challenges"] if entry["id"] == challenge_id)


class TestDailyMetrics:
    def test_only_today_counts(self):
        attempts = [
            _attempt(True, NOW - timedelta(days=1)),
            _attempt(True, NOW - timedelta(hours=3)),
            _attempt(True, NOW - timedelta(hours=2)),
            _attempt(False, NOW - timedelta(hours=1)),
        ]
        metrics = daily_metrics(attempts, NOW)
        assert metrics["attemptsToday"] == 3
        assert metrics["accuracyToday"] == pytest.approx(66.67)
        assert metrics["bestStreakToday"] == 2
        assert metrics["focusMinutesToday"] == pytest.approx(0.1)

    def test_empty_day(self):
        metrics = daily_metrics([], NOW)
        assert metrics == {"attemptsToday": 0, "accuracyToday": 0, "bestStreakToday": 0, "focusMinutesToday": 0.0}


class TestEvaluate:
    def test_requirement_completes_challenge(self):
        result = evaluate_challenges("u1", {"attemptsToday": 20, "accuracyToday": 90}, NOW)
        assert _status(result, "attempts-20")["status"] == "completed"
        assert _status(result, "accuracy-85")["status"] == "completed"
        assert _status(result, "streak-5")["status"] == "pending"
        assert _status(result, "attempts-20")["progress"]["percentage"] == 100

    def test_accuracy_needs_minimum_attempts(self):
        result = evaluate_challenges("u1", {"attemptsToday": 5, "accuracyToday": 100}, NOW)
        entry = _status(result, "accuracy-85")
        assert entry["status"] == "pending"
        assert entry["requirementMet"] is False

    def test_completion_never_reverts_within_day(self):
        evaluate_challenges("u1", {"attemptsToday": 20}, NOW)
        later = evaluate_challenges("u1", {"attemptsToday": 0}, NOW + timedelta(hours=1))
        entry = _status(later, "attempts-20")
        assert entry["status"] == "completed"
        assert entry["requirementMet"] is False
        assert entry["completedAt"] == db.now_iso(NOW)

    def test_new_day_starts_pending(self):
        evaluate_challenges("u1", {"attemptsToday": 20}, NOW)
        tomorrow = evaluate_challenges("u1", {"attemptsToday": 0}, NOW + timedelta(days=1))
        assert _status(tomorrow, "attempts-20")["status"] == "pending"

    def test_completion_event_emitted_once(self):
        received = []
        events.subscribe(events.CHALLENGE_COMPLETED, received.append)
        evaluate_challenges("u1", {"bestStreakToday": 6}, NOW)
        evaluate_challenges("u1", {"bestStreakToday": 7}, NOW + timedelta(minutes=5))
        assert [payload["challengeId"] for payload in received] == ["streak-5"]
        assert received[0]["userId"] == "u1"
        assert received[0]["reward"] == {"type": "streak", "value": 5}

    def test_user_required(self):
        with pytest.raises(ValueError):
            evaluate_challenges("", {}, NOW)


class TestStatus:
    def test_status_creates_record_from_attempts(self):
        for minutes in range(5):
            db.insert_attempt(_attempt(True, NOW - timedelta(minutes=minutes + 1)))
        result = get_daily_challenge_status("u1", NOW)
        assert result["date"] == "2024-05-02"
        assert result["metrics"]["bestStreakToday"] == 5
        assert _status(result, "streak-5")["status"] == "completed"
        assert db.fetch_challenge_record("u1", challenge_record_id("u1", NOW)) is not None

    def test_yesterdays_attempts_ignored(self):
        db.insert_attempt(_attempt(True, NOW - timedelta(days=1)))
        result = get_daily_challenge_status("u1", NOW)
        assert result["metrics"]["attemptsToday"] == 0


class TestManualCompletion:
    def test_mark_completed(self):
        received = []
        events.subscribe(events.CHALLENGE_COMPLETED, received.append)
        mark_challenge_completed("u1", "focus-10", NOW)
        mark_challenge_completed("u1", "focus-10", NOW)
        assert len(received) == 1
        status = get_daily_challenge_status("u1", NOW)
        assert _status(status, "focus-10")["status"] == "completed"

    def test_unknown_challenge(self):
        with pytest.raises(UnknownChallengeError):
            mark_challenge_completed("u1", "nope", NOW)

    def test_definitions(self):
        assert [d.id for d in get_challenge_definitions()] == ["attempts-20", "accuracy-85", "streak-5", "focus-10"]
