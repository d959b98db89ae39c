from __future__ import annotations

import random
from datetime import datetime, timezone

import pytest

from spanish_conjugator import db, events, expert_mode
from spanish_conjugator import progress as progress_module
from spanish_conjugator.generator import build_drill_item
from spanish_conjugator.grader import grade
from spanish_conjugator.models import Settings, Verb, VerbForm, form_key
from spanish_conjugator.progress import record_attempt
from spanish_conjugator.srs import get_schedule

NOW = datetime(2024, 7, 4, 10, 0, tzinfo=timezone.utc)
FORM = VerbForm("hablar", "indicative", "pres", "1s", "hablo")
LOOKUP = {"hablar": Verb("hablar", "regular")}


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    db.DB_PATH = tmp_path / "progress-test.db"
    db.init_db()
    expert_mode.clear_cache()
    events.clear_handlers()
    yield
    events.clear_handlers()


def _record(answer="hablo", **kwargs):
    settings = Settings(level="A1")
    item = build_drill_item(FORM, settings, LOOKUP)
    result = grade(answer, FORM, settings)
    return record_attempt("u1", item, result, lookup=LOOKUP, now=NOW, rng=random.Random(1), **kwargs)


def test_record_attempt_updates_everything():
    history = {}

    outcome = _record(history=history, latency_ms=2500)

    assert outcome.attempt.id
    assert db.fetch_attempts("u1")[0].latency_ms == 2500
    assert history[form_key(FORM)].seen == 1
    assert outcome.history_entry.correct == 1
    assert get_schedule("u1", "indicative", "pres", "1s") == outcome.schedule
    assert [(r.mood, r.tense, r.score) for r in outcome.mastery] == [("indicative", "pres", 100.0)]
    assert outcome.challenges["date"] == "2024-07-04"


def test_wrong_answer_is_recorded_as_incorrect():
    outcome = _record(answer="hablas")

    assert outcome.attempt.correct is False
    assert outcome.attempt.error_tags == ["incorrect"]
    assert outcome.schedule.lapses == 1
    assert outcome.history_entry is None


def test_attempt_event_emitted():
    received = []
    events.subscribe(events.ATTEMPT_RECORDED, received.append)

    outcome = _record()

    assert len(received) == 1
    assert received[0]["attemptId"] == outcome.attempt.id
    assert received[0]["correct"] is True


def test_challenge_failure_does_not_block_recording(monkeypatch):
    def broken(*_args, **_kwargs):
        raise RuntimeError("challenge store down")

    monkeypatch.setattr(progress_module, "get_daily_challenge_status", broken)

    outcome = _record()

    assert outcome.challenges == {}
    assert len(db.fetch_attempts("u1")) == 1


def test_failed_update_rolls_back_the_attempt(monkeypatch):
    def broken(*_args, **_kwargs):
        raise ValueError("bad scheduler config")

    monkeypatch.setattr(progress_module, "recompute_mastery", broken)
    history = {}

    with pytest.raises(ValueError):
        _record(history=history)

    assert db.fetch_attempts("u1") == []
    assert get_schedule("u1", "indicative", "pres", "1s") is None
    assert history == {}


def test_negative_inputs_are_clamped():
    outcome = _record(latency_ms=-5, hints_used=-1)

    assert outcome.attempt.latency_ms == 0
    assert outcome.attempt.hints_used == 0


def test_user_required():
    item = build_drill_item(FORM, Settings(), LOOKUP)
    with pytest.raises(ValueError):
        record_attempt("", item, grade("hablo", FORM, Settings()))


def test_to_dict():
    data = _record().to_dict()

    assert data["correct"] is True
    assert data["schedule"]["id"] == "u1|indicative|pres|1s"
    assert data["mastery"][0]["n"] == 1
