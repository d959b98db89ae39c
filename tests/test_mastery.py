from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from spanish_conjugator import db
from spanish_conjugator.mastery import (
    ItemMastery,
    classify_mastery,
    confidence_level,
    mastery_for_cell,
    mastery_for_group,
    mastery_for_item,
    recency_weight,
    recompute_mastery,
    verb_difficulty,
)
from spanish_conjugator.models import Attempt, Verb

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_db(tmp_path):
    db.DB_PATH = tmp_path / "mastery-test.db"
    db.init_db()
    yield


def _attempt(correct: bool, *, days_ago: float = 0, hints: int = 0, lemma="hablar", person="1s", tense="pres"):
    return Attempt(
        user_id="u1",
        item_id=f"{lemma}-{person}",
        lemma=lemma,
        mood="indicative",
        tense=tense,
        person=person,
        correct=correct,
        hints_used=hints,
        latency_ms=2000,
        created_at=db.now_iso(NOW - timedelta(days=days_ago)),
    )


class TestRecency:
    def test_fresh_attempt_has_full_weight(self):
        assert recency_weight(db.now_iso(NOW), NOW) == pytest.approx(1.0)

    def test_weight_decays_with_tau(self):
        assert recency_weight(NOW - timedelta(days=10), NOW) == pytest.approx(math.exp(-1))

    def test_unparseable_counts_as_fresh(self):
        assert recency_weight("not a date", NOW) == 1.0

    def test_future_timestamp_is_not_boosted(self):
        assert recency_weight(NOW + timedelta(days=2), NOW) == pytest.approx(1.0)


class TestVerbDifficulty:
    def test_unknown_verb_is_regular(self):
        assert verb_difficulty(None) == 1.0

    def test_irregular_without_tense_data(self):
        assert verb_difficulty(Verb("ir", "irregular")) == pytest.approx(1.2)

    def test_frequency_adjustment(self):
        assert verb_difficulty(Verb("hablar", "regular", frequency="high")) == pytest.approx(0.95)

    def test_clamped_to_maximum(self):
        assert verb_difficulty(Verb("yacer", "irregular", frequency="low")) == pytest.approx(1.3)


class TestScores:
    def test_no_attempts_is_neutral(self):
        item = mastery_for_item([])
        assert item.score == 50
        assert item.n == 0

    def test_half_correct(self):
        item = mastery_for_item([_attempt(True), _attempt(False)], now=NOW)
        assert item.score == pytest.approx(50)
        assert item.n == 2
        assert item.weighted_attempts == pytest.approx(2)

    def test_recent_attempts_dominate(self):
        item = mastery_for_item([_attempt(False, days_ago=30), _attempt(True)], now=NOW)
        assert item.score > 90

    def test_hint_penalty(self):
        item = mastery_for_item([_attempt(True, hints=1)], now=NOW)
        assert item.score == pytest.approx(95)

    def test_hint_penalty_is_capped_per_attempt(self):
        item = mastery_for_item([_attempt(True, hints=10)], now=NOW)
        assert item.score == pytest.approx(85)

    def test_cell_weights_by_attempts(self):
        cell = mastery_for_cell([ItemMastery(100, 1, 1.0), ItemMastery(0, 3, 3.0)])
        assert cell.score == pytest.approx(25)
        assert cell.n == 4

    def test_empty_cell_is_neutral(self):
        assert mastery_for_cell([]).score == 50

    def test_group_weighted_mean(self):
        assert mastery_for_group([80, 60], [3, 1]) == pytest.approx(75)
        assert mastery_for_group([80, 60]) == pytest.approx(70)
        assert mastery_for_group([]) == 50


class TestClassification:
    def test_confidence_levels(self):
        assert confidence_level(20).level == "alto"
        assert confidence_level(10).level == "medio"
        low = confidence_level(4)
        assert low.level == "bajo"
        assert not low.sufficient

    def test_levels(self):
        assert classify_mastery(90, 25).level == "logrado"
        assert classify_mastery(70, 10).level == "atención"
        assert classify_mastery(30, 10).level == "crítico"

    def test_insufficient_data(self):
        assert classify_mastery(90, 2).level == "insuficiente"

    def test_slow_answers_add_speed_advice(self):
        result = classify_mastery(90, 25, avg_latency_ms=8000)
        assert result.recommendation.endswith("Work on response speed.")


class TestRecompute:
    def test_recompute_stores_one_record_per_cell(self):
        for attempt in (
            _attempt(True),
            _attempt(True, person="2s_tu"),
            _attempt(False, tense="impf"),
        ):
            db.insert_attempt(attempt)

        records = recompute_mastery("u1", now=NOW, lookup={})

        assert [(r.mood, r.tense) for r in records] == [("indicative", "impf"), ("indicative", "pres")]
        stored = {(r.mood, r.tense): r for r in db.fetch_mastery("u1")}
        assert stored[("indicative", "pres")].score == pytest.approx(100)
        assert stored[("indicative", "pres")].n == 2
        assert stored[("indicative", "impf")].score == pytest.approx(0)

    def test_recompute_replaces_previous_scores(self):
        db.insert_attempt(_attempt(True))
        recompute_mastery("u1", now=NOW, lookup={})
        db.insert_attempt(_attempt(False, person="3s"))

        records = recompute_mastery("u1", now=NOW, lookup={})

        assert records[0].score == pytest.approx(50)
        assert len(db.fetch_mastery("u1")) == 1

    def test_other_users_untouched(self):
        db.insert_attempt(_attempt(True))
        assert recompute_mastery("u2", now=NOW, lookup={}) == []
