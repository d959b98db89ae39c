"""Tests for generator.py: selection, weighting, guard retries and item building."""

from __future__ import annotations

import random

import pytest

from spanish_conjugator import corpus, curriculum
from spanish_conjugator import generator as generator_module
from spanish_conjugator.config import FUTURE_SUBJUNCTIVE_ENV
from spanish_conjugator.errors import DrillConfigurationError
from spanish_conjugator.generator import (
    SelectionTrace,
    accuracy,
    apply_weighted_selection,
    build_drill_item,
    choose_next,
    fallback_drill_item,
    generate_item_batch,
    generate_next_item,
    is_irregular_in_tense,
    update_history,
)
from spanish_conjugator.models import HistoryEntry, Settings, Verb, VerbForm, form_key
from spanish_conjugator.validation import IntegrityResult


@pytest.fixture(autouse=True)
def fresh_caches(monkeypatch):
    monkeypatch.delenv(FUTURE_SUBJUNCTIVE_ENV, raising=False)
    corpus.clear_cache()
    curriculum.clear_cache()
    yield


def _synthetic(regular_count: int, irregular_count: int):
    forms: list[VerbForm] = []
    lookup: dict[str, Verb] = {}
    for index in range(regular_count):
        lemma = f"regular{index}ar"
        lookup[lemma] = Verb(lemma=lemma, type="regular")
        forms.append(VerbForm(lemma=lemma, mood="indicative", tense="pres", person="1s", value=f"r{index}"))
    for index in range(irregular_count):
        lemma = f"irregular{index}er"
        lookup[lemma] = Verb(lemma=lemma, type="irregular", irregular_tenses=("pres",))
        forms.append(VerbForm(lemma=lemma, mood="indicative", tense="pres", person="1s", value=f"i{index}"))
    return forms, lookup


def _is_irregular(form: VerbForm, lookup) -> bool:
    return is_irregular_in_tense(lookup[form.lemma], form.tense)


class TestAccuracy:
    def test_unseen_is_neutral(self):
        assert accuracy(None) == 0.5

    def test_laplace_smoothing(self):
        assert accuracy(HistoryEntry(seen=2, correct=2)) == pytest.approx(0.75)
        assert accuracy(HistoryEntry(seen=4, correct=0)) == pytest.approx(1 / 6)

    def test_update_history(self):
        history = {}
        form = VerbForm("hablar", "indicative", "pres", "1s", "hablo")
        update_history(history, form, True)
        entry = update_history(history, form, False)
        assert (entry.seen, entry.correct) == (2, 1)
        assert history[form_key(form)] is entry


class TestIrregularity:
    def test_regular_verb_never_irregular(self):
        assert not is_irregular_in_tense(Verb("hablar", "regular"), "pres")

    def test_irregular_only_in_listed_tenses(self):
        verb = Verb("tener", "irregular", irregular_tenses=("pres",))
        assert is_irregular_in_tense(verb, "pres")
        assert not is_irregular_in_tense(verb, "impf")

    def test_irregular_without_list_counts_everywhere(self):
        assert is_irregular_in_tense(Verb("leer", "irregular"), "impf")


class TestWeightedSelection:
    def test_quota_split(self):
        forms, lookup = _synthetic(80, 20)
        selected = apply_weighted_selection(forms, lookup, random.Random(3))
        assert len(selected) == 100
        assert sum(_is_irregular(f, lookup) for f in selected) == 70

    def test_single_group_tops_up(self):
        forms, lookup = _synthetic(10, 0)
        selected = apply_weighted_selection(forms, lookup, random.Random(3))
        assert len(selected) == 10
        assert not any(_is_irregular(f, lookup) for f in selected)

    def test_empty(self):
        assert apply_weighted_selection([], {}) == []

    def test_irregular_share_converges(self):
        forms, lookup = _synthetic(80, 20)
        settings = Settings(region="la_general", level="A1")
        rng = random.Random(42)
        picks = [choose_next(forms, {}, settings, lookup=lookup, rng=rng) for _ in range(2000)]
        share = sum(_is_irregular(f, lookup) for f in picks) / len(picks)
        assert 0.64 < share < 0.76


class TestChooseNext:
    def test_prefers_lowest_accuracy(self):
        forms, lookup = _synthetic(3, 0)
        history = {
            form_key(forms[0]): HistoryEntry(seen=10, correct=10),
            form_key(forms[2]): HistoryEntry(seen=4, correct=0),
        }
        settings = Settings(level="A1", verb_type="regular")
        rng = random.Random(5)
        for _ in range(20):
            assert choose_next(forms, history, settings, lookup=lookup, rng=rng) == forms[2]

    def test_avoids_repeating_current_item(self):
        forms, lookup = _synthetic(2, 0)
        settings = Settings(level="A1", verb_type="regular")
        rng = random.Random(5)
        for _ in range(20):
            assert choose_next(forms, {}, settings, current_item=forms[0], lookup=lookup, rng=rng) == forms[1]

    def test_single_candidate_may_repeat(self):
        forms, lookup = _synthetic(1, 0)
        settings = Settings(level="A1", verb_type="regular")
        assert choose_next(forms, {}, settings, current_item=forms[0], lookup=lookup) == forms[0]

    def test_empty_corpus_returns_none(self):
        assert choose_next([], {}, Settings(), lookup={}) is None

    def test_region_never_violated(self):
        forms = corpus.all_forms()
        settings = Settings(region="rioplatense", level="B1")
        rng = random.Random(11)
        persons = {choose_next(forms, {}, settings, rng=rng).person for _ in range(200)}
        assert not persons & {"2s_tu", "2p_vosotros"}

    def test_specific_practice_respected(self):
        forms = corpus.all_forms()
        settings = Settings(
            region="la_general",
            practice_mode="specific",
            specific_mood="subjunctive",
            specific_tense="subjPres",
        )
        rng = random.Random(2)
        for _ in range(50):
            form = choose_next(forms, {}, settings, rng=rng)
            assert (form.mood, form.tense) == ("subjunctive", "subjPres")

    def test_missing_coverage_raises(self):
        settings = Settings(practice_mode="specific", specific_mood="subjunctive", specific_tense="subjFut")
        with pytest.raises(DrillConfigurationError):
            choose_next(corpus.all_forms(), {}, settings)

    def test_empty_eligible_uses_fallback(self):
        settings = Settings(
            region="rioplatense",
            practice_mode="specific",
            specific_mood="indicative",
            specific_tense="pres",
            verb_type="regular",
            selected_family="PRETERITE_STRONG_STEM",
        )
        trace = SelectionTrace()
        form = choose_next(corpus.all_forms(), {}, settings, rng=random.Random(1), trace=trace)
        assert trace.eligible_count == 0
        assert trace.fallback_strategy is not None
        assert (form.mood, form.tense) == ("indicative", "pres")

    def test_fallback_never_relaxes_region_before_emergency(self):
        forms = [VerbForm("hablar", "indicative", "pres", "2s_tu", "hablas")]
        settings = Settings(
            region="rioplatense",
            practice_mode="specific",
            specific_mood="indicative",
            specific_tense="pres",
        )
        trace = SelectionTrace()
        form = choose_next(forms, {}, settings, lookup={"hablar": Verb("hablar", "regular")}, rng=random.Random(1), trace=trace)
        assert form.person == "2s_tu"
        assert trace.fallback_strategy in ("emergency", "emergency_any_form")

    def test_fallback_prefers_region_legal_similar_tense(self):
        forms = [
            VerbForm("hablar", "indicative", "pretIndef", "2s_tu", "hablaste"),
            VerbForm("hablar", "indicative", "impf", "1s", "hablaba"),
        ]
        settings = Settings(
            region="rioplatense",
            practice_mode="specific",
            specific_mood="indicative",
            specific_tense="pretIndef",
        )
        trace = SelectionTrace()
        form = choose_next(forms, {}, settings, lookup={"hablar": Verb("hablar", "regular")}, rng=random.Random(1), trace=trace)
        assert (form.tense, form.person) == ("impf", "1s")
        assert trace.fallback_strategy == "similar_tense"

    def test_integrity_failures_fall_back(self, monkeypatch):
        monkeypatch.setattr(
            generator_module,
            "perform_integrity_guard",
            lambda *args, **kwargs: IntegrityResult(False, "forced"),
        )
        forms, lookup = _synthetic(5, 0)
        trace = SelectionTrace()
        form = choose_next(forms, {}, Settings(level="A1"), lookup=lookup, rng=random.Random(1), trace=trace)
        assert trace.integrity_failures == 3
        assert len(trace.discarded) == 3
        assert form is not None
        assert form_key(form) not in trace.discarded


class TestItems:
    def test_build_sets_dialect_flag(self):
        form = VerbForm("hablar", "indicative", "pres", "2s_vos", "hablás")
        item = build_drill_item(form, Settings(region="rioplatense"), {"hablar": Verb("hablar", "regular")})
        assert item.settings["useVoseo"] is True
        assert item.verb_type == "regular"
        assert item.to_dict()["form"]["value"] == "hablás"

    def test_generate_next_item(self):
        item = generate_next_item(corpus.all_forms(), {}, Settings(level="A1"), rng=random.Random(4))
        assert item is not None
        assert (item.mood, item.tense) == ("indicative", "pres")
        assert item.id

    def test_generate_returns_none_for_empty_corpus(self):
        assert generate_next_item([], {}, Settings(), lookup={}) is None

    def test_batch_never_repeats_back_to_back(self):
        items = generate_item_batch(corpus.all_forms(), {}, Settings(level="A2"), 10, rng=random.Random(9))
        assert len(items) == 10
        for previous, current in zip(items, items[1:]):
            assert form_key(previous.form) != form_key(current.form)

    def test_static_fallback_item(self):
        item = fallback_drill_item()
        assert item.form.value == "soy"
        assert item.id.startswith("fallback-")
