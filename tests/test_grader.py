"""Tests for grader.py: level-dependent answer checking."""

from __future__ import annotations

import pytest

from spanish_conjugator import curriculum
from spanish_conjugator.grader import candidate_answers, grade, normalize_answer
from spanish_conjugator.models import Settings, VerbForm


@pytest.fixture(autouse=True)
def fresh_curriculum():
    curriculum.clear_cache()
    yield


VOS_FORM = VerbForm(
    lemma="hablar",
    mood="indicative",
    tense="pres",
    person="2s_vos",
    value="hablás",
    accepts={"tu": "hablas"},
)


class TestNormalize:
    def test_whitespace_and_case(self):
        assert normalize_answer("  Hablo   mucho ") == "hablo mucho"

    def test_none_safe(self):
        assert normalize_answer(None) == ""


class TestAccents:
    def test_a1_accepts_missing_accent_with_note(self):
        result = grade("hablas", VOS_FORM, Settings(level="A1"))
        assert result.correct
        assert result.note

    def test_exact_answer_has_no_note(self):
        result = grade(" Hablás ", VOS_FORM, Settings(level="A1"))
        assert result.correct
        assert result.note is None

    def test_b2_rejects_missing_accent(self):
        result = grade("hablas", VOS_FORM, Settings(level="B2"))
        assert not result.correct
        assert result.is_accent_error
        assert result.error_tags == ["accent"]

    def test_wrong_answer(self):
        result = grade("comés", VOS_FORM, Settings(level="B2"))
        assert not result.correct
        assert result.error_tags == ["incorrect"]


class TestDialectVariants:
    def test_tuteo_variant_accepted_when_enabled(self):
        result = grade("hablas", VOS_FORM, Settings(level="B2", use_tuteo=True))
        assert result.correct

    def test_strict_ignores_variants(self):
        settings = Settings(level="B2", use_tuteo=True, strict=True)
        assert candidate_answers(VOS_FORM, settings) == ["hablás"]
        assert not grade("hablas", VOS_FORM, settings).correct

    def test_alternates_always_accepted(self):
        form = VerbForm("tener", "subjunctive", "subjPres", "2s_vos", "tengas", alt=("tengás",))
        assert grade("tengás", form, Settings(level="C2")).correct

    def test_candidates_deduplicated(self):
        form = VerbForm("ser", "indicative", "pres", "2s_tu", "eres", alt=("eres",), accepts={"vos": "sos"})
        assert candidate_answers(form, Settings(use_voseo=True)) == ["eres", "sos"]


class TestOrthography:
    def test_missing_dieresis_from_b2(self):
        form = VerbForm("averiguar", "indicative", "pretIndef", "1s", "averigüé")
        result = grade("averigué", form, Settings(level="B2"))
        assert not result.correct
        assert result.error_tags == ["dieresis"]

    def test_dieresis_tolerated_at_a1(self):
        form = VerbForm("averiguar", "indicative", "pretIndef", "1s", "averigüé")
        assert grade("averigue", form, Settings(level="A1")).correct

    def test_non_normative_fue_from_c1(self):
        form = VerbForm("ser", "indicative", "pretIndef", "3s", "fue")
        result = grade("fué", form, Settings(level="C1"))
        assert result.error_tags == ["non_normative"]

    def test_fue_is_plain_accent_error_at_b2(self):
        form = VerbForm("ser", "indicative", "pretIndef", "3s", "fue")
        assert grade("fué", form, Settings(level="B2")).error_tags == ["accent"]

    def test_defective_imperative(self):
        form = VerbForm("soler", "imperative", "impAff", "2s_tu", "suele")
        result = grade("suele", form, Settings(level="C2"))
        assert not result.correct
        assert result.error_tags == ["defective"]


class TestSerialization:
    def test_to_dict(self):
        data = grade("hablas", VOS_FORM, Settings(level="B2")).to_dict()
        assert data["correct"] is False
        assert data["errorTags"] == ["accent"]
        assert data["isAccentError"] is True
        assert data["targets"] == ["hablás"]
