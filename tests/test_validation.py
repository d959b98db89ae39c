"""Tests for validation.py: eligibility gate, integrity guard, item structure."""

from __future__ import annotations

import pytest

from spanish_conjugator import curriculum
from spanish_conjugator.errors import DrillConfigurationError
from spanish_conjugator.filters import SpecificConstraints
from spanish_conjugator.models import DrillItem, Settings, VerbForm
from spanish_conjugator.validation import (
    get_compliant_forms,
    perform_integrity_guard,
    validate_drill_item,
    validate_eligible_forms,
    validate_final_form_selection,
    validate_specific_practice_config,
    validate_verb_type_filtering,
)


@pytest.fixture(autouse=True)
def fresh_curriculum():
    curriculum.clear_cache()
    yield


def _form(person="1s", mood="indicative", tense="pres", value="hablo"):
    return VerbForm(lemma="hablar", mood=mood, tense=tense, person=person, value=value)


def _item(person="1s", settings=None, value="hablo"):
    return DrillItem(
        id="item-1",
        lemma="hablar",
        mood="indicative",
        tense="pres",
        person=person,
        verb_type="regular",
        irregular_tenses=(),
        form=_form(person, value=value),
        settings=settings or {},
    )


class TestEligibleForms:
    def test_specific_with_nothing_raises(self):
        constraints = SpecificConstraints(True, "subjunctive", "subjPlusc")
        with pytest.raises(DrillConfigurationError) as excinfo:
            validate_eligible_forms([], constraints)
        assert excinfo.value.mood == "subjunctive"
        assert "subjPlusc" in str(excinfo.value)

    def test_mixed_with_nothing_does_not_raise(self):
        validate_eligible_forms([], SpecificConstraints())

    def test_specific_with_forms_passes(self):
        validate_eligible_forms([_form()], SpecificConstraints(True, "indicative", "pres"))


class TestIntegrityGuard:
    def test_valid_form_passes(self):
        result = perform_integrity_guard(_form(), Settings(region="la_general", level="A1"))
        assert result.success

    def test_null_form_fails(self):
        result = perform_integrity_guard(None, Settings())
        assert not result.success
        assert result.reason == "Form is null"

    def test_wrong_dialect_fails(self):
        result = perform_integrity_guard(_form("2s_vos", value="hablás"), Settings(region="la_general"))
        assert not result.success
        assert result.details["checks"]["allows_person"] is False

    def test_wrong_tense_fails_in_specific(self):
        settings = Settings(practice_mode="specific", specific_mood="subjunctive", specific_tense="subjPres")
        result = perform_integrity_guard(_form(), settings)
        assert not result.success
        assert result.details["expected"] == {"mood": "subjunctive", "tense": "subjPres"}

    def test_waived_check_does_not_fail(self):
        settings = Settings(region=None, practice_pronoun="tu_only")
        assert not perform_integrity_guard(_form(), settings).success
        assert perform_integrity_guard(_form(), settings, waive={"allows_person"}).success

    def test_dialect_still_enforced_when_person_waived(self):
        result = perform_integrity_guard(
            _form("2s_tu", value="hablas"), Settings(region="rioplatense"), waive={"allows_person"}
        )
        assert not result.success
        assert result.details["checks"]["allows_dialect"] is False
        assert result.details["waived"] == ["allows_person"]

    def test_level_violation_fails_in_mixed(self):
        result = perform_integrity_guard(_form(tense="impf", value="hablaba"), Settings(level="A1"))
        assert not result.success

    def test_compliant_forms(self):
        forms = [_form(), _form("2s_vos", value="hablás")]
        assert get_compliant_forms(forms, Settings(region="rioplatense")) == forms
        assert get_compliant_forms(forms, Settings(region="la_general")) == [forms[0]]


class TestConfigChecks:
    def test_specific_config_requires_mood_and_tense(self):
        assert not validate_specific_practice_config(Settings(practice_mode="specific", specific_mood="indicative")).valid
        assert validate_specific_practice_config(Settings()).valid

    def test_final_selection_mismatch(self):
        settings = Settings(practice_mode="specific", specific_mood="indicative", specific_tense="impf")
        result = validate_final_form_selection(_form(), settings)
        assert not result.valid
        assert result.details["actual"] == {"mood": "indicative", "tense": "pres"}

    def test_verb_type_filter_emptied(self):
        result = validate_verb_type_filtering([_form()], [], "irregular")
        assert not result.valid
        assert result.details["reduction_percent"] == 100

    def test_verb_type_all_is_noop(self):
        assert validate_verb_type_filtering([_form()], [], "all").valid


class TestItemStructure:
    def test_complete_item_is_valid(self):
        result = validate_drill_item(_item())
        assert result.valid
        assert result.warnings == []

    def test_missing_value_is_invalid(self):
        result = validate_drill_item(_item(value=""))
        assert not result.valid
        assert "MISSING_FORM_VALUE" in result.errors

    def test_null_item(self):
        assert validate_drill_item(None).errors == ["MISSING_ITEM"]

    def test_dialect_flag_mismatch_is_warning_only(self):
        result = validate_drill_item(_item("2s_vos", value="hablás"))
        assert result.valid
        assert result.warnings == ["VOSEO_INCONSISTENCY"]

    def test_dialect_flag_set(self):
        result = validate_drill_item(_item("2s_vos", {"useVoseo": True}, value="hablás"))
        assert result.warnings == []
