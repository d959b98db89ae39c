"""Post-selection checks: eligibility gate, integrity guard, item structure validation."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .errors import DrillConfigurationError
from .filters import (
    SpecificConstraints,
    allows_dialect,
    allows_level,
    allows_person,
    matches_specific,
    specific_constraints,
)
from .models import DrillItem, Settings, VerbForm, expand_tense

logger = logging.getLogger(__name__)

SIGNIFICANT_REDUCTION_PERCENT = 75


@dataclass(slots=True)
class IntegrityResult:
    success: bool
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ValidationResult:
    valid: bool
    reason: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class ItemValidation:
    valid: bool
    reason: str
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_eligible_forms(forms: Sequence[VerbForm], constraints: SpecificConstraints) -> None:
    """Raise when specific practice has nothing to show."""
    if not constraints.is_specific:
        return
    if not forms:
        logger.error(
            "No forms found for specific practice: mood=%s tense=%s",
            constraints.specific_mood,
            constraints.specific_tense,
        )
        raise DrillConfigurationError(constraints.specific_mood, constraints.specific_tense)
    logger.debug("Eligible forms validation passed: %d forms", len(forms))


def _form_summary(form: VerbForm) -> dict[str, str]:
    return {"lemma": form.lemma, "mood": form.mood, "tense": form.tense, "person": form.person}


def perform_integrity_guard(
    form: VerbForm | None,
    settings: Settings,
    constraints: SpecificConstraints | None = None,
    method: str = "standard",
    waive: Iterable[str] = (),
) -> IntegrityResult:
    """Re-check a selected form against the active constraints.

    ``waive`` names checks a fallback stage relaxes on purpose; they are
    still reported in ``details`` but do not fail the guard.
    """
    if form is None:
        return IntegrityResult(False, "Form is null", {"form": None})

    constraints = constraints or specific_constraints(settings)
    checks = {
        "matches_specific": matches_specific(form, constraints),
        "allows_dialect": allows_dialect(form.person, settings),
        "allows_person": allows_person(form.person, settings),
        "allows_level": allows_level(form, settings),
    }
    waived = frozenset(waive)
    if all(passed for name, passed in checks.items() if name not in waived):
        return IntegrityResult(True, "All integrity checks passed", {"checks": checks})

    expected: Any = (
        {"mood": constraints.specific_mood, "tense": constraints.specific_tense}
        if constraints.is_specific
        else "any"
    )
    details = {
        "form": _form_summary(form),
        "checks": checks,
        "expected": expected,
        "method": method,
        "waived": sorted(waived),
        "settings": {"level": settings.level, "region": settings.region, "verb_type": settings.verb_type},
    }
    logger.error("Integrity guard triggered, selection produced an invalid form: %s", details)
    return IntegrityResult(False, "Form failed integrity checks", details)


def passes_integrity_checks(form: VerbForm, settings: Settings, constraints: SpecificConstraints) -> bool:
    return (
        matches_specific(form, constraints)
        and allows_person(form.person, settings)
        and allows_level(form, settings)
    )


def get_compliant_forms(
    forms: Sequence[VerbForm],
    settings: Settings,
    constraints: SpecificConstraints | None = None,
) -> list[VerbForm]:
    constraints = constraints or specific_constraints(settings)
    return [form for form in forms if passes_integrity_checks(form, settings, constraints)]


def validate_specific_practice_config(settings: Settings) -> ValidationResult:
    if settings.practice_mode != "specific":
        return ValidationResult(True, "Not in specific practice mode")
    details = {"specific_mood": settings.specific_mood, "specific_tense": settings.specific_tense}
    if not (settings.specific_mood and settings.specific_tense):
        logger.warning("Invalid specific practice configuration: %s", details)
        return ValidationResult(False, "Missing specific mood or tense configuration", details)
    return ValidationResult(True, "Specific practice configuration is valid", details)


def validate_final_form_selection(form: VerbForm | None, settings: Settings) -> ValidationResult:
    if settings.practice_mode != "specific" or form is None:
        return ValidationResult(True, "Not applicable")
    mood_matches = form.mood == settings.specific_mood
    tense_matches = form.tense in expand_tense(settings.specific_tense)
    if mood_matches and tense_matches:
        return ValidationResult(True, "Form matches specific practice requirements")
    return ValidationResult(
        False,
        "Generated form does not match specific practice requirements",
        {
            "expected": {"mood": settings.specific_mood, "tense": settings.specific_tense},
            "actual": {"mood": form.mood, "tense": form.tense},
        },
    )


def validate_verb_type_filtering(
    original: Sequence[VerbForm],
    filtered: Sequence[VerbForm],
    verb_type: str | None,
) -> ValidationResult:
    stats: dict[str, Any] = {"original": len(original), "filtered": len(filtered)}
    if not verb_type or verb_type == "all":
        return ValidationResult(True, "No verb type filter applied", stats)

    reduction = round((len(original) - len(filtered)) / len(original) * 100) if original else 0
    stats["reduction_percent"] = reduction
    if not filtered:
        logger.warning("Verb type filter '%s' removed all forms (%d before)", verb_type, len(original))
        return ValidationResult(False, "Verb type filter removed all available forms", stats)
    if reduction > SIGNIFICANT_REDUCTION_PERCENT:
        logger.warning("Verb type filter '%s' reduced forms by %d%%", verb_type, reduction)
    return ValidationResult(True, "Verb type filtering completed successfully", stats)


def validate_drill_item(item: DrillItem | None) -> ItemValidation:
    """Check required fields and flag persons whose dialect flag is not set."""
    if item is None:
        return ItemValidation(False, "Item is null", errors=["MISSING_ITEM"])

    errors: list[str] = []
    warnings: list[str] = []
    for name in ("lemma", "mood", "tense", "person"):
        if not getattr(item, name, None):
            errors.append(f"MISSING_{name.upper()}")
    if item.form is None:
        errors.append("MISSING_FORM")
    elif not item.form.value:
        errors.append("MISSING_FORM_VALUE")

    flags = item.settings or {}
    if item.person == "2s_vos" and not flags.get("useVoseo"):
        warnings.append("VOSEO_INCONSISTENCY")
    if item.person == "2s_tu" and not flags.get("useTuteo"):
        warnings.append("TUTEO_INCONSISTENCY")
    if item.person == "2p_vosotros" and not flags.get("useVosotros"):
        warnings.append("VOSOTROS_INCONSISTENCY")

    reason = "Item validation passed" if not errors else "Item validation failed"
    return ItemValidation(not errors, reason, errors, warnings)


__all__ = [
    "IntegrityResult",
    "ItemValidation",
    "ValidationResult",
    "get_compliant_forms",
    "passes_integrity_checks",
    "perform_integrity_guard",
    "validate_drill_item",
    "validate_eligible_forms",
    "validate_final_form_selection",
    "validate_specific_practice_config",
    "validate_verb_type_filtering",
]
