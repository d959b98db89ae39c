"""Form filters: pure predicates narrowing the corpus to what a drill may show.

Filters never raise. An empty result is the caller's signal to fall back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from .config import future_subjunctive_enabled
from .curriculum import DEFAULT_LEVEL, allowed_combos, is_unipersonal_allowed
from .families import PEDAGOGICAL_THIRD_PERSON, STRONG_PRETERITE, verb_families, verb_in_family
from .models import (
    FUTURE_SUBJUNCTIVE_TENSES,
    INFINITIVE_TENSES,
    NONFINITE_PERSON,
    Settings,
    Verb,
    VerbForm,
    combo_key,
    expand_tense,
)

# Persons each region never shows unless an explicit override widens the set.
REGION_EXCLUSIONS: dict[str, frozenset[str]] = {
    "rioplatense": frozenset({"2s_tu", "2p_vosotros"}),
    "la_general": frozenset({"2s_vos", "2p_vosotros"}),
    "peninsular": frozenset({"2s_vos"}),
}
LEVEL_BYPASS_MODES = frozenset({"specific", "theme"})
THIRD_PERSONS = frozenset({"3s", "3p"})

VerbLookup = Mapping[str, Verb]


@dataclass(slots=True, frozen=True)
class SpecificConstraints:
    is_specific: bool = False
    specific_mood: str | None = None
    specific_tense: str | None = None


def specific_constraints(settings: Settings) -> SpecificConstraints:
    return SpecificConstraints(
        is_specific=settings.is_specific,
        specific_mood=settings.specific_mood,
        specific_tense=settings.specific_tense,
    )


def matches_specific(form: VerbForm, constraints: SpecificConstraints) -> bool:
    if not constraints.is_specific:
        return True
    return form.mood == constraints.specific_mood and form.tense in expand_tense(constraints.specific_tense)


def _dialect_override(person: str, settings: Settings) -> bool:
    return bool(
        (person == "2s_vos" and settings.use_voseo)
        or (person == "2s_tu" and settings.use_tuteo)
        or (person == "2p_vosotros" and settings.use_vosotros)
    )


def allows_dialect(person: str, settings: Settings) -> bool:
    """The region rule alone; pronoun-practice preferences are ignored."""
    if person == NONFINITE_PERSON or _dialect_override(person, settings):
        return True
    excluded = REGION_EXCLUSIONS.get(settings.region or "")
    return excluded is None or person not in excluded


def allows_person(person: str, settings: Settings) -> bool:
    if not allows_dialect(person, settings):
        return False
    if person == NONFINITE_PERSON or _dialect_override(person, settings):
        return True
    if settings.region in REGION_EXCLUSIONS or settings.region == "both":
        return True

    if settings.practice_pronoun == "tu_only":
        return person == "2s_tu"
    if settings.practice_pronoun == "vos_only":
        return person == "2s_vos"
    return True


def allows_level(form: VerbForm, settings: Settings) -> bool:
    if settings.practice_mode in LEVEL_BYPASS_MODES:
        return True
    return combo_key(form.mood, form.tense) in allowed_combos(settings.level or DEFAULT_LEVEL)


def filter_practice_forms(forms: Iterable[VerbForm], settings: Settings | None = None) -> list[VerbForm]:
    """Drop infinitives, empty values and, unless enabled, the future subjunctive."""
    allow_future = future_subjunctive_enabled() or bool(settings and settings.enable_future_subjunctive)
    result: list[VerbForm] = []
    for form in forms:
        if not form.value or form.tense in INFINITIVE_TENSES:
            continue
        if form.tense in FUTURE_SUBJUNCTIVE_TENSES and not allow_future:
            continue
        result.append(form)
    return result


def filter_for_specific_practice(forms: Iterable[VerbForm], constraints: SpecificConstraints) -> list[VerbForm]:
    if not constraints.is_specific:
        return list(forms)
    return [form for form in forms if matches_specific(form, constraints)]


def filter_by_verb_type(forms: Iterable[VerbForm], verb_type: str | None, lookup: VerbLookup) -> list[VerbForm]:
    """Keep forms whose lemma has the requested type; unresolved lemmas are dropped."""
    if not verb_type or verb_type == "all":
        return list(forms)
    result: list[VerbForm] = []
    for form in forms:
        verb = lookup.get(form.lemma)
        if verb is None:
            continue
        if verb.type == verb_type:
            result.append(form)
    return result


def filter_by_family(forms: Iterable[VerbForm], family: str | None, lookup: VerbLookup) -> list[VerbForm]:
    if not family:
        return list(forms)
    result: list[VerbForm] = []
    for form in forms:
        verb = lookup.get(form.lemma)
        if verb is not None and verb_in_family(verb, family):
            result.append(form)
    return result


def filter_by_person(forms: Iterable[VerbForm], settings: Settings) -> list[VerbForm]:
    return [form for form in forms if allows_person(form.person, settings)]


def filter_by_level(forms: Iterable[VerbForm], settings: Settings) -> list[VerbForm]:
    return [
        form
        for form in forms
        if allows_level(form, settings) and is_unipersonal_allowed(form.lemma, form.person, settings.level)
    ]


def passes_pedagogical_filter(form: VerbForm, lookup: VerbLookup) -> bool:
    """Third-person preterite drills only show e→i, o→u and hiatus verbs, never strong stems."""
    if form.tense != "pretIndef" or form.person not in THIRD_PERSONS:
        return True
    verb = lookup.get(form.lemma)
    if verb is None:
        return True
    families = verb_families(verb)
    if families & STRONG_PRETERITE:
        return False
    return bool(families & PEDAGOGICAL_THIRD_PERSON)


def apply_pedagogical_filter(forms: Iterable[VerbForm], settings: Settings, lookup: VerbLookup) -> list[VerbForm]:
    forms = list(forms)
    if settings.verb_type != "irregular":
        return forms
    return [form for form in forms if passes_pedagogical_filter(form, lookup)]


def apply_comprehensive_filtering(
    forms: Sequence[VerbForm],
    settings: Settings,
    lookup: VerbLookup,
    constraints: SpecificConstraints | None = None,
) -> list[VerbForm]:
    """Run the full pipeline: specific, family, verb type, person, level, pedagogical."""
    constraints = constraints or specific_constraints(settings)
    filtered = filter_practice_forms(forms, settings)
    filtered = filter_for_specific_practice(filtered, constraints)
    filtered = filter_by_family(filtered, settings.selected_family, lookup)
    filtered = filter_by_verb_type(filtered, settings.verb_type, lookup)
    filtered = filter_by_person(filtered, settings)
    filtered = filter_by_level(filtered, settings)
    return apply_pedagogical_filter(filtered, settings, lookup)


def filter_due_for_specific(due: Iterable[Mapping[str, str]], constraints: SpecificConstraints) -> list[Mapping[str, str]]:
    """Restrict SRS due cells (mappings with mood/tense) to the specific-practice target."""
    due = [cell for cell in due if cell]
    if not constraints.is_specific:
        return due
    tenses = expand_tense(constraints.specific_tense)
    return [cell for cell in due if cell.get("mood") == constraints.specific_mood and cell.get("tense") in tenses]


__all__ = [
    "REGION_EXCLUSIONS",
    "SpecificConstraints",
    "allows_dialect",
    "allows_level",
    "allows_person",
    "apply_comprehensive_filtering",
    "apply_pedagogical_filter",
    "filter_by_family",
    "filter_by_level",
    "filter_by_person",
    "filter_by_verb_type",
    "filter_due_for_specific",
    "filter_for_specific_practice",
    "filter_practice_forms",
    "matches_specific",
    "passes_pedagogical_filter",
    "specific_constraints",
]
