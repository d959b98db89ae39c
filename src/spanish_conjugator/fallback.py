"""Fallback strategies used when strict filtering leaves no candidates.

Strategies run in order and the chain stops at the first one whose pick
passes the integrity guard. Selection within a strategy is uniform. Only the
emergency stages may return a form outside the region rule.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from typing import Iterator, Sequence

from .curriculum import DEFAULT_LEVEL, allowed_combos
from .filters import (
    SpecificConstraints,
    VerbLookup,
    allows_dialect,
    allows_level,
    allows_person,
    apply_pedagogical_filter,
    filter_by_verb_type,
    filter_practice_forms,
    matches_specific,
    specific_constraints,
)
from .models import Settings, VerbForm, combo_key
from .validation import perform_integrity_guard

logger = logging.getLogger(__name__)

# Fixed pairs of pedagogically adjacent tenses.
SIMILAR_TENSES: dict[str, tuple[str, ...]] = {
    "pretIndef": ("impf",),
    "impf": ("pretIndef",),
    "subjPres": ("subjImpf",),
    "subjImpf": ("subjPres",),
    "pretPerf": ("plusc",),
    "plusc": ("pretPerf",),
    "fut": ("cond",),
    "cond": ("fut",),
}

STRATEGY_DIRECT = "direct_filtering"
STRATEGY_RELAXED_PERSON = "relaxed_person"
STRATEGY_SIMILAR_TENSE = "similar_tense"
STRATEGY_RELAXED_VERB_TYPE = "relaxed_verb_type"
STRATEGY_MIXED_PRACTICE = "mixed_practice"
STRATEGY_EMERGENCY = "emergency"
STRATEGY_EMERGENCY_ANY = "emergency_any_form"

# Integrity checks each stage relaxes on purpose. The region rule is only
# waived once the chain reaches the emergency stages.
STAGE_WAIVERS: dict[str, frozenset[str]] = {
    STRATEGY_RELAXED_PERSON: frozenset({"allows_person"}),
    STRATEGY_SIMILAR_TENSE: frozenset({"matches_specific"}),
    STRATEGY_EMERGENCY: frozenset({"allows_dialect", "allows_person"}),
}


@dataclass(slots=True)
class FallbackResult:
    form: VerbForm
    strategy: str
    candidate_count: int


def get_similar_tenses(tense: str | None) -> tuple[str, ...]:
    return SIMILAR_TENSES.get(tense or "", ())


def _pick(candidates: Sequence[VerbForm], strategy: str, rng: random.Random) -> FallbackResult:
    form = rng.choice(list(candidates))
    logger.info(
        "Fallback strategy %s picked from %d candidates: %s/%s/%s/%s",
        strategy,
        len(candidates),
        form.lemma,
        form.mood,
        form.tense,
        form.person,
    )
    return FallbackResult(form=form, strategy=strategy, candidate_count=len(candidates))


def _guarded(
    result: FallbackResult | None,
    settings: Settings,
    constraints: SpecificConstraints,
) -> FallbackResult | None:
    if result is None:
        return None
    guard = perform_integrity_guard(
        result.form,
        settings,
        constraints,
        method=result.strategy,
        waive=STAGE_WAIVERS.get(result.strategy, ()),
    )
    if guard.success:
        return result
    logger.warning("Fallback strategy %s failed the integrity guard, trying the next one", result.strategy)
    return None


def _gate(forms: Sequence[VerbForm], settings: Settings) -> list[VerbForm]:
    return [form for form in filter_practice_forms(forms, settings) if allows_level(form, settings)]


def _intelligent_stages(
    forms: Sequence[VerbForm],
    settings: Settings,
    lookup: VerbLookup,
    constraints: SpecificConstraints,
) -> Iterator[tuple[str, list[VerbForm]]]:
    mood, tense = constraints.specific_mood, constraints.specific_tense
    gated = _gate(filter_by_verb_type(forms, settings.verb_type, lookup), settings)

    yield STRATEGY_DIRECT, [f for f in gated if matches_specific(f, constraints) and allows_person(f.person, settings)]

    if mood and tense:
        # Pronoun-practice preferences give way here; the region rule does not.
        yield STRATEGY_RELAXED_PERSON, [
            f for f in gated if matches_specific(f, constraints) and allows_dialect(f.person, settings)
        ]

    if mood:
        for alternate in get_similar_tenses(tense):
            yield STRATEGY_SIMILAR_TENSE, [
                f for f in gated if f.mood == mood and f.tense == alternate and allows_person(f.person, settings)
            ]

    if settings.verb_type and settings.verb_type != "all":
        yield STRATEGY_RELAXED_VERB_TYPE, [
            f for f in _gate(forms, settings) if matches_specific(f, constraints) and allows_person(f.person, settings)
        ]


def try_intelligent_fallback(
    forms: Sequence[VerbForm],
    settings: Settings,
    lookup: VerbLookup,
    rng: random.Random | None = None,
    constraints: SpecificConstraints | None = None,
) -> FallbackResult | None:
    """Direct filtering, relaxed person, similar tense, relaxed verb type.

    Every pick goes through the integrity guard; a stage whose pick fails
    is skipped in favour of the next one.
    """
    rng = rng or random.Random()
    constraints = constraints or specific_constraints(settings)
    for strategy, candidates in _intelligent_stages(forms, settings, lookup, constraints):
        if not candidates:
            continue
        result = _guarded(_pick(candidates, strategy, rng), settings, constraints)
        if result is not None:
            return result

    logger.warning("All intelligent fallback strategies failed")
    return None


def mixed_practice_settings(settings: Settings) -> Settings:
    return replace(settings, practice_mode="mixed", specific_mood=None, specific_tense=None)


def fallback_to_mixed_practice(
    forms: Sequence[VerbForm],
    settings: Settings,
    lookup: VerbLookup,
    rng: random.Random | None = None,
) -> FallbackResult | None:
    """Drop specific-practice constraints and draw from the level-wide inventory."""
    rng = rng or random.Random()
    logger.warning("Switching to mixed practice as final fallback")
    mixed = mixed_practice_settings(settings)
    gated = [f for f in _gate(forms, mixed) if allows_person(f.person, mixed)]
    filtered = apply_pedagogical_filter(gated, settings, lookup)
    combos = allowed_combos(settings.level or DEFAULT_LEVEL)
    level_valid = [f for f in filtered if combo_key(f.mood, f.tense) in combos]
    if level_valid:
        return _pick(level_valid, STRATEGY_MIXED_PRACTICE, rng)
    logger.error(
        "No valid forms even with mixed practice fallback: gated=%d level=%s",
        len(gated),
        settings.level,
    )
    return None


def emergency_fallback(
    forms: Sequence[VerbForm],
    settings: Settings,
    rng: random.Random | None = None,
) -> FallbackResult | None:
    """Keep only the level constraint; failing that, any form at all."""
    rng = rng or random.Random()
    practice = filter_practice_forms(forms, settings) or list(forms)
    level_only = [f for f in practice if allows_level(f, mixed_practice_settings(settings))]
    if level_only:
        logger.error("Emergency fallback used with level constraint only")
        return _pick(level_only, STRATEGY_EMERGENCY, rng)
    if forms:
        logger.error("Emergency fallback returned an unconstrained form; corpus coverage is broken")
        return _pick(forms, STRATEGY_EMERGENCY_ANY, rng)
    logger.error("Emergency fallback found an empty corpus")
    return None


def run_fallback_chain(
    forms: Sequence[VerbForm],
    settings: Settings,
    lookup: VerbLookup,
    rng: random.Random | None = None,
) -> FallbackResult | None:
    """Run every strategy in order and return the first guarded success."""
    rng = rng or random.Random()
    result = try_intelligent_fallback(forms, settings, lookup, rng)
    if result is not None:
        return result

    mixed = mixed_practice_settings(settings)
    mixed_constraints = specific_constraints(mixed)
    result = _guarded(fallback_to_mixed_practice(forms, settings, lookup, rng), mixed, mixed_constraints)
    if result is not None:
        return result

    result = emergency_fallback(forms, settings, rng)
    if result is not None and result.strategy == STRATEGY_EMERGENCY:
        result = _guarded(result, mixed, mixed_constraints) or _pick(forms, STRATEGY_EMERGENCY_ANY, rng)
    return result


def progressive_constraint_relaxation(
    forms: Sequence[VerbForm],
    settings: Settings,
    rng: random.Random | None = None,
    constraints: SpecificConstraints | None = None,
) -> tuple[VerbForm, int] | None:
    """Relax specific-practice constraints one level at a time; returns the form and level used."""
    rng = rng or random.Random()
    constraints = constraints or specific_constraints(settings)
    if not constraints.is_specific:
        return None
    mood, tense = constraints.specific_mood, constraints.specific_tense
    practice = filter_practice_forms(forms, settings)

    level_ok = [f for f in practice if allows_level(f, settings)]
    in_region = [f for f in level_ok if allows_dialect(f.person, settings)]
    stages: list[tuple[int, list[VerbForm]]] = [
        (1, [f for f in level_ok if matches_specific(f, constraints) and allows_person(f.person, settings)]),
        (2, [f for f in in_region if matches_specific(f, constraints)]),
    ]
    for alternate in get_similar_tenses(tense):
        stages.append((3, [f for f in in_region if f.mood == mood and f.tense == alternate]))
    stages.append((4, [f for f in in_region if f.mood == mood]))

    for level, candidates in stages:
        if candidates:
            logger.debug("Constraint relaxation level %d produced %d candidates", level, len(candidates))
            return rng.choice(candidates), level
    logger.warning("All relaxation levels failed")
    return None


def get_fallback_stats(forms: Sequence[VerbForm], settings: Settings, lookup: VerbLookup) -> dict[str, int]:
    """Candidate counts per stage, for diagnostics."""
    constraints = specific_constraints(settings)
    typed = filter_by_verb_type(forms, settings.verb_type, lookup)
    gated = _gate(typed, settings)
    return {
        "total": len(forms),
        "verb_type_filtered": len(typed),
        "level_gated": len(gated),
        "specific_match": sum(1 for f in gated if matches_specific(f, constraints)),
        "person_allowed": sum(1 for f in gated if allows_person(f.person, settings)),
        "fully_compliant": sum(
            1 for f in gated if matches_specific(f, constraints) and allows_person(f.person, settings)
        ),
    }


__all__ = [
    "FallbackResult",
    "SIMILAR_TENSES",
    "STAGE_WAIVERS",
    "emergency_fallback",
    "fallback_to_mixed_practice",
    "get_fallback_stats",
    "get_similar_tenses",
    "mixed_practice_settings",
    "progressive_constraint_relaxation",
    "run_fallback_chain",
    "try_intelligent_fallback",
]
