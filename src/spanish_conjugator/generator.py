"""Next-item selection: filter, fall back, guard, then pick the weakest form."""

from __future__ import annotations

import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Sequence

from .corpus import verb_lookup
from .fallback import run_fallback_chain
from .filters import (
    SpecificConstraints,
    VerbLookup,
    apply_comprehensive_filtering,
    filter_practice_forms,
    matches_specific,
    specific_constraints,
)
from .models import DrillItem, History, HistoryEntry, Settings, Verb, VerbForm, form_key
from .validation import perform_integrity_guard, validate_drill_item, validate_eligible_forms

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 5
MAX_INTEGRITY_RETRIES = 3
REGULAR_TARGET_RATIO = 0.3

# Persons whose dialect flag is switched on when an item targets them.
DIALECT_FLAGS: dict[str, str] = {
    "2s_vos": "useVoseo",
    "2s_tu": "useTuteo",
    "2p_vosotros": "useVosotros",
}


@dataclass(slots=True)
class SelectionTrace:
    """What ``choose_next`` did on its last call."""

    eligible_count: int = 0
    weighted: bool = False
    tie_count: int = 0
    person_group: str | None = None
    integrity_failures: int = 0
    fallback_strategy: str | None = None
    discarded: list[str] = field(default_factory=list)


def accuracy(entry: HistoryEntry | None) -> float:
    """Laplace-smoothed accuracy; an unseen form scores 0.5."""
    if entry is None:
        return 0.5
    return (entry.correct + 1) / (entry.seen + 2)


def is_irregular_in_tense(verb: Verb, tense: str) -> bool:
    if verb.type != "irregular":
        return False
    return not verb.irregular_tenses or tense in verb.irregular_tenses


def apply_weighted_selection(
    forms: Sequence[VerbForm],
    lookup: VerbLookup,
    rng: random.Random | None = None,
) -> list[VerbForm]:
    """Resample ``forms`` to roughly 30% regular and 70% irregular entries.

    Each group is drawn with replacement up to its quota. When a group is
    empty its quota is topped up from the whole pool.
    """
    rng = rng or random.Random()
    total = len(forms)
    if total == 0:
        return []

    regular: list[VerbForm] = []
    irregular: list[VerbForm] = []
    for form in forms:
        verb = lookup.get(form.lemma)
        if verb is None:
            continue
        if is_irregular_in_tense(verb, form.tense):
            irregular.append(form)
        else:
            regular.append(form)

    regular_target = int(total * REGULAR_TARGET_RATIO)
    irregular_target = total - regular_target
    selected: list[VerbForm] = []
    if regular:
        selected.extend(rng.choices(regular, k=regular_target))
    if irregular:
        selected.extend(rng.choices(irregular, k=irregular_target))
    if len(selected) < total:
        selected.extend(rng.choices(list(forms), k=total - len(selected)))
    return selected


def _has_coverage(forms: Sequence[VerbForm], settings: Settings, constraints: SpecificConstraints) -> bool:
    return any(matches_specific(form, constraints) for form in filter_practice_forms(forms, settings))


def _avoid_repeat(
    pool: list[VerbForm],
    current_item: VerbForm | None,
    constraints: SpecificConstraints,
) -> list[VerbForm]:
    if current_item is None:
        return pool
    if constraints.is_specific:
        others = [form for form in pool if form.lemma != current_item.lemma]
    else:
        current_key = form_key(current_item)
        others = [form for form in pool if form_key(form) != current_key]
    return others or pool


def _select(
    eligible: list[VerbForm],
    history: History,
    settings: Settings,
    constraints: SpecificConstraints,
    current_item: VerbForm | None,
    lookup: VerbLookup,
    rng: random.Random,
    trace: SelectionTrace,
) -> VerbForm:
    pool = eligible
    if settings.verb_type == "all":
        pool = apply_weighted_selection(pool, lookup, rng)
        trace.weighted = True
    pool = _avoid_repeat(pool, current_item, constraints)

    scores = [accuracy(history.get(form_key(form))) for form in pool]
    lowest = min(scores)
    tied = [form for form, score in zip(pool, scores) if score == lowest]
    trace.tie_count = len(tied)

    by_person: dict[str, list[VerbForm]] = {}
    for form in tied:
        by_person.setdefault(form.person, []).append(form)
    person = rng.choice(list(by_person))
    trace.person_group = person
    return rng.choice(by_person[person])


def choose_next(
    forms: Sequence[VerbForm],
    history: History,
    settings: Settings,
    *,
    current_item: VerbForm | None = None,
    lookup: VerbLookup | None = None,
    rng: random.Random | None = None,
    trace: SelectionTrace | None = None,
) -> VerbForm | None:
    """Pick the next form to drill, or ``None`` when the corpus is empty.

    Raises ``DrillConfigurationError`` when specific practice targets a
    mood/tense with no forms in the corpus at all.
    """
    rng = rng or random.Random()
    lookup = lookup if lookup is not None else verb_lookup()
    trace = trace if trace is not None else SelectionTrace()
    constraints = specific_constraints(settings)

    eligible = apply_comprehensive_filtering(forms, settings, lookup, constraints)
    trace.eligible_count = len(eligible)
    if not eligible and constraints.is_specific and not _has_coverage(forms, settings, constraints):
        validate_eligible_forms(eligible, constraints)

    for _ in range(MAX_INTEGRITY_RETRIES):
        if not eligible:
            break
        selected = _select(eligible, history, settings, constraints, current_item, lookup, rng, trace)
        guard = perform_integrity_guard(selected, settings, constraints, method="standard")
        if guard.success:
            return selected
        trace.integrity_failures += 1
        trace.discarded.append(form_key(selected))
        eligible = [form for form in eligible if form_key(form) != form_key(selected)]

    if trace.eligible_count:
        logger.warning("Selection exhausted after %d integrity failures", trace.integrity_failures)
    else:
        logger.warning(
            "No eligible forms: level=%s region=%s mode=%s mood=%s tense=%s verb_type=%s",
            settings.level,
            settings.region,
            settings.practice_mode,
            settings.specific_mood,
            settings.specific_tense,
            settings.verb_type,
        )
    discarded = set(trace.discarded)
    remaining = [form for form in forms if form_key(form) not in discarded] or list(forms)
    result = run_fallback_chain(remaining, settings, lookup, rng)
    if result is None:
        return None
    trace.fallback_strategy = result.strategy
    return result.form


def build_drill_item(
    form: VerbForm,
    settings: Settings,
    lookup: VerbLookup | None = None,
    *,
    item_id: str | None = None,
) -> DrillItem:
    lookup = lookup if lookup is not None else verb_lookup()
    verb = lookup.get(form.lemma)
    snapshot = settings.to_dict()
    flag = DIALECT_FLAGS.get(form.person)
    if flag:
        snapshot[flag] = True
    return DrillItem(
        id=item_id or uuid.uuid4().hex,
        lemma=form.lemma,
        mood=form.mood,
        tense=form.tense,
        person=form.person,
        verb_type=verb.type if verb else "regular",
        irregular_tenses=verb.irregular_tenses if verb else (),
        form=form,
        settings=snapshot,
    )


def validate_item_structure(item: DrillItem | None) -> bool:
    result = validate_drill_item(item)
    if result.warnings:
        logger.warning("Drill item warnings: %s", ", ".join(result.warnings))
    if not result.valid:
        logger.error("Drill item rejected: %s", ", ".join(result.errors))
    return result.valid


def generate_next_item(
    forms: Sequence[VerbForm],
    history: History,
    settings: Settings,
    *,
    current_item: VerbForm | None = None,
    lookup: VerbLookup | None = None,
    rng: random.Random | None = None,
    max_attempts: int = MAX_GENERATION_ATTEMPTS,
) -> DrillItem | None:
    """Choose a form and wrap it in a drill item, retrying a bounded number of times."""
    rng = rng or random.Random()
    lookup = lookup if lookup is not None else verb_lookup()
    for attempt in range(1, max_attempts + 1):
        form = choose_next(forms, history, settings, current_item=current_item, lookup=lookup, rng=rng)
        if form is None:
            logger.error("No form available on attempt %d/%d", attempt, max_attempts)
            return None
        item = build_drill_item(form, settings, lookup)
        if validate_item_structure(item):
            return item
        logger.warning("Generated item failed validation, retrying (%d/%d)", attempt, max_attempts)
    logger.error("Giving up after %d generation attempts", max_attempts)
    return None


def generate_item_batch(
    forms: Sequence[VerbForm],
    history: History,
    settings: Settings,
    count: int,
    *,
    lookup: VerbLookup | None = None,
    rng: random.Random | None = None,
) -> list[DrillItem]:
    """Generate up to ``count`` items, never repeating the previous form back to back."""
    rng = rng or random.Random()
    lookup = lookup if lookup is not None else verb_lookup()
    items: list[DrillItem] = []
    previous: VerbForm | None = None
    for _ in range(count):
        item = generate_next_item(forms, history, settings, current_item=previous, lookup=lookup, rng=rng)
        if item is None:
            break
        items.append(item)
        previous = item.form
    return items


def fallback_drill_item(settings: Settings | None = None) -> DrillItem:
    """Static last-resort item used when generation fails entirely."""
    settings = settings or Settings()
    form = VerbForm(lemma="ser", mood="indicative", tense="pres", person="1s", value="soy")
    return DrillItem(
        id=f"fallback-{uuid.uuid4().hex}",
        lemma="ser",
        mood="indicative",
        tense="pres",
        person="1s",
        verb_type="irregular",
        irregular_tenses=("pres",),
        form=form,
        settings=settings.to_dict(),
    )


def update_history(history: History, form: VerbForm, correct: bool) -> HistoryEntry:
    entry = history.setdefault(form_key(form), HistoryEntry())
    entry.seen += 1
    if correct:
        entry.correct += 1
    return entry


__all__ = [
    "MAX_GENERATION_ATTEMPTS",
    "SelectionTrace",
    "accuracy",
    "apply_weighted_selection",
    "build_drill_item",
    "choose_next",
    "fallback_drill_item",
    "generate_item_batch",
    "generate_next_item",
    "is_irregular_in_tense",
    "update_history",
    "validate_item_structure",
]
