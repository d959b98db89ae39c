"""Time-decayed mastery scores per item, per (mood, tense) cell and per group.

Scores are recomputed from the full attempt history on demand. Nothing is
maintained incrementally.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from . import db
from .config import (
    CONFIDENCE_HIGH,
    CONFIDENCE_MEDIUM,
    DECAY_TAU,
    FREQUENCY_DIFFICULTY_BONUS,
    HINT_PENALTY,
    MASTERY_ACHIEVED,
    MASTERY_ATTENTION,
    MAX_HINT_PENALTY,
    MAX_VERB_DIFFICULTY,
    MIN_CONFIDENCE_N,
    MIN_VERB_DIFFICULTY,
    NEUTRAL_MASTERY,
    SLOW_LATENCY_MS,
    VERB_DIFFICULTY,
)
from .corpus import verb_lookup
from .models import Attempt, MasteryRecord, Verb

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ItemMastery:
    score: float
    n: int
    weighted_attempts: float


@dataclass(slots=True)
class CellMastery:
    score: float
    n: int
    weighted_n: float


@dataclass(slots=True)
class Confidence:
    level: str
    sufficient: bool
    message: str


@dataclass(slots=True)
class MasteryClassification:
    level: str
    confidence: Confidence
    recommendation: str


def _utc(value: datetime | None) -> datetime:
    moment = value or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def recency_weight(created_at: str | datetime | None, now: datetime | None = None) -> float:
    """``exp(-days / tau)``; unparseable timestamps count as fresh."""
    moment = db.parse_timestamp(created_at)
    if moment is None:
        return 1.0
    days = max(0.0, (_utc(now) - moment).total_seconds() / 86400)
    return math.exp(-days / DECAY_TAU)


def verb_difficulty(verb: Verb | None) -> float:
    """Base difficulty from how many tenses the verb is irregular in, adjusted by frequency."""
    difficulty = VERB_DIFFICULTY["REGULAR"]
    if verb is not None and verb.type == "irregular":
        tenses = {form.tense for form in verb.forms}
        if verb.irregular_tenses and tenses:
            share = 100 * len(verb.irregular_tenses) / len(tenses)
            if share > 50:
                difficulty = VERB_DIFFICULTY["HIGHLY_IRREGULAR"]
            elif share > 25:
                difficulty = VERB_DIFFICULTY["HIGHLY_IRREGULAR"] * 0.8
            else:
                difficulty = VERB_DIFFICULTY["DIPHTHONG"]
        else:
            difficulty = VERB_DIFFICULTY["HIGHLY_IRREGULAR"]
    if verb is not None and verb.frequency:
        difficulty += FREQUENCY_DIFFICULTY_BONUS.get(verb.frequency, 0.0)
    return max(MIN_VERB_DIFFICULTY, min(MAX_VERB_DIFFICULTY, difficulty))


def mastery_for_item(attempts: Sequence[Attempt], verb: Verb | None = None, now: datetime | None = None) -> ItemMastery:
    if not attempts:
        return ItemMastery(NEUTRAL_MASTERY, 0, 0.0)

    difficulty = verb_difficulty(verb)
    weighted_correct = 0.0
    weighted_total = 0.0
    weighted_attempts = 0.0
    hint_penalty = 0.0
    for attempt in attempts:
        weight = recency_weight(attempt.created_at, now)
        value = weight * difficulty
        weighted_total += value
        weighted_attempts += weight
        if attempt.correct:
            weighted_correct += value
            hint_penalty += min(MAX_HINT_PENALTY, attempt.hints_used * HINT_PENALTY)

    base = 100 * weighted_correct / weighted_total if weighted_total > 0 else 100.0
    return ItemMastery(
        score=round(max(0.0, base - hint_penalty), 2),
        n=len(attempts),
        weighted_attempts=round(weighted_attempts, 2),
    )


def mastery_for_cell(items: Iterable[ItemMastery]) -> CellMastery:
    total_score = 0.0
    total_n = 0
    total_weighted = 0.0
    for item in items:
        total_score += item.score * item.weighted_attempts
        total_n += item.n
        total_weighted += item.weighted_attempts
    score = total_score / total_weighted if total_weighted > 0 else NEUTRAL_MASTERY
    return CellMastery(round(score, 2), total_n, round(total_weighted, 2))


def mastery_for_group(scores: Sequence[float], weights: Sequence[float] | None = None) -> float:
    """Weighted mean of cell scores for a tense or mood; missing weights count as 1."""
    if not scores:
        return NEUTRAL_MASTERY
    weights = weights or ()
    weighted_sum = 0.0
    total_weight = 0.0
    for index, score in enumerate(scores):
        weight = weights[index] if index < len(weights) and weights[index] else 1.0
        weighted_sum += score * weight
        total_weight += weight
    return round(weighted_sum / total_weight, 2) if total_weight > 0 else NEUTRAL_MASTERY


def confidence_level(weighted_n: float) -> Confidence:
    sufficient = weighted_n >= MIN_CONFIDENCE_N
    if weighted_n >= CONFIDENCE_HIGH:
        level = "alto"
    elif weighted_n >= CONFIDENCE_MEDIUM:
        level = "medio"
    else:
        level = "bajo"
    message = (
        "Enough data for a reliable assessment"
        if sufficient
        else "Not enough data yet; more attempts are needed for a reliable assessment"
    )
    return Confidence(level, sufficient, message)


def classify_mastery(score: float, weighted_n: float, avg_latency_ms: float | None = None) -> MasteryClassification:
    confidence = confidence_level(weighted_n)
    if not confidence.sufficient:
        return MasteryClassification("insuficiente", confidence, "Keep practicing to get an accurate assessment.")

    if score >= MASTERY_ACHIEVED:
        level = "logrado"
        recommendation = "Mastered. Review occasionally to keep it."
    elif score >= MASTERY_ATTENTION:
        level = "atención"
        recommendation = "Practice regularly to consolidate."
    else:
        level = "crítico"
        recommendation = "Needs focused practice."
    if avg_latency_ms and avg_latency_ms > SLOW_LATENCY_MS:
        recommendation += " Work on response speed."
    return MasteryClassification(level, confidence, recommendation)


def compute_cell_mastery(
    attempts: Sequence[Attempt],
    lookup: Mapping[str, Verb],
    now: datetime | None = None,
) -> dict[tuple[str, str], CellMastery]:
    """Group attempts into items (lemma, mood, tense, person) and aggregate per cell."""
    items: dict[tuple[str, str], dict[tuple[str, str], list[Attempt]]] = defaultdict(lambda: defaultdict(list))
    for attempt in attempts:
        items[(attempt.mood, attempt.tense)][(attempt.lemma, attempt.person)].append(attempt)

    cells: dict[tuple[str, str], CellMastery] = {}
    for cell, grouped in items.items():
        scored = [mastery_for_item(group, lookup.get(lemma), now) for (lemma, _person), group in grouped.items()]
        cells[cell] = mastery_for_cell(scored)
    return cells


def recompute_mastery(
    user_id: str,
    now: datetime | None = None,
    lookup: Mapping[str, Verb] | None = None,
) -> list[MasteryRecord]:
    """Rebuild every mastery record for ``user_id`` from its attempts and store them."""
    moment = _utc(now)
    lookup = lookup if lookup is not None else verb_lookup()
    attempts = db.fetch_attempts(user_id)
    updated_at = db.now_iso(moment)
    records = [
        MasteryRecord(
            user_id=user_id,
            mood=mood,
            tense=tense,
            score=cell.score,
            n=cell.n,
            weighted_n=cell.weighted_n,
            updated_at=updated_at,
        )
        for (mood, tense), cell in sorted(compute_cell_mastery(attempts, lookup, moment).items())
    ]
    db.upsert_mastery(records)
    logger.debug("Recomputed %d mastery cells for %s", len(records), user_id)
    return records


__all__ = [
    "CellMastery",
    "Confidence",
    "ItemMastery",
    "MasteryClassification",
    "classify_mastery",
    "compute_cell_mastery",
    "confidence_level",
    "mastery_for_cell",
    "mastery_for_group",
    "mastery_for_item",
    "recency_weight",
    "recompute_mastery",
    "verb_difficulty",
]
