"""Answer grading with level-dependent accent tolerance and orthography rules."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from .conjugation import strip_accents
from .curriculum import LevelPolicy, level_policy
from .models import Settings, VerbForm

DEFECTIVE_IMPERATIVE = frozenset({"soler"})

_GUE_GUI = re.compile(r"g[uü][eéií]", re.IGNORECASE)
_PLAIN_GUE_GUI = re.compile(r"gu[eéií]", re.IGNORECASE)


@dataclass(slots=True)
class GradeResult:
    correct: bool
    accepted: str | None
    targets: list[str]
    note: str | None = None
    error_tags: list[str] = field(default_factory=list)

    @property
    def is_accent_error(self) -> bool:
        return "accent" in self.error_tags

    def to_dict(self) -> dict[str, Any]:
        return {
            "correct": self.correct,
            "accepted": self.accepted,
            "targets": list(self.targets),
            "note": self.note,
            "errorTags": list(self.error_tags),
            "isAccentError": self.is_accent_error,
        }


def normalize_answer(text: str) -> str:
    return " ".join((text or "").split()).lower()


def candidate_answers(form: VerbForm, settings: Settings) -> list[str]:
    """The canonical value, its alternates and, unless strict, opted-in dialect variants."""
    candidates = [form.value, *form.alt]
    if not settings.strict:
        for flag, key in ((settings.use_tuteo, "tu"), (settings.use_voseo, "vos"), (settings.use_vosotros, "vosotros")):
            variant = form.accepts.get(key)
            if flag and variant:
                candidates.append(variant)
    return list(dict.fromkeys(candidates))


def _missing_dieresis(expected: str, answer: str) -> bool:
    return "ü" in expected.lower() and bool(_GUE_GUI.search(expected)) and bool(_PLAIN_GUE_GUI.search(answer))


def grade(answer: str, form: VerbForm, settings: Settings, policy: LevelPolicy | None = None) -> GradeResult:
    policy = policy or level_policy(settings.level)
    targets = candidate_answers(form, settings)
    given = normalize_answer(answer)
    normalized_targets = [normalize_answer(target) for target in targets]

    if form.lemma in DEFECTIVE_IMPERATIVE and form.mood == "imperative":
        return GradeResult(False, None, targets, f"'{form.lemma}' has no imperative in standard Spanish", ["defective"])

    if policy.accent_tolerance == "accept":
        if strip_accents(given) in {strip_accents(target) for target in normalized_targets}:
            note = None if given in normalized_targets else "Accent not enforced at this level; check the written accent"
            return GradeResult(True, answer, targets, note)
    elif given in normalized_targets:
        return GradeResult(True, answer, targets)

    if policy.require_dieresis and any(_missing_dieresis(target, given) for target in normalized_targets):
        return GradeResult(False, None, targets, "Missing dieresis (ü) in güe/güi", ["dieresis"])

    if policy.block_non_normative_spelling and "fué" in given:
        return GradeResult(False, None, targets, 'Non-normative spelling "fué"; write "fue"', ["non_normative"])

    for target in normalized_targets:
        if strip_accents(target) == strip_accents(given):
            return GradeResult(False, None, targets, f'Accent error: the correct form is "{target}"', ["accent"])

    return GradeResult(False, None, targets, None, ["incorrect"])


__all__ = [
    "GradeResult",
    "candidate_answers",
    "grade",
    "normalize_answer",
]
