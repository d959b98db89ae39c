"""CEFR curriculum gate: level inventory of mood/tense combinations and level policy."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .config import DATA_DIR
from .errors import CorpusError
from .models import combo_key

CURRICULUM_FILE = DATA_DIR / "curriculum.yaml"
DEFAULT_LEVEL = "A1"
ALL_LEVEL = "ALL"
UNIPERSONAL_PERSONS = frozenset({"3s", "3p"})
UNIPERSONAL_FROM_LEVEL = "B2"


@dataclass(slots=True, frozen=True)
class LevelPolicy:
    level: str
    per_item_ms: int | None
    accent_tolerance: str
    clitics_percent: int
    min_accuracy: int
    defectives: str
    require_dieresis: bool = False
    block_non_normative_spelling: bool = False


@dataclass(slots=True)
class Curriculum:
    levels: tuple[str, ...]
    combos: dict[str, frozenset[str]]
    policies: dict[str, LevelPolicy]
    unipersonal_verbs: frozenset[str]


_curriculum_cache: Curriculum | None = None


def load_curriculum(path: Path | None = None) -> Curriculum:
    """Parse the curriculum YAML, accumulating each level over the previous one."""
    global _curriculum_cache
    if _curriculum_cache is not None and path is None:
        return _curriculum_cache

    file_path = path or CURRICULUM_FILE
    with open(file_path, encoding="utf-8") as f:
        raw: dict[str, Any] = yaml.safe_load(f) or {}

    levels: list[str] = []
    combos: dict[str, frozenset[str]] = {}
    policies: dict[str, LevelPolicy] = {}
    running: set[str] = set()
    for entry in raw.get("levels", []):
        level_id = entry.get("id")
        if not level_id:
            raise CorpusError(f"Curriculum level without id: {entry!r}")
        for mood, tenses in (entry.get("adds") or {}).items():
            running.update(combo_key(mood, tense) for tense in tenses)
        levels.append(level_id)
        combos[level_id] = frozenset(running)
        policy = entry.get("policy") or {}
        policies[level_id] = LevelPolicy(
            level=level_id,
            per_item_ms=policy.get("per_item_ms"),
            accent_tolerance=policy.get("accent_tolerance", "warn"),
            clitics_percent=int(policy.get("clitics_percent", 0)),
            min_accuracy=int(policy.get("min_accuracy", 90)),
            defectives=policy.get("defectives", "ignore"),
            require_dieresis=bool(policy.get("require_dieresis", False)),
            block_non_normative_spelling=bool(policy.get("block_non_normative_spelling", False)),
        )

    curriculum = Curriculum(
        levels=tuple(levels),
        combos=combos,
        policies=policies,
        unipersonal_verbs=frozenset(raw.get("unipersonal_verbs") or ()),
    )
    if path is None:
        _curriculum_cache = curriculum
    return curriculum


def clear_cache() -> None:
    global _curriculum_cache
    _curriculum_cache = None


def allowed_combos(level: str | None) -> frozenset[str]:
    """Return the ``mood|tense`` set a level unlocks; unknown levels unlock nothing."""
    curriculum = load_curriculum()
    if level == ALL_LEVEL:
        union: set[str] = set()
        for combos in curriculum.combos.values():
            union.update(combos)
        return frozenset(union)
    return curriculum.combos.get(level or "", frozenset())


def is_combo_allowed(mood: str, tense: str, level: str | None) -> bool:
    return combo_key(mood, tense) in allowed_combos(level or DEFAULT_LEVEL)


def level_index(level: str | None) -> int:
    """Position of a level in the CEFR order; ``ALL`` ranks above every level, unknown is -1."""
    levels = load_curriculum().levels
    if level == ALL_LEVEL:
        return len(levels)
    try:
        return levels.index(level or "")
    except ValueError:
        return -1


def level_policy(level: str | None) -> LevelPolicy:
    curriculum = load_curriculum()
    resolved = level or DEFAULT_LEVEL
    if resolved == ALL_LEVEL:
        resolved = curriculum.levels[-1]
    policy = curriculum.policies.get(resolved)
    if policy is None:
        return curriculum.policies[DEFAULT_LEVEL]
    return policy


def is_unipersonal_allowed(lemma: str, person: str, level: str | None) -> bool:
    """Weather verbs only conjugate in third person once the level blocks invalid persons."""
    curriculum = load_curriculum()
    if lemma not in curriculum.unipersonal_verbs:
        return True
    if level_index(level) < level_index(UNIPERSONAL_FROM_LEVEL):
        return True
    return person in UNIPERSONAL_PERSONS


__all__ = [
    "ALL_LEVEL",
    "CURRICULUM_FILE",
    "DEFAULT_LEVEL",
    "LevelPolicy",
    "allowed_combos",
    "clear_cache",
    "is_combo_allowed",
    "is_unipersonal_allowed",
    "level_index",
    "level_policy",
    "load_curriculum",
]
