from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

Mood = Literal["indicative", "subjunctive", "imperative", "conditional", "nonfinite"]
Tense = Literal[
    "pres",
    "pretIndef",
    "impf",
    "fut",
    "pretPerf",
    "plusc",
    "futPerf",
    "subjPres",
    "subjImpf",
    "subjFut",
    "subjPerf",
    "subjPlusc",
    "subjFutPerf",
    "impAff",
    "impNeg",
    "impMixed",
    "cond",
    "condPerf",
    "inf",
    "infPerf",
    "ger",
    "part",
    "nonfiniteMixed",
]
Person = Literal["1s", "2s_tu", "2s_vos", "3s", "1p", "2p_vosotros", "3p", "inv"]
Region = Literal["rioplatense", "la_general", "peninsular", "both"]
Level = Literal["A1", "A2", "B1", "B2", "C1", "C2", "ALL"]
PracticeMode = Literal["mixed", "specific", "theme"]
VerbType = Literal["all", "regular", "irregular"]
PracticePronoun = Literal["all", "tu_only", "vos_only", "mixed"]

PERSONS: tuple[Person, ...] = ("1s", "2s_tu", "2s_vos", "3s", "1p", "2p_vosotros", "3p")
NONFINITE_PERSON: Person = "inv"
VERB_TYPES: tuple[VerbType, ...] = ("all", "regular", "irregular")
PRACTICE_MODES: tuple[PracticeMode, ...] = ("mixed", "specific", "theme")

# Mixed aliases resolve to a fixed union of concrete tenses.
TENSE_ALIASES: dict[str, tuple[Tense, ...]] = {
    "impMixed": ("impAff", "impNeg"),
    "nonfiniteMixed": ("ger", "part"),
}
INFINITIVE_TENSES: frozenset[str] = frozenset({"inf", "infPerf"})
FUTURE_SUBJUNCTIVE_TENSES: frozenset[str] = frozenset({"subjFut", "subjFutPerf"})


def expand_tense(tense: str | None) -> tuple[str, ...]:
    """Resolve a tense or mixed alias to the concrete tenses it covers."""
    if not tense:
        return ()
    return TENSE_ALIASES.get(tense, (tense,))


@dataclass(frozen=True, slots=True)
class VerbForm:
    lemma: str
    mood: str
    tense: str
    person: str
    value: str
    alt: tuple[str, ...] = ()
    accepts: Mapping[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "lemma": self.lemma,
            "mood": self.mood,
            "tense": self.tense,
            "person": self.person,
            "value": self.value,
            "alt": list(self.alt),
            "accepts": dict(self.accepts),
        }


@dataclass(slots=True)
class Paradigm:
    regions: tuple[str, ...]
    forms: list[VerbForm] = field(default_factory=list)


@dataclass(slots=True)
class Verb:
    lemma: str
    type: Literal["regular", "irregular"]
    irregular_families: frozenset[str] = frozenset()
    paradigms: list[Paradigm] = field(default_factory=list)
    irregular_tenses: tuple[str, ...] = ()
    frequency: str | None = None

    @property
    def forms(self) -> list[VerbForm]:
        seen: set[tuple[str, str, str]] = set()
        result: list[VerbForm] = []
        for paradigm in self.paradigms:
            for form in paradigm.forms:
                key = (form.mood, form.tense, form.person)
                if key in seen:
                    continue
                seen.add(key)
                result.append(form)
        return result


@dataclass(slots=True)
class Settings:
    region: str | None = "la_general"
    level: str | None = "A1"
    practice_mode: str = "mixed"
    specific_mood: str | None = None
    specific_tense: str | None = None
    verb_type: str = "all"
    selected_family: str | None = None
    practice_pronoun: str = "all"
    use_voseo: bool | None = None
    use_tuteo: bool | None = None
    use_vosotros: bool | None = None
    strict: bool = False
    enable_future_subjunctive: bool = False

    @property
    def is_specific(self) -> bool:
        return self.practice_mode in ("specific", "theme") and bool(self.specific_mood and self.specific_tense)

    def to_dict(self) -> dict[str, Any]:
        return {
            "region": self.region,
            "level": self.level,
            "practiceMode": self.practice_mode,
            "specificMood": self.specific_mood,
            "specificTense": self.specific_tense,
            "verbType": self.verb_type,
            "selectedFamily": self.selected_family,
            "practicePronoun": self.practice_pronoun,
            "useVoseo": self.use_voseo,
            "useTuteo": self.use_tuteo,
            "useVosotros": self.use_vosotros,
            "strict": self.strict,
            "enableFutureSubjunctive": self.enable_future_subjunctive,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Settings":
        return cls(
            region=data.get("region", "la_general"),
            level=data.get("level", "A1"),
            practice_mode=ensure_practice_mode(data.get("practiceMode", "mixed")),
            specific_mood=data.get("specificMood"),
            specific_tense=data.get("specificTense"),
            verb_type=ensure_verb_type(data.get("verbType", "all")),
            selected_family=data.get("selectedFamily"),
            practice_pronoun=data.get("practicePronoun", "all"),
            use_voseo=data.get("useVoseo"),
            use_tuteo=data.get("useTuteo"),
            use_vosotros=data.get("useVosotros"),
            strict=bool(data.get("strict", False)),
            enable_future_subjunctive=bool(data.get("enableFutureSubjunctive", False)),
        )


@dataclass(slots=True)
class HistoryEntry:
    seen: int = 0
    correct: int = 0


History = dict[str, HistoryEntry]


@dataclass(slots=True)
class DrillItem:
    id: str
    lemma: str
    mood: str
    tense: str
    person: str
    verb_type: str
    irregular_tenses: tuple[str, ...]
    form: VerbForm
    settings: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "lemma": self.lemma,
            "mood": self.mood,
            "tense": self.tense,
            "person": self.person,
            "type": self.verb_type,
            "irregularTenses": list(self.irregular_tenses),
            "form": self.form.to_dict(),
            "settings": dict(self.settings),
        }


@dataclass(slots=True)
class Attempt:
    user_id: str
    item_id: str
    lemma: str
    mood: str
    tense: str
    person: str
    correct: bool
    latency_ms: int = 0
    hints_used: int = 0
    error_tags: list[str] = field(default_factory=list)
    created_at: str = ""
    id: str | None = None


@dataclass(slots=True)
class MasteryRecord:
    user_id: str
    mood: str
    tense: str
    score: float
    n: int
    weighted_n: float
    updated_at: str


def form_key(form: VerbForm) -> str:
    """History key for a form: ``mood:tense:person:value``."""
    return f"{form.mood}:{form.tense}:{form.person}:{form.value}"


def combo_key(mood: str, tense: str) -> str:
    return f"{mood}|{tense}"


def ensure_practice_mode(value: Any) -> str:
    if value in PRACTICE_MODES:
        return value
    raise ValueError(f"Unsupported practice mode: {value}")


def ensure_verb_type(value: Any) -> str:
    if value in VERB_TYPES:
        return value
    raise ValueError(f"Unsupported verb type: {value}")


__all__ = [
    "Attempt",
    "DrillItem",
    "FUTURE_SUBJUNCTIVE_TENSES",
    "History",
    "HistoryEntry",
    "INFINITIVE_TENSES",
    "Level",
    "MasteryRecord",
    "Mood",
    "NONFINITE_PERSON",
    "PERSONS",
    "Paradigm",
    "Person",
    "Region",
    "Settings",
    "TENSE_ALIASES",
    "Tense",
    "Verb",
    "VerbForm",
    "combo_key",
    "ensure_practice_mode",
    "ensure_verb_type",
    "expand_tense",
    "form_key",
]
