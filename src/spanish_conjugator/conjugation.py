"""Rule-based Spanish conjugation used to expand the YAML corpus into full paradigms.

Each verb entry may declare irregular stems (``yo_stem``, ``pret_stem``,
``fut_stem``), a stem vowel change (``e>ie``, ``o>ue``, ``u>ue``, ``e>i``),
imperative, participle and gerund overrides, and explicit tense rows under
``forms`` (a full list of seven values or a partial person mapping).
Derived tenses are computed after overrides, so a corrected present or
preterite row flows into the subjunctive and imperative.
"""

from __future__ import annotations

import unicodedata
from typing import Any, Mapping

from .models import NONFINITE_PERSON, PERSONS, VerbForm

VOWELS = "aeiouáéíóú"

PRESENT_ENDINGS: dict[str, tuple[str, ...]] = {
    "ar": ("o", "as", "ás", "a", "amos", "áis", "an"),
    "er": ("o", "es", "és", "e", "emos", "éis", "en"),
    "ir": ("o", "es", "ís", "e", "imos", "ís", "en"),
}
PRETERITE_ENDINGS: dict[str, tuple[str, ...]] = {
    "ar": ("é", "aste", "aste", "ó", "amos", "asteis", "aron"),
    "er": ("í", "iste", "iste", "ió", "imos", "isteis", "ieron"),
    "ir": ("í", "iste", "iste", "ió", "imos", "isteis", "ieron"),
}
STRONG_PRETERITE_ENDINGS = ("e", "iste", "iste", "o", "imos", "isteis", "ieron")
IMPERFECT_ENDINGS: dict[str, tuple[str, ...]] = {
    "ar": ("aba", "abas", "abas", "aba", "ábamos", "abais", "aban"),
    "er": ("ía", "ías", "ías", "ía", "íamos", "íais", "ían"),
    "ir": ("ía", "ías", "ías", "ía", "íamos", "íais", "ían"),
}
FUTURE_ENDINGS = ("é", "ás", "ás", "á", "emos", "éis", "án")
CONDITIONAL_ENDINGS = ("ía", "ías", "ías", "ía", "íamos", "íais", "ían")
SUBJUNCTIVE_PRESENT_ENDINGS: dict[str, tuple[str, ...]] = {
    "ar": ("e", "es", "es", "e", "emos", "éis", "en"),
    "er": ("a", "as", "as", "a", "amos", "áis", "an"),
    "ir": ("a", "as", "as", "a", "amos", "áis", "an"),
}
SUBJUNCTIVE_IMPERFECT_ENDINGS = ("ra", "ras", "ras", "ra", "ramos", "rais", "ran")
SUBJUNCTIVE_FUTURE_ENDINGS = ("re", "res", "res", "re", "remos", "reis", "ren")

HABER: dict[str, tuple[str, ...]] = {
    "pres": ("he", "has", "has", "ha", "hemos", "habéis", "han"),
    "impf": ("había", "habías", "habías", "había", "habíamos", "habíais", "habían"),
    "fut": ("habré", "habrás", "habrás", "habrá", "habremos", "habréis", "habrán"),
    "cond": ("habría", "habrías", "habrías", "habría", "habríamos", "habríais", "habrían"),
    "subjPres": ("haya", "hayas", "hayas", "haya", "hayamos", "hayáis", "hayan"),
    "subjImpf": ("hubiera", "hubieras", "hubieras", "hubiera", "hubiéramos", "hubierais", "hubieran"),
    "subjFut": ("hubiere", "hubieres", "hubieres", "hubiere", "hubiéremos", "hubiereis", "hubieren"),
}

# compound tense -> (mood, auxiliary tense)
COMPOUND_TENSES: dict[str, tuple[str, str]] = {
    "pretPerf": ("indicative", "pres"),
    "plusc": ("indicative", "impf"),
    "futPerf": ("indicative", "fut"),
    "condPerf": ("conditional", "cond"),
    "subjPerf": ("subjunctive", "subjPres"),
    "subjPlusc": ("subjunctive", "subjImpf"),
    "subjFutPerf": ("subjunctive", "subjFut"),
}

TENSE_MOODS: dict[str, str] = {
    "pres": "indicative",
    "pretIndef": "indicative",
    "impf": "indicative",
    "fut": "indicative",
    "cond": "conditional",
    "subjPres": "subjunctive",
    "subjImpf": "subjunctive",
    "subjFut": "subjunctive",
    "impAff": "imperative",
    "impNeg": "imperative",
    **{tense: mood for tense, (mood, _) in COMPOUND_TENSES.items()},
}

STRONG_PERSONS = frozenset({"1s", "2s_tu", "3s", "3p"})
IMPERATIVE_PERSONS = ("2s_tu", "2s_vos", "3s", "1p", "2p_vosotros", "3p")
PLURAL_PERSONS = frozenset({"1p", "2p_vosotros"})
WEAK_CHANGES = {"e>ie": "e>i", "o>ue": "o>u", "e>i": "e>i", "u>ue": "u>u"}

Row = dict[str, str]


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def split_infinitive(lemma: str) -> tuple[str, str]:
    """Return ``(stem, conjugation)`` for an infinitive such as ``comer``."""
    plain = strip_accents(lemma.strip().lower())
    if len(plain) < 2 or plain[-2:] not in ("ar", "er", "ir"):
        raise ValueError(f"Not an infinitive: {lemma}")
    return plain[:-2], plain[-2:]


def change_stem(stem: str, change: str | None) -> str:
    """Apply a vowel change such as ``e>ie`` to the last matching vowel."""
    if not change:
        return stem
    old, new = change.split(">")
    index = stem.rfind(old)
    if index < 0:
        return stem
    return stem[:index] + new + stem[index + len(old):]


def _join(stem: str, ending: str, conj: str, *, orthographic: bool = True) -> str:
    if not ending or not orthographic or not stem:
        return stem + ending
    first = ending[0]
    if conj == "ar" and first in "eé":
        if stem.endswith("gu"):
            stem = stem[:-2] + "gü"
        elif stem.endswith("c"):
            stem = stem[:-1] + "qu"
        elif stem.endswith("g"):
            stem = stem[:-1] + "gu"
        elif stem.endswith("z"):
            stem = stem[:-1] + "c"
    elif conj in ("er", "ir") and first in "aoáó":
        if stem.endswith("gu") and len(stem) > 2:
            stem = stem[:-2] + "g"
        elif stem.endswith("g"):
            stem = stem[:-1] + "j"
        elif stem.endswith("c") and len(stem) > 1 and stem[-2] not in VOWELS:
            stem = stem[:-1] + "z"
    return stem + ending


def _accent_last_vowel(text: str) -> str:
    table = {"a": "á", "e": "é", "i": "í", "o": "ó", "u": "ú"}
    for index in range(len(text) - 1, -1, -1):
        if text[index] in table:
            return text[:index] + table[text[index]] + text[index + 1:]
    return text


def _row(values: tuple[str, ...] | list[str]) -> Row:
    return dict(zip(PERSONS, values))


def _apply_override(row: Row, override: Any) -> Row:
    if override is None:
        return row
    if isinstance(override, (list, tuple)):
        if len(override) != len(PERSONS):
            raise ValueError(f"Tense rows need {len(PERSONS)} values, got {len(override)}")
        return _row([str(value) for value in override])
    if isinstance(override, Mapping):
        merged = dict(row)
        merged.update({str(person): str(value) for person, value in override.items()})
        return merged
    raise ValueError(f"Unsupported override: {override!r}")


def _ends_in_hiatus(stem: str) -> bool:
    return bool(stem) and stem[-1] in VOWELS and not stem.endswith(("gu", "qu"))


def conjugate_rows(lemma: str, entry: Mapping[str, Any] | None = None) -> dict[str, Row]:
    """Build every tense row for ``lemma`` as ``{tense: {person: value}}``."""
    entry = entry or {}
    stem, conj = split_infinitive(lemma)
    plain_lemma = strip_accents(lemma.strip().lower())
    change: str | None = entry.get("stem_change")
    changed = change_stem(stem, change)
    weak = change_stem(stem, WEAK_CHANGES.get(change or "", "")) if conj == "ir" and change else stem
    overrides: Mapping[str, Any] = entry.get("forms") or {}
    rows: dict[str, Row] = {}

    present: Row = {}
    for index, person in enumerate(PERSONS):
        base = changed if person in STRONG_PERSONS else stem
        if person == "1s" and entry.get("yo_stem"):
            present[person] = str(entry["yo_stem"]) + PRESENT_ENDINGS[conj][index]
        else:
            present[person] = _join(base, PRESENT_ENDINGS[conj][index], conj)
    rows["pres"] = _apply_override(present, overrides.get("pres"))

    pret_stem = entry.get("pret_stem")
    preterite: Row = {}
    if pret_stem:
        for index, person in enumerate(PERSONS):
            preterite[person] = str(pret_stem) + STRONG_PRETERITE_ENDINGS[index]
        if str(pret_stem).endswith("j"):
            preterite["3p"] = f"{pret_stem}eron"
    else:
        for index, person in enumerate(PERSONS):
            base = weak if person in ("3s", "3p") else stem
            preterite[person] = _join(base, PRETERITE_ENDINGS[conj][index], conj)
        if conj != "ar" and _ends_in_hiatus(stem):
            preterite["3s"] = f"{stem}yó"
            preterite["3p"] = f"{stem}yeron"
            if stem[-1] in "aeo":
                preterite["2s_tu"] = preterite["2s_vos"] = f"{stem}íste"
                preterite["1p"] = f"{stem}ímos"
                preterite["2p_vosotros"] = f"{stem}ísteis"
    rows["pretIndef"] = _apply_override(preterite, overrides.get("pretIndef"))

    rows["impf"] = _apply_override(
        _row([stem + ending for ending in IMPERFECT_ENDINGS[conj]]), overrides.get("impf")
    )

    future_stem = str(entry.get("fut_stem") or plain_lemma)
    rows["fut"] = _apply_override(_row([future_stem + e for e in FUTURE_ENDINGS]), overrides.get("fut"))
    rows["cond"] = _apply_override(_row([future_stem + e for e in CONDITIONAL_ENDINGS]), overrides.get("cond"))

    first_singular = rows["pres"]["1s"]
    yo_stem = first_singular[:-1] if first_singular.endswith("o") else stem
    plural_stem = yo_stem
    if change and yo_stem == changed:
        plural_stem = weak
    subjunctive: Row = {}
    for index, person in enumerate(PERSONS):
        base = plural_stem if person in PLURAL_PERSONS else yo_stem
        regular_base = base in (stem, weak)
        subjunctive[person] = _join(
            base,
            SUBJUNCTIVE_PRESENT_ENDINGS[conj][index],
            conj,
            orthographic=conj == "ar" or regular_base,
        )
    subj_override = overrides.get("subjPres")
    rows["subjPres"] = _apply_override(subjunctive, subj_override)
    voseo_subjunctive: str | None = None
    if not isinstance(subj_override, (list, tuple)):
        ending = "és" if conj == "ar" else "ás"
        candidate = _join(plural_stem, ending, conj, orthographic=conj == "ar" or plural_stem in (stem, weak))
        if candidate != rows["subjPres"]["2s_vos"]:
            voseo_subjunctive = candidate

    third_plural = rows["pretIndef"]["3p"]
    root = third_plural[:-3] if third_plural.endswith("ron") else third_plural
    accented_root = _accent_last_vowel(root)
    rows["subjImpf"] = _apply_override(
        {
            person: (accented_root if person == "1p" else root) + ending
            for person, ending in zip(PERSONS, SUBJUNCTIVE_IMPERFECT_ENDINGS)
        },
        overrides.get("subjImpf"),
    )
    rows["subjFut"] = _apply_override(
        {
            person: (accented_root if person == "1p" else root) + ending
            for person, ending in zip(PERSONS, SUBJUNCTIVE_FUTURE_ENDINGS)
        },
        overrides.get("subjFut"),
    )

    imperative_overrides: Mapping[str, str] = entry.get("imperative") or {}
    affirmative: Row = {
        "2s_tu": rows["pres"]["3s"],
        "2s_vos": _accent_last_vowel(plain_lemma[:-1]) if len(plain_lemma) > 2 else plain_lemma[:-1],
        "3s": rows["subjPres"]["3s"],
        "1p": rows["subjPres"]["1p"],
        "2p_vosotros": plain_lemma[:-1] + "d",
        "3p": rows["subjPres"]["3p"],
    }
    affirmative.update({str(p): str(v) for p, v in imperative_overrides.items()})
    rows["impAff"] = affirmative
    negative: Row = {person: f"no {rows['subjPres'][person]}" for person in IMPERATIVE_PERSONS}
    negative["2s_vos"] = f"no {rows['subjPres']['2s_tu']}"
    rows["impNeg"] = _apply_override(negative, overrides.get("impNeg"))

    if entry.get("participle"):
        participle = str(entry["participle"])
    elif conj == "ar":
        participle = stem + "ado"
    else:
        participle = stem + ("ído" if stem[-1:] in ("a", "e", "o") else "ido")
    if entry.get("gerund"):
        gerund = str(entry["gerund"])
    elif conj == "ar":
        gerund = stem + "ando"
    else:
        gerund = weak + ("yendo" if _ends_in_hiatus(weak) else "iendo")

    for tense, (_, auxiliary) in COMPOUND_TENSES.items():
        rows[tense] = {
            person: f"{aux} {participle}" for person, aux in zip(PERSONS, HABER[auxiliary])
        }

    rows["inf"] = {NONFINITE_PERSON: lemma}
    rows["infPerf"] = {NONFINITE_PERSON: f"haber {participle}"}
    rows["ger"] = {NONFINITE_PERSON: gerund}
    rows["part"] = {NONFINITE_PERSON: participle}
    if voseo_subjunctive:
        rows["_voseo_subjunctive"] = {"2s_vos": voseo_subjunctive}
    return rows


def _accepts_for(person: str, row: Row) -> dict[str, str]:
    accepts: dict[str, str] = {}
    if person == "2s_vos" and "2s_tu" in row:
        accepts["tu"] = row["2s_tu"]
    elif person == "2s_tu" and "2s_vos" in row:
        accepts["vos"] = row["2s_vos"]
    elif person == "3p" and "2p_vosotros" in row:
        accepts["vosotros"] = row["2p_vosotros"]
    return accepts


def conjugate(lemma: str, entry: Mapping[str, Any] | None = None) -> list[VerbForm]:
    """Expand a verb entry into immutable ``VerbForm`` records."""
    rows = conjugate_rows(lemma, entry)
    voseo = rows.pop("_voseo_subjunctive", {})
    forms: list[VerbForm] = []
    for tense, row in rows.items():
        mood = TENSE_MOODS.get(tense, "nonfinite")
        for person, value in row.items():
            alt: tuple[str, ...] = ()
            if tense == "subjPres" and person == "2s_vos" and voseo:
                alt = (voseo["2s_vos"],)
            elif tense == "impNeg" and person == "2s_vos" and voseo:
                alt = (f"no {voseo['2s_vos']}",)
            forms.append(
                VerbForm(
                    lemma=lemma,
                    mood=mood,
                    tense=tense,
                    person=person,
                    value=value,
                    alt=alt,
                    accepts=_accepts_for(person, row),
                )
            )
    return forms


def irregular_tenses(lemma: str, entry: Mapping[str, Any] | None) -> tuple[str, ...]:
    """Tenses where the declared verb deviates from the purely regular paradigm."""
    if not entry:
        return ()
    actual = conjugate_rows(lemma, entry)
    regular = conjugate_rows(lemma, {})
    result: list[str] = []
    for tense, row in actual.items():
        if tense.startswith("_"):
            continue
        if regular.get(tense) != row:
            result.append(tense)
    return tuple(result)


__all__ = [
    "COMPOUND_TENSES",
    "TENSE_MOODS",
    "change_stem",
    "conjugate",
    "conjugate_rows",
    "irregular_tenses",
    "split_infinitive",
    "strip_accents",
]
