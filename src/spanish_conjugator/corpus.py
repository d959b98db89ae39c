"""Verb corpus: YAML loader, paradigm expansion, lookup helpers."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .config import DATA_DIR
from .conjugation import conjugate, irregular_tenses
from .errors import CorpusError
from .models import Paradigm, Verb, VerbForm

logger = logging.getLogger(__name__)

VERBS_FILE = DATA_DIR / "verbs.yaml"
ALL_REGIONS: tuple[str, ...] = ("rioplatense", "la_general", "peninsular")

_verb_cache: list[Verb] | None = None


def _parse_entry(entry: dict[str, Any]) -> Verb:
    lemma = entry.get("lemma")
    if not lemma or not isinstance(lemma, str):
        raise CorpusError(f"Verb entry without lemma: {entry!r}")
    verb_type = entry.get("type", "regular")
    if verb_type not in ("regular", "irregular"):
        raise CorpusError(f"Verb '{lemma}' has unsupported type '{verb_type}'")
    try:
        forms = conjugate(lemma, entry)
        tenses = irregular_tenses(lemma, entry) if verb_type == "irregular" else ()
    except ValueError as exc:
        raise CorpusError(f"Verb '{lemma}': {exc}") from exc
    regions = tuple(entry.get("regions") or ALL_REGIONS)
    return Verb(
        lemma=lemma,
        type=verb_type,
        irregular_families=frozenset(entry.get("families") or ()),
        paradigms=[Paradigm(regions=regions, forms=forms)],
        irregular_tenses=tenses,
        frequency=entry.get("frequency"),
    )


def load_verbs(path: Path | None = None) -> list[Verb]:
    """Parse the verb YAML file into ``Verb`` records. Cached in memory."""
    global _verb_cache
    if _verb_cache is not None and path is None:
        return _verb_cache

    file_path = path or VERBS_FILE
    with open(file_path, encoding="utf-8") as f:
        raw: list[dict[str, Any]] = yaml.safe_load(f) or []

    verbs: list[Verb] = []
    seen: set[str] = set()
    for entry in raw:
        verb = _parse_entry(entry)
        if verb.lemma in seen:
            raise CorpusError(f"Duplicate verb entry: {verb.lemma}")
        seen.add(verb.lemma)
        verbs.append(verb)
    logger.debug("Loaded %d verbs from %s", len(verbs), file_path)

    if path is None:
        _verb_cache = verbs
    return verbs


def clear_cache() -> None:
    """Clear the in-memory verb cache."""
    global _verb_cache
    _verb_cache = None


def verb_lookup(verbs: list[Verb] | None = None) -> dict[str, Verb]:
    return {verb.lemma: verb for verb in (verbs if verbs is not None else load_verbs())}


def get_verb(lemma: str, verbs: list[Verb] | None = None) -> Verb | None:
    return verb_lookup(verbs).get(lemma)


def all_forms(region: str | None = None, verbs: list[Verb] | None = None) -> list[VerbForm]:
    """Every form in the corpus, optionally restricted to paradigms tagged for ``region``."""
    result: list[VerbForm] = []
    for verb in verbs if verbs is not None else load_verbs():
        seen: set[tuple[str, str, str]] = set()
        for paradigm in verb.paradigms:
            if region and region != "both" and region not in paradigm.regions:
                continue
            for form in paradigm.forms:
                key = (form.mood, form.tense, form.person)
                if key in seen:
                    continue
                seen.add(key)
                result.append(form)
    return result


__all__ = [
    "VERBS_FILE",
    "all_forms",
    "clear_cache",
    "get_verb",
    "load_verbs",
    "verb_lookup",
]
