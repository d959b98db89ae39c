"""Irregularity family tags and the simplified practice groups built on them."""

from __future__ import annotations

from .conjugation import strip_accents
from .models import Verb

FAMILY_LABELS: dict[str, str] = {
    "G_VERBS": "Irregular yo with -g- (tengo, pongo)",
    "DIPHT_E_IE": "Diphthong e→ie (pienso)",
    "DIPHT_O_UE": "Diphthong o→ue (puedo)",
    "DIPHT_U_UE": "Diphthong u→ue (juego)",
    "E_I_IR": "e→i in -ir verbs (pido)",
    "O_U_GER_IR": "o→u in gerund and preterite (durmió)",
    "HIATUS_Y": "Hiatus with y (leyó)",
    "UIR_Y": "-uir verbs with y (construyo)",
    "ZCO_VERBS": "-zco in first person (conozco)",
    "ZO_VERBS": "-zo in first person (venzo)",
    "JO_VERBS": "-jo in first person (cojo)",
    "GU_DROP": "-gu- drop (sigo)",
    "YO_OY": "-oy in first person (soy, estoy)",
    "ORTH_CAR": "Spelling change c→qu (busqué)",
    "ORTH_GAR": "Spelling change g→gu (llegué)",
    "ORTH_ZAR": "Spelling change z→c (empecé)",
    "ORTH_GUAR": "Spelling change gu→gü (averigüé)",
    "IAR_VERBS": "Stressed í in -iar verbs (envío)",
    "UAR_VERBS": "Stressed ú in -uar verbs (continúo)",
    "PRET_UV": "Strong preterite -uv- (tuve)",
    "PRET_U": "Strong preterite -u- (pude)",
    "PRET_I": "Strong preterite -i- (hice)",
    "PRET_J": "Strong preterite -j- (dije)",
    "PRET_SUPPL": "Suppletive preterite (fui, di)",
}

SIMPLIFIED_GROUPS: dict[str, tuple[str, ...]] = {
    "STEM_CHANGES": ("DIPHT_E_IE", "DIPHT_O_UE", "DIPHT_U_UE", "E_I_IR"),
    "FIRST_PERSON_IRREGULAR": ("G_VERBS", "ZCO_VERBS", "ZO_VERBS", "JO_VERBS", "GU_DROP", "YO_OY"),
    "PRETERITE_THIRD_PERSON": ("E_I_IR", "O_U_GER_IR", "HIATUS_Y"),
    "PRETERITE_STRONG_STEM": ("PRET_UV", "PRET_U", "PRET_I", "PRET_J", "PRET_SUPPL"),
}

PEDAGOGICAL_THIRD_PERSON = frozenset(SIMPLIFIED_GROUPS["PRETERITE_THIRD_PERSON"])
STRONG_PRETERITE = frozenset(SIMPLIFIED_GROUPS["PRETERITE_STRONG_STEM"])

KNOWN_VERBS: dict[str, tuple[str, ...]] = {
    "tener": ("G_VERBS", "DIPHT_E_IE", "PRET_UV"),
    "poner": ("G_VERBS", "PRET_U"),
    "hacer": ("G_VERBS", "PRET_I"),
    "salir": ("G_VERBS",),
    "valer": ("G_VERBS",),
    "venir": ("G_VERBS", "DIPHT_E_IE", "PRET_I"),
    "decir": ("G_VERBS", "E_I_IR", "PRET_J"),
    "oír": ("G_VERBS", "HIATUS_Y", "UIR_Y"),
    "traer": ("G_VERBS", "PRET_J", "HIATUS_Y"),
    "caer": ("G_VERBS", "HIATUS_Y"),
    "estar": ("PRET_UV", "YO_OY"),
    "andar": ("PRET_UV",),
    "saber": ("PRET_U",),
    "caber": ("PRET_U",),
    "poder": ("DIPHT_O_UE", "PRET_U"),
    "querer": ("DIPHT_E_IE", "PRET_I"),
    "conducir": ("ZCO_VERBS", "PRET_J"),
    "traducir": ("ZCO_VERBS", "PRET_J"),
    "producir": ("ZCO_VERBS", "PRET_J"),
    "ir": ("PRET_SUPPL", "YO_OY"),
    "ser": ("PRET_SUPPL", "YO_OY"),
    "dar": ("PRET_SUPPL", "YO_OY"),
    "ver": ("PRET_SUPPL",),
    "haber": ("PRET_SUPPL",),
    "pedir": ("E_I_IR",),
    "servir": ("E_I_IR",),
    "repetir": ("E_I_IR",),
    "medir": ("E_I_IR",),
    "reír": ("E_I_IR",),
    "competir": ("E_I_IR",),
    "vestir": ("E_I_IR",),
    "seguir": ("E_I_IR", "GU_DROP"),
    "sentir": ("DIPHT_E_IE", "E_I_IR"),
    "preferir": ("DIPHT_E_IE", "E_I_IR"),
    "mentir": ("DIPHT_E_IE", "E_I_IR"),
    "dormir": ("DIPHT_O_UE", "O_U_GER_IR"),
    "morir": ("DIPHT_O_UE", "O_U_GER_IR"),
    "leer": ("HIATUS_Y",),
    "creer": ("HIATUS_Y",),
    "poseer": ("HIATUS_Y",),
    "proveer": ("HIATUS_Y",),
    "construir": ("UIR_Y", "HIATUS_Y"),
    "destruir": ("UIR_Y", "HIATUS_Y"),
    "huir": ("UIR_Y", "HIATUS_Y"),
    "incluir": ("UIR_Y", "HIATUS_Y"),
    "concluir": ("UIR_Y", "HIATUS_Y"),
    "contribuir": ("UIR_Y", "HIATUS_Y"),
    "distribuir": ("UIR_Y", "HIATUS_Y"),
    "empezar": ("DIPHT_E_IE", "ORTH_ZAR"),
    "comenzar": ("DIPHT_E_IE", "ORTH_ZAR"),
    "pensar": ("DIPHT_E_IE",),
    "cerrar": ("DIPHT_E_IE",),
    "entender": ("DIPHT_E_IE",),
    "nevar": ("DIPHT_E_IE",),
    "volver": ("DIPHT_O_UE",),
    "contar": ("DIPHT_O_UE",),
    "encontrar": ("DIPHT_O_UE",),
    "llover": ("DIPHT_O_UE",),
    "jugar": ("DIPHT_U_UE", "ORTH_GAR"),
}

# Irregular-looking endings that belong to regular verbs.
_ZCO_EXCEPTIONS = frozenset({"hacer", "decir", "mecer", "cocer"})
_STRESSED_IAR = frozenset({"enviar", "confiar", "variar", "guiar", "esquiar", "ampliar", "desviar"})
_STRESSED_UAR = frozenset({"continuar", "actuar", "graduar", "situar", "evaluar", "acentuar"})


def categorize_verb(lemma: str) -> set[str]:
    """Infer family tags from the known-verb table plus suffix rules."""
    word = lemma.strip().lower()
    families: set[str] = set(KNOWN_VERBS.get(word, ()))
    plain = strip_accents(word)

    if plain.endswith("guar"):
        families.add("ORTH_GUAR")
    elif plain.endswith("car"):
        families.add("ORTH_CAR")
    elif plain.endswith("gar"):
        families.add("ORTH_GAR")
    elif plain.endswith("zar"):
        families.add("ORTH_ZAR")

    if plain.endswith("guir"):
        families.add("GU_DROP")
    elif plain.endswith("uir"):
        families.add("UIR_Y")

    if plain.endswith(("cer", "cir")) and word not in _ZCO_EXCEPTIONS and len(plain) > 3:
        if plain[-4] in "aeiou":
            families.add("ZCO_VERBS")
        else:
            families.add("ZO_VERBS")

    if plain.endswith(("ger", "gir")):
        families.add("JO_VERBS")
    if plain.endswith("iar") and word in _STRESSED_IAR:
        families.add("IAR_VERBS")
    if plain.endswith("uar") and not plain.endswith("guar") and word in _STRESSED_UAR:
        families.add("UAR_VERBS")
    return families


def expand_family(family: str | None) -> frozenset[str]:
    """Resolve a simplified group to its families; plain family ids resolve to themselves."""
    if not family:
        return frozenset()
    return frozenset(SIMPLIFIED_GROUPS.get(family, (family,)))


def verb_families(verb: Verb) -> frozenset[str]:
    return frozenset(verb.irregular_families) | frozenset(categorize_verb(verb.lemma))


def verb_in_family(verb: Verb, family: str | None) -> bool:
    targets = expand_family(family)
    if not targets:
        return True
    return bool(verb_families(verb) & targets)


__all__ = [
    "FAMILY_LABELS",
    "KNOWN_VERBS",
    "PEDAGOGICAL_THIRD_PERSON",
    "SIMPLIFIED_GROUPS",
    "STRONG_PRETERITE",
    "categorize_verb",
    "expand_family",
    "verb_families",
    "verb_in_family",
]
