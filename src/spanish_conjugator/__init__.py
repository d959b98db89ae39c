"""Spanish verb conjugation drill engine with a FastAPI progress service."""

from .corpus import all_forms, load_verbs, verb_lookup
from .errors import ConjugatorError, DrillConfigurationError
from .generator import choose_next, generate_next_item, update_history
from .grader import GradeResult, grade
from .models import DrillItem, HistoryEntry, Settings, Verb, VerbForm
from .progress import record_attempt

__all__ = [
    "ConjugatorError",
    "DrillConfigurationError",
    "DrillItem",
    "GradeResult",
    "HistoryEntry",
    "Settings",
    "Verb",
    "VerbForm",
    "all_forms",
    "choose_next",
    "generate_next_item",
    "grade",
    "load_verbs",
    "record_attempt",
    "update_history",
    "verb_lookup",
]
