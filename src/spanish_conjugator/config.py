"""Progress, scheduling and mastery tunables plus environment-driven settings."""

from __future__ import annotations

import logging
import os
from pathlib import Path

PACKAGE_ROOT = Path(__file__).resolve().parent
PROJECT_ROOT = PACKAGE_ROOT.parent.parent
DATA_DIR = PROJECT_ROOT / "data"

LOG_LEVEL_ENV = "SPANISH_CONJUGATOR_LOG_LEVEL"
FUTURE_SUBJUNCTIVE_ENV = "SPANISH_CONJUGATOR_ENABLE_FUTURE_SUBJUNCTIVE"

# Spaced repetition (days)
SRS_INTERVALS: tuple[int, ...] = (1, 3, 7, 14, 30, 90)
EASE_START = 2.5
EASE_MIN = 1.3
EASE_MAX = 3.2
EASE_GOOD_BONUS = 0.1
EASE_FAIL_PENALTY = 0.2
EASE_HINT_PENALTY = 0.05
HINT_INTERVAL_FACTOR = 0.8
FUZZ_RATIO = 0.1
LEECH_THRESHOLD = 8
FAST_GUESS_MS = 900
SLOW_MS = 6000

SRS_ADVANCED: dict[str, object] = {
    "EASE_START": EASE_START,
    "EASE_MIN": EASE_MIN,
    "EASE_MAX": EASE_MAX,
    "FUZZ_RATIO": FUZZ_RATIO,
    "LEECH_THRESHOLD": LEECH_THRESHOLD,
    "SPEED": {"FAST_GUESS_MS": FAST_GUESS_MS, "SLOW_MS": SLOW_MS},
}

FSRS: dict[str, object] = {
    "ENABLED": True,
    "REQUEST_RETENTION": 0.9,
    "MAXIMUM_INTERVAL": 365,
    "INITIAL_STABILITY": {1: 0.4, 2: 1.2, 3: 3.2, 4: 15.7},
    # FSRS-4.5 default weights
    "WEIGHTS": (
        0.4872, 1.4003, 3.7145, 13.8206, 5.1618, 1.2298, 0.8975, 0.031, 1.6474,
        0.1367, 1.0461, 2.1072, 0.0793, 0.3246, 1.587, 0.2272, 2.8755,
    ),
}

EXPERT_MODE_DEFAULT_ENABLED = False
EXPERT_MODE_SRS: dict[str, object] = {"EASE_START": EASE_START, "FUZZ_RATIO": FUZZ_RATIO}
EXPERT_MODE_FSRS: dict[str, object] = {"REQUEST_RETENTION": 0.9}

# Mastery
DECAY_TAU = 10.0
HINT_PENALTY = 5.0
MAX_HINT_PENALTY = 15.0
NEUTRAL_MASTERY = 50.0
MIN_CONFIDENCE_N = 8
CONFIDENCE_HIGH = 20
CONFIDENCE_MEDIUM = 8
MASTERY_ACHIEVED = 80.0
MASTERY_ATTENTION = 60.0
SLOW_LATENCY_MS = 6000

VERB_DIFFICULTY: dict[str, float] = {
    "REGULAR": 1.0,
    "ORTHOGRAPHIC_CHANGE": 1.05,
    "DIPHTHONG": 1.1,
    "HIGHLY_IRREGULAR": 1.2,
}
FREQUENCY_DIFFICULTY_BONUS: dict[str, float] = {"high": -0.05, "medium": 0.0, "low": 0.1}
MIN_VERB_DIFFICULTY = 0.8
MAX_VERB_DIFFICULTY = 1.3

# Analytics
ANALYTICS_TIMEOUT_MS = 5000
DEFAULT_AVG_LATENCY_MS = 10000


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


def future_subjunctive_enabled() -> bool:
    return _truthy(os.environ.get(FUTURE_SUBJUNCTIVE_ENV))


def configure_logging(level: str | None = None) -> None:
    """Attach a basic handler and set the package log level."""
    resolved = (level or os.environ.get(LOG_LEVEL_ENV) or "WARNING").upper()
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("spanish_conjugator").setLevel(resolved)


__all__ = [
    "DATA_DIR",
    "DECAY_TAU",
    "FSRS",
    "SRS_ADVANCED",
    "SRS_INTERVALS",
    "configure_logging",
    "future_subjunctive_enabled",
]
