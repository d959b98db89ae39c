"""Exception types raised by the drill engine."""

from __future__ import annotations


class ConjugatorError(Exception):
    """Base class for drill engine errors."""


class DrillConfigurationError(ConjugatorError):
    """A specific mood/tense combination has no coverage in the corpus."""

    def __init__(self, mood: str | None, tense: str | None) -> None:
        self.mood = mood
        self.tense = tense
        super().__init__(f"No forms available for {mood} {tense}. Check your configuration.")


class CorpusError(ConjugatorError):
    """Static verb data is malformed."""


class InvalidRecordError(ConjugatorError):
    """An uploaded progress record carries a value its column cannot hold."""

    def __init__(self, table: str, record_id: str, field: str) -> None:
        self.table = table
        self.record_id = record_id
        self.field = field
        super().__init__(f"Invalid value for {field} in {table} record {record_id}")


class UnknownChallengeError(ConjugatorError):
    def __init__(self, challenge_id: str) -> None:
        self.challenge_id = challenge_id
        super().__init__(f"Unknown challenge: {challenge_id}")


__all__ = [
    "ConjugatorError",
    "CorpusError",
    "DrillConfigurationError",
    "InvalidRecordError",
    "UnknownChallengeError",
]
