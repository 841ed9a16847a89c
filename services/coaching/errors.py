"""
Coaching engine errors.

Only DataUnavailable and GenerationCancelled ever reach a caller of
CoachingEngine.generate_cards. Everything else degrades to fewer cards.
"""

from typing import Optional


class CoachingEngineError(RuntimeError):
    """Base class for errors raised by the coaching engine."""


class DataUnavailable(CoachingEngineError):
    """The data provider could not supply the canonical dataset."""

    def __init__(self, child_id: str, cause: Optional[BaseException] = None):
        self.child_id = child_id
        self.cause = cause
        message = f"Coaching data unavailable for child {child_id}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class CooldownStoreCorrupt(CoachingEngineError):
    """Persisted cooldown state could not be decoded."""

    def __init__(self, child_id: str, detail: str):
        self.child_id = child_id
        self.detail = detail
        super().__init__(f"Cooldown state for child {child_id} is unreadable: {detail}")


class GenerationCancelled(CoachingEngineError):
    """The caller cancelled generate_cards before it finished."""

    def __init__(self, child_id: str):
        self.child_id = child_id
        super().__init__(f"Coach card generation cancelled for child {child_id}")
