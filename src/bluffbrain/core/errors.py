"""Error taxonomy shared by every layer of the decision core.

Only :class:`ValidationError` on the final action is allowed to change what
``decide`` returns (it becomes ``Pass``).  Everything else is absorbed by the
recovery wrappers and surfaces through logs and monitoring counters.
"""

from __future__ import annotations

__all__ = [
    "BluffBrainError",
    "CacheError",
    "LockError",
    "PersistenceError",
    "RetryExhaustedError",
    "SignalError",
    "ValidationError",
]


class BluffBrainError(Exception):
    """Base class for errors raised by the decision core."""


class ValidationError(BluffBrainError, ValueError):
    """Malformed game state or action."""


class PersistenceError(BluffBrainError):
    """I/O failure, schema mismatch, oversize payload or rejected key."""


class CacheError(BluffBrainError):
    """Cache-layer failure; callers treat it as a miss."""


class LockError(BluffBrainError):
    """A guarded update could not take its lock and was skipped."""


class SignalError(BluffBrainError):
    """A single signal source failed or timed out."""

    def __init__(self, signal: str, message: str) -> None:
        super().__init__(f"{signal}: {message}")
        self.signal = signal


class RetryExhaustedError(BluffBrainError):
    """An operation kept failing after its retry budget was spent."""

    def __init__(self, label: str, attempts: int) -> None:
        super().__init__(f"{label} failed after {attempts} attempt(s)")
        self.label = label
        self.attempts = attempts
