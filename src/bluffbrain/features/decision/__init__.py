"""Decision feature: orchestration, cache, recovery wrappers and payloads."""

from .cache import CacheEntry, DecisionCache
from .recovery import ErrorStats, with_fallback, with_retry
from .schemas import DecisionPayload, OutcomePayload, PerformancePayload, SignalPayload
from .service import DecisionContext, DecisionEngine, DecisionResult, Signals

__all__ = [
    "CacheEntry",
    "DecisionCache",
    "DecisionContext",
    "DecisionEngine",
    "DecisionPayload",
    "DecisionResult",
    "ErrorStats",
    "OutcomePayload",
    "PerformancePayload",
    "SignalPayload",
    "Signals",
    "with_fallback",
    "with_retry",
]
