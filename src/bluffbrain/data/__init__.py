"""Persisted documents, the JSON document store and update locks."""

from .locks import InMemoryLockManager, LockManager, RedisLockManager, hold
from .store import (
    DECISION_HISTORY,
    METRICS,
    PATTERN_RECORD,
    POLICY_TABLE,
    DocumentStore,
)

__all__ = [
    "DECISION_HISTORY",
    "METRICS",
    "PATTERN_RECORD",
    "POLICY_TABLE",
    "DocumentStore",
    "InMemoryLockManager",
    "LockManager",
    "RedisLockManager",
    "hold",
]
