"""Short-lived cache of decisions keyed by a fingerprint of the full state.

Entries expire after ``ttl`` seconds and are also dropped explicitly when the
caller reports that the state has moved on.  The cache holds no locks: a stale
read at worst recomputes a decision.
"""

from __future__ import annotations

import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass

from ...core.codec import fingerprint
from ...core.errors import CacheError
from ...core.models import Action, GameState

__all__ = ["CacheEntry", "DecisionCache"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheEntry:
    fingerprint: str
    action: Action
    created_at: float


class DecisionCache:
    def __init__(
        self,
        ttl: float = 30.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    @staticmethod
    def key(state: GameState) -> str:
        try:
            return fingerprint(state)
        except (AttributeError, TypeError, ValueError) as exc:
            raise CacheError(f"cannot fingerprint state: {exc}") from exc

    def get(self, state: GameState) -> Action | None:
        fp = self.key(state)
        entry = self._entries.get(fp)
        if entry is None:
            return None
        if self._clock() - entry.created_at >= self._ttl:
            self._entries.pop(fp, None)
            return None
        return entry.action

    def put(self, state: GameState, action: Action) -> CacheEntry:
        fp = self.key(state)
        entry = CacheEntry(fingerprint=fp, action=action, created_at=self._clock())
        self._entries.pop(fp, None)
        self._entries[fp] = entry
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return entry

    def invalidate(self, state: GameState) -> bool:
        return self._entries.pop(self.key(state), None) is not None

    def invalidate_all(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        if count:
            logger.debug("decision cache cleared", extra={"entries": count})
        return count

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [fp for fp, entry in self._entries.items() if now - entry.created_at >= self._ttl]
        for fp in stale:
            del self._entries[fp]
        return len(stale)
