"""TTL-bounded mutual exclusion for read-modify-write of shared documents.

A lock that cannot be taken is never waited on: the caller skips its update
for that cycle.  Every lock expires on its own after ``ttl`` seconds so a
crashed holder cannot wedge the learners.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any, Protocol
from uuid import uuid4

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from ..core.errors import LockError

__all__ = ["InMemoryLockManager", "LockManager", "RedisLockManager", "hold"]

logger = logging.getLogger(__name__)

_KEY_PREFIX = "bluffbrain:lock:"

# Delete only while the caller still owns the key.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class LockManager(Protocol):
    async def acquire(self, key: str, ttl: float) -> str | None: ...

    async def release(self, key: str, token: str) -> bool: ...


class InMemoryLockManager:
    """Process-local locks; safe across the event loop and executor threads.

    ``acquire`` hands back an ownership token; ``release`` only drops the lock
    while that token still owns it, so a holder whose TTL lapsed cannot free
    a lock that has since passed to someone else.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._owners: dict[str, tuple[str, float]] = {}
        self._guard = threading.Lock()

    async def acquire(self, key: str, ttl: float) -> str | None:
        with self._guard:
            now = self._clock()
            current = self._owners.get(key)
            if current is not None and current[1] > now:
                return None
            token = uuid4().hex
            self._owners[key] = (token, now + ttl)
            return token

    async def release(self, key: str, token: str) -> bool:
        with self._guard:
            current = self._owners.get(key)
            if current is None or current[0] != token:
                return False
            del self._owners[key]
            return True

    def held(self, key: str) -> bool:
        with self._guard:
            current = self._owners.get(key)
            return current is not None and current[1] > self._clock()


class RedisLockManager:
    """Distributed locks via ``SET key <token> PX ttl NX`` for multi-process deployments."""

    def __init__(self, client: Any) -> None:
        self._client = client
        self._release_script = client.register_script(_RELEASE_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> RedisLockManager:
        return cls(redis_asyncio.from_url(url, decode_responses=True))

    async def acquire(self, key: str, ttl: float) -> str | None:
        token = uuid4().hex
        try:
            result = await self._client.set(_KEY_PREFIX + key, token, px=max(1, int(ttl * 1000)), nx=True)
        except (RedisError, OSError) as exc:
            logger.error("failed to acquire lock", extra={"lock": key, "error": str(exc)})
            return None
        return token if result else None

    async def release(self, key: str, token: str) -> bool:
        try:
            result = await self._release_script(keys=[_KEY_PREFIX + key], args=[token])
        except (RedisError, OSError) as exc:
            logger.error("failed to release lock", extra={"lock": key, "error": str(exc)})
            return False
        return result == 1


@asynccontextmanager
async def hold(manager: LockManager, key: str, ttl: float) -> AsyncIterator[str]:
    """Hold *key* for the duration of the block or raise :class:`LockError`."""

    token = await manager.acquire(key, ttl)
    if token is None:
        raise LockError(f"lock {key!r} is held elsewhere")
    try:
        yield token
    finally:
        if not await manager.release(key, token):
            logger.warning("lock expired before release", extra={"lock": key})
