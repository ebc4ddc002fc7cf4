"""Retry and fallback wrappers used around every side effect of a decision."""

from __future__ import annotations

import inspect
import logging
import threading
from collections import Counter
from collections.abc import Awaitable, Callable
from typing import TypeVar, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ...core.errors import RetryExhaustedError

__all__ = ["ErrorStats", "with_fallback", "with_retry"]

logger = logging.getLogger(__name__)

T = TypeVar("T")
Operation = Callable[[], Union[Awaitable[T], T]]


class ErrorStats:
    """Thread-safe per-label failure counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()
        self._last: dict[str, str] = {}

    def record(self, label: str, exc: BaseException) -> None:
        with self._lock:
            self._counts[label] += 1
            self._last[label] = f"{type(exc).__name__}: {exc}"

    def count(self, label: str | None = None) -> int:
        with self._lock:
            if label is None:
                return sum(self._counts.values())
            return self._counts[label]

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {label: {"count": n, "last": self._last.get(label)} for label, n in self._counts.items()}


async def _call(op: Operation[T]) -> T:
    result = op()
    if inspect.isawaitable(result):
        return await result
    return result


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retrying operation",
            extra={"operation": label, "attempt": state.attempt_number, "error": repr(exc)},
        )

    return before_sleep


async def with_retry(
    op: Operation[T],
    label: str,
    *,
    max_attempts: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    stats: ErrorStats | None = None,
) -> T:
    """Run *op* up to ``max_attempts`` times with exponential backoff.

    Raises :class:`RetryExhaustedError` chained to the last failure when every
    attempt fails.
    """

    attempts = max(1, max_attempts)
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=max_delay),
        retry=retry_if_exception_type(Exception),
        before_sleep=_log_retry(label),
        reraise=False,
    )
    try:
        async for attempt in retrying:
            with attempt:
                result = await _call(op)
    except RetryError as exc:
        last = exc.last_attempt.exception()
        if stats is not None and last is not None:
            stats.record(label, last)
        logger.error("operation failed after retries", extra={"operation": label, "attempts": attempts})
        raise RetryExhaustedError(label, attempts) from last
    return result


async def with_fallback(
    primary: Operation[T],
    fallback: Operation[T],
    label: str,
    *,
    stats: ErrorStats | None = None,
) -> T:
    """Return *primary*'s result, or *fallback*'s when *primary* raises."""

    try:
        return await _call(primary)
    except Exception as exc:
        if stats is not None:
            stats.record(label, exc)
        logger.warning("using fallback", extra={"operation": label, "error": repr(exc)})
        return await _call(fallback)
