"""Shared concurrency primitives for the ingestion workers.

Three patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with each awaitable wrapped in
   a semaphore acquire/release, used to bound parallel embedding batches.

2. **TokenBucketRateLimiter** -- queue-level "max N jobs per window" limit.
   Callers that find the bucket empty wait for a refill instead of failing.

3. **KeyedLock** -- one ``asyncio.Lock`` per key, created on demand and
   discarded when the last holder leaves.  Guards the per-material
   delete-then-insert critical section in the vector store.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, TypeVar

_T = TypeVar("_T")


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently with optional semaphore throttling.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Optional semaphore for concurrency control.  When ``None`` the
        awaitables run unthrottled.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        return await asyncio.gather(*coros, return_exceptions=return_exceptions)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


class TokenBucketRateLimiter:
    """Token bucket holding at most ``max_tokens`` tokens.

    The bucket refills continuously at ``max_tokens / window_seconds``
    tokens per second, so at most ``max_tokens`` acquisitions succeed in any
    window once the initial burst is spent.  A non-positive ``max_tokens``
    disables limiting.
    """

    def __init__(
        self,
        max_tokens: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._capacity = float(max_tokens)
        self._rate = max_tokens / window_seconds if max_tokens > 0 and window_seconds > 0 else 0.0
        self._clock = clock
        self._tokens = self._capacity
        self._updated = clock()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._capacity > 0 and self._rate > 0

    @property
    def available(self) -> float:
        """Tokens currently in the bucket (after refill)."""
        if not self.enabled:
            return float("inf")
        self._refill()
        return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._updated = now

    def try_acquire(self) -> bool:
        """Take a token without waiting; ``False`` when the bucket is empty."""
        if not self.enabled:
            return True
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    async def acquire(self) -> None:
        """Take a token, sleeping until one is available."""
        if not self.enabled:
            return
        # Serialize waiters so tokens are handed out in arrival order.
        async with self._lock:
            while not self.try_acquire():
                await asyncio.sleep((1 - self._tokens) / self._rate)

    def refund(self) -> None:
        """Return a token taken for work that never started."""
        if not self.enabled:
            return
        self._refill()
        self._tokens = min(self._capacity, self._tokens + 1)


class KeyedLock:
    """A family of asyncio locks addressed by string key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] == 0:
                del self._holders[key]
                del self._locks[key]
