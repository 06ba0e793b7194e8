"""Unit tests for the concurrency helpers."""

from __future__ import annotations

import asyncio

import pytest

from course_ingest.utils.concurrency import KeyedLock, TokenBucketRateLimiter, throttled_gather


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestThrottledGather:
    @pytest.mark.asyncio
    async def test_preserves_order_and_bounds_concurrency(self) -> None:
        running = 0
        peak = 0

        async def work(i: int) -> int:
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return i

        results = await throttled_gather([work(i) for i in range(8)], semaphore=asyncio.Semaphore(2))

        assert results == list(range(8))
        assert peak <= 2

    @pytest.mark.asyncio
    async def test_exceptions_returned_in_place(self) -> None:
        async def boom() -> None:
            raise RuntimeError("nope")

        async def ok() -> str:
            return "ok"

        results = await throttled_gather([ok(), boom()])

        assert results[0] == "ok"
        assert isinstance(results[1], RuntimeError)


class TestTokenBucketRateLimiter:
    def test_burst_then_empty(self) -> None:
        limiter = TokenBucketRateLimiter(5, 60, clock=_Clock())
        assert all(limiter.try_acquire() for _ in range(5))
        assert limiter.try_acquire() is False

    def test_refills_over_window(self) -> None:
        clock = _Clock()
        limiter = TokenBucketRateLimiter(5, 60, clock=clock)
        for _ in range(5):
            limiter.try_acquire()

        clock.now = 13.0
        assert limiter.try_acquire() is True
        assert limiter.try_acquire() is False

    def test_refund_returns_token(self) -> None:
        limiter = TokenBucketRateLimiter(1, 60, clock=_Clock())
        assert limiter.try_acquire()
        limiter.refund()
        assert limiter.try_acquire()

    def test_zero_limit_disables(self) -> None:
        limiter = TokenBucketRateLimiter(0, 60)
        assert limiter.enabled is False
        assert all(limiter.try_acquire() for _ in range(100))

    @pytest.mark.asyncio
    async def test_acquire_waits_for_refill(self) -> None:
        limiter = TokenBucketRateLimiter(20, 1.0)
        for _ in range(20):
            await limiter.acquire()

        loop = asyncio.get_running_loop()
        start = loop.time()
        await limiter.acquire()
        assert loop.time() - start >= 0.02


class TestKeyedLock:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self) -> None:
        locks = KeyedLock()
        order: list[str] = []

        async def critical(tag: str) -> None:
            async with locks.hold("m1"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(critical("a"), critical("b"))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_locks_are_released_and_discarded(self) -> None:
        locks = KeyedLock()
        async with locks.hold("m1"):
            assert locks.locked("m1")
            assert not locks.locked("m2")
        assert not locks.locked("m1")
        assert locks._locks == {}
