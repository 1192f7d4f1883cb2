"""Tests for the TTL cache + inflight de-duplication."""

import asyncio

import pytest

from focusboard.cache import TTLCache
from focusboard.cancel import CancelToken
from focusboard.errors import RequestCancelled


class CountingFetcher:
    def __init__(self, value="payload", error: Exception | None = None, gate: asyncio.Event | None = None):
        self.calls = 0
        self.value = value
        self.error = error
        self.gate = gate
        self.cancelled = False

    async def __call__(self):
        self.calls += 1
        try:
            if self.gate is not None:
                await self.gate.wait()
            else:
                await asyncio.sleep(0.01)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return f"{self.value}-{self.calls}"


class TestDeduplication:
    async def test_concurrent_calls_share_one_fetch(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher()

        results = await asyncio.gather(*(cache.get_or_fetch("quote:AAPL", fetcher) for _ in range(10)))

        assert fetcher.calls == 1
        assert results == ["payload-1"] * 10

    async def test_concurrent_calls_share_the_same_failure(self, clock):
        cache = TTLCache(60.0, clock=clock)
        boom = ValueError("upstream down")
        fetcher = CountingFetcher(error=boom)

        results = await asyncio.gather(
            *(cache.get_or_fetch("quote:AAPL", fetcher) for _ in range(5)),
            return_exceptions=True,
        )

        assert fetcher.calls == 1
        assert all(r is boom for r in results)

    async def test_different_keys_fetch_independently(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher()

        await asyncio.gather(cache.get_or_fetch("a", fetcher), cache.get_or_fetch("b", fetcher))

        assert fetcher.calls == 2
        assert len(cache) == 2

    async def test_inflight_entry_removed_after_settle(self, clock):
        cache = TTLCache(60.0, clock=clock)
        await cache.get_or_fetch("k", CountingFetcher())
        await asyncio.sleep(0)
        assert not cache.is_inflight("k")

        with pytest.raises(ValueError):
            await cache.get_or_fetch("e", CountingFetcher(error=ValueError("x")))
        await asyncio.sleep(0)
        assert not cache.is_inflight("e")


class TestTTL:
    async def test_fresh_value_served_until_ttl_elapses(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher()

        first = await cache.get_or_fetch("k", fetcher)
        clock.advance(59.999)
        assert await cache.get_or_fetch("k", fetcher) == first
        assert fetcher.calls == 1

        clock.advance(0.002)  # 60.001s after store
        assert await cache.get_or_fetch("k", fetcher) == "payload-2"
        assert fetcher.calls == 2

    async def test_ttl_counts_from_store_time(self, clock):
        cache = TTLCache(60.0, clock=clock)
        gate = asyncio.Event()
        fetcher = CountingFetcher(gate=gate)

        task = asyncio.create_task(cache.get_or_fetch("k", fetcher))
        await asyncio.sleep(0)
        clock.advance(30.0)  # slow upstream
        gate.set()
        await task

        clock.advance(59.0)
        await cache.get_or_fetch("k", fetcher)
        assert fetcher.calls == 1

    async def test_per_call_ttl_override(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher()
        await cache.get_or_fetch("k", fetcher)
        clock.advance(5.0)

        await cache.get_or_fetch("k", fetcher, ttl=1.0)

        assert fetcher.calls == 2

    async def test_peek_never_fetches(self, clock):
        cache = TTLCache(10.0, clock=clock)
        assert cache.peek("k") is None
        await cache.get_or_fetch("k", CountingFetcher())
        assert cache.peek("k") == "payload-1"
        assert "k" in cache
        clock.advance(10.0)
        assert cache.peek("k") is None


class TestNoNegativeCaching:
    async def test_failure_is_not_cached(self, clock):
        cache = TTLCache(60.0, clock=clock)
        failing = CountingFetcher(error=RuntimeError("nope"))

        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("k", failing)
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("k", failing)

        assert failing.calls == 2
        assert len(cache) == 0

    async def test_success_after_failure_is_cached(self, clock):
        cache = TTLCache(60.0, clock=clock)
        with pytest.raises(RuntimeError):
            await cache.get_or_fetch("k", CountingFetcher(error=RuntimeError("nope")))

        ok = CountingFetcher()
        assert await cache.get_or_fetch("k", ok) == "payload-1"
        assert await cache.get_or_fetch("k", ok) == "payload-1"
        assert ok.calls == 1


class TestCancellation:
    async def test_cancelled_caller_detaches_without_killing_shared_fetch(self, clock):
        cache = TTLCache(60.0, clock=clock)
        gate = asyncio.Event()
        fetcher = CountingFetcher(gate=gate)
        token = CancelToken()

        cancelled_caller = asyncio.create_task(cache.get_or_fetch("k", fetcher, token=token))
        other_caller = asyncio.create_task(cache.get_or_fetch("k", fetcher))
        await asyncio.sleep(0)

        token.cancel("symbol changed")
        with pytest.raises(RequestCancelled):
            await cancelled_caller

        gate.set()
        assert await other_caller == "payload-1"
        assert fetcher.calls == 1
        assert not fetcher.cancelled

    async def test_last_waiter_leaving_aborts_upstream(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher(gate=asyncio.Event())
        token = CancelToken()

        caller = asyncio.create_task(cache.get_or_fetch("k", fetcher, token=token))
        await asyncio.sleep(0)
        token.cancel()
        with pytest.raises(RequestCancelled):
            await caller
        for _ in range(3):
            await asyncio.sleep(0)

        assert fetcher.cancelled
        assert not cache.is_inflight("k")
        assert len(cache) == 0

    async def test_already_cancelled_token_fails_fast(self, clock):
        cache = TTLCache(60.0, clock=clock)
        fetcher = CountingFetcher()
        token = CancelToken()
        token.cancel()

        with pytest.raises(RequestCancelled):
            await cache.get_or_fetch("k", fetcher, token=token)
        assert fetcher.calls == 0


class TestCapacity:
    async def test_unbounded_by_default(self, clock):
        cache = TTLCache(60.0, clock=clock)
        for i in range(50):
            await cache.get_or_fetch(f"k{i}", CountingFetcher())
        assert len(cache) == 50

    async def test_lru_eviction_when_bounded(self, clock):
        cache = TTLCache(60.0, max_entries=2, clock=clock)
        await cache.get_or_fetch("a", CountingFetcher("a"))
        await cache.get_or_fetch("b", CountingFetcher("b"))
        await cache.get_or_fetch("a", CountingFetcher("unused"))  # touch a
        await cache.get_or_fetch("c", CountingFetcher("c"))

        assert len(cache) == 2
        assert cache.peek("a") == "a-1"
        assert cache.peek("b") is None
        assert cache.peek("c") == "c-1"

    async def test_invalidate_and_clear(self, clock):
        cache = TTLCache(60.0, clock=clock)
        await cache.get_or_fetch("a", CountingFetcher())
        await cache.get_or_fetch("b", CountingFetcher())
        cache.invalidate("a")
        assert cache.peek("a") is None
        cache.clear()
        assert len(cache) == 0
