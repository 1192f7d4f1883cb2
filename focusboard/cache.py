# focusboard/cache.py
# Purpose: TTL cache with inflight de-duplication ("singleflight").
# Why: Collapse concurrent identical upstream calls and stay under provider rate limits.
# Pitfalls: Not persistent; failures are never cached; unbounded unless max_entries is set.

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from focusboard.cancel import CancelToken, guarded
from focusboard.observability import CACHE_EVENTS

logger = logging.getLogger(__name__)

DEFAULT_TTL_SEC = 60.0

Fetcher = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    stored_at: float


class _Inflight:
    __slots__ = ("task", "waiters")

    def __init__(self, task: asyncio.Task):
        self.task = task
        self.waiters = 0


class TTLCache:
    """Keyed TTL store plus a map of running fetches shared by concurrent callers.

    All mutation happens on the event loop thread, so no locks: the inflight
    entry is registered before the first await, which is what keeps two
    near-simultaneous callers from both fetching.
    """

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SEC,
        *,
        max_entries: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        self.ttl = ttl
        self.max_entries = max_entries or None
        self.name = name
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._inflight: dict[str, _Inflight] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.peek(key) is not None

    def _fresh(self, key: str, ttl: float) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at < ttl:
            return entry
        return None

    def peek(self, key: str, ttl: float | None = None) -> Any:
        """Return the cached value if still fresh, else None. Never fetches."""
        entry = self._fresh(key, self.ttl if ttl is None else ttl)
        return entry.value if entry is not None else None

    def is_inflight(self, key: str) -> bool:
        return key in self._inflight

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def _store(self, key: str, value: Any) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock())
        self._entries.move_to_end(key)
        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                CACHE_EVENTS.labels(cache=self.name, outcome="evict").inc()
                logger.debug("cache evict", extra={"cache_key": evicted})

    async def get_or_fetch(
        self,
        key: str,
        fetcher: Fetcher,
        *,
        ttl: float | None = None,
        token: CancelToken | None = None,
    ) -> Any:
        """Serve `key` from cache, from a running fetch, or by calling `fetcher()` once.

        Every caller attached to the same running fetch observes the same value
        or the same exception. A cancelled `token` detaches only this caller.
        """
        if token is not None:
            token.raise_if_cancelled()

        entry = self._fresh(key, self.ttl if ttl is None else ttl)
        if entry is not None:
            self._entries.move_to_end(key)
            CACHE_EVENTS.labels(cache=self.name, outcome="hit").inc()
            return entry.value

        inflight = self._inflight.get(key)
        if inflight is None:
            CACHE_EVENTS.labels(cache=self.name, outcome="miss").inc()
            inflight = _Inflight(asyncio.ensure_future(self._run(key, fetcher)))
            # registered before any await so later callers attach instead of fetching
            self._inflight[key] = inflight
            inflight.task.add_done_callback(lambda _t, k=key, i=inflight: self._settle(k, i))
        else:
            CACHE_EVENTS.labels(cache=self.name, outcome="join").inc()

        return await self._attach(key, inflight, token)

    async def _run(self, key: str, fetcher: Fetcher) -> Any:
        try:
            value = await fetcher()
        except asyncio.CancelledError:
            raise
        except Exception:
            CACHE_EVENTS.labels(cache=self.name, outcome="error").inc()
            logger.debug("cache fetch failed", extra={"cache_key": key}, exc_info=True)
            raise
        self._store(key, value)
        return value

    def _settle(self, key: str, inflight: _Inflight) -> None:
        if self._inflight.get(key) is inflight:
            del self._inflight[key]

    async def _attach(self, key: str, inflight: _Inflight, token: CancelToken | None) -> Any:
        inflight.waiters += 1
        try:
            return await guarded(asyncio.shield(inflight.task), token)
        finally:
            inflight.waiters -= 1
            if inflight.waiters == 0 and not inflight.task.done():
                # last interested caller left; abort the upstream call
                self._settle(key, inflight)
                inflight.task.cancel()
