# focusboard/cancel.py
# Purpose: Per-caller cancellation handle passed down every request chain.
# Pitfalls: Cancelling a token only stops *this* caller from waiting; shared
#           inflight fetches in the cache are reference counted separately.

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import Any

from focusboard.errors import RequestCancelled


class CancelToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled(f"Request cancelled: {self.reason}")

    async def wait_for(self, awaitable: Awaitable[Any]) -> Any:
        """Await `awaitable` unless the token fires first.

        On cancellation the awaitable is cancelled and RequestCancelled is raised.
        Pass an `asyncio.shield(...)` when the underlying work is shared.
        """
        fut = asyncio.ensure_future(awaitable)
        if self.cancelled:
            fut.cancel()
            self.raise_if_cancelled()
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        finally:
            waiter.cancel()

        if fut in done:
            return fut.result()
        fut.cancel()
        raise RequestCancelled(f"Request cancelled: {self.reason}")

    async def sleep(self, delay: float, wake: asyncio.Event | None = None) -> bool:
        """Sleep up to `delay` seconds; returns early if cancelled or `wake` fires.

        Returns True when woken by `wake`, False otherwise.
        """
        waiters = {asyncio.ensure_future(self._event.wait())}
        wake_task = None
        if wake is not None:
            wake_task = asyncio.ensure_future(wake.wait())
            waiters.add(wake_task)
        try:
            done, _ = await asyncio.wait(waiters, timeout=max(0.0, delay), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
        return wake_task is not None and wake_task in done and not self.cancelled


async def guarded(awaitable: Awaitable[Any], token: CancelToken | None) -> Any:
    """Await directly when there is no token, otherwise through it."""
    if token is None:
        return await awaitable
    return await token.wait_for(awaitable)
