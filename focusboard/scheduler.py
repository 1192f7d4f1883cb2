# focusboard/scheduler.py
# Purpose: Keep one subscribed symbol/series fresh: refresh on a fixed interval,
#          retry failures with exponential backoff, reset on success.
# Pitfalls: Must be driven from a running event loop; one poller per subscription.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from focusboard.cancel import CancelToken
from focusboard.errors import RequestCancelled
from focusboard.extract import sorted_points
from focusboard.schemas import PricePoint

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 600.0  # 10 minutes between successful refreshes
BACKOFF_BASE_SEC = 5.0
BACKOFF_MAX_SEC = 300.0

Status = Literal["idle", "loading", "success", "error"]
PollFetch = Callable[[str, CancelToken], Awaitable[Any]]


class Backoff:
    """Doubling retry delay: next() hands out the current delay, then doubles it (capped)."""

    def __init__(self, base: float = BACKOFF_BASE_SEC, maximum: float = BACKOFF_MAX_SEC):
        self.base = base
        self.maximum = maximum
        self.current_delay = base

    def next(self) -> float:
        current = self.current_delay
        self.current_delay = min(self.current_delay * 2, self.maximum)
        return current

    def reset(self) -> None:
        self.current_delay = self.base


@dataclass
class PollState:
    symbol: str | None = None
    status: Status = "idle"
    data: Any = None
    error: Exception | None = None
    retry_in: float | None = None
    points: list[PricePoint] = field(default_factory=list)


def merge_points(buffer: list[PricePoint], incoming: list[PricePoint]) -> list[PricePoint]:
    merged = sorted_points([(p.time, p.value) for p in (*buffer, *incoming)])
    return [PricePoint(time=t, value=v) for t, v in merged]


class SeriesPoller:
    """Refresh loop for a single subscription.

    subscribe() cancels whatever was running (request + timer), clears the
    local buffer and fetches immediately. Results that arrive for an older
    subscription are dropped without touching state.
    """

    def __init__(
        self,
        fetch: PollFetch,
        *,
        interval: float = DEFAULT_INTERVAL_SEC,
        backoff: Backoff | None = None,
        on_change: Callable[[PollState], None] | None = None,
    ):
        self._fetch = fetch
        self.interval = interval
        self.backoff = backoff or Backoff()
        self._on_change = on_change
        self.state = PollState()
        self._token: CancelToken | None = None
        self._task: asyncio.Task | None = None
        self._wake = asyncio.Event()

    @property
    def task(self) -> asyncio.Task | None:
        return self._task

    def subscribe(self, symbol: str | None) -> asyncio.Task | None:
        self._cancel_current("resubscribed")
        self.backoff.reset()

        if not symbol:
            self._token = None
            self._publish(PollState())
            return None

        token = CancelToken()
        self._token = token
        wake = asyncio.Event()
        self._wake = wake
        self._set(token, PollState(symbol=symbol, status="loading"))
        self._task = asyncio.create_task(self._run(symbol, token, wake))
        return self._task

    def retry(self) -> None:
        """Skip the pending wait and fetch now (manual retry). Ignored while a fetch is running."""
        self._wake.set()

    def close(self) -> None:
        self._cancel_current("closed")
        self._token = None

    async def aclose(self) -> None:
        task = self._task
        self.close()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _cancel_current(self, reason: str) -> None:
        if self._token is not None:
            self._token.cancel(reason)

    async def _run(self, symbol: str, token: CancelToken, wake: asyncio.Event) -> None:
        while not token.cancelled:
            try:
                data = await token.wait_for(self._fetch(symbol, token))
            except RequestCancelled:
                return
            except Exception as e:
                data, error = None, e
            else:
                error = None
            # retry() only counts while waiting, never during a fetch
            wake.clear()
            if token.cancelled:
                return

            if error is not None:
                delay = self.backoff.next()
                logger.warning("refresh failed for %s, retrying in %.1fs: %s", symbol, delay, error, extra={"symbol": symbol})
                self._set(
                    token,
                    PollState(symbol=symbol, status="error", error=error, retry_in=delay, points=self.state.points),
                )
            else:
                self.backoff.reset()
                delay = self.interval
                points = self.state.points
                incoming = getattr(data, "points", None)
                if isinstance(incoming, list):
                    points = merge_points(points, incoming)
                self._set(token, PollState(symbol=symbol, status="success", data=data, points=points))

            await token.sleep(delay, wake)

    def _set(self, token: CancelToken, state: PollState) -> None:
        if token is not self._token or token.cancelled:
            return
        self._publish(state)

    def _publish(self, state: PollState) -> None:
        self.state = state
        if self._on_change is not None:
            self._on_change(state)


def history_fetch(market: Any, range_key: str) -> PollFetch:
    """Poll fetch for MarketData.fetch_history with a fixed range."""

    async def _fetch(symbol: str, token: CancelToken) -> Any:
        return await market.fetch_history(symbol, range_key, token=token)

    return _fetch


def coin_fetch(market: Any, days: int = 1) -> PollFetch:
    async def _fetch(coin_id: str, token: CancelToken) -> Any:
        return await market.fetch_coin_chart(coin_id, days=days, token=token)

    return _fetch


def history_poller(market: Any, range_key: str, **kwargs: Any) -> SeriesPoller:
    """SeriesPoller over MarketData history, refreshing at the configured interval."""
    kwargs.setdefault("interval", market.settings.poll_interval_sec)
    return SeriesPoller(history_fetch(market, range_key), **kwargs)
