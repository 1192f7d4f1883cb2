import asyncio
import json
from collections.abc import Callable

import httpx
import pytest

from focusboard.cache import TTLCache
from focusboard.config import Settings
from focusboard.data_client import create_client
from focusboard.market import MarketData

FIXED_NOW = 1_704_110_400  # 2024-01-01T12:00:00Z


class FakeClock:
    """Manually advanced clock (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Upstream:
    """Route table for httpx.MockTransport; records every outbound request."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self._routes: list[tuple[Callable[[httpx.Request], bool], Callable[[httpx.Request], httpx.Response]]] = []

    def route(self, match: Callable[[httpx.Request], bool], respond):
        self._routes.append((match, respond))

    def json(self, match, payload, status: int = 200):
        self.route(match, lambda _r: httpx.Response(status, json=payload))

    def calls_to(self, host: str, path_prefix: str = "") -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == host and r.url.path.startswith(path_prefix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for match, respond in self._routes:
            if match(request):
                return respond(request)
        return httpx.Response(404, content=json.dumps({"error": "no route"}).encode())

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def fmp(path_prefix: str):
    return lambda r: r.url.host == "financialmodelingprep.com" and r.url.path.startswith(path_prefix)


def serp(query: str | None = None):
    def _match(r: httpx.Request) -> bool:
        if r.url.host != "serpapi.com":
            return False
        return query is None or r.url.params.get("q") == query

    return _match


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def make_market(upstream):
    created: list[MarketData] = []

    def _make(**overrides) -> MarketData:
        settings = Settings(**{"fmp_key": "fmp-key", "serp_key": "serp-key", "cg_key": "cg-key", **overrides})
        market = MarketData(
            settings,
            client=create_client(transport=upstream.transport()),
            cache=TTLCache(60.0, name="test"),
            clock=lambda: FIXED_NOW,
        )
        created.append(market)
        return market

    return _make
