"""
Financial Modeling Prep: batched quotes, intraday/daily history, ticker search.

Payload shapes we rely on:
  quote/{A,B}                 -> [{symbol, price, timestamp}, ...]
  historical-chart/{iv}/{sym} -> [{date: "2024-01-01 09:30:00", close}, ...] (newest first)
  historical-price-full/{sym} -> {symbol, historical: [{date: "2024-01-01", close}, ...]}
  search-ticker               -> [{symbol, name, exchangeShortName}, ...]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from focusboard.cancel import CancelToken
from focusboard.data_client import fetch_json, with_params
from focusboard.extract import Path, first_number, first_timestamp_s, sorted_points
from focusboard.schemas import HistoryMeta, HistorySeries, PricePoint, Quote, Suggestion

PROVIDER = "FMP"
BASE_URL = "https://financialmodelingprep.com/api/v3"
SEARCH_EXCHANGES = "NASDAQ,NYSE,AMEX"


@dataclass(frozen=True)
class HistoryPlan:
    kind: str  # "intraday" | "daily"
    interval: str | None = None
    limit: int | None = None
    timeseries: int | None = None


HISTORY_PLANS: dict[str, HistoryPlan] = {
    "1D": HistoryPlan("intraday", interval="5min", limit=78),
    "5D": HistoryPlan("intraday", interval="30min", limit=65),
    "1Y": HistoryPlan("daily", timeseries=252),
    "5Y": HistoryPlan("daily", timeseries=1260),
}

# priority tables
QUOTE_TIME_FIELDS = (Path("timestamp"), Path("date"), Path("updatedAt"))
POINT_TIME_FIELDS = (Path("date"), Path("timestamp"), Path("time"))
POINT_VALUE_FIELDS = (Path("close"), Path("price"))


def quote_url(symbols: list[str], api_key: str) -> str:
    return with_params(f"{BASE_URL}/quote/{','.join(symbols)}", {"apikey": api_key})


def history_url(symbol: str, plan: HistoryPlan, api_key: str) -> str:
    if plan.kind == "intraday":
        return with_params(
            f"{BASE_URL}/historical-chart/{plan.interval}/{symbol}",
            {"limit": plan.limit, "apikey": api_key},
        )
    return with_params(
        f"{BASE_URL}/historical-price-full/{symbol}",
        {"timeseries": plan.timeseries, "apikey": api_key},
    )


def search_url(query: str, limit: int, api_key: str) -> str:
    return with_params(
        f"{BASE_URL}/search-ticker",
        {"query": query, "limit": limit, "exchange": SEARCH_EXCHANGES, "apikey": api_key},
    )


def parse_quotes(data: Any, now_s: int) -> dict[str, Quote]:
    """Map symbol -> Quote for every row with a symbol and a finite price."""
    if not isinstance(data, list):
        return {}
    out: dict[str, Quote] = {}
    for item in data:
        if not isinstance(item, dict):
            continue
        sym = str(item.get("symbol") or "").strip().upper()
        price = first_number(item, (Path("price"),))
        if not sym or price is None:
            continue
        ts = first_timestamp_s(item, QUOTE_TIME_FIELDS)
        out[sym] = Quote(
            symbol=sym,
            price=price,
            time=ts if ts is not None else now_s,
            history=[],
            provider=PROVIDER,
        )
    return out


def parse_points(entries: Any) -> list[PricePoint]:
    if not isinstance(entries, list):
        return []
    raw: list[tuple[int, float]] = []
    for item in entries:
        if not isinstance(item, dict):
            continue
        t = first_timestamp_s(item, POINT_TIME_FIELDS)
        v = first_number(item, POINT_VALUE_FIELDS)
        if t is None or v is None:
            continue
        raw.append((t, v))
    return [PricePoint(time=t, value=v) for t, v in sorted_points(raw)]


def parse_history(data: Any, plan: HistoryPlan, symbol: str) -> HistorySeries | None:
    """None means "no usable data" (fewer than two points)."""
    entries = data if plan.kind == "intraday" else (data.get("historical") if isinstance(data, dict) else None)
    points = parse_points(entries)
    if len(points) < 2:
        return None
    return HistorySeries(
        symbol=symbol,
        points=points,
        meta=HistoryMeta(provider=PROVIDER, as_of=points[-1].time),
    )


def parse_search(data: Any) -> list[Suggestion]:
    if not isinstance(data, list):
        return []
    out: list[Suggestion] = []
    for item in data:
        if not isinstance(item, dict) or not item.get("symbol"):
            continue
        sym = str(item["symbol"]).upper()
        out.append(
            Suggestion(
                symbol=sym,
                name=item.get("name") or sym,
                exchange=item.get("exchangeShortName") or item.get("stockExchange") or "",
            )
        )
    return out


async def fetch_quotes(
    client: httpx.AsyncClient,
    symbols: list[str],
    api_key: str,
    *,
    now_s: int,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> dict[str, Quote]:
    if not symbols:
        return {}
    data = await fetch_json(client, quote_url(symbols, api_key), proxy_url=proxy_url, token=token)
    return parse_quotes(data, now_s)


async def fetch_history(
    client: httpx.AsyncClient,
    symbol: str,
    range_key: str,
    api_key: str,
    *,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> HistorySeries | None:
    plan = HISTORY_PLANS.get(range_key, HISTORY_PLANS["1D"])
    data = await fetch_json(client, history_url(symbol, plan, api_key), proxy_url=proxy_url, token=token)
    return parse_history(data, plan, symbol)


async def search(
    client: httpx.AsyncClient,
    query: str,
    limit: int,
    api_key: str,
    *,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> list[Suggestion]:
    data = await fetch_json(client, search_url(query, limit, api_key), proxy_url=proxy_url, token=token)
    return parse_search(data)
