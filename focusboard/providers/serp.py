"""
SerpApi `google_finance` engine: one combined query returning nested
summary / graph / markets / discover_more objects.

Used as the secondary quote + history source and as the search fallback.
A 200 response can still carry {"error": "..."}; that is surfaced as an
UpstreamError for quotes/history and as "no results" for search.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from focusboard.cancel import CancelToken
from focusboard.data_client import fetch_json, with_params
from focusboard.errors import UpstreamError, ValidationError
from focusboard.extract import Const, MarketMatch, Path, first_number, first_timestamp_s, sorted_points
from focusboard.schemas import ErrorCode, HistoryMeta, HistorySeries, PricePoint, Quote, Suggestion
from focusboard.symbols import to_serp_query

logger = logging.getLogger(__name__)

PROVIDER = "SERP"
BASE_URL = "https://serpapi.com/search.json"
ENGINE = "google_finance"

HISTORY_RANGES = {"1D": "1D", "5D": "5D", "1Y": "1Y", "5Y": "5Y"}

GRAPH_TIME_FIELDS = (Path("date"), Path("timestamp"), Path("time"))
GRAPH_VALUE_FIELDS = (Path("price"), Path("close"))

PRICE_FIELDS = (
    Path("finance_results", "price", "price"),
    Path("summary", "extracted_price"),
    Path("summary", "price"),
    Path("price"),
)

REFRESH_FIELDS = (
    Path("finance_results", "price", "last_refreshed_utc"),
    Path("finance_results", "price", "last_refresh_time_utc"),
    Path("finance_results", "price", "updated_utc"),
)


def search_url(query: str, api_key: str | None, range_key: str | None = None) -> str:
    return with_params(
        BASE_URL,
        {"engine": ENGINE, "q": query, "range": range_key, "api_key": api_key},
    )


def _raise_for_error(data: Any) -> None:
    if isinstance(data, dict) and data.get("error"):
        raise UpstreamError(str(data["error"]))


def parse_graph(data: Any) -> list[PricePoint]:
    graph = data.get("graph") if isinstance(data, dict) else None
    if not isinstance(graph, list):
        return []
    raw: list[tuple[int, float]] = []
    for point in graph:
        if not isinstance(point, dict):
            continue
        t = first_timestamp_s(point, GRAPH_TIME_FIELDS)
        v = first_number(point, GRAPH_VALUE_FIELDS)
        if t is None or v is None:
            continue
        raw.append((t, v))
    return [PricePoint(time=t, value=v) for t, v in sorted_points(raw)]


def parse_quote(data: Any, symbol: str, now_s: int) -> Quote:
    _raise_for_error(data)
    history = parse_graph(data)
    latest = history[-1] if history else None

    price = first_number(
        data,
        (Const(latest.value) if latest else None, *PRICE_FIELDS, MarketMatch(symbol)),
    )
    if price is None:
        raise UpstreamError(f"No price data for {symbol}")

    ts = first_timestamp_s(data, (Const(latest.time) if latest else None, *REFRESH_FIELDS))
    return Quote(
        symbol=symbol,
        price=price,
        time=ts if ts is not None else now_s,
        history=history,
        provider=PROVIDER,
    )


def parse_history(data: Any, symbol: str) -> HistorySeries:
    """Always a valid series; fewer than two points collapses to empty."""
    _raise_for_error(data)
    points = parse_graph(data)
    if len(points) < 2:
        points = []
    as_of = points[-1].time if points else first_timestamp_s(data, REFRESH_FIELDS)
    return HistorySeries(symbol=symbol, points=points, meta=HistoryMeta(provider=PROVIDER, as_of=as_of))


def _split_stock(stock: str) -> tuple[str, str]:
    ticker, _, exchange = stock.partition(":")
    return ticker.strip().upper(), exchange.strip().upper()


def _suggestion(item: Any, exchange_key: str | None = None) -> Suggestion | None:
    if not isinstance(item, dict):
        return None
    stock = item.get("stock")
    if not isinstance(stock, str) or not stock.strip():
        return None
    symbol, exchange = _split_stock(stock)
    if not symbol:
        return None
    if exchange_key and not exchange:
        exchange = str(item.get(exchange_key) or "")
    return Suggestion(symbol=symbol, name=item.get("name") or item.get("title") or symbol, exchange=exchange)


def parse_search(data: Any, limit: int) -> list[Suggestion]:
    """Summary match first, then related markets, then "discover more" sections."""
    if not isinstance(data, dict) or data.get("error"):
        return []

    candidates: list[Suggestion | None] = [_suggestion(data.get("summary"), exchange_key="exchange")]

    markets = data.get("markets")
    if isinstance(markets, dict):
        for entries in markets.values():
            if isinstance(entries, list):
                candidates.extend(_suggestion(item) for item in entries)

    discover = data.get("discover_more")
    if isinstance(discover, list):
        for section in discover:
            items = section.get("items") if isinstance(section, dict) else None
            if isinstance(items, list):
                candidates.extend(_suggestion(item) for item in items)

    out: list[Suggestion] = []
    seen: set[str] = set()
    for s in candidates:
        if s is None or s.symbol in seen:
            continue
        seen.add(s.symbol)
        out.append(s)
        if len(out) >= limit:
            break
    return out


def _query_for(symbol: str) -> str:
    query = to_serp_query(symbol)
    if not query:
        raise ValidationError(f"Unsupported symbol: {symbol}", ErrorCode.INVALID_SYMBOL)
    return query


async def fetch_quote(
    client: httpx.AsyncClient,
    symbol: str,
    api_key: str | None,
    *,
    now_s: int,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> Quote:
    url = search_url(_query_for(symbol), api_key)
    data = await fetch_json(client, url, proxy_url=proxy_url, token=token)
    return parse_quote(data, symbol, now_s)


async def fetch_history(
    client: httpx.AsyncClient,
    symbol: str,
    range_key: str,
    api_key: str | None,
    *,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> HistorySeries:
    url = search_url(_query_for(symbol), api_key, HISTORY_RANGES.get(range_key, "1D"))
    data = await fetch_json(client, url, proxy_url=proxy_url, token=token)
    return parse_history(data, symbol)


async def search(
    client: httpx.AsyncClient,
    query: str,
    limit: int,
    api_key: str | None,
    *,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> list[Suggestion]:
    data = await fetch_json(client, search_url(query, api_key), proxy_url=proxy_url, token=token)
    results = parse_search(data, limit)
    logger.debug("serp search %r -> %d suggestions", query, len(results))
    return results
