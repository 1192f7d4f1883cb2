"""CoinGecko market chart: `prices` is a list of [timestamp_ms, price] pairs."""

from __future__ import annotations

from typing import Any

import httpx

from focusboard.cancel import CancelToken
from focusboard.data_client import fetch_json, with_params
from focusboard.errors import UpstreamError
from focusboard.extract import sorted_points, to_number
from focusboard.schemas import HistoryMeta, HistorySeries, PricePoint

PROVIDER = "COINGECKO"
BASE_URL = "https://api.coingecko.com/api/v3"


def market_chart_url(coin_id: str, api_key: str, days: int = 1, vs_currency: str = "usd") -> str:
    return with_params(
        f"{BASE_URL}/coins/{coin_id}/market_chart",
        {"vs_currency": vs_currency, "days": days, "x_cg_demo_api_key": api_key},
    )


def parse_market_chart(data: Any, coin_id: str) -> HistorySeries:
    prices = data.get("prices") if isinstance(data, dict) else None
    if not isinstance(prices, list):
        raise UpstreamError(f"No chart data for {coin_id}")

    raw: list[tuple[int, float]] = []
    for pair in prices:
        if not isinstance(pair, list | tuple) or len(pair) < 2:
            continue
        ts_ms = to_number(pair[0])
        value = to_number(pair[1])
        if ts_ms is None or value is None:
            continue
        raw.append((int(ts_ms // 1000), value))

    points = [PricePoint(time=t, value=v) for t, v in sorted_points(raw)]
    return HistorySeries(
        symbol=coin_id,
        points=points,
        meta=HistoryMeta(provider=PROVIDER, as_of=points[-1].time if points else None),
    )


async def fetch_market_chart(
    client: httpx.AsyncClient,
    coin_id: str,
    api_key: str,
    *,
    days: int = 1,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> HistorySeries:
    data = await fetch_json(client, market_chart_url(coin_id, api_key, days), proxy_url=proxy_url, token=token)
    return parse_market_chart(data, coin_id)
