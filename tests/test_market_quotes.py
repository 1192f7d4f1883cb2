"""Batch quote fetching with FMP -> SerpApi fallback."""

import asyncio

import httpx
import pytest

from conftest import FIXED_NOW, fmp, serp
from focusboard.errors import ConfigurationError, MissingSymbolsError
from focusboard.schemas import ErrorCode

AAPL_ROW = {"symbol": "AAPL", "price": 190.5, "timestamp": 1_704_101_400}


def serp_price_payload(price, refreshed="2024-01-01T10:00:00Z"):
    return {"finance_results": {"price": {"price": price, "last_refreshed_utc": refreshed}}}


async def test_primary_then_secondary_in_input_order(make_market, upstream):
    upstream.json(fmp("/api/v3/quote/"), [AAPL_ROW])
    upstream.json(serp("ZZZZ"), serp_price_payload(12.5))
    market = make_market()

    quotes = await market.fetch_quotes(["AAPL", "ZZZZ"])

    assert [q.symbol for q in quotes] == ["AAPL", "ZZZZ"]
    assert quotes[0].price == 190.5
    assert quotes[0].time == 1_704_101_400
    assert quotes[0].provider == "FMP"
    assert quotes[1].price == 12.5
    assert quotes[1].time == 1_704_103_200
    assert quotes[1].provider == "SERP"
    assert "provider" not in quotes[1].model_dump()
    # one batched primary call
    fmp_calls = upstream.calls_to("financialmodelingprep.com", "/api/v3/quote/")
    assert len(fmp_calls) == 1
    assert fmp_calls[0].url.path == "/api/v3/quote/AAPL,ZZZZ"


async def test_unresolved_symbol_fails_whole_batch(make_market, upstream):
    upstream.json(fmp("/api/v3/quote/"), [AAPL_ROW])
    upstream.json(serp("ZZZZ"), {"error": "boom"}, status=500)
    market = make_market()

    with pytest.raises(MissingSymbolsError) as exc:
        await market.fetch_quotes(["AAPL", "ZZZZ"])

    assert "ZZZZ" in str(exc.value)
    assert "AAPL" not in str(exc.value)
    assert exc.value.symbols == ["ZZZZ"]


async def test_symbols_normalized_and_deduplicated(make_market, upstream):
    upstream.json(
        fmp("/api/v3/quote/"),
        [{"symbol": "MSFT", "price": 400}, AAPL_ROW],
    )
    market = make_market()

    quotes = await market.fetch_quotes([" aapl", "msft ", "AAPL", "", None])

    assert [q.symbol for q in quotes] == ["AAPL", "MSFT"]
    assert upstream.requests[0].url.path == "/api/v3/quote/AAPL,MSFT"


async def test_empty_input_makes_no_calls(make_market, upstream):
    market = make_market()
    assert await market.fetch_quotes([]) == []
    assert upstream.requests == []


async def test_missing_configuration_fails_before_network(make_market, upstream):
    market = make_market(fmp_key=None, serp_key=None)

    with pytest.raises(ConfigurationError) as exc:
        await market.fetch_quotes(["AAPL"])

    assert exc.value.code == ErrorCode.MISSING_STOCK_KEY
    assert upstream.requests == []


async def test_primary_failure_falls_back_for_every_symbol(make_market, upstream):
    upstream.json(fmp("/api/v3/quote/"), {"Error Message": "limit"}, status=500)
    upstream.json(serp("AAPL:NASDAQ"), serp_price_payload(191))
    upstream.json(serp("GOOGL:NASDAQ"), serp_price_payload(140))
    market = make_market()

    quotes = await market.fetch_quotes(["GOOGL", "AAPL"])

    assert [(q.symbol, q.price) for q in quotes] == [("GOOGL", 140.0), ("AAPL", 191.0)]


async def test_primary_only_with_missing_symbol(make_market, upstream):
    upstream.json(fmp("/api/v3/quote/"), [AAPL_ROW])
    market = make_market(serp_key=None)

    with pytest.raises(MissingSymbolsError, match="ZZZZ"):
        await market.fetch_quotes(["AAPL", "ZZZZ"])
    assert upstream.calls_to("serpapi.com") == []


async def test_secondary_only(make_market, upstream):
    upstream.json(serp("AAPL:NASDAQ"), serp_price_payload(191))
    market = make_market(fmp_key=None)

    quotes = await market.fetch_quotes(["AAPL"])

    assert quotes[0].price == 191.0
    assert upstream.calls_to("financialmodelingprep.com") == []


async def test_serp_price_priority_prefers_latest_graph_point(make_market, upstream):
    payload = {
        "graph": [
            {"date": "2024-01-01T09:35:00Z", "price": 101.0},
            {"date": "2024-01-01T09:30:00Z", "price": 100.0},
        ],
        "finance_results": {"price": {"price": 150.0}},
    }
    upstream.json(serp("ZZZZ"), payload)
    market = make_market(fmp_key=None)

    [quote] = await market.fetch_quotes(["ZZZZ"])

    assert quote.price == 101.0
    assert quote.time == 1_704_101_700
    assert [p.time for p in quote.history] == [1_704_101_400, 1_704_101_700]


async def test_serp_price_falls_through_to_market_match(make_market, upstream):
    payload = {
        "summary": {"price": "N/A"},
        "markets": {"us": [{"stock": "ZZZZ:NYSE", "price": 42.0}]},
    }
    upstream.json(serp("ZZZZ"), payload)
    market = make_market(fmp_key=None)

    [quote] = await market.fetch_quotes(["ZZZZ"])

    assert quote.price == 42.0
    assert quote.time == FIXED_NOW  # no timestamp candidate parsed


async def test_serp_payload_without_price_is_a_failure_not_zero(make_market, upstream):
    upstream.json(serp("ZZZZ"), {"summary": {"title": "Nothing here"}})
    market = make_market(fmp_key=None)

    with pytest.raises(MissingSymbolsError):
        await market.fetch_quotes(["ZZZZ"])


async def test_concurrent_batches_share_one_primary_call(make_market, upstream):
    async def slow(request):
        await asyncio.sleep(0.01)
        return httpx.Response(200, json=[AAPL_ROW])

    upstream.route(fmp("/api/v3/quote/"), slow)
    market = make_market()

    results = await asyncio.gather(*(market.fetch_quotes(["AAPL"]) for _ in range(5)))

    assert len(upstream.requests) == 1
    assert all(r[0].price == 190.5 for r in results)


async def test_quotes_cached_within_ttl(make_market, upstream):
    upstream.json(fmp("/api/v3/quote/"), [AAPL_ROW])
    market = make_market()

    await market.fetch_quotes(["AAPL"])
    await market.fetch_quotes(["aapl"])

    assert len(upstream.requests) == 1
