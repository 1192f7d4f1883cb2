"""
Market data facade: quotes, history, search and coin charts with provider fallback.

Provider order:
  quotes   FMP (one batched call)  -> SerpApi (per missing symbol)
  history  FMP                     -> SerpApi
  search   FMP search-ticker       -> SerpApi summary/markets/discover_more
  coins    CoinGecko only

Every provider call goes through one TTLCache so concurrent identical requests
share a single upstream call.

Behavior:
  - No provider key configured -> ConfigurationError before any network call.
  - Per-symbol fallback failures are logged, never raised; the batch fails only
    if some symbol stays unresolved (MissingSymbolsError names them).
  - Failures are never cached.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

import httpx

from focusboard.cache import TTLCache
from focusboard.cancel import CancelToken
from focusboard.config import Settings
from focusboard.data_client import create_client
from focusboard.errors import (
    ConfigurationError,
    FocusBoardError,
    MissingSymbolsError,
    RequestCancelled,
    ValidationError,
)
from focusboard.providers import coingecko, fmp, serp
from focusboard.schemas import ErrorCode, HistoryMeta, HistorySeries, Quote, Suggestion
from focusboard.symbols import normalize_query, normalize_symbol, normalize_symbols

logger = logging.getLogger(__name__)

RANGES = ("1D", "5D", "1Y", "5Y")
DEFAULT_RANGE = "1D"
DEFAULT_SEARCH_LIMIT = 8


def normalize_range(range_key: str | None) -> str:
    """Known ranges pass through (case-insensitive); anything else maps to 1D."""
    key = (range_key or "").strip().upper()
    return key if key in RANGES else DEFAULT_RANGE


class MarketData:
    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        cache: TTLCache | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.client = client or create_client(settings.http_timeout_sec)
        self.cache = cache or TTLCache(settings.cache_ttl_sec, name="client")
        self._clock = clock
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _now_s(self) -> int:
        return int(self._clock())

    @property
    def _proxy(self) -> str | None:
        return self.settings.proxy_url

    # ------------------------------------------------------------------ quotes

    async def fetch_quotes(self, symbols: Iterable[str], *, token: CancelToken | None = None) -> list[Quote]:
        """All-or-nothing batch: a Quote per normalized symbol, in input order."""
        unique = normalize_symbols(symbols)
        if not unique:
            return []

        s = self.settings
        if not s.fmp_key and not s.serp_key:
            raise ConfigurationError(
                "A SerpApi or FMP key is required to load stock data",
                ErrorCode.MISSING_STOCK_KEY,
            )

        resolved: dict[str, Quote] = {}
        missing = list(unique)

        if s.fmp_key:
            try:
                batch = await self._fmp_quotes(unique, token)
            except RequestCancelled:
                raise
            except FocusBoardError as e:
                logger.warning("FMP quote fetch failed, falling back to SerpApi: %s", e, extra={"provider": fmp.PROVIDER})
                batch = {}
            for sym in unique:
                if sym in batch:
                    resolved[sym] = batch[sym]
            missing = [sym for sym in unique if sym not in resolved]

        if missing and s.serp_key:
            records = await asyncio.gather(*(self._serp_quote_or_none(sym, token) for sym in missing))
            for record in records:
                if record is not None:
                    resolved[record.symbol] = record
            missing = [sym for sym in missing if sym not in resolved]

        if missing:
            raise MissingSymbolsError(missing)

        return [resolved[sym] for sym in unique]

    async def _fmp_quotes(self, symbols: list[str], token: CancelToken | None) -> dict[str, Quote]:
        key = f"fmp:quote:{','.join(symbols)}"
        return await self.cache.get_or_fetch(
            key,
            lambda: fmp.fetch_quotes(
                self.client, symbols, self.settings.fmp_key, now_s=self._now_s(), proxy_url=self._proxy
            ),
            token=token,
        )

    async def fetch_serp_quote(self, symbol: str, *, token: CancelToken | None = None) -> Quote:
        sym = normalize_symbol(symbol)
        return await self.cache.get_or_fetch(
            f"serp:quote:{sym}",
            lambda: serp.fetch_quote(
                self.client, sym, self.settings.serp_key, now_s=self._now_s(), proxy_url=self._proxy
            ),
            token=token,
        )

    async def _serp_quote_or_none(self, symbol: str, token: CancelToken | None) -> Quote | None:
        try:
            return await self.fetch_serp_quote(symbol, token=token)
        except RequestCancelled:
            raise
        except FocusBoardError as e:
            logger.warning("SerpApi quote fetch failed for %s: %s", symbol, e, extra={"symbol": symbol})
            return None

    # ----------------------------------------------------------------- history

    async def fetch_history(
        self,
        symbol: str,
        range_key: str | None = DEFAULT_RANGE,
        *,
        token: CancelToken | None = None,
    ) -> HistorySeries:
        sym = normalize_symbol(symbol)
        if not sym:
            raise ValidationError("A valid ticker is required", ErrorCode.INVALID_SYMBOL)

        s = self.settings
        if not s.fmp_key and not s.serp_key:
            raise ConfigurationError(
                "A SerpApi or FMP key is required to load stock history",
                ErrorCode.MISSING_STOCK_KEY,
            )

        rng = normalize_range(range_key)
        namespace = "fmp" if s.fmp_key else "serp"
        key = f"history:{namespace}:{sym}:{rng}"
        return await self.cache.get_or_fetch(key, lambda: self._load_history(sym, rng), token=token)

    async def _load_history(self, symbol: str, rng: str) -> HistorySeries:
        s = self.settings
        if s.fmp_key:
            try:
                series = await fmp.fetch_history(self.client, symbol, rng, s.fmp_key, proxy_url=self._proxy)
            except FocusBoardError as e:
                if not s.serp_key:
                    raise
                logger.warning("FMP history fetch failed for %s: %s", symbol, e, extra={"symbol": symbol})
            else:
                if series is not None:
                    return series
                if not s.serp_key:
                    return HistorySeries(symbol=symbol, points=[], meta=HistoryMeta(provider=fmp.PROVIDER))
                logger.info("FMP history empty for %s %s, trying SerpApi", symbol, rng)

        return await serp.fetch_history(self.client, symbol, rng, s.serp_key, proxy_url=self._proxy)

    # ------------------------------------------------------------------ search

    async def search(
        self,
        query: str,
        limit: int = DEFAULT_SEARCH_LIMIT,
        *,
        token: CancelToken | None = None,
    ) -> list[Suggestion]:
        q = normalize_query(query)
        if not q:
            return []

        s = self.settings
        if not s.fmp_key and not s.serp_key:
            raise ConfigurationError("An FMP or SerpApi key is required to search", ErrorCode.MISSING_SEARCH_KEY)

        limit = max(1, int(limit))
        key = f"search:{q.lower()}:{limit}"
        return await self.cache.get_or_fetch(key, lambda: self._load_search(q, limit), token=token)

    async def _load_search(self, q: str, limit: int) -> list[Suggestion]:
        s = self.settings
        attempts: list[tuple[str, Callable]] = []
        if s.fmp_key:
            attempts.append((fmp.PROVIDER, lambda: fmp.search(self.client, q, limit, s.fmp_key, proxy_url=self._proxy)))
        if s.serp_key:
            attempts.append((serp.PROVIDER, lambda: serp.search(self.client, q, limit, s.serp_key, proxy_url=self._proxy)))

        last_error: FocusBoardError | None = None
        answered = False
        for provider, call in attempts:
            try:
                found = await call()
            except FocusBoardError as e:
                logger.warning("%s search failed for %r: %s", provider, q, e, extra={"provider": provider})
                last_error = e
                continue
            answered = True
            results = _dedupe(found, limit)
            if results:
                return results

        # every provider errored: surface it instead of a made-up suggestion
        if not answered and last_error is not None:
            raise last_error
        return [Suggestion(symbol=q.upper(), name=q)]

    # ------------------------------------------------------------------- coins

    async def fetch_coin_chart(
        self,
        coin_id: str,
        *,
        days: int = 1,
        token: CancelToken | None = None,
    ) -> HistorySeries:
        if not self.settings.cg_key:
            raise ConfigurationError("A CoinGecko key is required", ErrorCode.MISSING_CG_KEY)
        coin = (coin_id or "").strip().lower()
        if not coin:
            raise ValidationError("A coin id is required", ErrorCode.INVALID_SYMBOL)
        return await self.cache.get_or_fetch(
            f"coin:{coin}:{days}",
            lambda: coingecko.fetch_market_chart(
                self.client, coin, self.settings.cg_key, days=days, proxy_url=self._proxy
            ),
            token=token,
        )


def _dedupe(suggestions: Iterable[Suggestion], limit: int) -> list[Suggestion]:
    out: list[Suggestion] = []
    seen: set[str] = set()
    for s in suggestions:
        if s.symbol in seen:
            continue
        seen.add(s.symbol)
        out.append(s)
        if len(out) >= limit:
            break
    return out
