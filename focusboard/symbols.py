# focusboard/symbols.py
# Purpose: Known coins/stocks shown on the board and symbol normalization.

from __future__ import annotations

import re
from collections.abc import Iterable

COINS: dict[str, str] = {
    "bitcoin": "Bitcoin",
    "ethereum": "Ethereum",
}

# symbol -> (label, exchange)
STOCKS: dict[str, tuple[str, str]] = {
    "AAPL": ("Apple (AAPL)", "NASDAQ"),
    "GOOGL": ("Google (GOOGL)", "NASDAQ"),
}

DEFAULT_COIN = "bitcoin"

_SYMBOL_RE = re.compile(r"^[A-Z0-9][A-Z0-9.\-^=]{0,14}$")


def normalize_symbol(symbol: str | None) -> str:
    return (symbol or "").strip().upper()


def normalize_symbols(symbols: Iterable[str | None]) -> list[str]:
    """Trim + uppercase, drop blanks, keep first appearance order."""
    seen: dict[str, None] = {}
    for raw in symbols:
        sym = normalize_symbol(raw)
        if sym and sym not in seen:
            seen[sym] = None
    return list(seen)


def normalize_query(query: str | None) -> str:
    return " ".join((query or "").split())


def is_coin(coin_id: str) -> bool:
    return coin_id in COINS


def exchange_for(symbol: str) -> str | None:
    known = STOCKS.get(symbol)
    return known[1] if known else None


def to_serp_query(symbol: str) -> str | None:
    """'AAPL' -> 'AAPL:NASDAQ'; already-qualified 'X:EXCH' passes through; junk -> None."""
    symbol = normalize_symbol(symbol)
    if ":" in symbol:
        ticker, _, exchange = symbol.partition(":")
        if _SYMBOL_RE.match(ticker) and exchange.isalpha():
            return symbol
        return None
    if not _SYMBOL_RE.match(symbol):
        return None
    exchange = exchange_for(symbol)
    return f"{symbol}:{exchange}" if exchange else symbol
