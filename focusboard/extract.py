"""
Ordered extraction strategies for loosely-shaped provider payloads.

Providers disagree on where "current price" or "last refreshed" lives, so each
field is described as a priority table of extractors. Evaluation walks the
table in order and keeps the first candidate that parses:

    price = first_number(payload, (Path("summary", "price"), Path("price")))

Numbers must be finite; timestamps accept ISO/date-like strings (parsed with
pandas) or a bare number of epoch seconds.
"""

from __future__ import annotations

import math
import re
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

import pandas as pd

Extractor = Callable[[Any], Any]

_NUMERIC_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
# "UTC-05:00" means five hours behind UTC; dateutil would read it POSIX-style and flip the sign
_ZONE_SUFFIX_RE = re.compile(r"\s*(?:UTC|GMT)([+-]\d{2}:?\d{2})$")


class Path:
    """Walk nested dict keys / list indexes; any miss yields None."""

    def __init__(self, *keys: str | int):
        self.keys = keys

    def __call__(self, payload: Any) -> Any:
        node = payload
        for key in self.keys:
            if isinstance(key, int):
                if not isinstance(node, list) or not -len(node) <= key < len(node):
                    return None
                node = node[key]
            else:
                if not isinstance(node, dict):
                    return None
                node = node.get(key)
            if node is None:
                return None
        return node

    def __repr__(self) -> str:
        return f"Path({'.'.join(str(k) for k in self.keys)})"


class Const:
    """A value already known to the caller, slotted into a priority table."""

    def __init__(self, value: Any):
        self.value = value

    def __call__(self, payload: Any) -> Any:
        return self.value

    def __repr__(self) -> str:
        return f"Const({self.value!r})"


class MarketMatch:
    """First entry across `payload[section][*]` lists whose `stock` starts with the symbol."""

    def __init__(self, symbol: str, field: str = "price", section: str = "markets"):
        self.symbol = symbol
        self.field = field
        self.section = section

    def __call__(self, payload: Any) -> Any:
        markets = payload.get(self.section) if isinstance(payload, dict) else None
        if not isinstance(markets, dict):
            return None
        for entries in markets.values():
            if not isinstance(entries, list):
                continue
            for item in entries:
                stock = item.get("stock") if isinstance(item, dict) else None
                if isinstance(stock, str) and stock.startswith(self.symbol):
                    return item.get(self.field)
        return None

    def __repr__(self) -> str:
        return f"MarketMatch({self.symbol})"


def to_number(value: Any) -> float | None:
    """Finite float or None. Accepts '$1,234.50'-style strings."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        out = float(value)
    elif isinstance(value, str):
        cleaned = value.strip().replace(",", "").lstrip("$")
        if not _NUMERIC_RE.match(cleaned):
            return None
        out = float(cleaned)
    else:
        return None
    return out if math.isfinite(out) else None


def parse_timestamp_ms(value: Any) -> int | None:
    """Epoch milliseconds from a date-like string, datetime, or epoch-seconds number."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp() * 1000)
    if isinstance(value, int | float):
        seconds = to_number(value)
        return int(seconds * 1000) if seconds is not None else None
    if not isinstance(value, str):
        return None
    text = value.strip()
    if _NUMERIC_RE.match(text):
        seconds = to_number(text)
        return int(seconds * 1000) if seconds is not None else None
    text = _ZONE_SUFFIX_RE.sub(r" \1", text)
    try:
        ts = pd.Timestamp(text)
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)


def parse_timestamp_s(value: Any) -> int | None:
    ms = parse_timestamp_ms(value)
    return ms // 1000 if ms is not None else None


def first_number(payload: Any, strategies: Iterable[Extractor | None]) -> float | None:
    for strategy in strategies:
        if strategy is None:
            continue
        num = to_number(strategy(payload))
        if num is not None:
            return num
    return None


def first_timestamp_s(payload: Any, strategies: Iterable[Extractor | None]) -> int | None:
    for strategy in strategies:
        if strategy is None:
            continue
        ts = parse_timestamp_s(strategy(payload))
        if ts is not None:
            return ts
    return None


def sorted_points(points: Sequence[tuple[int, float]]) -> list[tuple[int, float]]:
    """Ascending by time; a repeated timestamp keeps its last value."""
    by_time: dict[int, float] = {}
    for t, v in points:
        by_time[t] = v
    return sorted(by_time.items())
