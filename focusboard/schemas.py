from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


# --- Error taxonomy ---
class ErrorCode(str, Enum):
    MISSING_CG_KEY = "MISSING_CG_KEY"
    MISSING_FMP_KEY = "MISSING_FMP_KEY"
    MISSING_STOCK_KEY = "MISSING_STOCK_KEY"
    MISSING_SEARCH_KEY = "MISSING_SEARCH_KEY"
    INVALID_SYMBOL = "INVALID_SYMBOL"
    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_SYMBOLS = "MISSING_SYMBOLS"
    HOST_NOT_ALLOWED = "HOST_NOT_ALLOWED"
    RATE_LIMIT = "RATE_LIMIT"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    UPSTREAM_UNAVAILABLE = "UPSTREAM_UNAVAILABLE"
    CANCELLED = "CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorResponse(BaseModel):
    error: str


# --- Market data ---
class PricePoint(BaseModel):
    time: int  # unix seconds
    value: float


class Quote(BaseModel):
    symbol: str
    price: float
    time: int
    history: list[PricePoint] = Field(default_factory=list)
    # which provider resolved it; kept off the wire
    provider: str | None = Field(default=None, exclude=True)


class HistoryMeta(BaseModel):
    provider: str
    as_of: int | None = None


class HistorySeries(BaseModel):
    symbol: str
    points: list[PricePoint] = Field(default_factory=list)
    meta: HistoryMeta


class Suggestion(BaseModel):
    symbol: str
    name: str
    exchange: str = ""


# --- Health payload ---
class HealthResponse(BaseModel):
    status: Literal["ok"] = "ok"
    as_of: str
    service: str = "focusboard-proxy"
    cache_entries: int
    allowed_hosts: list[str]
