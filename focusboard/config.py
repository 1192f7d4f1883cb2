# focusboard/config.py
# Purpose: One place for env-driven knobs (proxy port, cache TTL, provider keys).
# Pitfalls: Read once at startup; tests build Settings(...) directly instead.

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_PORT = 8787
DEFAULT_CACHE_TTL_MS = 60000
DEFAULT_ALLOWED_HOSTS = frozenset(
    {
        "api.coingecko.com",
        "financialmodelingprep.com",
        "serpapi.com",
    }
)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _str_env(name: str) -> str | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _hosts_env(name: str) -> frozenset[str]:
    raw = os.getenv(name)
    if not raw:
        return DEFAULT_ALLOWED_HOSTS
    return frozenset(h.strip().lower() for h in raw.split(",") if h.strip())


@dataclass(frozen=True)
class Settings:
    port: int = DEFAULT_PORT
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS
    cache_max_entries: int = 1024
    allowed_hosts: frozenset[str] = field(default_factory=lambda: DEFAULT_ALLOWED_HOSTS)
    http_timeout_sec: float = 10.0
    cg_key: str | None = None
    fmp_key: str | None = None
    serp_key: str | None = None
    proxy_url: str | None = None
    poll_interval_sec: float = 600.0
    log_level: str = "INFO"

    @property
    def cache_ttl_sec(self) -> float:
        return self.cache_ttl_ms / 1000.0

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            port=_int_env("PORT", DEFAULT_PORT),
            cache_ttl_ms=_int_env("CACHE_TTL", DEFAULT_CACHE_TTL_MS),
            cache_max_entries=_int_env("FB_CACHE_MAX_ENTRIES", 1024),
            allowed_hosts=_hosts_env("FB_ALLOWED_HOSTS"),
            http_timeout_sec=_float_env("FB_HTTP_TIMEOUT_SEC", 10.0),
            cg_key=_str_env("FB_CG_KEY"),
            fmp_key=_str_env("FB_FMP_KEY"),
            serp_key=_str_env("FB_SERP_KEY"),
            proxy_url=_str_env("FB_PROXY_URL"),
            poll_interval_sec=_float_env("FB_POLL_INTERVAL_SEC", 600.0),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        )
