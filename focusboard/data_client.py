"""
Outbound JSON fetches for the provider adapters.

Requests go straight to the provider, or through the FocusBoard proxy when a
proxy URL is configured:

    https://api.example.com/x?y=1  ->  {proxy}/fetch?url=https%3A%2F%2Fapi.example.com%2Fx%3Fy%3D1

Notes / Pitfalls:
- Provider endpoints rate-limit; a 429 is raised as RateLimitedError so callers
  can back off instead of treating it as a hard failure.
- Query strings carry API keys; use `redact()` before logging a URL.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from focusboard.cancel import CancelToken, guarded
from focusboard.errors import RateLimitedError, UpstreamError, UpstreamUnavailableError
from focusboard.observability import record_upstream

logger = logging.getLogger(__name__)

ORIGIN_HEADER = "x-focusboard-origin"
_SECRET_PARAMS = {"apikey", "api_key", "x_cg_demo_api_key"}


def build_url(url: str, proxy_url: str | None = None) -> str:
    if not proxy_url:
        return url
    return f"{proxy_url.rstrip('/')}/fetch?url={quote(url, safe='')}"


def with_params(base: str, params: dict[str, Any]) -> str:
    """Append query params, skipping None values."""
    clean = {k: str(v) for k, v in params.items() if v is not None}
    if not clean:
        return base
    sep = "&" if "?" in base else "?"
    return f"{base}{sep}{urlencode(clean)}"


def redact(url: str) -> str:
    parts = urlsplit(url)
    if not parts.query:
        return url
    query = [(k, "***" if k.lower() in _SECRET_PARAMS else v) for k, v in parse_qsl(parts.query, keep_blank_values=True)]
    return urlunsplit(parts._replace(query=urlencode(query)))


def create_client(timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout),
        headers={"Accept": "application/json"},
        transport=transport,
    )


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    proxy_url: str | None = None,
    token: CancelToken | None = None,
) -> Any:
    """GET `url` (optionally via the proxy) and decode JSON.

    Raises:
      RateLimitedError       on 429
      UpstreamError          on any other non-2xx or an undecodable body
      UpstreamUnavailableError on network failure
      RequestCancelled       if `token` fires first
    """
    target = build_url(url, proxy_url)
    headers = {ORIGIN_HEADER: "extension"} if proxy_url else None
    host = urlsplit(url).hostname or "unknown"

    try:
        resp = await guarded(client.get(target, headers=headers), token)
    except httpx.RequestError as e:
        record_upstream(host, "network_error")
        logger.warning("upstream request failed: %s %s", redact(url), e)
        raise UpstreamUnavailableError(f"Could not reach {host}: {e}") from e

    record_upstream(host, resp.status_code)

    if resp.status_code == 429:
        raise RateLimitedError(f"Rate limit reached for {host}")
    if not resp.is_success:
        raise UpstreamError(f"Failed to load data ({resp.status_code})", status_code=resp.status_code)

    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamError(f"Invalid JSON from {host}", status_code=resp.status_code) from e
