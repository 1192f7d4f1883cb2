# focusboard/proxy.py
# Purpose: Same-origin forwarder for the dashboard: GET /fetch?url=<absolute URL>.
# Why: Providers lack CORS and rate-limit hard; one shared cache in front of them.
# Pitfalls: The host allowlist is the security boundary. Redirects are not followed,
#           so an allowed host cannot bounce the proxy somewhere else.
#           An unparseable target URL answers 400 (caller error), not 502.

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

import httpx
from fastapi import APIRouter, Depends, Query, Request, Response, status

from focusboard.cache import TTLCache
from focusboard.cancel import CancelToken
from focusboard.errors import (
    FocusBoardError,
    HostNotAllowedError,
    RateLimitedError,
    UpstreamError,
    UpstreamUnavailableError,
    ValidationError,
    error_response,
    status_for,
)
from focusboard.observability import record_upstream

logger = logging.getLogger(__name__)

router = APIRouter(tags=["proxy"])

DEFAULT_CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class UpstreamPayload:
    status: int
    content_type: str
    body: bytes


def host_key(url: httpx.URL) -> str:
    """Hostname, plus ':port' when the URL spells one out."""
    return f"{url.host}:{url.port}" if url.port is not None else url.host


class Forwarder:
    """Allowlist check + cached GET forwarding with one keep-alive client per scheme."""

    def __init__(
        self,
        allowed_hosts: Iterable[str],
        cache: TTLCache,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.allowed_hosts = frozenset(h.lower() for h in allowed_hosts)
        self.cache = cache
        self._timeout = timeout
        self._transport = transport
        self._clients: dict[str, httpx.AsyncClient] = {}

    def check(self, raw_url: str) -> httpx.URL:
        try:
            url = httpx.URL(raw_url)
        except (httpx.InvalidURL, TypeError) as e:
            raise ValidationError("Invalid url parameter") from e
        if url.scheme not in ("http", "https") or not url.host:
            raise ValidationError("Invalid url parameter")
        host = host_key(url).lower()
        if host not in self.allowed_hosts:
            raise HostNotAllowedError(host)
        return url

    async def fetch(self, raw_url: str, *, token: CancelToken | None = None) -> UpstreamPayload:
        url = self.check(raw_url)
        # keyed by the exact string the caller sent
        return await self.cache.get_or_fetch(raw_url, lambda: self._forward(url), token=token)

    def _client_for(self, scheme: str) -> httpx.AsyncClient:
        client = self._clients.get(scheme)
        if client is None:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                limits=httpx.Limits(max_keepalive_connections=10),
                follow_redirects=False,
                transport=self._transport,
            )
            self._clients[scheme] = client
        return client

    async def _forward(self, url: httpx.URL) -> UpstreamPayload:
        client = self._client_for(url.scheme)
        try:
            resp = await client.get(url, headers={"Accept": "application/json"})
        except httpx.RequestError as e:
            record_upstream(url.host, "network_error")
            raise UpstreamUnavailableError(f"Upstream request failed: {e}") from e

        record_upstream(url.host, resp.status_code)
        if resp.status_code == 429:
            raise RateLimitedError("Upstream rate limit reached")
        if not resp.is_success:
            raise UpstreamError(f"Upstream responded with {resp.status_code}", status_code=resp.status_code)

        return UpstreamPayload(
            status=resp.status_code,
            content_type=resp.headers.get("content-type") or DEFAULT_CONTENT_TYPE,
            body=resp.content,
        )

    async def aclose(self) -> None:
        for client in self._clients.values():
            await client.aclose()
        self._clients.clear()


def get_forwarder(request: Request) -> Forwarder:
    return request.app.state.forwarder


@router.get("/fetch")
async def fetch(
    url: str | None = Query(None, description="Absolute, percent-encoded target URL"),
    forwarder: Forwarder = Depends(get_forwarder),
) -> Response:
    if not url:
        return error_response("Missing url parameter", status.HTTP_400_BAD_REQUEST)

    try:
        payload = await forwarder.fetch(url)
    except FocusBoardError as e:
        code = status_for(e)
        if code >= 500:
            logger.warning("forward failed: %s", e.message, extra={"status": code})
        else:
            logger.info("forward rejected: %s", e.message, extra={"status": code})
        return error_response(e.message, code)

    max_age = int(forwarder.cache.ttl)
    return Response(
        content=payload.body,
        status_code=payload.status,
        headers={
            "Content-Type": payload.content_type,
            "Cache-Control": f"public, max-age={max_age}",
            "Access-Control-Allow-Origin": "*",
        },
    )
