# focusboard/observability.py
# Purpose: Prometheus counters for inbound requests, cache lookups and outbound calls.
# Pitfalls: Metrics are process-global; label by route template, never by raw URL.

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

request_log = logging.getLogger("request")

UNMATCHED = "<unmatched>"

REQUEST_COUNT = Counter(
    "fb_http_requests_total",
    "Inbound HTTP requests by route template",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "fb_http_request_duration_seconds",
    "Inbound request latency, including any upstream wait",
    ["path"],
    buckets=(0.005, 0.025, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

CACHE_EVENTS = Counter(
    "fb_cache_events_total",
    "TTL cache lookups by outcome (hit/miss/join/error/evict)",
    ["cache", "outcome"],
)

UPSTREAM_REQUESTS = Counter(
    "fb_upstream_requests_total",
    "Outbound requests made by the proxy or the provider clients",
    ["host", "status"],
)


def record_upstream(host: str | None, status: int | str) -> None:
    UPSTREAM_REQUESTS.labels(host=host or "unknown", status=str(status)).inc()


def route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED


def metrics_endpoint() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def timing_middleware(request: Request, call_next: Callable):
    """Count and time every request; one structured log line per request."""
    start = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - start

    path = route_label(request)
    REQUEST_COUNT.labels(method=request.method, path=path, status=str(response.status_code)).inc()
    REQUEST_LATENCY.labels(path=path).observe(elapsed)

    request_log.info(
        "%s %s -> %d",
        request.method,
        request.url.path,
        response.status_code,
        extra={
            "status": response.status_code,
            "duration_s": round(elapsed, 6),
            "client": request.client.host if request.client else None,
        },
    )
    return response
