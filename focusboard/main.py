# focusboard/main.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from focusboard.cache import TTLCache
from focusboard.config import Settings
from focusboard.errors import error_response
from focusboard.logging_conf import setup_logging
from focusboard.observability import metrics_endpoint, timing_middleware
from focusboard.proxy import Forwarder
from focusboard.proxy import router as proxy_router
from focusboard.schemas import HealthResponse
from focusboard.version import SERVICE_VERSION, service_label


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    cache: TTLCache | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    cache = cache or TTLCache(
        settings.cache_ttl_sec,
        max_entries=settings.cache_max_entries,
        name="proxy",
    )
    forwarder = Forwarder(
        settings.allowed_hosts,
        cache,
        timeout=settings.http_timeout_sec,
        transport=transport,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await forwarder.aclose()

    app = FastAPI(title="FocusBoard proxy", version=SERVICE_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.forwarder = forwarder

    # --- Routers ---
    app.include_router(proxy_router)

    # --- Observability ---
    app.middleware("http")(timing_middleware)

    # preflight for the extension's custom origin header
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response("Not found", 404)
        return error_response(str(exc.detail), exc.status_code)

    # --- Utility endpoints ---
    @app.get("/health", response_model=HealthResponse)
    def health():
        return HealthResponse(
            as_of=datetime.now(UTC).isoformat(),
            service=service_label(),
            cache_entries=len(forwarder.cache),
            allowed_hosts=sorted(forwarder.allowed_hosts),
        )

    @app.get("/metrics")
    def metrics():
        return metrics_endpoint()

    return app


def run() -> None:
    """Console entry point: `focusboard-proxy`."""
    import uvicorn

    settings = Settings.from_env()
    setup_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.getenv("HOST", "127.0.0.1"),
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
