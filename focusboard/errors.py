from __future__ import annotations

from collections.abc import Iterable

from fastapi import status
from fastapi.responses import JSONResponse

from focusboard.schemas import ErrorCode, ErrorResponse


class FocusBoardError(Exception):
    """Base for every failure the data core raises on purpose."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ConfigurationError(FocusBoardError):
    """A provider key is missing; raised before any network call."""


class ValidationError(FocusBoardError):
    code = ErrorCode.INVALID_REQUEST


class UpstreamError(FocusBoardError):
    """Provider or proxy answered with a non-2xx status (or an unusable body)."""

    code = ErrorCode.UPSTREAM_ERROR

    def __init__(self, message: str, status_code: int | None = None, code: ErrorCode | None = None):
        super().__init__(message, code)
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    code = ErrorCode.RATE_LIMIT

    def __init__(self, message: str = "Rate limit reached"):
        super().__init__(message, status_code=status.HTTP_429_TOO_MANY_REQUESTS)


class UpstreamUnavailableError(UpstreamError):
    """Network failure talking to the upstream; retryable by the poller."""

    code = ErrorCode.UPSTREAM_UNAVAILABLE


class MissingSymbolsError(FocusBoardError):
    code = ErrorCode.MISSING_SYMBOLS

    def __init__(self, symbols: Iterable[str]):
        self.symbols = list(symbols)
        super().__init__(f"No quote data found for: {', '.join(self.symbols)}")


class HostNotAllowedError(FocusBoardError):
    code = ErrorCode.HOST_NOT_ALLOWED

    def __init__(self, host: str):
        self.host = host
        super().__init__("Host not allowed")


class RequestCancelled(FocusBoardError):
    code = ErrorCode.CANCELLED

    def __init__(self, message: str = "Request cancelled"):
        super().__init__(message)


def error_response(message: str, http_status: int = status.HTTP_502_BAD_GATEWAY) -> JSONResponse:
    body = ErrorResponse(error=message)
    return JSONResponse(
        status_code=http_status,
        content=body.model_dump(),
        headers={"Access-Control-Allow-Origin": "*"},
    )


def status_for(exc: Exception) -> int:
    """Map a forwarding failure to the HTTP status the proxy answers with."""
    if isinstance(exc, HostNotAllowedError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, RateLimitedError):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_502_BAD_GATEWAY
