# focusboard/logging_conf.py
# Purpose: One JSON object per log line on stdout, for the proxy and the data layer alike.
# Pitfalls: Only run() calls setup_logging(); importing focusboard never touches logging config.

from __future__ import annotations

import json
import logging
import os
from logging.config import dictConfig
from typing import Any

# attributes every LogRecord carries; anything else arrived through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# third-party loggers that are noisy at INFO
_QUIET = ("httpx", "httpcore", "uvicorn.access")


class JsonFormatter(logging.Formatter):
    """Render a record and its `extra=` context (cache_key, symbol, provider, ...) as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            payload["where"] = f"{record.module}.{record.funcName}:{record.lineno}"
        for key, val in vars(record).items():
            if key not in _RECORD_ATTRS and not key.startswith("_") and val is not None:
                payload[key] = val
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _logger(level: str) -> dict[str, Any]:
    return {"level": level, "handlers": ["stdout"], "propagate": False}


def setup_logging(level: str | None = None) -> None:
    """Install the JSON handler on the app, request and server loggers."""
    log_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    loggers = {name: _logger(log_level) for name in ("focusboard", "request", "uvicorn", "uvicorn.error", "fastapi", "starlette")}
    loggers.update({name: _logger("WARNING") for name in _QUIET})

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": JsonFormatter}},
            "handlers": {
                "stdout": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                },
            },
            "root": {"level": log_level, "handlers": ["stdout"]},
            "loggers": loggers,
        }
    )
