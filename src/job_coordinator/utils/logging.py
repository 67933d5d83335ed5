"""Structured logging for coordinator events.

Every log call in the package uses a snake_case event name as the message
and carries its fields through ``extra``; both formatters render those
fields, and :class:`RedactingFilter` masks anything that looks like a
credential before a handler sees it.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from time import perf_counter
from typing import Any, Awaitable, Callable
from uuid import uuid4

from fastapi import FastAPI, Request
from starlette.responses import Response

from job_coordinator.config import Settings

REDACTED = "[REDACTED]"
REQUEST_ID_HEADER = "X-Request-ID"
SENSITIVE_KEY_MARKERS = (
    "password",
    "passwd",
    "secret",
    "token",
    "credential",
    "authorization",
    "api_key",
    "apikey",
)

_RESERVED_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}


def is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact(value: Any) -> Any:
    """Return ``value`` with sensitive mapping keys masked at any depth."""

    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(str(key)) else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [redact(item) for item in value]
    if isinstance(value, tuple):
        return tuple(redact(item) for item in value)
    return value


def record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Fields passed through ``extra`` on a log call."""

    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRIBUTES and not key.startswith("_")
    }


class RedactingFilter(logging.Filter):
    """Mask credentials in the message payload and ``extra`` fields."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, dict):
            record.msg = redact(record.msg)
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        for key, value in record_fields(record).items():
            setattr(record, key, REDACTED if is_sensitive_key(key) else redact(value))
        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: event, level, logger and the extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        payload.update(record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable line with ``key=value`` pairs after the event name."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = record_fields(record)
        if not fields:
            return line
        pairs = " ".join(f"{key}={value!r}" for key, value in sorted(fields.items()))
        head, newline, trace = line.partition("\n")
        return f"{head} | {pairs}{newline}{trace}"


def _build_handler(settings: Settings) -> logging.Handler:
    if settings.LOG_FILE is None:
        return logging.StreamHandler()

    settings.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        filename=settings.LOG_FILE,
        maxBytes=settings.LOG_FILE_MAX_BYTES,
        backupCount=settings.LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )


def setup_logging(settings: Settings) -> None:
    """Replace root handlers with one configured from settings."""

    handler = _build_handler(settings)
    handler.setFormatter(
        JsonLogFormatter() if settings.LOG_FORMAT == "json" else KeyValueFormatter()
    )
    handler.addFilter(RedactingFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))
    root_logger.addHandler(handler)

    # APScheduler logs every interval tick at INFO.
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.captureWarnings(True)


def add_request_logging_middleware(app: FastAPI) -> None:
    """Log one ``request_completed`` or ``request_failed`` event per request."""

    logger = logging.getLogger("job_coordinator.request")

    @app.middleware("http")
    async def log_requests(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        started_at = perf_counter()
        fields: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
        }

        try:
            response = await call_next(request)
        except Exception:
            fields["duration_ms"] = round((perf_counter() - started_at) * 1000, 2)
            logger.exception("request_failed", extra={**fields, "status_code": 500})
            raise

        fields["duration_ms"] = round((perf_counter() - started_at) * 1000, 2)
        fields["status_code"] = response.status_code
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info("request_completed", extra=fields)
        return response


__all__ = [
    "JsonLogFormatter",
    "KeyValueFormatter",
    "RedactingFilter",
    "add_request_logging_middleware",
    "redact",
    "setup_logging",
]
