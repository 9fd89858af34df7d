"""
Structured JSON logging and per-request access logs.

Every record goes to stdout as one JSON object. Records emitted while an
HTTP request is in flight carry that request's id.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from pythonjsonlogger import jsonlogger
from starlette.middleware.base import BaseHTTPMiddleware

from enquiry_relay.metrics import record_http_request

ACCESS_LOGGER = "enquiry_relay.requests"
LOG_FORMAT = "%(ts)s %(level)s %(name)s %(message)s"

# Third-party loggers that would otherwise print plain text
FOREIGN_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "telegram")

_current_request: ContextVar[Optional[str]] = ContextVar("current_request", default=None)


class RequestIdFilter(logging.Filter):
    """Stamps the in-flight request id onto records that lack one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            request_id = _current_request.get()
            if request_id:
                record.request_id = request_id
        return True


class RelayJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        # Millisecond precision, UTC
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        log_record["ts"] = stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        log_record["level"] = record.levelname


def setup_logging(log_level: str = "INFO") -> logging.Logger:
    """Install the JSON handler on the root logger and adopt the server/bot loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(RelayJsonFormatter(LOG_FORMAT))
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    root.setLevel(log_level.upper())
    root.handlers = [handler]

    for name in FOREIGN_LOGGERS:
        foreign = logging.getLogger(name)
        foreign.handlers = [handler]
        foreign.propagate = False

    # Replaced by RequestLoggingMiddleware
    logging.getLogger("uvicorn.access").disabled = True
    # Request URLs contain the bot token
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return root


def _loggable_path(path: str) -> str:
    if path.startswith("/webhook/"):
        return "/webhook/<token>"
    return path


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id, records HTTP metrics and writes one access log
    line per request: method, path, status, latency_ms, plus update_id and
    result for webhook deliveries.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        reset_token = _current_request.set(request_id)
        started = time.perf_counter()
        try:
            response = await call_next(request)
            elapsed = time.perf_counter() - started
            response.headers["X-Request-ID"] = request_id

            path = request.url.path
            if path != "/metrics":
                record_http_request(request.method, path, response.status_code, elapsed)

            fields = {
                "request_id": request_id,
                "method": request.method,
                "path": _loggable_path(path),
                "status": response.status_code,
                "latency_ms": round(elapsed * 1000, 2),
            }
            fields.update(getattr(request.state, "log_extra", {}))
            logging.getLogger(ACCESS_LOGGER).log(_level_for(response.status_code), "request", extra=fields)
            return response
        finally:
            _current_request.reset(reset_token)


def log_webhook_data(request: Request, update_id: Optional[int] = None, result: Optional[str] = None) -> None:
    """Add webhook outcome fields to this request's access log line."""
    extra = {key: value for key, value in (("update_id", update_id), ("result", result)) if value is not None}
    request.state.log_extra = extra
