"""
Request Correlation for Proxy Gatekeeper logs.

Each gated request runs inside a correlation scope so every log record
emitted while resolving it carries the same correlation ID, the proxy
name and the request path.

Usage:
    with correlation_context(headers.get("x-correlation-id"), proxy="weather"):
        logger.info("api key cache hit")
"""

from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Any, Generator, Mapping

_correlation_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "gatekeeper_correlation_id", default=None
)

_request_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "gatekeeper_request_context", default={}
)

CORRELATION_HEADERS = ("x-correlation-id", "x-request-id", "x-trace-id")


def generate_correlation_id() -> str:
    """New correlation ID, formatted pg-{16 hex chars}."""
    return f"pg-{uuid.uuid4().hex[:16]}"


def get_correlation_id() -> str | None:
    """Correlation ID of the current scope, if any."""
    return _correlation_id.get()


def get_request_context() -> dict[str, Any]:
    """Context fields of the current scope, correlation ID included."""
    context = dict(_request_context.get())
    context["correlation_id"] = _correlation_id.get()
    return context


def extract_correlation_id(headers: Mapping[str, str]) -> str | None:
    """
    Find an inbound correlation ID.

    Args:
        headers: Request headers (any key case)

    Returns:
        First of X-Correlation-ID, X-Request-ID, X-Trace-ID that is present
    """
    normalized = {k.lower(): v for k, v in headers.items()}
    for name in CORRELATION_HEADERS:
        if normalized.get(name):
            return normalized[name]
    return None


@contextmanager
def correlation_context(
    correlation_id: str | None = None,
    **fields: Any,
) -> Generator[str, None, None]:
    """
    Scope a correlation ID and request fields.

    Safe across awaits: contextvars are copied per task.

    Args:
        correlation_id: ID to use (generated if None)
        **fields: Extra context, e.g. proxy="weather", path="/weather/today"

    Yields:
        The active correlation ID
    """
    cid = correlation_id or generate_correlation_id()
    id_token = _correlation_id.set(cid)
    ctx_token = _request_context.set({**_request_context.get(), **fields})
    try:
        yield cid
    finally:
        _request_context.reset(ctx_token)
        _correlation_id.reset(id_token)


def mask_api_key(api_key: str) -> str:
    """Mask an API key for logging, keeping the first four characters."""
    if len(api_key) <= 4:
        return "****"
    return f"{api_key[:4]}****"


class CorrelatedLogger:
    """
    Logger wrapper adding the request context to every record.

    Usage:
        logger = CorrelatedLogger(logging.getLogger(__name__))
    """

    def __init__(self, logger: Any) -> None:
        self._logger = logger

    def _with_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        extra = dict(kwargs.get("extra") or {})
        extra.update(get_request_context())
        kwargs["extra"] = extra
        return kwargs

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **self._with_context(kwargs))

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **self._with_context(kwargs))

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **self._with_context(kwargs))

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **self._with_context(kwargs))
