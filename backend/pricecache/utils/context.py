# backend/pricecache/utils/context.py
"""
Correlation context for the price cache.

Every chart or quote request can carry a correlation ID so its log lines
(cache hit, backfill decision, rate-limit wait, retry) can be traced
together. Callers without their own ID use correlation_scope() to get a
generated one.

Uses Python's contextvars, so the ID is per thread / per task and never
leaks between concurrent requests.

Usage:
    from pricecache.utils.context import correlation_scope

    with correlation_scope(request_id):
        service.resolve(db, "AAPL", "1d", start, end)
"""

import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

# Correlation ID for request tracing
_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id() -> str | None:
    """
    Get the current correlation ID.

    Returns:
        The correlation ID for the current context, or None if not set.
    """
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """
    Bind a correlation ID for the duration of a block.

    Generates a UUID when none is given. The previous value is restored
    on exit, so scopes nest.

    Yields:
        The correlation ID in effect inside the block
    """
    value = correlation_id or str(uuid.uuid4())
    token = _correlation_id_var.set(value)
    try:
        yield value
    finally:
        _correlation_id_var.reset(token)
