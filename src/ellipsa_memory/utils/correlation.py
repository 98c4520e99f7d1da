"""Correlation ids that tie together the log lines of one request or pipeline job."""

import functools
import uuid
from contextvars import ContextVar

import structlog

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def generate_correlation_id(prefix: str = "req") -> str:
    """Return a fresh id of the form ``prefix_xxxxxxxx``."""
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def set_correlation_id(correlation_id: str) -> None:
    """Make ``correlation_id`` current and bind it into structlog's context."""
    _correlation_id.set(correlation_id)
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def get_correlation_id() -> str | None:
    return _correlation_id.get()


def create_child_correlation_id(operation: str) -> str:
    """Derive ``parent.operation`` from the current id, or start a new root."""
    parent_id = get_correlation_id()
    if parent_id:
        return f"{parent_id}.{operation}"
    return generate_correlation_id(operation)


def with_correlation_id(prefix: str = "req"):
    """Run an async function under its own correlation id.

    The previous id (if any) is restored afterwards, so pipeline jobs that run
    inside a long-lived worker task do not leak ids into each other.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            corr_id = generate_correlation_id(prefix)
            token = _correlation_id.set(corr_id)
            structlog.contextvars.bind_contextvars(correlation_id=corr_id)
            try:
                return await func(*args, **kwargs)
            finally:
                _correlation_id.reset(token)
                previous = _correlation_id.get()
                if previous:
                    structlog.contextvars.bind_contextvars(correlation_id=previous)
                else:
                    structlog.contextvars.unbind_contextvars("correlation_id")

        return wrapper

    return decorator
