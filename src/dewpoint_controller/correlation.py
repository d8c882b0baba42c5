"""
Correlation IDs for following one inbound sensor message through decode, update and publish.

The ID lives in a context variable, so every task spawned inside a scope inherits it and
log records emitted from those tasks carry it automatically.
"""

from __future__ import annotations

import contextvars
import uuid
from collections.abc import Generator
from contextlib import contextmanager

__all__ = [
    "correlation_scope",
    "get_correlation_id",
    "new_correlation_id",
]

_current: contextvars.ContextVar[str | None] = contextvars.ContextVar("dewpoint_correlation_id", default=None)


def new_correlation_id() -> str:
    """Return a fresh 12 character hex ID."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> str | None:
    """Return the ID of the active scope, or None outside of any scope."""
    return _current.get()


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Generator[str]:
    """
    Run a block under a correlation ID, restoring the outer ID afterwards.

    Args:
        correlation_id: ID to use; a new one is generated when omitted

    Yields:
        The ID active inside the block

    Example:
        with correlation_scope() as corr_id:
            logger.debug("Handling %s", topic)
    """
    token = _current.set(correlation_id or new_correlation_id())
    try:
        yield _current.get() or ""
    finally:
        _current.reset(token)
