"""
Correlation IDs for request tracing.

Each dispatched tool call runs inside a correlation scope; the CRM client
forwards the ID upstream as ``X-Request-ID`` so server and CRM logs line up.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

REQUEST_ID_HEADER = "X-Request-ID"

_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)


def generate_correlation_id() -> str:
    """Generate a correlation ID: millisecond timestamp plus a random suffix."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def get_correlation_id() -> Optional[str]:
    return _correlation_id.get()


@contextmanager
def correlation_scope(correlation_id: Optional[str] = None) -> Iterator[str]:
    value = correlation_id or generate_correlation_id()
    token = _correlation_id.set(value)
    try:
        yield value
    finally:
        _correlation_id.reset(token)


def get_propagation_headers() -> dict[str, str]:
    """Headers for outgoing CRM requests; a fresh ID when no scope is active."""
    return {REQUEST_ID_HEADER: get_correlation_id() or generate_correlation_id()}
