"""Tracing helpers binding run context onto structlog events."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, unbind_contextvars

_TRACE = structlog.get_logger("watermap.trace")


def set_context(*, run_id: str, batch: Optional[int] = None) -> None:
    bind_contextvars(run_id=run_id)
    if batch is not None:
        bind_contextvars(batch=batch)
    _TRACE.debug("trace_context", run_id=run_id, batch=batch)


def clear_context() -> None:
    clear_contextvars()


def clear_batch() -> None:
    unbind_contextvars("batch")


@contextlib.contextmanager
def span(*, name: str, query: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _TRACE.debug("trace_span", span=name, query=query, elapsed_ms=elapsed_ms)


def log_geocode_result(*, query: str, status: str, elapsed_ms: int) -> None:
    _TRACE.info("geocode_result", query=query, status=status, elapsed_ms=elapsed_ms)
