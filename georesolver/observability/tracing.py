"""Tracing helpers for collaborator calls made while resolving."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars


def _logger():
    return structlog.get_logger("georesolver.trace")


def set_context(*, resolve_id: str, latitude: float, longitude: float) -> None:
    bind_contextvars(resolve_id=resolve_id)
    _logger().debug("trace_context", resolve_id=resolve_id, latitude=latitude, longitude=longitude)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, target: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, target=target, elapsed_ms=elapsed_ms)


def log_retry(attempt: int, *, step: str, reason: str) -> None:
    _logger().warning("step_retry", attempt=attempt, step=step, reason=reason)


def log_search_result(*, query: str, matches: int, elapsed_ms: int) -> None:
    _logger().info(
        "search_result",
        query=query,
        matches=matches,
        elapsed_ms=elapsed_ms,
    )
