"""In-process resolver counters, exportable as a JSON snapshot."""
from __future__ import annotations

import contextlib
import time
from collections import Counter
from pathlib import Path
from typing import Dict, Iterator

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

STRATEGY_PREFIX = "strategy_"
ERROR_PREFIX = "errors_"

DEFAULT_COUNTERS = (
    "fixes_acquired",
    "fix_cache_hits",
    "fix_timeouts",
    "permission_checks",
    "permission_requests",
    "geocode_attempts",
    "geocode_directory_fallbacks",
    "geocode_coarse_fallbacks",
    "search_calls",
    "search_failures",
    "search_retries",
    "strategy_geoposition",
    "strategy_text_search",
    "strategy_nearby_radius",
    "strategy_capital_city",
    "not_found",
    "resolve_duration_ms",
)


class MetricsRegistry:
    """Counters for one resolver instance; unknown names start at zero."""

    def __init__(self) -> None:
        self._counters: Counter = Counter(dict.fromkeys(DEFAULT_COUNTERS, 0))

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def get(self, name: str) -> int:
        return self._counters[name]

    def record_error(self, kind: str) -> None:
        """Count a normalized failure under `errors_<kind>`."""
        self.incr(f"{ERROR_PREFIX}{kind.lower()}")

    def strategy_wins(self) -> Dict[str, int]:
        return {
            name[len(STRATEGY_PREFIX):]: value
            for name, value in self._counters.items()
            if name.startswith(STRATEGY_PREFIX)
        }

    def errors(self) -> Dict[str, int]:
        return {
            name[len(ERROR_PREFIX):]: value
            for name, value in self._counters.items()
            if name.startswith(ERROR_PREFIX)
        }

    def snapshot(self) -> Dict[str, int]:
        return dict(sorted(self._counters.items()))

    def export(self, *, path: Path, run_id: str) -> Path:
        """Write the snapshot plus strategy and error breakdowns to `path`."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": run_id,
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "counters": self.snapshot(),
            "strategies": self.strategy_wins(),
            "errors": self.errors(),
        }
        path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS))
        LOGGER.info("metrics_exported", path=str(path), run_id=run_id)
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Add the block's wall time in milliseconds to `metric_name`."""
    start = time.monotonic()
    try:
        yield
    finally:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.debug("duration_recorded", metric=metric_name, duration_ms=elapsed_ms)
