"""Lightweight in-process counters for resolution and selection work."""
from __future__ import annotations

import contextlib
import json
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterator

import structlog

LOGGER = structlog.get_logger(__name__)

DEFAULT_COUNTERS = (
    "cache_hits_memory",
    "cache_hits_persistent",
    "cache_misses",
    "cache_writes",
    "cache_writes_dropped",
    "cache_store_failures",
    "geocode_requests",
    "geocode_failures",
    "geocode_rejected_out_of_bounds",
    "resolved_external",
    "resolved_fallback",
    "markers_built",
    "markers_filtered",
    "density_points",
    "marker_errors",
    "stale_runs_discarded",
    "polygons_committed",
    "polygons_rejected",
)


class MetricsRegistry:
    """Holds mutable counters for the current view session."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        for key in DEFAULT_COUNTERS:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        self._counters[name] += value

    def get(self, name: str) -> int:
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        return dict(self._counters)

    def cache_hit_ratio(self) -> float:
        """Share of cache lookups served by either tier."""
        hits = self.get("cache_hits_memory") + self.get("cache_hits_persistent")
        lookups = hits + self.get("cache_misses")
        return hits / lookups if lookups else 0.0

    def export(self, *, path: Path, run_id: str) -> Path:
        """Dump counters and the cache hit ratio for one CLI run."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": run_id,
            "counters": self.snapshot(),
            "cache_hit_ratio": round(self.cache_hit_ratio(), 4),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str) -> Iterator[None]:
    """Measure elapsed time for a block and add it to ``metric_name`` in ms."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        registry.incr(metric_name, elapsed_ms)
        LOGGER.info("timer_stop", metric=metric_name, duration_ms=elapsed_ms)
