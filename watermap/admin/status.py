"""Administrative status helpers."""
from __future__ import annotations

from collections import Counter
from pathlib import Path
from typing import Dict, List

import orjson

from watermap.resolve.store import JsonFileCoordinateStore


def summarise_cache(path: Path) -> Dict[str, object]:
    """Summarise a JSON coordinate store: entry counts by provenance and mean confidence."""
    if not path.exists():
        return {"path": str(path), "exists": False, "entries": 0}
    store = JsonFileCoordinateStore(path)
    rows = store.entries()
    by_source: Counter[str] = Counter()
    confidences: List[float] = []
    for row in rows.values():
        by_source[str(row.get("source", "unknown"))] += 1
        try:
            confidences.append(float(row.get("confidence", 0.0)))
        except (TypeError, ValueError):
            continue
    average = sum(confidences) / len(confidences) if confidences else 0.0
    return {
        "path": str(path),
        "exists": True,
        "entries": len(rows),
        "by_source": dict(by_source),
        "average_confidence": round(average, 4),
    }


def summarise_runs(metrics_dir: Path) -> List[Dict[str, object]]:
    """List exported run metrics, newest first."""
    runs: List[Dict[str, object]] = []
    if not metrics_dir.exists():
        return runs
    for path in sorted(metrics_dir.glob("run_*.json"), reverse=True):
        try:
            payload = orjson.loads(path.read_bytes())
        except orjson.JSONDecodeError:
            continue
        runs.append({
            "run_id": payload.get("run_id"),
            "path": str(path),
            "counters": payload.get("counters", {}),
            "cache_hit_ratio": payload.get("cache_hit_ratio"),
        })
    return runs
