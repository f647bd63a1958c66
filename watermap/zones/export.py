"""Serialise a polygon selection and its statistics for download."""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Optional

import orjson

from watermap.markers.classify import classify
from watermap.zones.aggregate import ZoneStatistics, summarize
from watermap.zones.geometry import format_area
from watermap.zones.selector import PolygonSelection


def selection_payload(selection: PolygonSelection, statistics: Optional[ZoneStatistics] = None) -> Dict[str, object]:
    statistics = statistics or summarize(selection)
    zone: Dict[str, object] = {
        "id": selection.selection_id,
        "area_km2": selection.area_km2,
        "area_display": format_area(selection.area_km2),
        "created_at": selection.created_at.isoformat(),
        "bounds": selection.bounds.to_payload(),
    }
    to_geojson = getattr(selection.geometry, "to_geojson", None)
    if to_geojson is not None:
        zone["geometry"] = to_geojson()
    systems = []
    for item in selection.entities:
        systems.append({
            **item.entity.model_dump(mode="json"),
            "classification": classify(item.events).value,
            "coordinate": item.coordinate.to_payload(),
        })
    return {
        "zone": zone,
        "statistics": statistics.as_dict(),
        "systems": systems,
        "violations": [event.model_dump(mode="json") for event in selection.events_inside],
    }


def export_selection(selection: PolygonSelection, path: Path) -> Path:
    """Write ``zone_analysis`` JSON for the selection to ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(orjson.dumps(selection_payload(selection), option=orjson.OPT_INDENT_2))
    return path
