"""Polygon geometry for user-drawn zones.

Vertices are ``(latitude, longitude)`` pairs as produced by map drawing
tools. Containment is planar in lon/lat space and boundary-inclusive: a point
lying exactly on an edge or vertex counts as inside. Area is geodesic on the
WGS84 ellipsoid.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

import shapely
from pyproj import Geod
from shapely.geometry import Point, Polygon
from shapely.validation import explain_validity

LatLng = Tuple[float, float]

_GEOD = Geod(ellps="WGS84")

# planar lon/lat area below which a ring counts as collapsed (roughly 0.01 m²)
_MIN_AREA_DEG2 = 1e-12


class InvalidPolygonError(ValueError):
    """Raised for degenerate or self-intersecting polygons."""


class Geometry(Protocol):
    def contains(self, latitude: float, longitude: float) -> bool: ...

    def area_km2(self) -> float: ...

    def bounds(self) -> "Bounds": ...


@dataclass(frozen=True, slots=True)
class Bounds:
    north: float
    south: float
    east: float
    west: float

    def to_payload(self) -> dict:
        return {"north": self.north, "south": self.south, "east": self.east, "west": self.west}


class PolygonGeometry:
    """Shapely-backed implementation of :class:`Geometry`."""

    def __init__(self, vertices: Sequence[LatLng]) -> None:
        ring = _dedupe_ring(_coerce_vertices(vertices))
        if len(set(ring)) < 3:
            raise InvalidPolygonError("a polygon needs at least three distinct vertices")
        for lat, lng in ring:
            if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
                raise InvalidPolygonError(f"vertex out of range: ({lat}, {lng})")
        shape = Polygon([(lng, lat) for lat, lng in ring])
        if not shape.is_valid:
            raise InvalidPolygonError(explain_validity(shape))
        if shape.area < _MIN_AREA_DEG2:
            raise InvalidPolygonError("polygon has zero area")
        shapely.prepare(shape)
        self._vertices = ring
        self._shape = shape

    @property
    def vertices(self) -> List[LatLng]:
        return list(self._vertices)

    @property
    def shape(self) -> Polygon:
        return self._shape

    def contains(self, latitude: float, longitude: float) -> bool:
        return bool(self._shape.covers(Point(longitude, latitude)))

    def area_km2(self) -> float:
        area_m2, _perimeter = _GEOD.geometry_area_perimeter(self._shape)
        return abs(area_m2) / 1_000_000

    def bounds(self) -> Bounds:
        west, south, east, north = self._shape.bounds
        return Bounds(north=north, south=south, east=east, west=west)

    def to_geojson(self) -> dict:
        ring = [[lng, lat] for lat, lng in self._vertices]
        ring.append(ring[0])
        return {"type": "Polygon", "coordinates": [ring]}

    @classmethod
    def from_geojson(cls, payload: dict) -> "PolygonGeometry":
        return cls(geojson_vertices(payload))


def geojson_vertices(payload: dict) -> List[LatLng]:
    """Exterior ring of a GeoJSON Polygon, Feature or single-feature FeatureCollection."""
    geometry = payload
    if payload.get("type") == "FeatureCollection":
        features = payload.get("features") or []
        if len(features) != 1:
            raise InvalidPolygonError("expected exactly one polygon feature")
        geometry = features[0].get("geometry") or {}
    elif payload.get("type") == "Feature":
        geometry = payload.get("geometry") or {}
    if geometry.get("type") != "Polygon" or not geometry.get("coordinates"):
        raise InvalidPolygonError("expected a GeoJSON Polygon")
    try:
        return [(float(lat), float(lng)) for lng, lat, *_ in geometry["coordinates"][0]]
    except (TypeError, ValueError) as exc:
        raise InvalidPolygonError(f"malformed polygon coordinates: {exc}") from exc


def _coerce_vertices(vertices: Sequence[LatLng]) -> List[LatLng]:
    try:
        return [(float(lat), float(lng)) for lat, lng in vertices]
    except (TypeError, ValueError) as exc:
        raise InvalidPolygonError(f"malformed vertex: {exc}") from exc


def _dedupe_ring(points: List[LatLng]) -> List[LatLng]:
    ring: List[LatLng] = []
    for point in points:
        if not ring or ring[-1] != point:
            ring.append(point)
    if len(ring) > 1 and ring[0] == ring[-1]:
        ring.pop()
    return ring


def format_area(area_km2: float) -> str:
    """Render an area with a unit suited to its magnitude."""
    if area_km2 < 1:
        return f"{area_km2 * 1_000_000:.0f} m²"
    if area_km2 < 100:
        return f"{area_km2:.2f} km²"
    return f"{area_km2:.0f} km²"
