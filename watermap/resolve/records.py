"""Coordinate records and location descriptors shared by the resolver."""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional


class CoordinateSource(str, Enum):
    CACHE = "cache"
    EXTERNAL = "external"
    FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class LocationDescriptor:
    """Locality fields used to geocode a single entity."""

    region: Optional[str] = None
    locality: Optional[str] = None
    name: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class CoordinateRecord:
    """A resolved coordinate plus provenance.

    ``provenance`` names the source that originally produced the coordinate and
    survives cache round-trips, while ``source`` describes how this particular
    lookup was served.
    """

    latitude: float
    longitude: float
    source: CoordinateSource
    confidence: float
    provenance: Optional[CoordinateSource] = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.provenance is None:
            object.__setattr__(self, "provenance", self.source)

    def as_cached(self) -> "CoordinateRecord":
        """Return the same coordinate flagged as served from cache."""
        return replace(self, source=CoordinateSource.CACHE)

    def to_payload(self) -> Dict[str, object]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "source": self.source.value,
            "confidence": self.confidence,
            "provenance": self.provenance.value if self.provenance else None,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, object]) -> "CoordinateRecord":
        source = CoordinateSource(str(payload.get("source") or CoordinateSource.EXTERNAL.value))
        provenance = payload.get("provenance")
        return cls(
            latitude=float(payload["latitude"]),  # type: ignore[arg-type]
            longitude=float(payload["longitude"]),  # type: ignore[arg-type]
            source=source,
            confidence=float(payload.get("confidence") or 0.0),  # type: ignore[arg-type]
            provenance=CoordinateSource(str(provenance)) if provenance else source,
        )
