"""Cache-first coordinate resolution with query escalation and fallback."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import structlog

from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.geocoder import GeocodeCandidate, Geocoder
from watermap.resolve.keys import candidate_queries, location_key, stable_offset
from watermap.resolve.records import CoordinateRecord, CoordinateSource, LocationDescriptor
from watermap.settings import ResolverSettings

LOGGER = structlog.get_logger(__name__)

COUNTY_TYPE = "administrative_area_level_2"


@dataclass(frozen=True, slots=True)
class ResolutionPlan:
    """What the resolver would try for a descriptor, without calling out."""

    key: str
    queries: List[str]
    fallback: CoordinateRecord


class CoordinateResolver:
    """Resolve descriptors to coordinates; ``resolve`` never raises."""

    def __init__(
        self,
        cache: CoordinateCache,
        geocoder: Optional[Geocoder],
        *,
        settings: Optional[ResolverSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._cache = cache
        self._geocoder = geocoder
        self._settings = settings or ResolverSettings()
        self._metrics = metrics or MetricsRegistry()

    @property
    def cache(self) -> CoordinateCache:
        return self._cache

    def key_for(self, descriptor: LocationDescriptor) -> str:
        return location_key(descriptor)

    def queries_for(self, descriptor: LocationDescriptor) -> List[str]:
        return candidate_queries(
            descriptor,
            jurisdiction=self._settings.jurisdiction,
            region_suffix=self._settings.region_suffix,
        )

    def explain(self, descriptor: LocationDescriptor) -> ResolutionPlan:
        return ResolutionPlan(
            key=self.key_for(descriptor),
            queries=self.queries_for(descriptor),
            fallback=self.fallback_for(descriptor),
        )

    async def resolve(self, descriptor: LocationDescriptor) -> CoordinateRecord:
        """Return a coordinate for ``descriptor`` from cache, the geocoder or the fallback."""
        key = self.key_for(descriptor)
        try:
            cached = await self._cache.get(key)
            if cached is not None:
                return cached

            record = await self._geocode(descriptor)
            if record is not None:
                self._metrics.incr("resolved_external")
                await self._cache.put(key, record, descriptor=descriptor)
                return record
        except Exception as exc:  # resolve() returns a record for any input
            LOGGER.error("resolve_unexpected_error", key=key, error=repr(exc))

        fallback = self.fallback_for(descriptor)
        self._metrics.incr("resolved_fallback")
        LOGGER.info("resolve_fallback", key=key, entity_id=descriptor.entity_id)
        await self._cache.put(key, fallback, descriptor=descriptor, persist=False)
        return fallback

    async def resolve_many(self, descriptors: Sequence[LocationDescriptor]) -> Dict[str, CoordinateRecord]:
        """Resolve descriptors concurrently, keyed by location key."""
        records = await asyncio.gather(*(self.resolve(item) for item in descriptors))
        return {self.key_for(item): record for item, record in zip(descriptors, records)}

    def fallback_for(self, descriptor: LocationDescriptor) -> CoordinateRecord:
        """Deterministic coordinate near the regional centroid.

        The offset comes from a hash of the entity identifier, so reloads place
        an unresolvable entity on the same spot and distinct entities do not
        stack on a single point.
        """
        identifier = descriptor.entity_id or self.key_for(descriptor)
        lat_offset, lng_offset = stable_offset(identifier, self._settings.fallback_spread)
        centre_lat, centre_lng = self._settings.centroid
        return CoordinateRecord(
            latitude=centre_lat + lat_offset,
            longitude=centre_lng + lng_offset,
            source=CoordinateSource.FALLBACK,
            confidence=self._settings.fallback_confidence,
        )

    def confidence_for(self, candidate: GeocodeCandidate) -> float:
        weights = self._settings.confidence
        types = set(candidate.result_types)
        confidence = weights.base
        if "locality" in types:
            confidence += weights.locality
        if COUNTY_TYPE in types:
            confidence += weights.county
        if "establishment" in types:
            confidence += weights.establishment
        if "point_of_interest" in types:
            confidence += weights.point_of_interest
        if candidate.partial_match is False:
            confidence += weights.exact_match
        return round(min(confidence, 1.0), 6)

    async def _geocode(self, descriptor: LocationDescriptor) -> Optional[CoordinateRecord]:
        if self._geocoder is None:
            return None
        bounds = self._settings.bounds
        for query in self.queries_for(descriptor):
            try:
                candidate = await self._geocoder.geocode(query)
            except Exception as exc:
                self._metrics.incr("geocode_failures")
                LOGGER.warning("geocode_candidate_failed", query=query, error=repr(exc))
                continue
            if candidate is None:
                continue
            if not bounds.contains(candidate.latitude, candidate.longitude):
                self._metrics.incr("geocode_rejected_out_of_bounds")
                LOGGER.info(
                    "geocode_rejected_out_of_bounds",
                    query=query,
                    latitude=candidate.latitude,
                    longitude=candidate.longitude,
                )
                continue
            return CoordinateRecord(
                latitude=candidate.latitude,
                longitude=candidate.longitude,
                source=CoordinateSource.EXTERNAL,
                confidence=self.confidence_for(candidate),
            )
        return None
