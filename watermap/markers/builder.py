"""Batch resolution of entities into map markers and density points."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import structlog

from watermap.catalog.models import MonitoredEntity, StatusEvent, group_events
from watermap.markers.classify import Classification, density_weight, marker_size, summarize_events
from watermap.markers.filters import DisplayFilters
from watermap.observability.metrics import MetricsRegistry
from watermap.observability.tracing import clear_batch, clear_context, set_context
from watermap.resolve.records import CoordinateRecord, CoordinateSource
from watermap.resolve.resolver import CoordinateResolver
from watermap.settings import MarkerSettings

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Marker:
    entity_id: str
    name: str
    latitude: float
    longitude: float
    classification: Classification
    size: float
    population: int
    active_events: int
    health_based_events: int
    coordinate_source: CoordinateSource
    confidence: float

    def to_payload(self) -> Dict[str, object]:
        return {
            "entity_id": self.entity_id,
            "name": self.name,
            "position": {"lat": self.latitude, "lng": self.longitude},
            "classification": self.classification.value,
            "size": self.size,
            "population": self.population,
            "active_events": self.active_events,
            "health_based_events": self.health_based_events,
            "coordinate_source": self.coordinate_source.value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True, slots=True)
class DensityPoint:
    latitude: float
    longitude: float
    weight: int


@dataclass
class MarkerBuild:
    """Result of one build run; markers carry no ordering guarantee."""

    run_id: str
    markers: List[Marker] = field(default_factory=list)
    density_points: List[DensityPoint] = field(default_factory=list)
    resolved: Dict[str, CoordinateRecord] = field(default_factory=dict)
    superseded: bool = False

    def to_payload(self) -> Dict[str, object]:
        return {
            "run_id": self.run_id,
            "superseded": self.superseded,
            "markers": [marker.to_payload() for marker in self.markers],
            "density_points": [
                {"lat": point.latitude, "lng": point.longitude, "weight": point.weight}
                for point in self.density_points
            ],
        }


_Outcome = Tuple[CoordinateRecord, Optional[Marker], Optional[DensityPoint]]


class BatchMarkerBuilder:
    """Resolve entities batch by batch and turn them into markers.

    Entities inside a batch resolve concurrently; batches run one after the
    other with a fixed delay between them. Each ``build`` call owns a run id
    and starting a newer build (or calling ``supersede``) makes older runs
    stale: their results are dropped after the batch in flight settles.
    """

    def __init__(
        self,
        resolver: CoordinateResolver,
        *,
        settings: Optional[MarkerSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._resolver = resolver
        self._settings = settings or MarkerSettings()
        self._metrics = metrics or MetricsRegistry()
        self._sleep = sleep
        self._current_run: Optional[str] = None

    @property
    def current_run_id(self) -> Optional[str]:
        return self._current_run

    def is_current(self, run_id: str) -> bool:
        return self._current_run == run_id

    def supersede(self) -> None:
        """Invalidate whichever run is in flight."""
        if self._current_run is not None:
            LOGGER.info("marker_run_superseded", run_id=self._current_run)
        self._current_run = None

    async def build(
        self,
        entities: Sequence[MonitoredEntity],
        events: Sequence[StatusEvent],
        filters: Optional[DisplayFilters] = None,
    ) -> MarkerBuild:
        """Build markers for ``entities``; a superseded run returns an empty, flagged result."""
        filters = filters or DisplayFilters()
        run_id = uuid.uuid4().hex
        self._current_run = run_id
        result = MarkerBuild(run_id=run_id)
        events_by_entity = group_events(events)
        batch_size = self._settings.batch_size
        total_batches = (len(entities) + batch_size - 1) // batch_size

        set_context(run_id=run_id)
        try:
            for batch_index, start in enumerate(range(0, len(entities), batch_size)):
                if not self.is_current(run_id):
                    return self._discard(run_id)
                batch = entities[start:start + batch_size]
                set_context(run_id=run_id, batch=batch_index)
                outcomes = await asyncio.gather(
                    *(self._build_one(entity, events_by_entity.get(entity.entity_id, []), filters) for entity in batch)
                )
                clear_batch()
                if not self.is_current(run_id):
                    return self._discard(run_id)

                for entity, outcome in zip(batch, outcomes):
                    if outcome is None:
                        continue
                    record, marker, point = outcome
                    result.resolved[entity.entity_id] = record
                    if marker is not None:
                        result.markers.append(marker)
                    if point is not None:
                        result.density_points.append(point)
                LOGGER.debug("marker_batch_done", batch=batch_index + 1, batches=total_batches)

                if batch_index + 1 < total_batches and self._settings.batch_delay_seconds > 0:
                    await self._sleep(self._settings.batch_delay_seconds)
        finally:
            clear_context()

        self._metrics.incr("markers_built", len(result.markers))
        self._metrics.incr("density_points", len(result.density_points))
        LOGGER.info(
            "marker_run_complete",
            run_id=run_id,
            entities=len(entities),
            markers=len(result.markers),
            density_points=len(result.density_points),
        )
        return result

    def _discard(self, run_id: str) -> MarkerBuild:
        self._metrics.incr("stale_runs_discarded")
        LOGGER.info("stale_run_discarded", run_id=run_id, current_run_id=self._current_run)
        return MarkerBuild(run_id=run_id, superseded=True)

    async def _build_one(
        self,
        entity: MonitoredEntity,
        events: List[StatusEvent],
        filters: DisplayFilters,
    ) -> Optional[_Outcome]:
        try:
            record = await self._resolver.resolve(entity.descriptor())
            summary = summarize_events(events)
            classification = summary.classification
            if not filters.allows(classification):
                self._metrics.incr("markers_filtered")
                return record, None, None

            marker = Marker(
                entity_id=entity.entity_id,
                name=entity.name,
                latitude=record.latitude,
                longitude=record.longitude,
                classification=classification,
                size=marker_size(
                    entity.population,
                    minimum=self._settings.min_size,
                    maximum=self._settings.max_size,
                    default_population=self._settings.default_population,
                ),
                population=entity.population,
                active_events=summary.active,
                health_based_events=summary.health_based,
                coordinate_source=record.source,
                confidence=record.confidence,
            )
            point = None
            weight = density_weight(summary)
            if filters.show_heatmap and weight > 0:
                point = DensityPoint(latitude=record.latitude, longitude=record.longitude, weight=weight)
            return record, marker, point
        except Exception as exc:  # failures stay scoped to the entity
            self._metrics.incr("marker_errors")
            LOGGER.error("marker_build_failed", entity_id=entity.entity_id, error=repr(exc))
            return None
