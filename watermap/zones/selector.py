"""Lifecycle of user-drawn polygon selections."""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import structlog

from watermap.catalog.models import MonitoredEntity, StatusEvent, group_events
from watermap.markers.classify import active_events, classify
from watermap.markers.filters import DisplayFilters
from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.keys import location_key
from watermap.resolve.records import CoordinateRecord
from watermap.zones.geometry import Bounds, Geometry, InvalidPolygonError, LatLng, PolygonGeometry

LOGGER = structlog.get_logger(__name__)


class SelectorState(str, Enum):
    IDLE = "idle"
    DRAWING = "drawing"
    SELECTION_ACTIVE = "selection_active"


@dataclass(frozen=True, slots=True)
class ContainedEntity:
    """Snapshot of an entity found inside a polygon at commit time."""

    entity: MonitoredEntity
    coordinate: CoordinateRecord
    events: Tuple[StatusEvent, ...] = ()


@dataclass(frozen=True)
class PolygonSelection:
    selection_id: str
    geometry: Geometry
    area_km2: float
    bounds: Bounds
    entities: Tuple[ContainedEntity, ...]
    created_at: datetime

    @property
    def entity_ids(self) -> List[str]:
        return [item.entity.entity_id for item in self.entities]

    @property
    def events_inside(self) -> List[StatusEvent]:
        """Active events owned by the contained entities."""
        return [event for item in self.entities for event in active_events(item.events)]


def contained_entities(
    geometry: Geometry,
    entities: Iterable[MonitoredEntity],
    events: Iterable[StatusEvent],
    cache: CoordinateCache,
    filters: Optional[DisplayFilters] = None,
) -> List[ContainedEntity]:
    """Entities whose session-resolved coordinate lies inside ``geometry``.

    Entities not yet resolved in this session are skipped, so a selection only
    reflects coordinates the map has already placed.
    """
    events_by_entity = group_events(events)
    inside: List[ContainedEntity] = []
    for entity in entities:
        coordinate = cache.peek(location_key(entity.descriptor()))
        if coordinate is None:
            continue
        if not geometry.contains(coordinate.latitude, coordinate.longitude):
            continue
        owned = tuple(events_by_entity.get(entity.entity_id, ()))
        if filters is not None and not filters.allows(classify(owned)):
            continue
        inside.append(ContainedEntity(entity=entity, coordinate=coordinate, events=owned))
    return inside


class SpatialSelector:
    """State machine: ``idle`` -> ``drawing`` -> ``selection_active``.

    Transitions requested from the wrong state are ignored and reported by
    returning False (or None), never by raising.
    """

    def __init__(
        self,
        cache: CoordinateCache,
        *,
        metrics: Optional[MetricsRegistry] = None,
        geometry_factory: Callable[[Sequence[LatLng]], Geometry] = PolygonGeometry,
    ) -> None:
        self._cache = cache
        self._metrics = metrics or MetricsRegistry()
        self._geometry_factory = geometry_factory
        self._state = SelectorState.IDLE
        self._selections: Dict[str, PolygonSelection] = {}
        self._active_id: Optional[str] = None
        self.last_rejection: Optional[str] = None

    @property
    def state(self) -> SelectorState:
        return self._state

    @property
    def selections(self) -> List[PolygonSelection]:
        return list(self._selections.values())

    @property
    def active(self) -> Optional[PolygonSelection]:
        if self._active_id is None:
            return None
        return self._selections.get(self._active_id)

    def start_drawing(self) -> bool:
        if self._state is SelectorState.DRAWING:
            return False
        self._transition(SelectorState.DRAWING)
        self._active_id = None
        self.last_rejection = None
        return True

    def cancel_drawing(self) -> bool:
        if self._state is not SelectorState.DRAWING:
            return False
        self._transition(SelectorState.IDLE)
        return True

    def complete_drawing(
        self,
        vertices: Sequence[LatLng],
        entities: Sequence[MonitoredEntity],
        events: Sequence[StatusEvent],
        filters: Optional[DisplayFilters] = None,
    ) -> Optional[PolygonSelection]:
        """Commit the drawn polygon and make it the active selection.

        Invalid geometry is rejected: the selector stays in ``drawing`` and
        ``last_rejection`` holds the reason.
        """
        if self._state is not SelectorState.DRAWING:
            LOGGER.warning("polygon_commit_ignored", state=self._state.value)
            return None
        try:
            geometry = self._geometry_factory(vertices)
        except InvalidPolygonError as exc:
            self.last_rejection = str(exc)
            self._metrics.incr("polygons_rejected")
            LOGGER.info("polygon_rejected", reason=self.last_rejection, vertices=len(vertices))
            return None

        inside = contained_entities(geometry, entities, events, self._cache, filters)
        selection = PolygonSelection(
            selection_id=f"polygon_{uuid.uuid4().hex[:12]}",
            geometry=geometry,
            area_km2=geometry.area_km2(),
            bounds=geometry.bounds(),
            entities=tuple(inside),
            created_at=datetime.now(timezone.utc),
        )
        self._selections[selection.selection_id] = selection
        self._active_id = selection.selection_id
        self.last_rejection = None
        self._metrics.incr("polygons_committed")
        self._transition(SelectorState.SELECTION_ACTIVE)
        LOGGER.info(
            "polygon_committed",
            selection_id=selection.selection_id,
            area_km2=round(selection.area_km2, 3),
            entities=len(inside),
        )
        return selection

    def reselect(self, selection_id: str) -> Optional[PolygonSelection]:
        """Inspect an existing selection, e.g. after a click on its polygon."""
        if self._state is SelectorState.DRAWING or selection_id not in self._selections:
            return None
        self._active_id = selection_id
        self._transition(SelectorState.SELECTION_ACTIVE)
        return self._selections[selection_id]

    def close(self) -> bool:
        """Stop inspecting the active selection while keeping every polygon."""
        if self._state is not SelectorState.SELECTION_ACTIVE:
            return False
        self._active_id = None
        self._transition(SelectorState.IDLE)
        return True

    def clear_all(self) -> None:
        self._selections.clear()
        self._active_id = None
        self.last_rejection = None
        self._transition(SelectorState.IDLE)

    def _transition(self, target: SelectorState) -> None:
        if target is not self._state:
            LOGGER.debug("selector_transition", source=self._state.value, target=target.value)
        self._state = target
