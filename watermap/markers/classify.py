"""Compliance classification derived from an entity's status events."""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List

from watermap.catalog.models import StatusEvent


class Classification(str, Enum):
    NORMAL = "normal"
    ELEVATED = "elevated"
    SEVERE = "severe"

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    Classification.NORMAL: "Compliant",
    Classification.ELEVATED: "Minor Issues",
    Classification.SEVERE: "Critical Issues",
}


@dataclass(frozen=True, slots=True)
class EventSummary:
    """Active-event tallies for one entity."""

    active: int
    health_based: int

    @property
    def classification(self) -> Classification:
        if self.health_based:
            return Classification.SEVERE
        if self.active:
            return Classification.ELEVATED
        return Classification.NORMAL


def active_events(events: Iterable[StatusEvent]) -> List[StatusEvent]:
    return [event for event in events if event.active]


def summarize_events(events: Iterable[StatusEvent]) -> EventSummary:
    active = active_events(events)
    return EventSummary(active=len(active), health_based=sum(1 for event in active if event.health_based))


def classify(events: Iterable[StatusEvent]) -> Classification:
    """Severe on any active health-based event, elevated on any active event, else normal."""
    return summarize_events(events).classification


def density_weight(summary: EventSummary) -> int:
    """Heatmap weight; zero means the entity adds no density point."""
    if summary.classification is Classification.NORMAL:
        return 0
    if summary.health_based:
        return 5
    if summary.active > 3:
        return 3
    if summary.active > 1:
        return 2
    return 1


def marker_size(population: int, *, minimum: float = 8.0, maximum: float = 25.0, default_population: int = 100) -> float:
    """Square-root scale of the population served, clamped to the visual range."""
    served = population if population > 0 else default_population
    return max(minimum, min(maximum, math.sqrt(served / 100)))
