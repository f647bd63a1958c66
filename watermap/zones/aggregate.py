"""Summary statistics over the entities inside a polygon selection."""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Dict, Optional

from watermap.markers.classify import Classification, summarize_events
from watermap.zones.selector import PolygonSelection


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


@dataclass(frozen=True, slots=True)
class ZoneStatistics:
    total_systems: int = 0
    compliant_systems: int = 0
    violation_systems: int = 0
    critical_systems: int = 0
    total_population: int = 0
    active_violations: int = 0
    health_based_violations: int = 0
    area_km2: float = 0.0
    average_system_size: float = 0.0
    population_density: float = 0.0
    system_density: float = 0.0
    compliance_rate: float = 0.0

    @property
    def compliance_percent(self) -> float:
        return self.compliance_rate * 100

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


def summarize(selection: Optional[PolygonSelection]) -> ZoneStatistics:
    """Recompute zone statistics from the selection's entity snapshots.

    Classifications are derived from each entity's events on every call.
    Ratios over an empty selection or zero area are 0, and no selection at
    all yields all-zero statistics.
    """
    if selection is None:
        return ZoneStatistics()
    counts = {classification: 0 for classification in Classification}
    population = 0
    active = 0
    health_based = 0
    for item in selection.entities:
        summary = summarize_events(item.events)
        counts[summary.classification] += 1
        population += item.entity.population
        active += summary.active
        health_based += summary.health_based

    total = len(selection.entities)
    area = selection.area_km2
    return ZoneStatistics(
        total_systems=total,
        compliant_systems=counts[Classification.NORMAL],
        violation_systems=counts[Classification.ELEVATED],
        critical_systems=counts[Classification.SEVERE],
        total_population=population,
        active_violations=active,
        health_based_violations=health_based,
        area_km2=area,
        average_system_size=_ratio(population, total),
        population_density=_ratio(population, area),
        system_density=_ratio(total, area),
        compliance_rate=_ratio(counts[Classification.NORMAL], total),
    )
