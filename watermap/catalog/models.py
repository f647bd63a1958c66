"""Pydantic models for catalog records consumed by the map engine."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from dateutil import parser as dateparser
from pydantic import BaseModel, ConfigDict, Field, field_validator

from watermap.resolve.records import LocationDescriptor

ACTIVE_STATUSES = frozenset({"Unaddressed", "Addressed"})


def _parse_datetime(value: object) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    return dateparser.isoparse(str(value))


class MonitoredEntity(BaseModel):
    """A regulated water system as fetched for one view load."""

    model_config = ConfigDict(frozen=True)

    entity_id: str = Field(min_length=1)
    name: str = ""
    region: Optional[str] = None
    locality: Optional[str] = None
    population: int = Field(default=0, ge=0)
    system_type: Optional[str] = None
    owner_type: Optional[str] = None
    primary_source: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    last_reported: Optional[datetime] = None

    @field_validator("last_reported", mode="before")
    @classmethod
    def _coerce_last_reported(cls, value: object) -> Optional[datetime]:
        return _parse_datetime(value)

    @field_validator("population", mode="before")
    @classmethod
    def _coerce_population(cls, value: object) -> int:
        if value in (None, ""):
            return 0
        return int(float(value))  # type: ignore[arg-type]

    def descriptor(self) -> LocationDescriptor:
        return LocationDescriptor(
            region=self.region,
            locality=self.locality,
            name=self.name,
            entity_id=self.entity_id,
        )

    @classmethod
    def from_catalog_row(cls, row: Dict[str, object]) -> "MonitoredEntity":
        """Map a ``water_systems`` row onto the model."""
        return cls(
            entity_id=str(row.get("pwsid") or ""),
            name=str(row.get("pws_name") or ""),
            region=row.get("county_served") or None,
            locality=row.get("city_name") or row.get("city_served") or None,
            population=row.get("population_served_count") or 0,
            system_type=row.get("pws_type_code"),
            owner_type=row.get("owner_type_code"),
            primary_source=row.get("primary_source_code"),
            state=row.get("state_code"),
            zip_code=row.get("zip_code"),
            last_reported=row.get("last_reported_date"),
        )


class StatusEvent(BaseModel):
    """A violation attached to an entity; read-only for this engine."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    entity_id: str
    active: bool
    health_based: bool = False
    begin: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None
    category: Optional[str] = None
    contaminant: Optional[str] = None
    is_major: bool = False

    @field_validator("begin", "end", mode="before")
    @classmethod
    def _coerce_dates(cls, value: object) -> Optional[datetime]:
        return _parse_datetime(value)

    @classmethod
    def from_catalog_row(cls, row: Dict[str, object]) -> "StatusEvent":
        """Map a ``violations`` row; ``active`` derives from the violation status."""
        status = str(row.get("violation_status") or "") or None
        return cls(
            event_id=str(row.get("violation_id") or row.get("id") or ""),
            entity_id=str(row.get("pwsid") or ""),
            active=status in ACTIVE_STATUSES,
            health_based=bool(row.get("is_health_based_ind")),
            begin=row.get("non_compl_per_begin_date"),
            end=row.get("non_compl_per_end_date"),
            status=status,
            category=row.get("violation_category_code"),
            contaminant=row.get("contaminant_code"),
            is_major=bool(row.get("is_major_viol_ind")),
        )


def group_events(events: Iterable[StatusEvent]) -> Dict[str, List[StatusEvent]]:
    """Index events by owning entity id."""
    grouped: Dict[str, List[StatusEvent]] = {}
    for event in events:
        grouped.setdefault(event.entity_id, []).append(event)
    return grouped
