"""Read-only access to the entity catalog (water systems and violations)."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

import httpx
import orjson
import structlog
from pydantic import BaseModel, Field, ValidationError, model_validator

from watermap.catalog.models import MonitoredEntity, StatusEvent

LOGGER = structlog.get_logger(__name__)

_ID_CHUNK = 100


class CatalogError(RuntimeError):
    """Raised when catalog records cannot be fetched or parsed."""


class DateRange(BaseModel):
    """Inclusive calendar window; either end may be open.

    Systems are windowed on their last report date and violations on the day
    their non-compliance period began. Records without that date fall outside
    any window.
    """

    start: Optional[date] = None
    end: Optional[date] = None

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start and self.end and self.start > self.end:
            raise ValueError("date range start is after its end")
        return self

    def contains(self, value: Optional[datetime]) -> bool:
        if value is None:
            return False
        day = value.date()
        if self.start and day < self.start:
            return False
        if self.end and day > self.end:
            return False
        return True

    def postgrest_filter(self, column: str) -> Optional[str]:
        bounds = []
        if self.start:
            bounds.append(f"{column}.gte.{self.start.isoformat()}")
        if self.end:
            bounds.append(f"{column}.lte.{self.end.isoformat()}")
        return "(" + ",".join(bounds) + ")" if bounds else None


class EntityFilters(BaseModel):
    """Server-side filters for listing entities."""

    search_term: Optional[str] = None
    system_type: Optional[str] = Field(default=None, pattern=r"^(CWS|TNCWS|NTNCWS)$")
    owner_type: Optional[str] = Field(default=None, pattern=r"^[FLMNPS]$")
    source_type: Optional[str] = Field(default=None, pattern=r"^(GW|SW|GU)$")
    county: Optional[str] = None
    date_range: Optional[DateRange] = None

    def matches(self, entity: MonitoredEntity) -> bool:
        if self.system_type and entity.system_type != self.system_type:
            return False
        if self.owner_type and entity.owner_type != self.owner_type:
            return False
        if self.source_type and entity.primary_source != self.source_type:
            return False
        if self.county and (entity.region or "").casefold() != self.county.casefold():
            return False
        if self.search_term:
            needle = self.search_term.casefold()
            haystack = (entity.name, entity.entity_id, entity.locality or "", entity.region or "")
            if not any(needle in value.casefold() for value in haystack):
                return False
        if self.date_range and not self.date_range.contains(entity.last_reported):
            return False
        return True


class PageRequest(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=25, ge=1, le=1000)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class EntityPage:
    records: List[MonitoredEntity] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


class CatalogStore(Protocol):
    async def list_entities(self, filters: EntityFilters, page: PageRequest) -> EntityPage: ...

    async def list_status_events(
        self,
        entity_ids: Sequence[str],
        date_range: Optional[DateRange] = None,
    ) -> List[StatusEvent]: ...


class PostgrestCatalogStore:
    """Catalog tables served by PostgREST on a hosted Postgres instance."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str, api_key: str) -> None:
        self._client = client
        self._base = f"{base_url.rstrip('/')}/rest/v1"
        self._headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    async def list_entities(self, filters: EntityFilters, page: PageRequest) -> EntityPage:
        params: Dict[str, str] = {
            "select": "*",
            "offset": str(page.offset),
            "limit": str(page.limit),
        }
        if filters.search_term:
            term = filters.search_term.replace(",", " ")
            columns = ("pws_name", "pwsid", "city_served", "county_served")
            params["or"] = "(" + ",".join(f"{column}.ilike.*{term}*" for column in columns) + ")"
        if filters.system_type:
            params["pws_type_code"] = f"eq.{filters.system_type}"
        if filters.owner_type:
            params["owner_type_code"] = f"eq.{filters.owner_type}"
        if filters.source_type:
            params["primary_source_code"] = f"eq.{filters.source_type}"
        if filters.county:
            params["county_served"] = f"eq.{filters.county}"
        if filters.date_range:
            window = filters.date_range.postgrest_filter("last_reported_date")
            if window:
                params["and"] = window

        response = await self._request("water_systems", params, count=True)
        rows = self._rows(response)
        total = _content_range_total(response.headers.get("Content-Range"), fallback=page.offset + len(rows))
        records = [self._entity(row) for row in rows]
        return EntityPage(records=records, total=total, has_more=page.offset + page.limit < total)

    async def list_status_events(
        self,
        entity_ids: Sequence[str],
        date_range: Optional[DateRange] = None,
    ) -> List[StatusEvent]:
        window = date_range.postgrest_filter("non_compl_per_begin_date") if date_range else None
        events: List[StatusEvent] = []
        ids = list(dict.fromkeys(entity_ids))
        for start in range(0, len(ids), _ID_CHUNK):
            chunk = ids[start:start + _ID_CHUNK]
            params = {
                "select": "*",
                "pwsid": "in.(" + ",".join(f'"{item}"' for item in chunk) + ")",
                "order": "non_compl_per_begin_date.desc",
            }
            if window:
                params["and"] = window
            response = await self._request("violations", params)
            for row in self._rows(response):
                try:
                    events.append(StatusEvent.from_catalog_row(row))
                except (ValidationError, ValueError) as exc:
                    LOGGER.warning("catalog_violation_skipped", row_id=row.get("violation_id"), error=str(exc))
        return events

    async def _request(self, table: str, params: Dict[str, str], *, count: bool = False) -> httpx.Response:
        headers = dict(self._headers)
        if count:
            headers["Prefer"] = "count=exact"
        try:
            response = await self._client.get(f"{self._base}/{table}", params=params, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CatalogError(f"Catalog request to {table} failed: {exc}") from exc
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> List[Dict[str, object]]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise CatalogError(f"Catalog returned malformed JSON: {exc}") from exc
        if not isinstance(rows, list):
            raise CatalogError("Catalog response is not a list of rows")
        return rows

    @staticmethod
    def _entity(row: Dict[str, object]) -> MonitoredEntity:
        try:
            return MonitoredEntity.from_catalog_row(row)
        except (ValidationError, ValueError) as exc:
            raise CatalogError(f"Invalid water system row {row.get('pwsid')}: {exc}") from exc


def _content_range_total(header: Optional[str], *, fallback: int) -> int:
    # PostgREST sends "0-24/573" or "*/0"
    if not header or "/" not in header:
        return fallback
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else fallback


def _read_rows(path: Path) -> List[Dict[str, object]]:
    if not path.exists():
        raise CatalogError(f"Catalog file not found: {path}")
    try:
        payload = orjson.loads(path.read_bytes())
    except orjson.JSONDecodeError as exc:
        raise CatalogError(f"Catalog file {path} is not valid JSON: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("data", [])
    if not isinstance(payload, list):
        raise CatalogError(f"Catalog file {path} must hold a list of rows")
    return payload


def load_entities(path: Path) -> List[MonitoredEntity]:
    """Load systems from JSON, accepting catalog column names or model fields."""
    entities: List[MonitoredEntity] = []
    for index, row in enumerate(_read_rows(path)):
        try:
            entity = MonitoredEntity.from_catalog_row(row) if "pwsid" in row else MonitoredEntity(**row)
        except (ValidationError, ValueError, TypeError) as exc:
            raise CatalogError(f"Invalid system row {index} in {path}: {exc}") from exc
        entities.append(entity)
    return entities


def load_events(path: Path) -> List[StatusEvent]:
    """Load violations from JSON, accepting catalog column names or model fields."""
    events: List[StatusEvent] = []
    for index, row in enumerate(_read_rows(path)):
        try:
            event = StatusEvent.from_catalog_row(row) if "pwsid" in row else StatusEvent(**row)
        except (ValidationError, ValueError, TypeError) as exc:
            raise CatalogError(f"Invalid violation row {index} in {path}: {exc}") from exc
        events.append(event)
    return events


class FileCatalogStore:
    """Catalog backed by JSON exports on disk."""

    def __init__(self, *, systems_path: Path, violations_path: Optional[Path] = None) -> None:
        self._systems_path = systems_path
        self._violations_path = violations_path
        self._entities: Optional[List[MonitoredEntity]] = None
        self._events: Optional[List[StatusEvent]] = None

    def _load(self) -> Tuple[List[MonitoredEntity], List[StatusEvent]]:
        if self._entities is None or self._events is None:
            self._entities = load_entities(self._systems_path)
            path = self._violations_path
            self._events = load_events(path) if path and path.exists() else []
            LOGGER.debug("catalog_file_loaded", path=str(self._systems_path), entities=len(self._entities))
        return self._entities, self._events

    async def list_entities(self, filters: EntityFilters, page: PageRequest) -> EntityPage:
        entities, _events = self._load()
        matched = [entity for entity in entities if filters.matches(entity)]
        records = matched[page.offset:page.offset + page.limit]
        return EntityPage(records=records, total=len(matched), has_more=page.offset + page.limit < len(matched))

    async def list_status_events(
        self,
        entity_ids: Sequence[str],
        date_range: Optional[DateRange] = None,
    ) -> List[StatusEvent]:
        _entities, events = self._load()
        wanted = set(entity_ids)
        return [
            event for event in events
            if event.entity_id in wanted and (date_range is None or date_range.contains(event.begin))
        ]


async def fetch_all_entities(
    store: CatalogStore,
    filters: Optional[EntityFilters] = None,
    *,
    page_size: int = 500,
) -> List[MonitoredEntity]:
    """Walk every page of ``store`` for the given filters."""
    filters = filters or EntityFilters()
    entities: List[MonitoredEntity] = []
    page = PageRequest(page=1, limit=page_size)
    while True:
        result = await store.list_entities(filters, page)
        entities.extend(result.records)
        if not result.has_more or not result.records:
            return entities
        page = PageRequest(page=page.page + 1, limit=page_size)


def entity_ids(entities: Iterable[MonitoredEntity]) -> List[str]:
    return [entity.entity_id for entity in entities]
