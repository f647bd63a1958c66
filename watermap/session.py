"""Wiring for one map view session: cache, resolver, builder and selector."""
from __future__ import annotations

import contextlib
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional, Sequence, Tuple

import httpx
import structlog

from watermap.catalog.models import MonitoredEntity, StatusEvent
from watermap.catalog.store import (
    CatalogStore,
    EntityFilters,
    FileCatalogStore,
    PostgrestCatalogStore,
    entity_ids,
    fetch_all_entities,
)
from watermap.http import create_http_client
from watermap.markers.builder import BatchMarkerBuilder, MarkerBuild
from watermap.markers.filters import DisplayFilters
from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.geocoder import Geocoder, GoogleGeocoder
from watermap.resolve.records import CoordinateRecord, LocationDescriptor
from watermap.resolve.resolver import CoordinateResolver
from watermap.resolve.store import CoordinateStore, JsonFileCoordinateStore, PostgrestCoordinateStore
from watermap.settings import Settings
from watermap.zones.aggregate import ZoneStatistics, summarize
from watermap.zones.selector import PolygonSelection, SpatialSelector

LOGGER = structlog.get_logger(__name__)


def create_coordinate_store(settings: Settings, client: httpx.AsyncClient) -> Optional[CoordinateStore]:
    """Pick the persistent coordinate tier named in settings, if usable."""
    backend = settings.cache.backend
    if backend == "file":
        return JsonFileCoordinateStore(settings.cache.path)
    if backend == "postgrest":
        if not settings.catalog.url or not settings.catalog.api_key:
            LOGGER.warning("coordinate_store_unconfigured", backend=backend)
            return None
        return PostgrestCoordinateStore(
            client,
            base_url=settings.catalog.url,
            api_key=settings.catalog.api_key,
            table=settings.cache.table,
        )
    return None


def create_catalog_store(settings: Settings, client: httpx.AsyncClient) -> CatalogStore:
    if settings.catalog.backend == "postgrest":
        if not settings.catalog.url or not settings.catalog.api_key:
            raise ValueError("catalog backend 'postgrest' needs SUPABASE_URL and SUPABASE_KEY")
        return PostgrestCatalogStore(client, base_url=settings.catalog.url, api_key=settings.catalog.api_key)
    return FileCatalogStore(
        systems_path=settings.catalog.systems_path,
        violations_path=settings.catalog.violations_path,
    )


@dataclass
class ViewSession:
    """Everything one map view owns; discarded with the view."""

    settings: Settings
    cache: CoordinateCache
    resolver: CoordinateResolver
    builder: BatchMarkerBuilder
    selector: SpatialSelector
    metrics: MetricsRegistry
    catalog: Optional[CatalogStore] = None
    entities: List[MonitoredEntity] = field(default_factory=list)
    events: List[StatusEvent] = field(default_factory=list)

    async def load_view(self, filters: Optional[EntityFilters] = None) -> Tuple[List[MonitoredEntity], List[StatusEvent]]:
        """Fetch a fresh entity list and its events from the catalog."""
        if self.catalog is None:
            raise ValueError("no catalog store configured for this session")
        self.entities = await fetch_all_entities(
            self.catalog,
            filters,
            page_size=self.settings.catalog.page_size,
        )
        self.events = await self.catalog.list_status_events(
            entity_ids(self.entities),
            filters.date_range if filters else None,
        )
        LOGGER.info("view_loaded", entities=len(self.entities), events=len(self.events))
        return self.entities, self.events

    async def resolve(self, descriptor: LocationDescriptor) -> CoordinateRecord:
        return await self.resolver.resolve(descriptor)

    async def build(
        self,
        entities: Optional[Sequence[MonitoredEntity]] = None,
        events: Optional[Sequence[StatusEvent]] = None,
        filters: Optional[DisplayFilters] = None,
    ) -> MarkerBuild:
        return await self.builder.build(
            self.entities if entities is None else entities,
            self.events if events is None else events,
            filters,
        )

    def summarize(self, selection: Optional[PolygonSelection] = None) -> ZoneStatistics:
        return summarize(selection or self.selector.active)


@contextlib.asynccontextmanager
async def open_view_session(
    settings: Settings,
    *,
    geocoder: Optional[Geocoder] = None,
    catalog: Optional[CatalogStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    load_catalog: bool = True,
) -> AsyncIterator[ViewSession]:
    """Yield a ``ViewSession`` whose HTTP client lives as long as the context."""
    metrics = MetricsRegistry()
    async with create_http_client(
        timeout=settings.geocoder.timeout_seconds,
        max_connections=max(settings.geocoder.max_connections, settings.markers.batch_size),
        transport=transport,
    ) as client:
        cache = CoordinateCache(create_coordinate_store(settings, client), metrics=metrics)
        if geocoder is None:
            geocoder = GoogleGeocoder(
                client,
                api_key=settings.geocoder.api_key,
                endpoint=settings.geocoder.endpoint,
                metrics=metrics,
            )
        resolver = CoordinateResolver(cache, geocoder, settings=settings.resolver, metrics=metrics)
        if catalog is None and load_catalog:
            catalog = create_catalog_store(settings, client)
        session = ViewSession(
            settings=settings,
            cache=cache,
            resolver=resolver,
            builder=BatchMarkerBuilder(resolver, settings=settings.markers, metrics=metrics),
            selector=SpatialSelector(cache, metrics=metrics),
            metrics=metrics,
            catalog=catalog,
        )
        try:
            yield session
        finally:
            session.builder.supersede()
            cache.clear()
