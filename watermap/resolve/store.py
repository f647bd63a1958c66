"""Persistent tiers for the coordinate cache."""
from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Dict, Optional, Protocol

import httpx
import orjson
import structlog

from watermap.resolve.records import CoordinateRecord, CoordinateSource, LocationDescriptor

LOGGER = structlog.get_logger(__name__)

_STORE_SCHEMA_VERSION = 1


class CoordinateStoreError(RuntimeError):
    """Raised when a persistent coordinate tier cannot be read or written."""


class CoordinateStore(Protocol):
    async def get(self, key: str) -> Optional[CoordinateRecord]: ...

    async def upsert(
        self,
        key: str,
        record: CoordinateRecord,
        descriptor: Optional[LocationDescriptor] = None,
    ) -> None: ...


class JsonFileCoordinateStore:
    """Persist resolved coordinates in a versioned JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._index: Dict[str, Dict[str, object]] = {}
        self._lock = asyncio.Lock()
        if path.exists():
            try:
                payload = orjson.loads(path.read_bytes())
            except orjson.JSONDecodeError:
                LOGGER.warning("coordinate_store_corrupt", path=str(path))
                payload = {}
            if isinstance(payload, dict) and payload.get("version") == _STORE_SCHEMA_VERSION:
                self._index = payload.get("data", {})
        else:
            path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._index)

    def entries(self) -> Dict[str, Dict[str, object]]:
        """Return a copy of the raw rows keyed by location key."""
        return {key: dict(value) for key, value in self._index.items()}

    async def get(self, key: str) -> Optional[CoordinateRecord]:
        row = self._index.get(key)
        if row is None:
            return None
        try:
            return CoordinateRecord.from_payload(row)
        except (KeyError, TypeError, ValueError) as exc:
            raise CoordinateStoreError(f"Malformed cache row for {key}: {exc}") from exc

    async def upsert(
        self,
        key: str,
        record: CoordinateRecord,
        descriptor: Optional[LocationDescriptor] = None,
    ) -> None:
        row = record.to_payload()
        row["source"] = (record.provenance or record.source).value
        row["updated_at"] = str(int(time.time()))
        if descriptor is not None:
            row.update({"county": descriptor.region, "city": descriptor.locality, "name": descriptor.name})
        self._index[key] = row
        await self._persist()

    async def _persist(self) -> None:
        async with self._lock:
            try:
                await asyncio.to_thread(self._write_payload)
            except OSError as exc:
                raise CoordinateStoreError(f"Failed to write {self._path}: {exc}") from exc

    def _write_payload(self) -> None:
        payload = {"version": _STORE_SCHEMA_VERSION, "data": self._index}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_bytes(orjson.dumps(payload, option=orjson.OPT_INDENT_2))


class PostgrestCoordinateStore:
    """Coordinate cache table on a hosted Postgres exposed through PostgREST."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        base_url: str,
        api_key: str,
        table: str = "coordinates_cache",
    ) -> None:
        self._client = client
        self._endpoint = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}

    async def get(self, key: str) -> Optional[CoordinateRecord]:
        params = {"location_key": f"eq.{key}", "select": "*", "limit": "1"}
        try:
            response = await self._client.get(self._endpoint, params=params, headers=self._headers)
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise CoordinateStoreError(f"Coordinate lookup failed for {key}: {exc}") from exc
        if not rows:
            return None
        row = rows[0]
        try:
            source = CoordinateSource(str(row.get("source")))
        except ValueError:
            # legacy rows carry the provider name, e.g. "google_maps"
            source = CoordinateSource.EXTERNAL
        try:
            return CoordinateRecord(
                latitude=float(row["latitude"]),
                longitude=float(row["longitude"]),
                source=source,
                confidence=float(row.get("confidence_score") or 0.0),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise CoordinateStoreError(f"Malformed cache row for {key}: {exc}") from exc

    async def upsert(
        self,
        key: str,
        record: CoordinateRecord,
        descriptor: Optional[LocationDescriptor] = None,
    ) -> None:
        descriptor = descriptor or LocationDescriptor()
        row = {
            "location_key": key,
            "county": descriptor.region,
            "city": descriptor.locality,
            "name": descriptor.name,
            "latitude": record.latitude,
            "longitude": record.longitude,
            "source": (record.provenance or record.source).value,
            "confidence_score": record.confidence,
        }
        headers = {**self._headers, "Prefer": "resolution=merge-duplicates,return=minimal"}
        try:
            response = await self._client.post(
                self._endpoint,
                params={"on_conflict": "location_key"},
                json=row,
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise CoordinateStoreError(f"Coordinate upsert failed for {key}: {exc}") from exc
