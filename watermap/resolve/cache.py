"""Two-tier coordinate cache owned by a single view session."""
from __future__ import annotations

from typing import Dict, Optional

import httpx
import structlog

from watermap.observability.metrics import MetricsRegistry
from watermap.resolve.records import CoordinateRecord, LocationDescriptor
from watermap.resolve.store import CoordinateStore, CoordinateStoreError

LOGGER = structlog.get_logger(__name__)

_STORE_ERRORS = (CoordinateStoreError, httpx.HTTPError, OSError)


class CoordinateCache:
    """Session memory tier in front of an optional persistent tier.

    Reads check memory then the persistent tier, copying persistent hits into
    memory. Writes are monotonic in confidence: a record never replaces a
    stored one with a higher confidence. Persistent-tier failures are logged
    and the cache keeps working from memory alone.
    """

    def __init__(
        self,
        persistent: Optional[CoordinateStore] = None,
        *,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._memory: Dict[str, CoordinateRecord] = {}
        self._persistent = persistent
        self._metrics = metrics or MetricsRegistry()

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: object) -> bool:
        return key in self._memory

    def peek(self, key: str) -> Optional[CoordinateRecord]:
        """Return the session-tier record for ``key`` without touching storage."""
        record = self._memory.get(key)
        return record.as_cached() if record is not None else None

    async def get(self, key: str) -> Optional[CoordinateRecord]:
        """Return a cached record served with ``source=cache``, or None."""
        record = self._memory.get(key)
        if record is not None:
            self._metrics.incr("cache_hits_memory")
            return record.as_cached()

        record = await self._persistent_get(key)
        if record is None:
            self._metrics.incr("cache_misses")
            return None
        self._metrics.incr("cache_hits_persistent")
        self._memory[key] = record
        return record.as_cached()

    async def put(
        self,
        key: str,
        record: CoordinateRecord,
        *,
        descriptor: Optional[LocationDescriptor] = None,
        persist: bool = True,
    ) -> bool:
        """Store ``record`` in the session tier and, when ``persist``, the persistent tier.

        Returns False when the write was dropped because a higher-confidence
        record already exists for the key.
        """
        existing = self._memory.get(key)
        if existing is None and persist:
            existing = await self._persistent_get(key)
        if existing is not None and record.confidence < existing.confidence:
            self._metrics.incr("cache_writes_dropped")
            LOGGER.debug(
                "cache_write_dropped",
                key=key,
                existing_confidence=existing.confidence,
                confidence=record.confidence,
            )
            if key not in self._memory:
                self._memory[key] = existing
            return False

        self._memory[key] = record
        self._metrics.incr("cache_writes")
        if persist and self._persistent is not None:
            try:
                await self._persistent.upsert(key, record, descriptor)
            except _STORE_ERRORS as exc:
                self._metrics.incr("cache_store_failures")
                LOGGER.warning("cache_store_write_failed", key=key, error=str(exc))
        return True

    def clear(self) -> None:
        """Drop the session tier; the persistent tier is left untouched."""
        self._memory.clear()
        LOGGER.info("cache_cleared")

    async def _persistent_get(self, key: str) -> Optional[CoordinateRecord]:
        if self._persistent is None:
            return None
        try:
            return await self._persistent.get(key)
        except _STORE_ERRORS as exc:
            self._metrics.incr("cache_store_failures")
            LOGGER.warning("cache_store_read_failed", key=key, error=str(exc))
            return None
