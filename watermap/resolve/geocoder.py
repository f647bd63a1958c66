"""Adapter over the external text-to-coordinate service."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional, Protocol, Tuple

import httpx
import structlog

from watermap.observability.metrics import MetricsRegistry
from watermap.observability.tracing import log_geocode_result, span

LOGGER = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class GeocodeCandidate:
    """Best match returned by the provider for one query."""

    latitude: float
    longitude: float
    result_types: Tuple[str, ...] = field(default_factory=tuple)
    partial_match: Optional[bool] = None
    formatted_address: Optional[str] = None


class Geocoder(Protocol):
    async def geocode(self, query: str) -> Optional[GeocodeCandidate]: ...


class GoogleGeocoder:
    """Google Geocoding API client returning zero or one candidate.

    Transport errors, non-2xx responses, non-``OK`` statuses and malformed
    payloads all yield None.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: Optional[str],
        endpoint: str = "https://maps.googleapis.com/maps/api/geocode/json",
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._endpoint = endpoint
        self._metrics = metrics or MetricsRegistry()
        self._warned_missing_key = False

    async def geocode(self, query: str) -> Optional[GeocodeCandidate]:
        if not self._api_key:
            if not self._warned_missing_key:
                LOGGER.warning("geocoder_api_key_missing")
                self._warned_missing_key = True
            return None

        self._metrics.incr("geocode_requests")
        start = time.perf_counter()
        try:
            with span(name="geocode", query=query):
                response = await self._client.get(
                    self._endpoint,
                    params={"address": query, "key": self._api_key},
                )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._metrics.incr("geocode_failures")
            LOGGER.warning("geocode_request_failed", query=query, error=str(exc))
            return None

        status = payload.get("status") if isinstance(payload, dict) else None
        log_geocode_result(query=query, status=str(status), elapsed_ms=int((time.perf_counter() - start) * 1000))
        if status != "OK" or not payload.get("results"):
            return None
        return _parse_candidate(payload["results"][0], query=query, metrics=self._metrics)


def _partial_match(value: object) -> Optional[bool]:
    # Google only sends the flag on partial matches
    return None if value is None else bool(value)


def _parse_candidate(result: object, *, query: str, metrics: MetricsRegistry) -> Optional[GeocodeCandidate]:
    try:
        location = result["geometry"]["location"]  # type: ignore[index]
        return GeocodeCandidate(
            latitude=float(location["lat"]),
            longitude=float(location["lng"]),
            result_types=tuple(str(item) for item in result.get("types", [])),  # type: ignore[union-attr]
            partial_match=_partial_match(result.get("partial_match")),  # type: ignore[union-attr]
            formatted_address=result.get("formatted_address"),  # type: ignore[union-attr]
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        metrics.incr("geocode_failures")
        LOGGER.warning("geocode_payload_malformed", query=query, error=str(exc))
        return None
