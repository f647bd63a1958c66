"""Settings loading and validation for the map engine."""
from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, model_validator

DEFAULT_SETTINGS_PATH = Path("config/settings.toml")


class BoundingBox(BaseModel):
    """Geographic sanity window for accepted geocoding results."""

    north: float = 35.0
    south: float = 30.3
    east: float = -80.8
    west: float = -85.6

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.south >= self.north or self.west >= self.east:
            raise ValueError("bounding box edges are inverted")
        return self

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.south <= latitude <= self.north and self.west <= longitude <= self.east


class ConfidenceWeights(BaseModel):
    """Increments applied on top of ``base`` for each result-type signal.

    ``exact_match`` is only added when the provider explicitly reports
    ``partial_match: false``; a missing flag earns no bonus.
    """

    base: float = Field(default=0.5, ge=0, le=1)
    locality: float = 0.3
    county: float = 0.2
    establishment: float = 0.2
    point_of_interest: float = 0.1
    exact_match: float = 0.1


class ResolverSettings(BaseModel):
    jurisdiction: str = "Georgia, USA"
    region_suffix: str = "County"
    centroid: Tuple[float, float] = (32.1656, -82.9001)
    fallback_spread: float = Field(default=0.1, gt=0, le=1)
    fallback_confidence: float = Field(default=0.1, ge=0, le=1)
    bounds: BoundingBox = Field(default_factory=BoundingBox)
    confidence: ConfidenceWeights = Field(default_factory=ConfidenceWeights)


class MarkerSettings(BaseModel):
    batch_size: int = Field(default=10, gt=0)
    batch_delay_seconds: float = Field(default=0.1, ge=0)
    min_size: float = Field(default=8.0, gt=0)
    max_size: float = Field(default=25.0, gt=0)
    default_population: int = Field(default=100, gt=0)

    @model_validator(mode="after")
    def _check_sizes(self) -> "MarkerSettings":
        if self.min_size > self.max_size:
            raise ValueError("min_size must not exceed max_size")
        return self


class GeocoderSettings(BaseModel):
    endpoint: str = "https://maps.googleapis.com/maps/api/geocode/json"
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_connections: int = Field(default=10, gt=0)
    api_key: Optional[str] = None


class CacheSettings(BaseModel):
    backend: str = Field(default="file", pattern=r"^(file|postgrest|none)$")
    path: Path = Path("data/coordinates_cache.json")
    table: str = "coordinates_cache"


class CatalogSettings(BaseModel):
    backend: str = Field(default="file", pattern=r"^(file|postgrest)$")
    systems_path: Path = Path("data/water_systems.json")
    violations_path: Path = Path("data/violations.json")
    page_size: int = Field(default=500, gt=0, le=1000)
    url: Optional[str] = None
    api_key: Optional[str] = None


class AppSettings(BaseModel):
    logging_config: Path = Path("config/logging.yaml")
    metrics_dir: Path = Path("data/metrics")


class Settings(BaseModel):
    """Validated view of ``config/settings.toml`` plus environment secrets."""

    app: AppSettings = Field(default_factory=AppSettings)
    resolver: ResolverSettings = Field(default_factory=ResolverSettings)
    markers: MarkerSettings = Field(default_factory=MarkerSettings)
    geocoder: GeocoderSettings = Field(default_factory=GeocoderSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)


def _apply_environment(raw: dict) -> dict:
    geocoder = raw.setdefault("geocoder", {})
    if os.getenv("GOOGLE_MAPS_API_KEY"):
        geocoder["api_key"] = os.environ["GOOGLE_MAPS_API_KEY"]
    catalog = raw.setdefault("catalog", {})
    if os.getenv("SUPABASE_URL"):
        catalog["url"] = os.environ["SUPABASE_URL"]
    if os.getenv("SUPABASE_KEY"):
        catalog["api_key"] = os.environ["SUPABASE_KEY"]
    return raw


def load_settings(path: Path = DEFAULT_SETTINGS_PATH) -> Settings:
    """Read the TOML configuration file, overlay secrets and validate it."""
    raw: dict = {}
    if path.exists():
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    try:
        return Settings(**_apply_environment(raw))
    except ValidationError as exc:
        raise ValueError(f"Invalid settings in {path}: {exc}") from exc
