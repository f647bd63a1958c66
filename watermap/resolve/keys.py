"""Deterministic keys and query strings for location descriptors."""
from __future__ import annotations

import hashlib
from typing import List, Optional, Tuple

from watermap.resolve.records import LocationDescriptor

KEY_SEPARATOR = "|"


def _normalise(text: Optional[str]) -> str:
    return "_".join(str(text or "").casefold().split())


def normalize_location_key(region: Optional[str], locality: Optional[str], name: Optional[str]) -> str:
    """Return the cache key for a descriptor.

    Case is folded and any whitespace run becomes a single underscore, so
    descriptors that differ only in case or spacing share a key.
    """
    return KEY_SEPARATOR.join(_normalise(part) for part in (region, locality, name))


def location_key(descriptor: LocationDescriptor) -> str:
    return normalize_location_key(descriptor.region, descriptor.locality, descriptor.name)


def _clean(text: Optional[str]) -> str:
    return " ".join(str(text or "").split())


def candidate_queries(
    descriptor: LocationDescriptor,
    *,
    jurisdiction: str,
    region_suffix: str = "County",
) -> List[str]:
    """Build geocoder queries ordered from most to least specific."""
    name = _clean(descriptor.name)
    city = _clean(descriptor.locality)
    region = _clean(descriptor.region)
    county = f"{region} {region_suffix}".strip() if region else ""

    combos: List[Tuple[str, ...]] = []
    if name and city and county:
        combos.append((name, city, county))
    if city and county:
        combos.append((city, county))
    if name and county:
        combos.append((name, county))
    if city:
        combos.append((city,))
    if county:
        combos.append((county,))

    queries: List[str] = []
    for combo in combos:
        query = ", ".join([*combo, jurisdiction])
        if query not in queries:
            queries.append(query)
    return queries


def stable_offset(identifier: str, spread: float) -> Tuple[float, float]:
    """Map an identifier to a reproducible (lat, lng) offset in [-spread, spread)."""
    digest = hashlib.sha256(identifier.encode("utf-8")).digest()
    lat_bucket = int.from_bytes(digest[:4], "big") % 2000
    lng_bucket = int.from_bytes(digest[4:8], "big") % 2000
    return ((lat_bucket - 1000) / 1000 * spread, (lng_bucket - 1000) / 1000 * spread)
