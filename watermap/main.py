"""Command-line entrypoints for the water system map engine."""
from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Coroutine, List, Optional

import orjson
from dotenv import load_dotenv
from pydantic import ValidationError

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop optional on some platforms
    uvloop = None

from watermap.catalog.store import CatalogError, DateRange, EntityFilters
from watermap.markers.filters import DisplayFilters
from watermap.observability.log import configure_logging
from watermap.observability.metrics import record_duration
from watermap.resolve.records import LocationDescriptor
from watermap.session import ViewSession, open_view_session
from watermap.settings import DEFAULT_SETTINGS_PATH, Settings, load_settings
from watermap.zones.export import export_selection, selection_payload
from watermap.zones.geometry import InvalidPolygonError, geojson_vertices


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="watermap", description="Water system map resolution and zone analytics")
    parser.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH), help="Path to settings TOML")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Resolve one location descriptor to a coordinate")
    resolve.add_argument("--county", help="County served")
    resolve.add_argument("--city", help="City name")
    resolve.add_argument("--name", help="Water system name")
    resolve.add_argument("--id", dest="entity_id", help="System identifier (PWSID), used for fallback placement")

    for name, help_text in (
        ("markers", "Build map markers for the catalog view"),
        ("zone", "Summarise the systems inside a polygon"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("--systems", help="Water systems JSON (overrides catalog settings)")
        command.add_argument("--violations", help="Violations JSON (overrides catalog settings)")
        command.add_argument("--search", help="Search term over name, id, city and county")
        command.add_argument("--county", help="Only systems serving this county")
        command.add_argument("--since", help="Only records dated on or after this ISO date")
        command.add_argument("--until", help="Only records dated on or before this ISO date")
        command.add_argument("--hide-compliant", action="store_true", help="Hide systems without active violations")
        command.add_argument("--hide-violations", action="store_true", help="Hide systems with minor violations")
        command.add_argument("--hide-critical", action="store_true", help="Hide systems with health-based violations")
        command.add_argument("--heatmap", action="store_true", help="Emit weighted density points")
        if name == "zone":
            command.add_argument("--polygon", required=True, help="GeoJSON polygon file")
            command.add_argument("--export", help="Write the zone analysis JSON to this path")

    return parser


def _display_filters(args: argparse.Namespace) -> DisplayFilters:
    return DisplayFilters(
        show_compliant=not args.hide_compliant,
        show_violations=not args.hide_violations,
        show_critical=not args.hide_critical,
        show_heatmap=args.heatmap,
    )


def _catalog_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    update = {}
    if getattr(args, "systems", None):
        update["backend"] = "file"
        update["systems_path"] = Path(args.systems)
    if getattr(args, "violations", None):
        update["violations_path"] = Path(args.violations)
    if not update:
        return settings
    return settings.model_copy(update={"catalog": settings.catalog.model_copy(update=update)})


def _export_metrics(session: ViewSession, run_id: str) -> None:
    session.metrics.export(path=session.settings.app.metrics_dir / f"run_{run_id}.json", run_id=run_id)


async def run_resolve(args: argparse.Namespace, settings: Settings) -> None:
    descriptor = LocationDescriptor(region=args.county, locality=args.city, name=args.name, entity_id=args.entity_id)
    async with open_view_session(settings, load_catalog=False) as session:
        record = await session.resolve(descriptor)
        print(json.dumps({"location_key": session.resolver.key_for(descriptor), **record.to_payload()}, indent=2))


def _entity_filters(args: argparse.Namespace) -> EntityFilters:
    try:
        date_range = DateRange(start=args.since, end=args.until) if args.since or args.until else None
    except ValidationError as exc:
        raise SystemExit(f"Invalid date range: {exc}")
    return EntityFilters(search_term=args.search, county=args.county, date_range=date_range)


async def _load(session: ViewSession, filters: EntityFilters) -> None:
    try:
        await session.load_view(filters)
    except CatalogError as exc:
        raise SystemExit(f"Failed to load catalog: {exc}")


async def run_markers(args: argparse.Namespace, settings: Settings) -> None:
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    filters = _entity_filters(args)
    async with open_view_session(settings) as session:
        await _load(session, filters)
        with record_duration(session.metrics, "build_duration_ms"):
            build = await session.build(filters=_display_filters(args))
        print(json.dumps(build.to_payload(), indent=2))
        _export_metrics(session, run_id)


async def run_zone(args: argparse.Namespace, settings: Settings) -> None:
    try:
        vertices = geojson_vertices(orjson.loads(Path(args.polygon).read_bytes()))
    except (OSError, orjson.JSONDecodeError, InvalidPolygonError) as exc:
        raise SystemExit(f"Failed to read polygon: {exc}")

    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
    filters = _display_filters(args)
    entity_filters = _entity_filters(args)
    async with open_view_session(settings) as session:
        await _load(session, entity_filters)
        await session.build(filters=filters)
        session.selector.start_drawing()
        selection = session.selector.complete_drawing(vertices, session.entities, session.events, filters)
        if selection is None:
            raise SystemExit(f"Polygon rejected: {session.selector.last_rejection}")
        statistics = session.summarize(selection)
        payload = selection_payload(selection, statistics)
        if args.export:
            export_selection(selection, Path(args.export))
        print(json.dumps({"zone": payload["zone"], "statistics": payload["statistics"]}, indent=2))
        _export_metrics(session, run_id)


def _run(coro: Coroutine[Any, Any, None]) -> None:
    if uvloop is not None:
        uvloop.run(coro)
    else:
        asyncio.run(coro)


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    try:
        settings = load_settings(Path(args.settings))
    except ValueError as exc:
        raise SystemExit(str(exc))
    settings = _catalog_overrides(settings, args)
    configure_logging(settings.app.logging_config)

    if args.command == "resolve":
        _run(run_resolve(args, settings))
        return

    if args.command == "markers":
        _run(run_markers(args, settings))
        return

    if args.command == "zone":
        _run(run_zone(args, settings))


if __name__ == "__main__":
    main()
