"""Administrative CLI utilities."""
from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List, Optional

from watermap.admin.status import summarise_cache, summarise_runs
from watermap.observability.log import configure_logging
from watermap.resolve.cache import CoordinateCache
from watermap.resolve.records import LocationDescriptor
from watermap.resolve.resolver import CoordinateResolver
from watermap.settings import DEFAULT_SETTINGS_PATH, load_settings


def cmd_cache_status(args: argparse.Namespace) -> None:
    print(json.dumps(summarise_cache(Path(args.cache)), indent=2))


def cmd_runs(args: argparse.Namespace) -> None:
    runs = summarise_runs(Path(args.metrics))
    print(json.dumps(runs[: args.last], indent=2))


def cmd_explain(args: argparse.Namespace) -> None:
    try:
        settings = load_settings(Path(args.settings))
    except ValueError as exc:
        raise SystemExit(str(exc))
    resolver = CoordinateResolver(CoordinateCache(), None, settings=settings.resolver)
    descriptor = LocationDescriptor(region=args.county, locality=args.city, name=args.name, entity_id=args.entity_id)
    plan = resolver.explain(descriptor)
    explanation = {
        "location_key": plan.key,
        "queries": plan.queries,
        "fallback": plan.fallback.to_payload(),
    }
    print(json.dumps(explanation, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="watermap.admin.cli", description="Administration commands")
    sub = parser.add_subparsers(dest="command", required=True)

    cache_status = sub.add_parser("cache-status", help="Summarise the persistent coordinate cache")
    cache_status.add_argument("--cache", default="data/coordinates_cache.json")

    runs = sub.add_parser("runs", help="List exported run metrics")
    runs.add_argument("--metrics", default="data/metrics")
    runs.add_argument("--last", type=int, default=10, help="Number of runs to show")

    explain = sub.add_parser("explain", help="Show the cache key, queries and fallback for a location")
    explain.add_argument("--county")
    explain.add_argument("--city")
    explain.add_argument("--name")
    explain.add_argument("--id", dest="entity_id")
    explain.add_argument("--settings", default=str(DEFAULT_SETTINGS_PATH))

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging(Path("config/logging.yaml"))
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "cache-status":
        cmd_cache_status(args)
        return
    if args.command == "runs":
        cmd_runs(args)
        return
    if args.command == "explain":
        cmd_explain(args)
        return


if __name__ == "__main__":
    main()
