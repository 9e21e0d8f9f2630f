"""Command-line entrypoints for the location resolver."""
from __future__ import annotations

import argparse
import contextlib
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import orjson
import tomllib
import uvloop
from dotenv import load_dotenv

from georesolver.device.nominatim import NominatimGeocoder
from georesolver.device.platform import FixedPositioningService
from georesolver.errors import ResolutionError, normalize, present
from georesolver.models import Coordinate
from georesolver.observability.log import configure_logging
from georesolver.observability.metrics import MetricsRegistry
from georesolver.orchestrator.config import ResolverSettings
from georesolver.orchestrator.resolver import LocationResolver
from georesolver.search.client import DirectorySearchClient
from georesolver.search.session import create_http_client

DEFAULT_SETTINGS = Path("config/settings.toml")
DEFAULT_LOGGING = Path("config/logging.yaml")
API_KEY_ENV = "ACCUWEATHER_API_KEY"


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file; missing files yield defaults."""
    if not path.exists():
        return {}
    with path.open("rb") as handle:
        return tomllib.load(handle)


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="georesolver", description="Coordinate to named-location resolver")
    parser.add_argument("--config", default=str(DEFAULT_SETTINGS), help="Path to settings.toml")
    parser.add_argument("--metrics-out", help="Write resolver counters to this JSON file")
    sub = parser.add_subparsers(dest="command", required=True)

    resolve = sub.add_parser("resolve", help="Resolve a coordinate to a directory location")
    resolve.add_argument("--lat", type=float, required=True, help="Latitude in degrees")
    resolve.add_argument("--lon", type=float, required=True, help="Longitude in degrees")

    mine = sub.add_parser("my-location", help="Resolve the configured device position")
    mine.add_argument("--lat", type=float, help="Override the device latitude")
    mine.add_argument("--lon", type=float, help="Override the device longitude")

    reverse = sub.add_parser("reverse", help="Describe a coordinate (never fails)")
    reverse.add_argument("--lat", type=float, required=True)
    reverse.add_argument("--lon", type=float, required=True)

    search = sub.add_parser("search", help="Free-text directory search")
    search.add_argument("query")
    search.add_argument("--autocomplete", action="store_true", help="Use the autocomplete endpoint")

    sub.add_parser("diagnose", help="Walk every resolution step and report the first failure")

    return parser


def _device(args: argparse.Namespace, settings: Dict[str, object]) -> FixedPositioningService:
    device = settings.get("device", {})
    latitude = getattr(args, "lat", None)
    longitude = getattr(args, "lon", None)
    if latitude is None:
        latitude = float(device.get("latitude", 0.0))
    if longitude is None:
        longitude = float(device.get("longitude", 0.0))
    accuracy = device.get("accuracy")
    return FixedPositioningService(latitude, longitude, accuracy=float(accuracy) if accuracy is not None else None)


def _print(payload: object) -> None:
    sys.stdout.write(orjson.dumps(payload, option=orjson.OPT_INDENT_2).decode())
    sys.stdout.write("\n")


async def run_command(
    args: argparse.Namespace,
    settings: Dict[str, object],
    *,
    metrics: Optional[MetricsRegistry] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> object:
    """Execute one subcommand and return its JSON-serialisable result."""
    metrics = metrics or MetricsRegistry()
    search_cfg = settings.get("search", {})
    geocoder_cfg = settings.get("geocoder", {})
    resolver_settings = ResolverSettings.from_config(settings.get("resolver", {}))

    async with contextlib.AsyncExitStack() as stack:
        search_http = await stack.enter_async_context(
            create_http_client(
                base_url=str(search_cfg.get("base_url", "https://dataservice.accuweather.com")),
                user_agent=str(search_cfg.get("user_agent", "georesolver/0.1")),
                timeout=float(search_cfg.get("timeout_seconds", 10)),
                max_connections=int(search_cfg.get("max_connections", 4)),
                transport=transport,
            )
        )
        geocoder_http = await stack.enter_async_context(
            create_http_client(
                base_url=str(geocoder_cfg.get("base_url", "https://nominatim.openstreetmap.org")),
                user_agent=str(geocoder_cfg.get("user_agent", "georesolver/0.1")),
                timeout=float(geocoder_cfg.get("timeout_seconds", 5)),
                max_connections=1,
                transport=transport,
            )
        )
        search = DirectorySearchClient(
            search_http,
            api_key=os.environ.get(API_KEY_ENV),
            metrics=metrics,
            attempts=int(search_cfg.get("attempts", 3)),
            retry_delay=float(search_cfg.get("retry_delay", 1.0)),
            max_qps=float(search_cfg.get("max_qps", 5)),
            language=search_cfg.get("language"),
        )
        resolver = LocationResolver(
            positioning=_device(args, settings),
            search=search,
            geocoder=NominatimGeocoder(geocoder_http, language=str(geocoder_cfg.get("language", "en"))),
            settings=resolver_settings,
            metrics=metrics,
        )

        if args.command == "resolve":
            resolution = await resolver.resolve(Coordinate(args.lat, args.lon))
            return resolution.as_dict()
        if args.command == "my-location":
            resolution = await resolver.resolve_my_location()
            return resolution.as_dict()
        if args.command == "reverse":
            result = await resolver.reverse_geocode(Coordinate(args.lat, args.lon))
            return {
                "city": result.city,
                "region": result.region,
                "country": result.country,
                "formatted_address": result.formatted_address,
                "source": result.source,
            }
        if args.command == "search":
            if args.autocomplete:
                candidates = await search.autocomplete(args.query)
            else:
                candidates = await search.search(args.query)
            return [candidate.model_dump() for candidate in candidates]
        if args.command == "diagnose":
            return await resolver.diagnose()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(Path(args.config))
    configure_logging(DEFAULT_LOGGING)
    metrics = MetricsRegistry()

    try:
        result = uvloop.run(run_command(args, settings, metrics=metrics))
    except ResolutionError as error:
        _print({"error": present(error).as_dict()})
        raise SystemExit(1)
    except httpx.HTTPError as exc:
        _print({"error": present(normalize(exc)).as_dict()})
        raise SystemExit(1)
    finally:
        if args.metrics_out:
            run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
            metrics.export(path=Path(args.metrics_out), run_id=run_id)
    _print(result)


if __name__ == "__main__":
    main()
