"""Strategy cascade turning coordinates into directory location records.

Strategies run strictly in order and the first one that yields a candidate
wins:

    geoposition   -> one geoposition search
    text_search   -> reverse geocode, generated queries, closest match
    nearby_radius -> country-wide search filtered to the nearby radius
    capital_city  -> major city (or the country itself)

Retryable failures inside a strategy are logged and the cascade moves on;
non-retryable ones (permission, disabled services) abort immediately. When
every strategy comes back empty a NOT_FOUND `ResolutionError` carrying the
coordinate is raised.
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from georesolver.device.cache import LastFixCache, PermissionCache
from georesolver.device.platform import PositioningService, ReverseGeocodingService
from georesolver.device.provider import CoordinateProvider
from georesolver.errors import ResolutionError, normalize, present
from georesolver.geocode.queries import generate_queries
from georesolver.geocode.regions import major_city_for
from georesolver.geocode.reverse import ReverseGeocoder
from georesolver.geocode.selector import select_closest, within_radius
from georesolver.models import (
    Coordinate,
    GeocodingResult,
    LocationCandidate,
    LocationRecord,
    PermissionState,
    Resolution,
    is_placeholder,
)
from georesolver.observability.metrics import MetricsRegistry, record_duration
from georesolver.observability.tracing import clear_context, log_retry, set_context, span
from georesolver.orchestrator.config import ResolverSettings
from georesolver.search.client import LocationSearchClient

LOGGER = structlog.get_logger(__name__)

STRATEGY_GEOPOSITION = "geoposition"
STRATEGY_TEXT_SEARCH = "text_search"
STRATEGY_NEARBY_RADIUS = "nearby_radius"
STRATEGY_CAPITAL_CITY = "capital_city"


class _Attempt:
    """State shared by the strategies of a single resolve call."""

    def __init__(self, coordinate: Coordinate, geocoder: ReverseGeocoder) -> None:
        self.coordinate = coordinate
        self._geocoder = geocoder
        self._geocoding: Optional[GeocodingResult] = None

    async def geocoding(self) -> GeocodingResult:
        if self._geocoding is None:
            self._geocoding = await self._geocoder.resolve_address(self.coordinate)
        return self._geocoding


def _administrative_area_query(geocoding: GeocodingResult) -> Optional[str]:
    if is_placeholder(geocoding.region):
        return None
    region = geocoding.region.strip()
    return region if is_placeholder(geocoding.country) else f"{region}, {geocoding.country.strip()}"


def _reconcile(geocoding: GeocodingResult, record: LocationRecord) -> GeocodingResult:
    """Describe the position with the winning record's names when they disagree."""
    if is_placeholder(record.name):
        return geocoding
    same = (
        geocoding.city == record.name
        and geocoding.region == record.administrative_area
        and geocoding.country == record.country
    )
    return geocoding if same else record.to_geocoding()


class LocationResolver:
    """Single entry point for location resolution; owns both caches."""

    def __init__(
        self,
        *,
        positioning: PositioningService,
        search: LocationSearchClient,
        geocoder: Optional[ReverseGeocodingService] = None,
        settings: Optional[ResolverSettings] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._settings = settings or ResolverSettings()
        self._metrics = metrics or MetricsRegistry()
        self._search_client = search
        self._permission_cache = PermissionCache(ttl=self._settings.cache_ttl_seconds)
        self._fix_cache = LastFixCache(ttl=self._settings.cache_ttl_seconds)
        self._provider = CoordinateProvider(
            positioning,
            permission_cache=self._permission_cache,
            fix_cache=self._fix_cache,
            metrics=self._metrics,
        )
        self._reverse = ReverseGeocoder(
            geocoder=geocoder,
            search=search,
            metrics=self._metrics,
            attempts=self._settings.geocode_attempts,
            retry_delay=self._settings.geocode_retry_delay,
            attempt_timeout=self._settings.geocode_attempt_timeout,
            skip_device=self._settings.skip_device_geocoder,
        )
        self._strategies: Tuple[Tuple[str, Callable[[_Attempt], Awaitable[Optional[LocationCandidate]]]], ...] = (
            (STRATEGY_GEOPOSITION, self._by_geoposition),
            (STRATEGY_TEXT_SEARCH, self._by_text_search),
            (STRATEGY_NEARBY_RADIUS, self._by_nearby_radius),
            (STRATEGY_CAPITAL_CITY, self._by_capital_city),
        )

    @property
    def metrics(self) -> MetricsRegistry:
        return self._metrics

    @property
    def provider(self) -> CoordinateProvider:
        return self._provider

    # Public surface

    async def resolve_my_location(self) -> Resolution:
        """Acquire the device position and resolve it."""
        try:
            coordinate = await self._provider.get_current_coordinate(
                prefer_cached=True,
                high_accuracy=self._settings.high_accuracy,
                timeout=self._settings.fix_timeout_seconds,
            )
            return await self.resolve(coordinate)
        except Exception as exc:
            error = normalize(exc)
            LOGGER.error("my_location_failed", kind=error.kind.value, reason=error.message)
            presented = present(error)
            if presented is exc:
                raise
            raise presented from exc

    async def resolve(self, coordinate: Coordinate) -> Resolution:
        """Run the strategy cascade for a coordinate."""
        attempt = _Attempt(coordinate, self._reverse)
        set_context(resolve_id=uuid.uuid4().hex[:12], latitude=coordinate.latitude, longitude=coordinate.longitude)
        try:
            with record_duration(self._metrics, "resolve_duration_ms"):
                strategy, candidate = await self._run_cascade(attempt)
                geocoding = await attempt.geocoding()
        finally:
            clear_context()

        if candidate is None:
            self._metrics.incr("not_found")
            LOGGER.error("location_not_found", latitude=coordinate.latitude, longitude=coordinate.longitude)
            raise ResolutionError.not_found(coordinate)

        record = LocationRecord.from_candidate(candidate, strategy)
        return Resolution(
            location=record,
            geocoding=_reconcile(geocoding, record),
            source_strategy=strategy,
            coordinate=coordinate,
        )

    async def resolve_by_coordinate(self, coordinate: Coordinate) -> Optional[LocationRecord]:
        """Resolve to a record, or None when nothing retryable succeeded."""
        try:
            resolution = await self.resolve(coordinate)
        except ResolutionError as error:
            if not error.retryable:
                raise
            return None
        return resolution.location

    async def reverse_geocode(self, coordinate: Coordinate) -> GeocodingResult:
        return await self._reverse.resolve_address(coordinate)

    def last_known_coordinate(self) -> Optional[Coordinate]:
        return self._provider.last_known()

    def clear_caches(self) -> None:
        self._permission_cache.clear()
        self._fix_cache.clear()

    async def diagnose(self) -> Dict[str, object]:
        """Walk every resolution step and report the first one that fails."""
        try:
            if not await self._provider.services_enabled():
                return {"success": False, "step": "location_services", "error": "Location services disabled"}
            state = await self._provider.check_permission()
            if state is not PermissionState.GRANTED:
                state = await self._provider.request_permission()
                if state is not PermissionState.GRANTED:
                    return {"success": False, "step": "permission", "error": "Location permission denied"}
            coordinate = await self._provider.get_current_coordinate(
                timeout=self._settings.fix_timeout_seconds,
            )
            geocoding = await self.reverse_geocode(coordinate)
            resolution = await self.resolve(coordinate)
        except ResolutionError as error:
            return {"success": False, "step": "error", "error": error.message, "kind": error.kind.value}
        return {
            "success": True,
            "step": "complete",
            "data": {
                "coordinate": {"latitude": coordinate.latitude, "longitude": coordinate.longitude},
                "geocoding": geocoding.formatted_address,
                "resolution": resolution.as_dict(),
            },
        }

    # Cascade

    async def _run_cascade(self, attempt: _Attempt) -> Tuple[str, Optional[LocationCandidate]]:
        for name, strategy in self._strategies:
            LOGGER.info("strategy_start", strategy=name)
            try:
                with span(name=f"strategy_{name}"):
                    candidate = await strategy(attempt)
            except ResolutionError as error:
                self._metrics.record_error(error.kind.value)
                if not error.retryable:
                    raise
                LOGGER.warning("strategy_failed", strategy=name, kind=error.kind.value, reason=error.message)
                continue
            if candidate is not None:
                self._metrics.incr(f"strategy_{name}")
                LOGGER.info("strategy_succeeded", strategy=name, key=candidate.key, name=candidate.name)
                return name, candidate
        return "", None

    async def _search(self, query: str) -> List[LocationCandidate]:
        self._metrics.incr("search_calls")
        try:
            return list(await self._search_client.search(query))
        except Exception as exc:
            self._metrics.incr("search_failures")
            error = normalize(exc)
            if error is exc:
                raise
            raise error from exc

    async def _by_geoposition(self, attempt: _Attempt) -> Optional[LocationCandidate]:
        try:
            return await self._search_client.geoposition_search(attempt.coordinate)
        except Exception as exc:
            error = normalize(exc, coordinate=attempt.coordinate)
            if error is exc:
                raise
            raise error from exc

    async def _by_text_search(self, attempt: _Attempt) -> Optional[LocationCandidate]:
        geocoding = await attempt.geocoding()
        queries = generate_queries(geocoding)
        LOGGER.info("text_search_queries", queries=queries)
        rounds = max(1, self._settings.search_rounds)

        for round_no in range(1, rounds + 1):
            failed = False
            empty = set()
            for query in queries:
                try:
                    candidates = await self._search(query)
                except ResolutionError as error:
                    if not error.retryable:
                        raise
                    failed = True
                    LOGGER.warning("query_failed", query=query, reason=error.message)
                    continue
                if candidates:
                    return select_closest(candidates, attempt.coordinate)
                empty.add(query)

            admin_query = _administrative_area_query(geocoding)
            if round_no == 1 and admin_query and admin_query not in empty:
                try:
                    found = await self._search_closest(admin_query, attempt.coordinate)
                except ResolutionError as error:
                    if not error.retryable:
                        raise
                    failed = True
                    found = None
                if found is not None:
                    return found

            # A round where every call confirmed zero matches is final.
            if not failed:
                break
            if round_no < rounds:
                delay = self._settings.search_round_delay * round_no
                log_retry(attempt=round_no, step=STRATEGY_TEXT_SEARCH, reason="search round failed")
                await asyncio.sleep(delay)
        return None

    async def _search_closest(self, query: str, target: Coordinate) -> Optional[LocationCandidate]:
        candidates = await self._search(query)
        return select_closest(candidates, target) if candidates else None

    async def _by_nearby_radius(self, attempt: _Attempt) -> Optional[LocationCandidate]:
        geocoding = await attempt.geocoding()
        if is_placeholder(geocoding.country):
            return None
        pool = await self._search(geocoding.country.strip())
        if not pool:
            return None
        nearby = within_radius(pool, attempt.coordinate, self._settings.nearby_radius_km)
        LOGGER.info("nearby_candidates", pool=len(pool), within_radius=len(nearby))
        return select_closest(nearby or pool, attempt.coordinate)

    async def _by_capital_city(self, attempt: _Attempt) -> Optional[LocationCandidate]:
        geocoding = await attempt.geocoding()
        if is_placeholder(geocoding.country):
            return None
        country = geocoding.country.strip()
        capital = major_city_for(country)
        return await self._search_closest(f"{capital}, {country}" if capital else country, attempt.coordinate)
