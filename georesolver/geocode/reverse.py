"""Reverse geocoding with directory and bounding-box fallbacks.

`ReverseGeocoder.resolve_address` is total: it always returns a
`GeocodingResult` with a non-empty city. The device geocoder is tried first
(bounded retries with a fixed backoff), then a single directory geoposition
search, then the static continental rectangles.
"""
from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

import structlog

from georesolver.device.platform import ReverseGeocodingService
from georesolver.errors import normalize
from georesolver.geocode.regions import coarse_result
from georesolver.models import Address, Coordinate, GeocodingResult
from georesolver.observability.metrics import MetricsRegistry
from georesolver.observability.tracing import log_retry, span
from georesolver.search.client import LocationSearchClient

LOGGER = structlog.get_logger(__name__)


def best_address(addresses: Sequence[Address]) -> Optional[Address]:
    """Highest completeness score wins; ties keep the first."""
    best: Optional[Address] = None
    for address in addresses:
        if address is None:
            continue
        if best is None or address.completeness() > best.completeness():
            best = address
    return best


def format_address(address: Address) -> str:
    parts = [address.city, address.region, address.country or address.iso_country_code]
    parts = [part for part in parts if part]
    return ", ".join(parts) if parts else "Unknown Location"


def from_address(address: Address) -> GeocodingResult:
    city = (
        address.city
        or address.district
        or address.subregion
        or address.name
        or address.street
        or "Unknown Location"
    )
    return GeocodingResult(
        city=city,
        region=address.region or address.subregion or "",
        country=address.country or address.iso_country_code or "Unknown",
        formatted_address=format_address(address),
        source="device",
    )


class ReverseGeocoder:
    def __init__(
        self,
        *,
        geocoder: Optional[ReverseGeocodingService],
        search: Optional[LocationSearchClient],
        metrics: Optional[MetricsRegistry] = None,
        attempts: int = 2,
        retry_delay: float = 1.0,
        attempt_timeout: float = 5.0,
        skip_device: bool = False,
    ) -> None:
        self._geocoder = geocoder
        self._search = search
        self._metrics = metrics or MetricsRegistry()
        self._attempts = max(1, attempts)
        self._retry_delay = retry_delay
        self._attempt_timeout = attempt_timeout
        self._skip_device = skip_device or geocoder is None

    async def resolve_address(self, coordinate: Coordinate) -> GeocodingResult:
        """Describe the coordinate; never raises."""
        if not coordinate.is_valid:
            LOGGER.warning("invalid_coordinate", latitude=coordinate.latitude, longitude=coordinate.longitude)
            self._metrics.incr("geocode_coarse_fallbacks")
            return coarse_result(coordinate)

        if not self._skip_device:
            addresses = await self._device_addresses(coordinate)
            address = best_address(addresses)
            if address is not None:
                return from_address(address)

        result = await self._directory_result(coordinate)
        if result is not None:
            return result

        self._metrics.incr("geocode_coarse_fallbacks")
        return coarse_result(coordinate)

    async def _device_addresses(self, coordinate: Coordinate) -> List[Address]:
        for attempt in range(1, self._attempts + 1):
            self._metrics.incr("geocode_attempts")
            try:
                with span(name="reverse_geocode"):
                    addresses = await asyncio.wait_for(
                        self._geocoder.reverse_geocode(coordinate.latitude, coordinate.longitude),
                        timeout=self._attempt_timeout,
                    )
                LOGGER.info("reverse_geocode_results", count=len(addresses or []))
                return list(addresses or [])
            except Exception as exc:
                error = normalize(exc, coordinate=coordinate)
                log_retry(attempt=attempt, step="reverse_geocode", reason=error.message)
                if attempt < self._attempts:
                    await asyncio.sleep(self._retry_delay)
        LOGGER.warning("reverse_geocode_exhausted", attempts=self._attempts)
        return []

    async def _directory_result(self, coordinate: Coordinate) -> Optional[GeocodingResult]:
        if self._search is None:
            return None
        self._metrics.incr("geocode_directory_fallbacks")
        try:
            with span(name="geoposition_fallback"):
                candidate = await self._search.geoposition_search(coordinate)
        except Exception as exc:
            LOGGER.warning("geoposition_fallback_failed", error=normalize(exc).message)
            return None
        if candidate is None or not candidate.name:
            return None
        parts = [candidate.name, candidate.administrative_area, candidate.country]
        return GeocodingResult(
            city=candidate.name,
            region=candidate.administrative_area,
            country=candidate.country or "Unknown",
            formatted_address=", ".join(part for part in parts if part),
            source="directory",
        )
