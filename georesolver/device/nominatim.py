"""Reverse geocoding over OpenStreetMap Nominatim."""
from __future__ import annotations

from typing import Any, Dict, List

import httpx
import orjson

from georesolver.models import Address

REVERSE_PATH = "/reverse"


def parse_address(payload: Dict[str, Any]) -> Address:
    """Map a Nominatim `address` object onto an `Address` record."""
    address = payload.get("address") or {}
    code = address.get("country_code")
    return Address(
        city=address.get("city") or address.get("town") or address.get("village"),
        region=address.get("state") or address.get("region"),
        country=address.get("country"),
        iso_country_code=code.upper() if code else None,
        district=address.get("city_district") or address.get("suburb"),
        subregion=address.get("county") or address.get("state_district"),
        name=payload.get("name") or None,
        street=address.get("road"),
    )


class NominatimGeocoder:
    """`ReverseGeocodingService` backed by a Nominatim instance."""

    def __init__(self, client: httpx.AsyncClient, *, language: str = "en", zoom: int = 10) -> None:
        self._client = client
        self._language = language
        self._zoom = zoom

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[Address]:
        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "jsonv2",
            "addressdetails": 1,
            "zoom": self._zoom,
            "accept-language": self._language,
        }
        response = await self._client.get(REVERSE_PATH, params=params)
        response.raise_for_status()
        payload = orjson.loads(response.content)
        if not isinstance(payload, dict) or "error" in payload:
            return []
        return [parse_address(payload)]
