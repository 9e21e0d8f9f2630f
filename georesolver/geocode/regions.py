"""Static geographic lookup tables."""
from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Optional, Tuple

from georesolver.models import Coordinate, GeocodingResult


@dataclass(frozen=True, slots=True)
class BoundingRegion:
    """Axis-aligned latitude/longitude rectangle naming a coarse area."""

    country: str
    region: str
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.min_lat <= latitude <= self.max_lat and self.min_lon <= longitude <= self.max_lon


# Order matters: the first rectangle containing the point wins.
BOUNDING_REGIONS: Tuple[BoundingRegion, ...] = (
    BoundingRegion("United States", "North America", 24, 49, -125, -66),
    BoundingRegion("Europe", "Europe", 41, 71, -10, 40),
    BoundingRegion("Africa", "Africa", -35, 37, -18, 51),
    BoundingRegion("Asia", "Asia", -47, 81, 26, 180),
    BoundingRegion("South America", "South America", -55, -10, -82, -34),
    BoundingRegion("Australia", "Oceania", -47, -10, 113, 154),
)

MAJOR_CITIES = MappingProxyType(
    {
        "Myanmar": "Yangon",
        "Burma": "Yangon",
        "Thailand": "Bangkok",
        "Vietnam": "Hanoi",
        "Laos": "Vientiane",
        "Cambodia": "Phnom Penh",
        "India": "New Delhi",
        "China": "Beijing",
        "Malaysia": "Kuala Lumpur",
        "Indonesia": "Jakarta",
        "Philippines": "Manila",
        "Bangladesh": "Dhaka",
        "Pakistan": "Karachi",
        "Sri Lanka": "Colombo",
        "Nepal": "Kathmandu",
        "Bhutan": "Thimphu",
    }
)


def major_city_for(country: Optional[str]) -> Optional[str]:
    """Return the major city registered for a country, if any."""
    if not country:
        return None
    return MAJOR_CITIES.get(country.strip())


def region_for(latitude: float, longitude: float) -> Optional[BoundingRegion]:
    for region in BOUNDING_REGIONS:
        if region.contains(latitude, longitude):
            return region
    return None


def coarse_result(coordinate: Coordinate) -> GeocodingResult:
    """Deterministic last-resort description derived from the bounding boxes."""
    region = region_for(coordinate.latitude, coordinate.longitude)
    if region is None:
        label = f"Location {coordinate.label()}"
        return GeocodingResult(city=label, formatted_address=label, source="coarse")
    city = f"Location in {region.country}"
    return GeocodingResult(
        city=city,
        region=region.region,
        country=region.country,
        formatted_address=f"{city}, {region.country}",
        source="coarse",
    )
