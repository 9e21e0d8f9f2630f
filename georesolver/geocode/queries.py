"""Search query generation from a geocoding result."""
from __future__ import annotations

from typing import List, Optional

from georesolver.geocode.regions import major_city_for
from georesolver.models import GeocodingResult, is_placeholder


def _clean(value: Optional[str]) -> Optional[str]:
    if is_placeholder(value):
        return None
    return value.strip()


def generate_queries(geocoding: GeocodingResult) -> List[str]:
    """Return distinct search strings, most specific first."""
    city = _clean(geocoding.city)
    region = _clean(geocoding.region)
    country = _clean(geocoding.country)

    candidates = [
        f"{city}, {region}, {country}" if city and region and country else None,
        f"{city}, {region}" if city and region else None,
        f"{city}, {country}" if city and country else None,
        city,
        f"{region}, {country}" if region and country else None,
        region,
        major_city_for(country) if country else None,
        country,
    ]
    return list(dict.fromkeys(query for query in candidates if not is_placeholder(query)))
