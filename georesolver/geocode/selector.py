"""Great-circle distance and candidate disambiguation."""
from __future__ import annotations

import math
from typing import List, Protocol, Sequence

from georesolver.models import LocationCandidate

EARTH_RADIUS_KM = 6371.0


class HasPosition(Protocol):
    latitude: float
    longitude: float


def haversine_km(a: HasPosition, b: HasPosition) -> float:
    """Great-circle distance in kilometres between two positions."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    h = min(1.0, h)
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance_to(candidate: LocationCandidate, target: HasPosition) -> float:
    """Distance from target to the candidate, infinite when it has no geoposition."""
    if candidate.geoposition is None:
        return math.inf
    return haversine_km(target, candidate.geoposition)


def select_closest(candidates: Sequence[LocationCandidate], target: HasPosition) -> LocationCandidate:
    """Pick the candidate nearest to target; ties keep first-seen order."""
    if not candidates:
        raise ValueError("select_closest requires at least one candidate")
    if len(candidates) == 1:
        return candidates[0]

    best = candidates[0]
    best_distance = distance_to(best, target)
    for candidate in candidates[1:]:
        current = distance_to(candidate, target)
        if current < best_distance:
            best, best_distance = candidate, current
    return best


def within_radius(
    candidates: Sequence[LocationCandidate],
    target: HasPosition,
    radius_km: float,
) -> List[LocationCandidate]:
    return [candidate for candidate in candidates if distance_to(candidate, target) <= radius_km]
