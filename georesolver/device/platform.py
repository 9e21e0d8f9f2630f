"""Contracts for the positioning hardware and reverse geocoding services."""
from __future__ import annotations

from typing import List, Protocol

from georesolver.models import Address, Coordinate, PermissionState


class PositioningService(Protocol):
    """Device positioning: permissions, service state and position fixes."""

    async def permission_status(self) -> PermissionState:
        ...

    async def request_permission(self) -> PermissionState:
        ...

    async def services_enabled(self) -> bool:
        ...

    async def current_fix(self, *, high_accuracy: bool = False) -> Coordinate:
        ...


class ReverseGeocodingService(Protocol):
    """Coordinate to address records; the list may be empty or partial."""

    async def reverse_geocode(self, latitude: float, longitude: float) -> List[Address]:
        ...


class FixedPositioningService:
    """A stationary device whose position comes from configuration."""

    def __init__(self, latitude: float, longitude: float, *, accuracy: float | None = None) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._accuracy = accuracy

    async def permission_status(self) -> PermissionState:
        return PermissionState.GRANTED

    async def request_permission(self) -> PermissionState:
        return PermissionState.GRANTED

    async def services_enabled(self) -> bool:
        return True

    async def current_fix(self, *, high_accuracy: bool = False) -> Coordinate:
        return Coordinate(self._latitude, self._longitude, accuracy=self._accuracy)
