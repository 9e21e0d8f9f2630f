"""Value types shared by the resolver and its collaborators."""
from __future__ import annotations

import enum
import math
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

PLACEHOLDERS = frozenset({"", "Unknown", "Unknown Location"})


def is_placeholder(value: Optional[str]) -> bool:
    """Return True for empty or placeholder descriptive values."""
    return value is None or value.strip() in PLACEHOLDERS


@dataclass(frozen=True, slots=True)
class Coordinate:
    """A single position fix."""

    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

    @property
    def is_valid(self) -> bool:
        lat, lon = self.latitude, self.longitude
        if math.isnan(lat) or math.isnan(lon):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0

    def label(self) -> str:
        return f"{self.latitude:.4f}, {self.longitude:.4f}"


class PermissionState(str, enum.Enum):
    UNKNOWN = "unknown"
    GRANTED = "granted"
    DENIED = "denied"
    DENIED_PERMANENTLY = "denied_permanently"


@dataclass(slots=True)
class Address:
    """Address-like record returned by a reverse geocoding service."""

    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    iso_country_code: Optional[str] = None
    district: Optional[str] = None
    subregion: Optional[str] = None
    name: Optional[str] = None
    street: Optional[str] = None

    def completeness(self) -> int:
        """Score how many descriptive fields are populated."""
        score = 0
        if self.city:
            score += 3
        if self.region:
            score += 2
        if self.country or self.iso_country_code:
            score += 2
        if self.district:
            score += 1
        if self.name:
            score += 1
        if self.subregion:
            score += 1
        return score


@dataclass(frozen=True, slots=True)
class GeocodingResult:
    """Human readable description of a coordinate."""

    city: str
    region: str = ""
    country: str = ""
    formatted_address: str = ""
    source: str = "device"


def _localized_name(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("LocalizedName") or ""
    if value is None:
        return ""
    return value


class GeoPosition(BaseModel):
    """Latitude/longitude pair attached to a directory entry."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    latitude: float = Field(alias="Latitude")
    longitude: float = Field(alias="Longitude")


class LocationCandidate(BaseModel):
    """A directory entry returned by the location search API."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    key: str = Field(alias="Key", min_length=1)
    name: str = Field(alias="LocalizedName", min_length=1)
    administrative_area: str = Field(default="", alias="AdministrativeArea")
    country: str = Field(default="", alias="Country")
    geoposition: Optional[GeoPosition] = Field(default=None, alias="GeoPosition")

    @field_validator("administrative_area", "country", mode="before")
    @classmethod
    def _unwrap_localized(cls, value: Any) -> Any:
        return _localized_name(value)

    @property
    def display_name(self) -> str:
        return f"{self.name}, {self.administrative_area or self.country}".rstrip(", ")


class LocationRecord(LocationCandidate):
    """Final resolved location, tagged with the strategy that found it."""

    source_strategy: str

    @classmethod
    def from_candidate(cls, candidate: LocationCandidate, strategy: str) -> "LocationRecord":
        return cls(
            key=candidate.key,
            name=candidate.name,
            administrative_area=candidate.administrative_area,
            country=candidate.country,
            geoposition=candidate.geoposition,
            source_strategy=strategy,
        )

    def to_geocoding(self) -> GeocodingResult:
        """Describe this record in the shape used for display."""
        return GeocodingResult(
            city=self.name,
            region=self.administrative_area,
            country=self.country,
            formatted_address=self.display_name,
            source="directory",
        )


@dataclass(slots=True)
class Resolution:
    """Outcome of a successful resolve call."""

    location: LocationRecord
    geocoding: GeocodingResult
    source_strategy: str
    coordinate: Coordinate

    @property
    def city_name(self) -> str:
        return self.location.display_name

    def as_dict(self) -> dict:
        return {
            "location": self.location.model_dump(),
            "geocoding": {
                "city": self.geocoding.city,
                "region": self.geocoding.region,
                "country": self.geocoding.country,
                "formatted_address": self.geocoding.formatted_address,
                "source": self.geocoding.source,
            },
            "source_strategy": self.source_strategy,
            "city_name": self.city_name,
            "coordinate": {
                "latitude": self.coordinate.latitude,
                "longitude": self.coordinate.longitude,
                "accuracy": self.coordinate.accuracy,
            },
        }
