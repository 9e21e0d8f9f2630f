"""Typed view of the `[resolver]` settings section."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ResolverSettings:
    cache_ttl_seconds: float = 300.0
    fix_timeout_seconds: float = 10.0
    high_accuracy: bool = False
    geocode_attempts: int = 2
    geocode_retry_delay: float = 1.0
    geocode_attempt_timeout: float = 5.0
    skip_device_geocoder: bool = False
    search_rounds: int = 3
    search_round_delay: float = 1.0
    nearby_radius_km: float = 100.0

    @classmethod
    def from_config(cls, payload: Dict[str, object]) -> "ResolverSettings":
        defaults = cls()
        return cls(
            cache_ttl_seconds=float(payload.get("cache_ttl_seconds", defaults.cache_ttl_seconds)),
            fix_timeout_seconds=float(payload.get("fix_timeout_seconds", defaults.fix_timeout_seconds)),
            high_accuracy=bool(payload.get("high_accuracy", defaults.high_accuracy)),
            geocode_attempts=int(payload.get("geocode_attempts", defaults.geocode_attempts)),
            geocode_retry_delay=float(payload.get("geocode_retry_delay", defaults.geocode_retry_delay)),
            geocode_attempt_timeout=float(
                payload.get("geocode_attempt_timeout", defaults.geocode_attempt_timeout)
            ),
            skip_device_geocoder=bool(payload.get("skip_device_geocoder", defaults.skip_device_geocoder)),
            search_rounds=int(payload.get("search_rounds", defaults.search_rounds)),
            search_round_delay=float(payload.get("search_round_delay", defaults.search_round_delay)),
            nearby_radius_km=float(payload.get("nearby_radius_km", defaults.nearby_radius_km)),
        )
