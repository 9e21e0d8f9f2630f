"""Timestamp-gated caches for permission state and the last position fix."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from georesolver.models import Coordinate, PermissionState

DEFAULT_TTL_SECONDS = 300.0

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class _Entry(Generic[T]):
    value: T
    stored_at: float


class TimedCache(Generic[T]):
    """Single-slot, last-writer-wins cache with a staleness window."""

    def __init__(self, *, ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl
        self._clock = clock
        self._entry: Optional[_Entry[T]] = None

    def get(self) -> Optional[T]:
        """Return the cached value while it is fresh, else None."""
        entry = self._entry
        if entry is None or self._clock() - entry.stored_at >= self._ttl:
            return None
        return entry.value

    def peek(self) -> Optional[T]:
        """Return the cached value regardless of age."""
        return self._entry.value if self._entry is not None else None

    def put(self, value: T) -> None:
        self._entry = _Entry(value=value, stored_at=self._clock())

    def clear(self) -> None:
        self._entry = None


class PermissionCache(TimedCache[PermissionState]):
    """Last observed permission state."""


class LastFixCache(TimedCache[Coordinate]):
    """Most recent successful position fix."""
