"""Coordinate acquisition with permission checks, timeouts and caching."""
from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from georesolver.device.cache import LastFixCache, PermissionCache
from georesolver.device.platform import PositioningService
from georesolver.errors import ErrorKind, ResolutionError, normalize
from georesolver.models import Coordinate, PermissionState
from georesolver.observability.metrics import MetricsRegistry
from georesolver.observability.tracing import span

LOGGER = structlog.get_logger(__name__)

DEFAULT_FIX_TIMEOUT = 10.0


class CoordinateProvider:
    """Wraps a `PositioningService` with the permission and fix caches."""

    def __init__(
        self,
        positioning: PositioningService,
        *,
        permission_cache: PermissionCache,
        fix_cache: LastFixCache,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._positioning = positioning
        self._permissions = permission_cache
        self._fixes = fix_cache
        self._metrics = metrics or MetricsRegistry()

    def last_known(self) -> Optional[Coordinate]:
        return self._fixes.peek()

    async def check_permission(self) -> PermissionState:
        """Return the permission state, served from cache while fresh."""
        cached = self._permissions.get()
        if cached is not None:
            return cached
        self._metrics.incr("permission_checks")
        try:
            state = await self._positioning.permission_status()
        except Exception as exc:
            LOGGER.warning("permission_check_failed", error=str(exc))
            state = PermissionState.UNKNOWN
        self._permissions.put(state)
        return state

    async def request_permission(self) -> PermissionState:
        """Ask the platform for permission; always invalidates the cache."""
        self._metrics.incr("permission_requests")
        self._permissions.clear()
        try:
            state = await self._positioning.request_permission()
        except Exception as exc:
            raise ResolutionError(
                ErrorKind.PERMISSION_DENIED,
                f"Failed to request location permission: {exc}",
                retryable=False,
            ) from exc
        self._permissions.put(state)
        return state

    async def services_enabled(self) -> bool:
        try:
            return await self._positioning.services_enabled()
        except Exception as exc:
            LOGGER.error("services_check_failed", error=str(exc))
            return False

    async def _ensure_permission(self) -> None:
        state = await self.check_permission()
        if state is PermissionState.GRANTED:
            return
        if state is not PermissionState.DENIED_PERMANENTLY:
            state = await self.request_permission()
            if state is PermissionState.GRANTED:
                return
        raise ResolutionError(
            ErrorKind.PERMISSION_DENIED,
            "Location permission is required to access device location",
            retryable=False,
        )

    async def _acquire(self, *, high_accuracy: bool, timeout: float) -> Coordinate:
        with span(name="position_fix"):
            try:
                fix = await asyncio.wait_for(
                    self._positioning.current_fix(high_accuracy=high_accuracy),
                    timeout=timeout,
                )
            except asyncio.TimeoutError as exc:
                self._metrics.incr("fix_timeouts")
                raise ResolutionError(ErrorKind.TIMEOUT, "Location request timed out", retryable=True) from exc
        self._fixes.put(fix)
        self._metrics.incr("fixes_acquired")
        return fix

    async def get_current_coordinate(
        self,
        *,
        prefer_cached: bool = True,
        high_accuracy: bool = False,
        timeout: float = DEFAULT_FIX_TIMEOUT,
    ) -> Coordinate:
        """Return a position fix or raise a normalised `ResolutionError`."""
        if prefer_cached:
            cached = self._fixes.get()
            if cached is not None:
                self._metrics.incr("fix_cache_hits")
                return cached

        try:
            await self._ensure_permission()
            if not await self.services_enabled():
                raise ResolutionError(
                    ErrorKind.SERVICE_DISABLED,
                    "Location services are disabled on this device",
                    retryable=False,
                )
            return await self._acquire(high_accuracy=high_accuracy, timeout=timeout)
        except Exception as exc:
            error = normalize(exc)
            fallback = self._fixes.get()
            if error.retryable and fallback is not None:
                LOGGER.warning("using_last_known_fix", reason=error.message)
                self._metrics.incr("fix_cache_hits")
                return fallback
            LOGGER.error("position_fix_failed", kind=error.kind.value, reason=error.message)
            if error is exc:
                raise
            raise error from exc
