"""Failure taxonomy and normalisation for every resolver boundary."""
from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Optional

from georesolver.models import Coordinate


class ErrorKind(str, enum.Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    SERVICE_DISABLED = "SERVICE_DISABLED"
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"


NON_RETRYABLE = frozenset({ErrorKind.PERMISSION_DENIED, ErrorKind.SERVICE_DISABLED})

USER_MESSAGES = MappingProxyType(
    {
        ErrorKind.PERMISSION_DENIED: "Location permission denied. Please enable location access in your device settings.",
        ErrorKind.SERVICE_DISABLED: "Location services are disabled. Please enable them in your device settings.",
        ErrorKind.NETWORK_ERROR: "Network error. Please check your internet connection and try again.",
        ErrorKind.TIMEOUT: "Location request timed out. Please check your connection and try again.",
        ErrorKind.UNAVAILABLE: "Your location is currently unavailable. Please try again in a moment.",
    }
)

# Checked in order; the first matching fragment decides the kind.
_PATTERNS = (
    (("permission",), ErrorKind.PERMISSION_DENIED),
    (("network", "connect"), ErrorKind.NETWORK_ERROR),
    (("timeout", "timed out"), ErrorKind.TIMEOUT),
)


class ResolutionError(Exception):
    """The only failure type that leaves the resolver."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retryable: Optional[bool] = None,
        coordinate: Optional[Coordinate] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = kind not in NON_RETRYABLE if retryable is None else retryable
        self.coordinate = coordinate

    @classmethod
    def not_found(cls, coordinate: Coordinate) -> "ResolutionError":
        return cls(
            ErrorKind.NOT_FOUND,
            f"Could not find weather data for your location ({coordinate.label()}). "
            "Try searching for a nearby city manually.",
            retryable=True,
            coordinate=coordinate,
        )

    def as_dict(self) -> dict:
        payload = {"kind": self.kind.value, "retryable": self.retryable, "message": self.message}
        if self.coordinate is not None:
            payload["coordinate"] = {
                "latitude": self.coordinate.latitude,
                "longitude": self.coordinate.longitude,
            }
        return payload

    def __repr__(self) -> str:
        return f"ResolutionError(kind={self.kind.value}, retryable={self.retryable}, message={self.message!r})"


def describe(raw: BaseException) -> str:
    """Text used for classification: exception type name plus message."""
    return f"{type(raw).__name__}: {raw}"


def normalize(raw: BaseException, *, coordinate: Optional[Coordinate] = None) -> ResolutionError:
    """Map an arbitrary failure into the fixed taxonomy."""
    if isinstance(raw, ResolutionError):
        return raw

    text = describe(raw).lower()
    kind = ErrorKind.UNAVAILABLE
    for fragments, candidate in _PATTERNS:
        if any(fragment in text for fragment in fragments):
            kind = candidate
            break
    message = str(raw) or "Unknown location error occurred"
    return ResolutionError(kind, message, coordinate=coordinate)


def present(error: ResolutionError) -> ResolutionError:
    """Return a copy of the error carrying the canonical user-facing message."""
    template = USER_MESSAGES.get(error.kind)
    if template is None:
        return error
    presented = ResolutionError(
        error.kind,
        template,
        retryable=error.retryable,
        coordinate=error.coordinate,
    )
    presented.__cause__ = error
    return presented
