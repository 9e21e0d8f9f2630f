import asyncio

import httpx
import pytest

from georesolver.errors import ErrorKind, ResolutionError, normalize, present
from georesolver.models import Coordinate


@pytest.mark.parametrize(
    "raw, kind, retryable",
    [
        (PermissionError("permission denied by user"), ErrorKind.PERMISSION_DENIED, False),
        (RuntimeError("Network request failed"), ErrorKind.NETWORK_ERROR, True),
        (ConnectionError("could not connect"), ErrorKind.NETWORK_ERROR, True),
        (httpx.ConnectError("refused"), ErrorKind.NETWORK_ERROR, True),
        (asyncio.TimeoutError(), ErrorKind.TIMEOUT, True),
        (httpx.ReadTimeout(""), ErrorKind.TIMEOUT, True),
        (RuntimeError("Reverse geocoding timeout"), ErrorKind.TIMEOUT, True),
        (ValueError("something odd"), ErrorKind.UNAVAILABLE, True),
    ],
)
def test_normalize_classifies_by_description(raw, kind, retryable):
    error = normalize(raw)
    assert error.kind is kind
    assert error.retryable is retryable


def test_normalize_passes_resolution_errors_through():
    error = ResolutionError(ErrorKind.SERVICE_DISABLED, "off")
    assert normalize(error) is error
    assert error.retryable is False


def test_normalize_keeps_coordinate_and_message():
    coordinate = Coordinate(1.0, 2.0)
    error = normalize(RuntimeError("boom"), coordinate=coordinate)
    assert error.message == "boom"
    assert error.coordinate is coordinate


def test_not_found_carries_coordinate_and_manual_search_hint():
    coordinate = Coordinate(16.8661, 96.1951)
    error = ResolutionError.not_found(coordinate)
    assert error.kind is ErrorKind.NOT_FOUND
    assert error.retryable is True
    assert error.coordinate == coordinate
    assert "16.8661, 96.1951" in error.message
    assert "nearby city manually" in error.message


def test_present_uses_canonical_templates_except_not_found():
    timeout = present(ResolutionError(ErrorKind.TIMEOUT, "raw timer text"))
    assert timeout.message.startswith("Location request timed out")
    assert timeout.retryable is True

    not_found = ResolutionError.not_found(Coordinate(10.0, 20.0))
    assert present(not_found) is not_found


def test_as_dict_shape():
    payload = ResolutionError.not_found(Coordinate(10.0, 20.0)).as_dict()
    assert payload["kind"] == "NOT_FOUND"
    assert payload["coordinate"] == {"latitude": 10.0, "longitude": 20.0}
