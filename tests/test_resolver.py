import asyncio

import pytest

from doubles import YANGON, FakeGeocoder, FakePositioning, RecordingSearch, candidate
from georesolver.errors import USER_MESSAGES, ErrorKind, ResolutionError
from georesolver.models import Address, Coordinate, GeocodingResult, LocationRecord, PermissionState
from georesolver.orchestrator.config import ResolverSettings
from georesolver.orchestrator.resolver import (
    STRATEGY_CAPITAL_CITY,
    STRATEGY_GEOPOSITION,
    STRATEGY_NEARBY_RADIUS,
    STRATEGY_TEXT_SEARCH,
    LocationResolver,
    _reconcile,
)

FAST = ResolverSettings(geocode_retry_delay=0.0, search_round_delay=0.0)
YANGON_ADDRESS = Address(city="Yangon", region="Yangon Region", country="Myanmar")
THANLYIN_ADDRESS = Address(city="Thanlyin", region="Yangon Region", country="Myanmar")


def _resolver(search, *, address=YANGON_ADDRESS, positioning=None, settings=FAST):
    return LocationResolver(
        positioning=positioning or FakePositioning(),
        search=search,
        geocoder=FakeGeocoder([address]),
        settings=settings,
    )


def test_geoposition_match_skips_text_search():
    search = RecordingSearch(geoposition=candidate("Yangon", 16.805, 96.156))
    resolver = _resolver(search)

    resolution = asyncio.run(resolver.resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_GEOPOSITION
    assert resolution.location.source_strategy == STRATEGY_GEOPOSITION
    assert resolution.location.name == "Yangon"
    assert resolution.city_name == "Yangon, Yangon Region"
    assert search.queries == []
    assert resolver.metrics.get("strategy_geoposition") == 1


def test_text_search_picks_closest_candidate():
    near = candidate("Near", 16.9111, 96.1951)
    far = candidate("Far", 17.2258, 96.1951)
    search = RecordingSearch({"Yangon, Yangon Region, Myanmar": [far, near]})

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_TEXT_SEARCH
    assert resolution.location.key == "near"
    assert search.queries == ["Yangon, Yangon Region, Myanmar"]


def test_later_query_used_when_earlier_ones_are_empty():
    hit = candidate("Yangon", 16.805, 96.156)
    search = RecordingSearch({"Yangon": [hit]})

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.location.key == "yangon"
    assert search.queries == [
        "Yangon, Yangon Region, Myanmar",
        "Yangon, Yangon Region",
        "Yangon, Myanmar",
        "Yangon",
    ]


def test_administrative_area_query_retried_after_failed_first_attempt():
    hit = candidate("Yangon Region", 17.0, 96.0)
    search = RecordingSearch({"Yangon Region, Myanmar": (RuntimeError("connection reset"), [hit])})

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_TEXT_SEARCH
    assert resolution.location.name == "Yangon Region"
    assert search.counts["Yangon Region, Myanmar"] == 2


def test_nothing_found_anywhere_raises_not_found():
    search = RecordingSearch()
    resolver = _resolver(search)

    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(resolver.resolve(YANGON))

    error = excinfo.value
    assert error.kind is ErrorKind.NOT_FOUND
    assert error.retryable is True
    assert error.coordinate == YANGON
    assert "16.8661, 96.1951" in error.message
    assert resolver.metrics.get("not_found") == 1
    # Confirmed-empty rounds are not repeated.
    assert search.counts["Yangon, Yangon Region, Myanmar"] == 1
    assert search.counts["Yangon"] == 1
    assert search.counts["Yangon Region, Myanmar"] == 1
    assert search.counts["Myanmar"] == 2
    assert search.counts["Yangon, Myanmar"] == 2
    assert len(search.queries) == 9


def test_failing_rounds_are_retried():
    search = RecordingSearch(default=RuntimeError("network down"))
    resolver = _resolver(search)

    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(resolver.resolve(YANGON))

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert search.counts["Yangon, Yangon Region, Myanmar"] == 3
    assert search.counts["Yangon Region"] == 3
    assert resolver.metrics.get("search_failures") == len(search.queries)


def test_round_succeeds_after_transient_failure():
    hit = candidate("Yangon", 16.805, 96.156)
    search = RecordingSearch({"Yangon, Yangon Region, Myanmar": (RuntimeError("connection reset"), [hit])})

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_TEXT_SEARCH
    assert search.counts["Yangon, Yangon Region, Myanmar"] == 2


def test_nearby_radius_prefers_candidates_inside_radius():
    bago = candidate("Bago", 17.3352, 96.4814)
    mandalay = candidate("Mandalay", 21.9588, 96.0891)
    search = RecordingSearch({"Myanmar": (RuntimeError("network down"), [mandalay, bago])})
    settings = ResolverSettings(geocode_retry_delay=0.0, search_rounds=1)

    resolution = asyncio.run(_resolver(search, settings=settings).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_NEARBY_RADIUS
    assert resolution.location.name == "Bago"


def test_nearby_radius_falls_back_to_closest_in_pool():
    mandalay = candidate("Mandalay", 21.9588, 96.0891)
    naypyidaw = candidate("Naypyidaw", 19.7633, 96.0785)
    search = RecordingSearch({"Myanmar": (RuntimeError("network down"), [mandalay, naypyidaw])})
    settings = ResolverSettings(geocode_retry_delay=0.0, search_rounds=1)

    resolution = asyncio.run(_resolver(search, settings=settings).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_NEARBY_RADIUS
    assert resolution.location.name == "Naypyidaw"


def test_capital_city_is_last_resort():
    capital = candidate("Yangon", 16.805, 96.156)
    search = RecordingSearch({"Yangon, Myanmar": [capital]})

    resolution = asyncio.run(_resolver(search, address=THANLYIN_ADDRESS).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_CAPITAL_CITY
    assert resolution.location.name == "Yangon"
    assert search.queries[-1] == "Yangon, Myanmar"
    assert search.counts["Yangon, Myanmar"] == 1


def test_geoposition_failure_moves_on_to_text_search():
    hit = candidate("Yangon", 16.805, 96.156)
    search = RecordingSearch({"Yangon, Yangon Region, Myanmar": [hit]}, geoposition=RuntimeError("network down"))

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.source_strategy == STRATEGY_TEXT_SEARCH


def test_non_retryable_failure_aborts_cascade():
    search = RecordingSearch(geoposition=PermissionError("permission revoked"))
    geocoder = FakeGeocoder([YANGON_ADDRESS])
    resolver = LocationResolver(positioning=FakePositioning(), search=search, geocoder=geocoder, settings=FAST)

    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(resolver.resolve(YANGON))

    assert excinfo.value.kind is ErrorKind.PERMISSION_DENIED
    assert search.queries == []
    assert geocoder.calls == 0


def test_reverse_geocoding_runs_once_per_resolve():
    search = RecordingSearch()
    geocoder = FakeGeocoder([YANGON_ADDRESS])
    resolver = LocationResolver(positioning=FakePositioning(), search=search, geocoder=geocoder, settings=FAST)

    with pytest.raises(ResolutionError):
        asyncio.run(resolver.resolve(YANGON))

    assert geocoder.calls == 1


def test_geocoding_reconciled_with_winning_record():
    search = RecordingSearch(geoposition=candidate("Kamayut", 16.83, 96.13))

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.geocoding.city == "Kamayut"
    assert resolution.geocoding.source == "directory"
    assert resolution.geocoding.formatted_address == "Kamayut, Yangon Region"


def test_geocoding_kept_when_names_agree():
    search = RecordingSearch(geoposition=candidate("Yangon", 16.805, 96.156))

    resolution = asyncio.run(_resolver(search).resolve(YANGON))

    assert resolution.geocoding.source == "device"
    assert resolution.geocoding.formatted_address == "Yangon, Yangon Region, Myanmar"


def test_out_of_range_coordinate_is_not_found():
    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(_resolver(RecordingSearch()).resolve(Coordinate(95.0, 200.0)))
    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.coordinate == Coordinate(95.0, 200.0)


def test_resolve_by_coordinate():
    hit = RecordingSearch(geoposition=candidate("Yangon", 16.805, 96.156))
    record = asyncio.run(_resolver(hit).resolve_by_coordinate(YANGON))
    assert record.key == "yangon"

    assert asyncio.run(_resolver(RecordingSearch()).resolve_by_coordinate(YANGON)) is None

    denied = RecordingSearch(geoposition=PermissionError("permission revoked"))
    with pytest.raises(ResolutionError):
        asyncio.run(_resolver(denied).resolve_by_coordinate(YANGON))


def test_my_location_served_from_fix_cache():
    positioning = FakePositioning()
    search = RecordingSearch(geoposition=candidate("Yangon", 16.805, 96.156))
    resolver = _resolver(search, positioning=positioning)

    async def _run():
        first = await resolver.resolve_my_location()
        second = await resolver.resolve_my_location()
        return first, second

    first, second = asyncio.run(_run())

    assert positioning.fix_calls == 1
    assert first.location == second.location
    assert resolver.last_known_coordinate() == YANGON

    resolver.clear_caches()
    asyncio.run(resolver.resolve_my_location())
    assert positioning.fix_calls == 2


def test_my_location_presents_canonical_message():
    positioning = FakePositioning(delay=1.0)
    settings = ResolverSettings(fix_timeout_seconds=0.01, geocode_retry_delay=0.0)
    resolver = _resolver(RecordingSearch(), positioning=positioning, settings=settings)

    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(resolver.resolve_my_location())

    assert excinfo.value.kind is ErrorKind.TIMEOUT
    assert excinfo.value.message == USER_MESSAGES[ErrorKind.TIMEOUT]


def test_my_location_keeps_not_found_message():
    resolver = _resolver(RecordingSearch())

    with pytest.raises(ResolutionError) as excinfo:
        asyncio.run(resolver.resolve_my_location())

    assert excinfo.value.kind is ErrorKind.NOT_FOUND
    assert excinfo.value.message.startswith("Could not find weather data for your location")


def test_diagnose_reports_each_step():
    search = RecordingSearch(geoposition=candidate("Yangon", 16.805, 96.156))
    report = asyncio.run(_resolver(search).diagnose())
    assert report["success"] is True
    assert report["step"] == "complete"
    assert report["data"]["geocoding"] == "Yangon, Yangon Region, Myanmar"
    assert report["data"]["resolution"]["source_strategy"] == STRATEGY_GEOPOSITION

    disabled = _resolver(search, positioning=FakePositioning(enabled=False))
    assert asyncio.run(disabled.diagnose())["step"] == "location_services"

    denied = FakePositioning(permission=PermissionState.DENIED, after_request=PermissionState.DENIED)
    assert asyncio.run(_resolver(search, positioning=denied).diagnose())["step"] == "permission"

    report = asyncio.run(_resolver(RecordingSearch()).diagnose())
    assert report["step"] == "error"
    assert report["kind"] == ErrorKind.NOT_FOUND.value


def test_blank_record_name_keeps_device_description():
    geocoding = GeocodingResult(city="Yangon", region="Yangon Region", country="Myanmar",
                                formatted_address="Yangon, Yangon Region, Myanmar")
    blank = LocationRecord.model_construct(
        key="k1", name="", administrative_area="", country="", geoposition=None, source_strategy="geoposition"
    )
    assert _reconcile(geocoding, blank) is geocoding


def test_strategy_failures_counted_by_kind():
    hit = candidate("Yangon", 16.805, 96.156)
    search = RecordingSearch({"Yangon, Yangon Region, Myanmar": [hit]}, geoposition=RuntimeError("network down"))
    resolver = _resolver(search)

    asyncio.run(resolver.resolve(YANGON))

    assert resolver.metrics.errors() == {"network_error": 1}
    assert resolver.metrics.strategy_wins()["text_search"] == 1
