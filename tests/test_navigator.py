"""Tests for route building, fallback and request fencing."""

import asyncio
import threading
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from tourguide.directions import ProviderRoute
from tourguide.models import Coordinate, DirectionStep, NavigationSnapshot, Site, TransportMode
from tourguide.navigator import Navigator

NOW = datetime(2024, 5, 1, 12, 0, 0)
START = Coordinate(0.0, 0.0)
AREA = [[-0.01, -0.01], [0.01, -0.01], [0.01, 0.01], [-0.01, 0.01]]


def _make_site(site_id: str = "museum", lat: float = 0.0, lon: float = 0.005) -> Site:
    return Site(id=site_id, lat=lat, lon=lon, name=site_id.title())


def _make_route(geometry) -> ProviderRoute:
    return ProviderRoute(
        distance_meters=650.0,
        duration_seconds=480.0,
        geometry=geometry,
        steps=[DirectionStep("Head east", START)],
    )


def _make_navigator(route=None, touring_area=None) -> Navigator:
    directions = MagicMock()
    directions.get_route.return_value = route
    return Navigator(directions, touring_area=touring_area, now=lambda: NOW)


# ---------------------------------------------------------------------------
# build_route
# ---------------------------------------------------------------------------


def test_provider_route_applied():
    nav = _make_navigator(_make_route([[0, 0], [0.005, 0]]), touring_area=AREA)
    snapshot = asyncio.run(nav.build_route(START, _make_site(), TransportMode.WALKING))
    assert not snapshot.is_fallback
    assert snapshot.distance_meters == 650.0
    assert snapshot.arrival_clock_time == NOW + timedelta(seconds=480)
    assert nav.snapshot is snapshot


def test_provider_failure_falls_back_to_straight_line():
    nav = _make_navigator(None)
    site = _make_site()
    snapshot = asyncio.run(nav.build_route(START, site, TransportMode.CYCLING))
    assert snapshot.is_fallback
    assert snapshot.route_geometry == [[0.0, 0.0], [0.005, 0.0]]
    assert [s.instruction for s in snapshot.steps] == ["Bike directly to Museum"]
    assert snapshot.eta_seconds == pytest.approx(snapshot.distance_meters / 4.0)


def test_route_leaving_touring_area_falls_back():
    nav = _make_navigator(_make_route([[0, 0], [0.02, 0], [0.005, 0]]), touring_area=AREA)
    snapshot = asyncio.run(nav.build_route(START, _make_site(), TransportMode.WALKING))
    assert snapshot.is_fallback
    assert snapshot.steps[0].instruction == "Walk directly to Museum"


def test_stale_response_is_discarded():
    release_first = threading.Event()
    first_site = _make_site("first", lon=0.001)
    second_site = _make_site("second", lon=0.002)

    def get_route(start, end, mode):
        if end == first_site.coordinate:
            release_first.wait(timeout=5)
        return None

    nav = _make_navigator()
    nav.directions.get_route.side_effect = get_route

    async def scenario():
        first = asyncio.create_task(nav.build_route(START, first_site, TransportMode.WALKING))
        await asyncio.sleep(0.05)
        second = await nav.build_route(START, second_site, TransportMode.WALKING)
        release_first.set()
        return await first, second

    first, second = asyncio.run(scenario())
    assert first is None
    assert second.site_id == "second"
    assert nav.snapshot.site_id == "second"
    assert nav.latest_request_id == 2


def test_cancel_fences_in_flight_request():
    release = threading.Event()
    nav = _make_navigator()
    nav.directions.get_route.side_effect = lambda start, end, mode: release.wait(timeout=5) and None

    async def scenario():
        task = asyncio.create_task(nav.build_route(START, _make_site(), TransportMode.WALKING))
        await asyncio.sleep(0.05)
        nav.cancel()
        release.set()
        return await task

    assert asyncio.run(scenario()) is None
    assert nav.snapshot is None


# ---------------------------------------------------------------------------
# change_mode
# ---------------------------------------------------------------------------


def test_mode_change_updates_eta_optimistically():
    nav = _make_navigator()
    nav.snapshot = NavigationSnapshot(
        site_id="museum",
        mode=TransportMode.WALKING,
        distance_meters=1000,
        eta_seconds=1000 / 1.4,
        arrival_clock_time=NOW,
        route_geometry=[],
        steps=[],
    )
    assert nav.snapshot.eta_seconds == pytest.approx(714, abs=1)

    snapshot = nav.change_mode(TransportMode.DRIVING)
    assert snapshot.eta_seconds == pytest.approx(120, abs=1)
    assert snapshot.is_optimistic
    assert snapshot.mode == TransportMode.DRIVING
    assert snapshot.distance_meters == 1000
    assert snapshot.arrival_clock_time == NOW + timedelta(seconds=1000 / 8.33)
    nav.directions.get_route.assert_not_called()


def test_mode_change_without_route():
    assert _make_navigator().change_mode(TransportMode.CYCLING) is None
