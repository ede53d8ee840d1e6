"""Tests for the arrival geofence."""

from tourguide.arrival import ArrivalDetector
from tourguide.models import Site, UserPosition

# ~0.0001 degree of latitude is ~11 m
NEAR = UserPosition(lat=48.8584 + 0.0001, lon=2.2945)
FAR = UserPosition(lat=48.8584 + 0.001, lon=2.2945)


def _make_site(site_id: str = "tower") -> Site:
    return Site(id=site_id, lat=48.8584, lon=2.2945, name="Tower")


def test_outside_radius_is_not_nearby():
    result = ArrivalDetector(radius=50).check_arrival(FAR, _make_site(), ["tower"], set())
    assert not result.is_nearby
    assert not result.auto_visit
    assert result.distance_meters > 100


def test_last_unvisited_site_auto_visits():
    result = ArrivalDetector(radius=50).check_arrival(
        NEAR, _make_site(), ["a", "tower"], {"a"}
    )
    assert result.is_nearby
    assert result.auto_visit


def test_non_last_site_only_flags_nearby():
    result = ArrivalDetector(radius=50).check_arrival(
        NEAR, _make_site(), ["tower", "b", "c"], set()
    )
    assert result.is_nearby
    assert not result.auto_visit


def test_radius_boundary_is_exclusive():
    site = _make_site()
    at = UserPosition(lat=NEAR.lat, lon=NEAR.lon)
    d = ArrivalDetector().check_arrival(at, site).distance_meters
    assert not ArrivalDetector(radius=d).check_arrival(at, site).is_nearby
    assert ArrivalDetector(radius=d + 0.01).check_arrival(at, site).is_nearby
