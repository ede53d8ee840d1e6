"""Tests for greedy visiting-order optimization."""

from tourguide.models import Coordinate, Site
from tourguide.optimizer import RouteOptimizer, get_next_site, total_distance

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_site(site_id: str, lat: float, lon: float) -> Site:
    return Site(id=site_id, lat=lat, lon=lon, name=f"Site {site_id}")


def _line_sites() -> list[Site]:
    return [_make_site("S1", 0, 0), _make_site("S2", 0, 1), _make_site("S3", 0, 3)]


# ---------------------------------------------------------------------------
# optimize
# ---------------------------------------------------------------------------


def test_nearest_neighbor_along_a_line():
    order = RouteOptimizer().optimize(Coordinate(0, -1), _line_sites())
    assert order == ["S1", "S2", "S3"]


def test_order_follows_start_position():
    order = RouteOptimizer().optimize(Coordinate(0, 4), _line_sites())
    assert order == ["S3", "S2", "S1"]


def test_result_is_permutation_of_input():
    sites = [
        _make_site("a", 48.85, 2.35),
        _make_site("b", 48.86, 2.29),
        _make_site("c", 48.87, 2.33),
        _make_site("d", 48.84, 2.31),
        _make_site("e", 48.86, 2.34),
    ]
    order = RouteOptimizer().optimize(Coordinate(48.85, 2.30), sites, visited={"c"})
    assert sorted(order) == sorted(s.id for s in sites)
    assert len(order) == len(set(order))


def test_visited_sites_appended_in_original_order():
    sites = _line_sites() + [_make_site("S4", 0, 5)]
    order = RouteOptimizer().optimize(Coordinate(0, 6), sites, visited={"S3", "S1"})
    assert order == ["S4", "S2", "S1", "S3"]


def test_tie_keeps_first_candidate():
    sites = [_make_site("east", 0, 1), _make_site("west", 0, -1)]
    order = RouteOptimizer().optimize(Coordinate(0, 0), sites)
    assert order[0] == "east"


def test_empty_input():
    assert RouteOptimizer().optimize(Coordinate(0, 0), []) == []


def test_all_visited_returns_original_order():
    sites = _line_sites()
    order = RouteOptimizer().optimize(Coordinate(0, 10), sites, visited={"S1", "S2", "S3"})
    assert order == ["S1", "S2", "S3"]


# ---------------------------------------------------------------------------
# get_next_site / total_distance
# ---------------------------------------------------------------------------


def test_get_next_site_skips_visited():
    assert get_next_site(["a", "b", "c"], {"a"}) == "b"
    assert get_next_site(["a", "b", "c"], {"a", "b", "c"}) is None
    assert get_next_site([], set()) is None


def test_total_distance_sums_legs():
    sites = _line_sites()
    # One degree of longitude at the equator is ~111.2 km
    total = total_distance(Coordinate(0, -1), sites)
    assert 4 * 111_000 < total < 4 * 111_400


def test_total_distance_without_start_or_sites():
    assert total_distance(None, _line_sites()) == 0.0
    assert total_distance(Coordinate(0, 0), []) == 0.0
