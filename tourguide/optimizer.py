"""Visiting-order optimization for itinerary sites."""

from typing import Iterable, Optional, Sequence

from .geo import haversine_distance
from .models import Coordinate, Site


class RouteOptimizer:
    """Greedy nearest-neighbor ordering of itinerary sites.

    Not an optimal tour; O(n^2), which is fine for tens of sites.
    """

    def optimize(self, start: Coordinate, sites: Sequence[Site],
                 visited: Iterable[str] = ()) -> list[str]:
        """Order site ids by repeatedly stepping to the nearest unvisited site.

        Visited sites are appended afterwards in their original relative
        order, so the result is always a permutation of the input ids.
        """
        visited = set(visited)
        remaining = [s for s in sites if s.id not in visited]
        if not remaining:
            return [s.id for s in sites]

        order: list[str] = []
        current_lat, current_lon = start.lat, start.lon

        while remaining:
            nearest_index = 0
            min_distance = float("inf")
            for i, site in enumerate(remaining):
                d = haversine_distance(current_lat, current_lon, site.lat, site.lon)
                # Strict comparison keeps the first candidate on ties
                if d < min_distance:
                    min_distance = d
                    nearest_index = i

            nearest = remaining.pop(nearest_index)
            order.append(nearest.id)
            current_lat, current_lon = nearest.lat, nearest.lon

        order.extend(s.id for s in sites if s.id in visited)
        return order


def get_next_site(order: Sequence[str], visited: Iterable[str] = ()) -> Optional[str]:
    """First id in ``order`` that has not been visited, or None when all are"""
    visited = set(visited)
    for site_id in order:
        if site_id not in visited:
            return site_id
    return None


def total_distance(start: Optional[Coordinate], sites: Sequence[Site]) -> float:
    """Cumulative straight-line length of start -> sites[0] -> sites[1] ..."""
    if not start or not sites:
        return 0.0

    total = 0.0
    current_lat, current_lon = start.lat, start.lon
    for site in sites:
        total += haversine_distance(current_lat, current_lon, site.lat, site.lon)
        current_lat, current_lon = site.lat, site.lon
    return total
