"""Geofence check against the active site."""

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .config import CONFIG
from .geo import haversine_distance
from .models import Site, UserPosition


@dataclass
class ArrivalResult:
    is_nearby: bool
    distance_meters: float
    # True only for the last remaining unvisited site; the caller marks it visited
    auto_visit: bool = False


class ArrivalDetector:
    """Decides whether the user is at the active site.

    Arriving at any site only flags proximity. The single exception is the
    last unvisited site of the tour, which is reported for automatic
    marking so the tour can complete without a final button press.
    """

    def __init__(self, radius: Optional[float] = None):
        self.radius = radius if radius is not None else CONFIG["arrival_radius"]

    def check_arrival(self, position: UserPosition, active_site: Site,
                      order: Sequence[str] = (), visited: Iterable[str] = ()) -> ArrivalResult:
        meters = haversine_distance(position.lat, position.lon, active_site.lat, active_site.lon)
        if meters >= self.radius:
            return ArrivalResult(is_nearby=False, distance_meters=meters)

        visited = set(visited)
        unvisited = [site_id for site_id in order if site_id not in visited]
        return ArrivalResult(
            is_nearby=True,
            distance_meters=meters,
            auto_visit=unvisited == [active_site.id],
        )
