"""Route building toward the active site."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, Sequence

from .config import CONFIG
from .directions import DirectionsClient, ProviderRoute
from .geo import distance, line_within_polygon
from .logger import Logger
from .models import Coordinate, DirectionStep, NavigationSnapshot, Site, TransportMode


class Navigator:
    """Maintains the route, distance and ETA for the active site.

    Every request gets a strictly increasing id; a response whose id is not
    the latest issued one is dropped, so late responses never overwrite
    newer state.
    """

    def __init__(self, directions: DirectionsClient,
                 touring_area: Optional[Sequence[Sequence[float]]] = None,
                 logger: Optional[Logger] = None,
                 now: Callable[[], datetime] = datetime.now):
        self.directions = directions
        self.touring_area = touring_area if touring_area is not None else CONFIG["touring_area"]
        self.logger = logger
        self._now = now
        self._latest_request_id = 0
        self.snapshot: Optional[NavigationSnapshot] = None
        self.mode = TransportMode.WALKING

    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    def _issue_request_id(self) -> int:
        self._latest_request_id += 1
        return self._latest_request_id

    def is_within_bounds(self, geometry: Sequence[Sequence[float]]) -> bool:
        """Check that a [lon, lat] line stays inside the touring area"""
        if not self.touring_area:
            return True
        return line_within_polygon(geometry, self.touring_area)

    def build_route(self, start: Coordinate, target: Site,
                    mode: TransportMode) -> Awaitable[Optional[NavigationSnapshot]]:
        """Request a route and apply it, unless a newer request superseded it.

        The request id is issued at call time, so a later request or
        ``cancel()`` fences this one even before it is awaited. The awaitable
        yields the applied snapshot, or None for a stale response.
        """
        request_id = self._issue_request_id()
        self.mode = mode
        return self._fetch_route(request_id, start, target, mode)

    async def _fetch_route(self, request_id: int, start: Coordinate, target: Site,
                           mode: TransportMode) -> Optional[NavigationSnapshot]:
        route = await asyncio.to_thread(self.directions.get_route, start, target.coordinate, mode)

        if request_id != self._latest_request_id:
            self._log("Ignoring stale directions response",
                      {"request_id": request_id, "latest": self._latest_request_id})
            return None

        if route is None:
            snapshot = self.fallback_snapshot(start, target, mode)
            self._log("Directions unavailable, using straight line", {"site": target.id})
        elif not self.is_within_bounds(route.geometry):
            snapshot = self.fallback_snapshot(start, target, mode)
            self._log("Route leaves touring area, using straight line", {"site": target.id})
        else:
            snapshot = self._provider_snapshot(route, target, mode)

        self.snapshot = snapshot
        return snapshot

    def change_mode(self, mode: TransportMode) -> Optional[NavigationSnapshot]:
        """Optimistically re-estimate ETA from the known distance.

        The authoritative route must still be requested via build_route.
        """
        self.mode = mode
        if not self.snapshot:
            return None
        eta = self.snapshot.distance_meters / mode.fallback_speed
        self.snapshot = replace(
            self.snapshot,
            mode=mode,
            eta_seconds=eta,
            arrival_clock_time=self._now() + timedelta(seconds=eta),
            is_optimistic=True,
        )
        return self.snapshot

    def cancel(self):
        """Fence off any in-flight request and forget the current route"""
        self._issue_request_id()
        self.snapshot = None

    def fallback_snapshot(self, start: Coordinate, target: Site,
                          mode: TransportMode) -> NavigationSnapshot:
        """Straight line from start to target with a single synthesized step"""
        meters = distance(start, target.coordinate)
        eta = meters / mode.fallback_speed
        return NavigationSnapshot(
            site_id=target.id,
            mode=mode,
            distance_meters=meters,
            eta_seconds=eta,
            arrival_clock_time=self._now() + timedelta(seconds=eta),
            route_geometry=[[start.lon, start.lat], [target.lon, target.lat]],
            steps=[DirectionStep(
                instruction=f"{mode.verb} directly to {target.name}",
                maneuver_location=start,
            )],
            is_fallback=True,
        )

    def _provider_snapshot(self, route: ProviderRoute, target: Site,
                           mode: TransportMode) -> NavigationSnapshot:
        return NavigationSnapshot(
            site_id=target.id,
            mode=mode,
            distance_meters=route.distance_meters,
            eta_seconds=route.duration_seconds,
            arrival_clock_time=self._now() + timedelta(seconds=route.duration_seconds),
            route_geometry=route.geometry,
            steps=route.steps,
        )

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
