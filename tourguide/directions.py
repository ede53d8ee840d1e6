"""Turn-by-turn directions from a Mapbox-compatible HTTP provider."""

import os
from dataclasses import dataclass
from typing import Optional

import requests

from .config import CONFIG
from .logger import Logger
from .models import Coordinate, DirectionStep, TransportMode


@dataclass
class ProviderRoute:
    distance_meters: float
    duration_seconds: float
    geometry: list[list[float]]  # [lon, lat] pairs
    steps: list[DirectionStep]


def parse_route(body: dict) -> Optional[ProviderRoute]:
    """Pick the first route out of a provider response body"""
    routes = body.get("routes") or []
    if not routes:
        return None
    route = routes[0]
    steps = [
        DirectionStep.from_provider(step)
        for leg in route.get("legs", [])
        for step in leg.get("steps", [])
        if step.get("maneuver", {}).get("location")
    ]
    return ProviderRoute(
        distance_meters=float(route["distance"]),
        duration_seconds=float(route["duration"]),
        geometry=route["geometry"]["coordinates"],
        steps=steps,
    )


class DirectionsClient:
    """Fetch a walking/cycling/driving route between two points"""

    def __init__(self, access_token: Optional[str] = None, base_url: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None,
                 logger: Optional[Logger] = None):
        self.access_token = access_token or os.environ.get("MAPBOX_ACCESS_TOKEN", "")
        self.base_url = (base_url or CONFIG["directions_url"]).rstrip("/")
        self.timeout = timeout or CONFIG["directions_timeout"]
        self.session = session or requests.Session()
        self.logger = logger

    def get_route(self, start: Coordinate, end: Coordinate,
                  mode: TransportMode) -> Optional[ProviderRoute]:
        """Request a route. Returns None on any network or format error."""
        waypoints = f"{start.lon},{start.lat};{end.lon},{end.lat}"
        url = f"{self.base_url}/{mode.value}/{waypoints}"
        params = {
            "geometries": "geojson",
            "overview": "full",
            "steps": "true",
            "access_token": self.access_token,
        }

        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return parse_route(response.json())
        except requests.RequestException as e:
            self._log("Directions request failed", {"error": str(e), "mode": mode.value})
            return None
        except (ValueError, KeyError, TypeError) as e:
            self._log("Directions response malformed", {"error": str(e)})
            return None

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)
