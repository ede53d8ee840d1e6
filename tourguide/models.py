"""Data classes for Tourguide."""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional

from .config import CONFIG


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lon: float


@dataclass
class UserPosition:
    lat: float
    lon: float
    heading: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "UserPosition":
        # Accept both the trace format (lat/lon) and the browser/backend
        # format (latitude/longitude).
        return cls(
            lat=d["lat"] if "lat" in d else d["latitude"],
            lon=d["lon"] if "lon" in d else d["longitude"],
            heading=d.get("heading"),
            accuracy=d.get("accuracy"),
            timestamp=d.get("timestamp"),
        )


@dataclass(frozen=True)
class Site:
    """A tourist site; owned by the content service, read-only here"""
    id: str
    lat: float
    lon: float
    name: str
    description: str = ""
    media: tuple[str, ...] = ()
    fee_info: Optional[dict] = field(default=None, hash=False, compare=False)
    status: str = "active"

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)


class TransportMode(Enum):
    WALKING = "walking"
    CYCLING = "cycling"
    DRIVING = "driving"

    @property
    def fallback_speed(self) -> float:
        """Fixed speed in m/s used when no provider duration is available"""
        return CONFIG["fallback_speeds"][self.value]

    @property
    def verb(self) -> str:
        return {"walking": "Walk", "cycling": "Bike", "driving": "Drive"}[self.value]


@dataclass
class DirectionStep:
    instruction: str
    maneuver_location: Coordinate

    @classmethod
    def from_provider(cls, step: dict) -> "DirectionStep":
        """Build from a provider step: {"maneuver": {"instruction", "location": [lon, lat]}}"""
        maneuver = step["maneuver"]
        lon, lat = maneuver["location"][:2]
        return cls(instruction=maneuver.get("instruction", ""), maneuver_location=Coordinate(lat, lon))


@dataclass
class NavigationSnapshot:
    """Derived route state for the active site. Never persisted."""
    site_id: str
    mode: TransportMode
    distance_meters: float
    eta_seconds: float
    arrival_clock_time: datetime
    route_geometry: list[list[float]]  # [lon, lat] pairs
    steps: list[DirectionStep]
    current_step_index: int = 0
    is_fallback: bool = False
    is_optimistic: bool = False

    def to_dict(self) -> dict:
        return {
            "site_id": self.site_id,
            "mode": self.mode.value,
            "distance_meters": round(self.distance_meters, 1),
            "eta_seconds": round(self.eta_seconds, 1),
            "arrival_clock_time": self.arrival_clock_time.isoformat(timespec="seconds"),
            "steps": [s.instruction for s in self.steps],
            "current_step_index": self.current_step_index,
            "is_fallback": self.is_fallback,
            "is_optimistic": self.is_optimistic,
        }


@dataclass
class ProgressState:
    """Durable traversal progress for one (itinerary, identity) pair"""
    optimized_order: list[str] = field(default_factory=list)
    current_index: int = 0
    visited: set[str] = field(default_factory=set)
    skipped: set[str] = field(default_factory=set)
    last_position: Optional[UserPosition] = None

    def has_progress(self) -> bool:
        return self.current_index > 0 or bool(self.visited) or bool(self.skipped)

    def is_complete(self) -> bool:
        return bool(self.optimized_order) and self.visited.issuperset(self.optimized_order)

    def copy(self) -> "ProgressState":
        return ProgressState(
            optimized_order=list(self.optimized_order),
            current_index=self.current_index,
            visited=set(self.visited),
            skipped=set(self.skipped),
            last_position=self.last_position,
        )

    def to_dict(self) -> dict:
        """Serialize to the backend's itinerary-progress shape"""
        last = None
        if self.last_position:
            p = self.last_position
            last = {
                "latitude": p.lat,
                "longitude": p.lon,
                "heading": p.heading,
                "accuracy": p.accuracy,
                "timestamp": p.timestamp,
            }
        return {
            "currentPinIndex": self.current_index,
            "visitedSites": sorted(self.visited),
            "skippedSites": sorted(self.skipped),
            "optimizedOrder": list(self.optimized_order),
            "lastPosition": last,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "ProgressState":
        last = d.get("lastPosition")
        return cls(
            optimized_order=list(d.get("optimizedOrder") or []),
            current_index=int(d.get("currentPinIndex") or 0),
            visited=set(d.get("visitedSites") or []),
            skipped=set(d.get("skippedSites") or []),
            last_position=UserPosition.from_dict(last) if last else None,
        )


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """Logged-in user; progress is server-persisted"""
    user_id: str
    token: str = field(repr=False)


@dataclass(frozen=True)
class GuestIdentity:
    """Guest visitor; progress lives only for the app session"""
    session_id: str
