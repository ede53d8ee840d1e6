"""Tourguide - Guided walking tours through an itinerary of sites."""

from .config import CONFIG
from .models import (
    Coordinate,
    UserPosition,
    Site,
    TransportMode,
    DirectionStep,
    NavigationSnapshot,
    ProgressState,
    AuthenticatedIdentity,
    GuestIdentity,
)
from .logger import Logger
from .gps import GPS, GPSRecorder, GPSPlayback, FixedPosition, PositionUnavailable
from .ws_source import WebSocketPositionSource
from .geo import (
    haversine_distance,
    squared_planar_distance,
    point_in_polygon,
    line_within_polygon,
    retry_with_backoff,
)
from .optimizer import RouteOptimizer, get_next_site, total_distance
from .tracker import GeoTracker
from .directions import DirectionsClient
from .navigator import Navigator
from .arrival import ArrivalDetector, ArrivalResult
from .steps import StepSynchronizer
from .api import BackendClient
from .progress import (
    ProgressStore, ProgressLoadError, GuestProgressStore, AuthenticatedProgressStore, ProgressStores,
)
from .audio import Announcer
from .session import SessionController, SessionState
from .app import TourGuide
from .__main__ import main

__all__ = [
    "CONFIG",
    "Coordinate",
    "UserPosition",
    "Site",
    "TransportMode",
    "DirectionStep",
    "NavigationSnapshot",
    "ProgressState",
    "AuthenticatedIdentity",
    "GuestIdentity",
    "Logger",
    "GPS",
    "GPSRecorder",
    "GPSPlayback",
    "FixedPosition",
    "PositionUnavailable",
    "WebSocketPositionSource",
    "haversine_distance",
    "squared_planar_distance",
    "point_in_polygon",
    "line_within_polygon",
    "retry_with_backoff",
    "RouteOptimizer",
    "get_next_site",
    "total_distance",
    "GeoTracker",
    "DirectionsClient",
    "Navigator",
    "ArrivalDetector",
    "ArrivalResult",
    "StepSynchronizer",
    "BackendClient",
    "ProgressStore",
    "ProgressLoadError",
    "GuestProgressStore",
    "AuthenticatedProgressStore",
    "ProgressStores",
    "Announcer",
    "SessionController",
    "SessionState",
    "TourGuide",
    "main",
]
