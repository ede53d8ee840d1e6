"""Continuous position tracking with jitter filtering and view throttling."""

import asyncio
import time
from typing import Callable, Optional

from .config import CONFIG
from .geo import haversine_distance, retry_with_backoff
from .gps import PositionUnavailable
from .logger import Logger
from .models import UserPosition


class GeoTracker:
    """Turns raw sensor fixes into three independent output channels.

    - position: routing-grade fixes, only after moving ``movement_threshold`` meters
    - heading: every sensor tick, even when stationary
    - view center: at most once per ``view_center_interval`` seconds

    The source is any object with ``get_location(timeout) -> UserPosition | None``;
    an optional ``get_heading()`` on the source is used as a compass fallback
    when a fix carries no heading.
    """

    def __init__(self, source, logger: Optional[Logger] = None,
                 movement_threshold: Optional[float] = None,
                 view_center_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.source = source
        self.logger = logger
        self.movement_threshold = (movement_threshold if movement_threshold is not None
                                   else CONFIG["movement_threshold"])
        self.view_center_interval = (view_center_interval if view_center_interval is not None
                                     else CONFIG["view_center_interval"])
        self._clock = clock

        self._position_listeners: list[Callable[[UserPosition], None]] = []
        self._heading_listeners: list[Callable[[float], None]] = []
        self._view_listeners: list[Callable[[UserPosition], None]] = []

        self.last_position: Optional[UserPosition] = None
        self.last_heading: Optional[float] = None
        self._pending_center: Optional[UserPosition] = None
        self._last_center_at: Optional[float] = None
        self._stopped = asyncio.Event()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @staticmethod
    def _subscribe(listeners: list, callback: Callable) -> Callable[[], None]:
        listeners.append(callback)

        def unsubscribe():
            if callback in listeners:
                listeners.remove(callback)
        return unsubscribe

    def on_position(self, callback: Callable[[UserPosition], None]) -> Callable[[], None]:
        return self._subscribe(self._position_listeners, callback)

    def on_heading(self, callback: Callable[[float], None]) -> Callable[[], None]:
        return self._subscribe(self._heading_listeners, callback)

    def on_view_center(self, callback: Callable[[UserPosition], None]) -> Callable[[], None]:
        return self._subscribe(self._view_listeners, callback)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def process(self, reading: UserPosition) -> bool:
        """Handle one sensor fix. Returns True if a routing-grade position was emitted."""
        heading = reading.heading
        if heading is None:
            getter = getattr(self.source, "get_heading", None)
            heading = getter() if getter else None
        if heading is not None:
            self.last_heading = heading
            for callback in list(self._heading_listeners):
                callback(heading)

        moved = False
        if self.last_position is None:
            moved = True
        else:
            moved = haversine_distance(
                self.last_position.lat, self.last_position.lon,
                reading.lat, reading.lon
            ) >= self.movement_threshold

        if moved:
            self.last_position = reading
            self._pending_center = reading
            for callback in list(self._position_listeners):
                callback(reading)

        self._flush_view_center()
        return moved

    def _flush_view_center(self):
        if self._pending_center is None:
            return
        now = self._clock()
        if self._last_center_at is not None and now - self._last_center_at < self.view_center_interval:
            return
        center = self._pending_center
        self._pending_center = None
        self._last_center_at = now
        for callback in list(self._view_listeners):
            callback(center)

    async def acquire_initial_position(self, timeout: Optional[float] = None) -> UserPosition:
        """Get a first fix within ``timeout`` seconds or raise PositionUnavailable"""
        timeout = timeout if timeout is not None else CONFIG["initial_fix_timeout"]
        per_attempt = max(1, int(timeout / 2))

        def try_fix():
            return self.source.get_location(timeout=per_attempt)

        location = await asyncio.to_thread(
            retry_with_backoff,
            try_fix,
            max_time=timeout,
            initial_delay=0.5,
            max_delay=2.0,
            description="initial position",
            log=self._log_text,
        )
        if not location:
            reason = getattr(self.source, "last_error", None) or "timeout"
            self._log("Position unavailable", {"reason": reason})
            raise PositionUnavailable(reason)

        self._log("Got initial position", {"lat": location.lat, "lon": location.lon,
                                           "accuracy": location.accuracy})
        self.process(location)
        return location

    async def watch(self, poll_interval: Optional[float] = None,
                    on_unavailable: Optional[Callable[[str], None]] = None):
        """Poll the source until ``stop()`` is called"""
        self._stopped.clear()
        while not self._stopped.is_set():
            location = await asyncio.to_thread(self.source.get_location, 10)
            if location:
                self.process(location)
            else:
                reason = getattr(self.source, "last_error", None) or "no fix"
                self._log("GPS fix failed", {"reason": reason})
                if on_unavailable:
                    on_unavailable(reason)

            interval = poll_interval
            if interval is None:
                getter = getattr(self.source, "get_poll_interval", None)
                interval = getter() if getter else CONFIG["gps_poll_interval"]
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
            self._flush_view_center()

    def stop(self):
        """End the watch loop and drop all subscribers"""
        self._stopped.set()
        self._position_listeners.clear()
        self._heading_listeners.clear()
        self._view_listeners.clear()

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def _log_text(self, message: str):
        self._log(message)
