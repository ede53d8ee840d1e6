"""Main Tourguide application."""

import asyncio
import sys
import threading
import time
from typing import Optional

import requests

from .api import BackendClient
from .audio import Announcer
from .config import CONFIG
from .directions import DirectionsClient
from .gps import GPSPlayback, GPSRecorder, PositionUnavailable
from .logger import Logger
from .models import AuthenticatedIdentity, GuestIdentity, TransportMode, UserPosition
from .navigator import Navigator
from .optimizer import total_distance
from .progress import AuthenticatedProgressStore, GuestProgressStore, Identity, ProgressStores
from .session import SessionController, SessionState
from .tracker import GeoTracker
from .ws_source import WebSocketPositionSource

HELP = "Commands: n=next  s=skip  p=prev  d=mark done  m MODE=transport  r=restart  ?=status  q=quit"


class TourGuide:
    """Wires sensor, navigation and persistence together for one itinerary"""

    def __init__(self, itinerary_id: str, identity: Identity, source,
                 mode: TransportMode = TransportMode.WALKING,
                 log_path: Optional[str] = None, announce: bool = True,
                 resume_choice: Optional[str] = None,
                 backend: Optional[BackendClient] = None,
                 directions: Optional[DirectionsClient] = None):
        self.itinerary_id = itinerary_id
        self.identity = identity
        self.source = source
        self.mode = mode
        self.resume_choice = resume_choice

        inner = source.source if isinstance(source, GPSRecorder) else source
        self.ws = inner if isinstance(inner, WebSocketPositionSource) else None
        log_callback = self.ws.send_log if self.ws else None
        self.logger = Logger(log_path, callback=log_callback)
        audio_callback = self.ws.send_audio if self.ws else None
        self.announcer = Announcer(enabled=announce, callback=audio_callback)

        self.backend = backend or BackendClient(logger=self.logger)
        self.directions = directions or DirectionsClient(logger=self.logger)
        self.guest_store = GuestProgressStore()
        self.stores = ProgressStores(
            guest=self.guest_store,
            authenticated=AuthenticatedProgressStore(self.backend, logger=self.logger),
        )
        self.navigator = Navigator(self.directions, logger=self.logger)
        self.tracker = GeoTracker(source, logger=self.logger)
        self.session: Optional[SessionController] = None
        self.itinerary_name = ""

        self._commands: Optional[asyncio.Queue] = None
        self._quit = False
        self.last_log_update = 0.0
        self.start_time = 0.0

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def initialize(self) -> bool:
        """Fetch itinerary and touring area, get a first fix, open the session"""
        self.logger.log("Initializing", {"itinerary": self.itinerary_id, "mode": self.mode.value})
        token = self.identity.token if isinstance(self.identity, AuthenticatedIdentity) else None

        try:
            self.itinerary_name, sites = await asyncio.to_thread(
                self.backend.get_itinerary, self.itinerary_id, token
            )
        except (requests.RequestException, ValueError) as e:
            self.logger.log("Could not fetch itinerary", {"error": str(e)})
            print("Could not fetch itinerary")
            return False

        if not sites:
            self.logger.log("Itinerary has no geo-tagged sites")
            print("Itinerary has no geo-tagged sites")
            return False
        self.logger.log("Itinerary loaded", {"name": self.itinerary_name, "sites": len(sites)})

        try:
            area = await asyncio.to_thread(self.backend.get_touring_area)
            if area:
                self.navigator.touring_area = area
                self.logger.log("Touring area loaded", {"vertices": len(area)})
        except (requests.RequestException, ValueError) as e:
            self.logger.log("Touring area unavailable, accepting provider routes", {"error": str(e)})

        self.session = SessionController(
            self.itinerary_id, sites, self.identity,
            store=self.stores.for_identity(self.identity),
            navigator=self.navigator,
            announcer=self.announcer,
            logger=self.logger,
            backend=self.backend,
            mode=self.mode,
        )

        position: Optional[UserPosition] = None
        print("Getting position fix...")
        try:
            position = await self.tracker.acquire_initial_position()
        except PositionUnavailable as e:
            self.session.on_position_unavailable(e.reason)
            print(f"Position unavailable ({e.reason}); navigation paused until a fix arrives")

        needs_prompt = await self.session.open(position)
        if self.session.state == SessionState.COMPLETED and self.resume_choice == "restart":
            self.session.restart()
        elif needs_prompt:
            choice = self.resume_choice or await asyncio.to_thread(self._ask_resume)
            if choice == "resume":
                self.session.resume()
            else:
                self.session.restart()

        self.tracker.on_position(self.session.on_position)
        self.tracker.on_heading(self._on_heading)
        self.tracker.on_view_center(self._on_view_center)

        if position and self.session.progress.optimized_order:
            ordered = [self.session.sites[i] for i in self.session.progress.optimized_order]
            self.logger.log("Tour length", {"meters": round(total_distance(position.coordinate, ordered))})
        return True

    def _ask_resume(self) -> str:
        progress = self.session.saved_progress
        done = len(progress.visited) if progress else 0
        print(f"\nSaved progress found for {self.itinerary_name} ({done} sites visited).")
        answer = input("Resume where you left off? [Y/n] ").strip().lower()
        return "restart" if answer in ("n", "no", "restart") else "resume"

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_heading(self, heading: float):
        if self.ws:
            self.ws.send_state({"heading": heading})

    def _on_view_center(self, position: UserPosition):
        if self.ws:
            self.ws.send_state({"center": {"lat": position.lat, "lon": position.lon}})

    def handle_command(self, line: str):
        """Apply one user command to the session"""
        parts = line.strip().split()
        if not parts or not self.session:
            return
        cmd = parts[0].lower()

        if cmd == "n":
            self.session.next_site()
        elif cmd == "s":
            self.session.skip_site()
        elif cmd == "p":
            self.session.prev_site()
        elif cmd == "d":
            self.session.mark_done(parts[1] if len(parts) > 1 else None)
        elif cmd == "m" and len(parts) > 1:
            try:
                self.session.set_mode(TransportMode(parts[1].lower()))
            except ValueError:
                print(f"Unknown transport mode: {parts[1]}")
        elif cmd == "r":
            self.session.restart()
        elif cmd == "?":
            self.print_status()
        elif cmd == "q":
            self._quit = True
        else:
            print(HELP)

    def print_status(self):
        site = self.session.active_site
        snapshot = self.session.snapshot
        print(f"\n[{self.session.state.value}] {self.itinerary_name}")
        if site:
            order = self.session.progress.optimized_order
            print(f"  Site {self.session.current_index + 1}/{len(order)}: {site.name}"
                  f"{' (nearby)' if self.session.is_nearby else ''}")
        if snapshot:
            print(f"  {snapshot.distance_meters:.0f}m, ETA {snapshot.eta_seconds / 60:.1f} min "
                  f"(arrive {snapshot.arrival_clock_time:%H:%M}) by {snapshot.mode.value}")
            if snapshot.steps:
                print(f"  > {snapshot.steps[snapshot.current_step_index].instruction}")
        if not self.session.position_available:
            print("  Position unavailable")

    def _start_command_reader(self):
        """Feed stdin lines into the event loop from a daemon thread"""
        loop = asyncio.get_running_loop()
        self._commands = asyncio.Queue()

        def reader():
            for line in sys.stdin:
                loop.call_soon_threadsafe(self._commands.put_nowait, line)
            loop.call_soon_threadsafe(self._commands.put_nowait, "q")

        threading.Thread(target=reader, daemon=True, name="commands").start()

    def periodic_update(self):
        now = time.time()
        if now - self.last_log_update >= CONFIG["log_interval"]:
            state = self.session.get_state()
            state["gps_status"] = self.source.get_status()
            self.logger.log("STATE", state)
            if self.ws:
                self.ws.send_state(state)
            self.last_log_update = now

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    async def run(self):
        print("\n=== Tourguide ===")
        print(f"Itinerary: {self.itinerary_id}, mode: {self.mode.value}")
        if isinstance(self.source, GPSPlayback):
            print(f"Playback mode: {self.source.speed}x speed")

        if self.ws:
            self.ws.start()

        try:
            if not await self.initialize():
                return

            print(HELP)
            self._start_command_reader()
            self.start_time = time.time()
            watch_task = asyncio.create_task(
                self.tracker.watch(on_unavailable=self.session.on_position_unavailable)
            )

            try:
                reported_complete = False
                while not self._quit:
                    try:
                        line = await asyncio.wait_for(self._commands.get(), timeout=0.5)
                        self.handle_command(line)
                    except asyncio.TimeoutError:
                        pass
                    self.periodic_update()

                    completed = self.session.state == SessionState.COMPLETED
                    if completed and not reported_complete:
                        print("Itinerary complete! (r to restart, q to quit)")
                    reported_complete = completed
                    if isinstance(self.source, GPSPlayback) and self.source.is_finished():
                        print("\nPlayback finished")
                        self.logger.log("Playback finished")
                        break
            finally:
                self.tracker.stop()
                try:
                    await asyncio.wait_for(watch_task, timeout=15)
                except asyncio.TimeoutError:
                    watch_task.cancel()
                await self.session.end()
        finally:
            self.shutdown()

    def shutdown(self):
        if isinstance(self.source, GPSRecorder):
            self.source.save()
        if self.ws:
            self.ws.stop()

        if self.session:
            summary = {
                "visited": len(self.session.progress.visited),
                "skipped": len(self.session.progress.skipped),
                "sites": len(self.session.sites),
                "duration": time.time() - self.start_time if self.start_time else 0,
            }
            self.logger.log("Tour summary", summary)
            print("\nTour summary:")
            print(f"  Visited: {summary['visited']}/{summary['sites']}")
            print(f"  Skipped: {summary['skipped']}")
            print(f"  Duration: {summary['duration']/60:.1f} minutes")

        self.announcer.close()
        if isinstance(self.identity, GuestIdentity):
            self.guest_store.end_session(self.identity)
        self.guest_store.close()
        self.logger.close()
