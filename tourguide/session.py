"""Stateful itinerary traversal: resume/restart, next/skip/prev, arrival."""

import asyncio
from enum import Enum
from typing import Awaitable, Optional, Sequence

from .api import BackendClient
from .arrival import ArrivalDetector
from .audio import Announcer
from .logger import Logger
from .models import (
    AuthenticatedIdentity, NavigationSnapshot, ProgressState, Site,
    TransportMode, UserPosition,
)
from .navigator import Navigator
from .optimizer import RouteOptimizer, get_next_site
from .progress import Identity, ProgressLoadError, ProgressStore
from .steps import StepSynchronizer


class SessionState(Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class SessionController:
    """Single owner of ProgressState for one itinerary and one identity.

    All mutations happen on the event loop thread. Directions requests and
    progress writes run as background tasks; writes are applied to memory
    first and persisted in mutation order.
    """

    def __init__(self, itinerary_id: str, sites: Sequence[Site], identity: Identity,
                 store: ProgressStore, navigator: Navigator,
                 optimizer: Optional[RouteOptimizer] = None,
                 arrival: Optional[ArrivalDetector] = None,
                 steps: Optional[StepSynchronizer] = None,
                 announcer: Optional[Announcer] = None,
                 logger: Optional[Logger] = None,
                 backend: Optional[BackendClient] = None,
                 mode: TransportMode = TransportMode.WALKING):
        self.itinerary_id = itinerary_id
        self.sites = {s.id: s for s in sites}
        self._site_order = [s.id for s in sites]
        self.identity = identity
        self.store = store
        self.navigator = navigator
        self.optimizer = optimizer or RouteOptimizer()
        self.arrival = arrival or ArrivalDetector()
        self.steps = steps or StepSynchronizer()
        self.announcer = announcer or Announcer(enabled=False)
        self.logger = logger or Logger(echo=False)
        self.backend = backend
        self.mode = mode

        self.state = SessionState.NOT_STARTED
        self.progress = ProgressState()
        self.position: Optional[UserPosition] = None
        self.position_available = True
        self.is_nearby = False
        self.needs_resume_prompt = False
        self._saved_progress: Optional[ProgressState] = None
        self._save_failed = False
        # Set when stored progress could not be read; no save until the user acts
        self._hold_saves = False
        self._tasks: set[asyncio.Task] = set()
        self._save_lock = asyncio.Lock()
        self._ended = False

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def current_index(self) -> int:
        return self.progress.current_index

    @property
    def active_site(self) -> Optional[Site]:
        if self.state != SessionState.IN_PROGRESS:
            return None
        order = self.progress.optimized_order
        if 0 <= self.progress.current_index < len(order):
            return self.sites.get(order[self.progress.current_index])
        return None

    @property
    def snapshot(self) -> Optional[NavigationSnapshot]:
        return self.navigator.snapshot

    @property
    def saved_progress(self) -> Optional[ProgressState]:
        """Stored progress awaiting a Resume or Restart decision"""
        return self._saved_progress

    def get_state(self) -> dict:
        """Current state as dict for logging"""
        state = {
            "state": self.state.value,
            "current_index": self.progress.current_index,
            "order": self.progress.optimized_order,
            "visited": sorted(self.progress.visited),
            "skipped": sorted(self.progress.skipped),
            "mode": self.mode.value,
            "is_nearby": self.is_nearby,
            "position_available": self.position_available,
        }
        site = self.active_site
        if site:
            state["active_site"] = {"id": site.id, "name": site.name}
        if self.position:
            state["location"] = {"lat": self.position.lat, "lon": self.position.lon}
        if self.snapshot:
            state["navigation"] = self.snapshot.to_dict()
        return state

    # ------------------------------------------------------------------
    # Opening a session: resume vs restart
    # ------------------------------------------------------------------

    async def open(self, position: Optional[UserPosition] = None) -> bool:
        """Load stored progress. Returns True if the user must choose Resume or Restart."""
        if position:
            self.position = position
            self.progress.last_position = position
        try:
            stored = await asyncio.to_thread(self.store.load, self.itinerary_id, self.identity)
        except ProgressLoadError as e:
            self.logger.log("Stored progress unavailable, not saving until the next action",
                            {"error": str(e)})
            self._hold_saves = True
            stored = None
        stored = self._reconcile(stored) if stored else None
        self.logger.log("Progress loaded", stored.to_dict() if stored else None)

        if stored and self.position:
            stored.last_position = self.position

        if stored and stored.optimized_order and stored.is_complete():
            self.progress = stored
            self.progress.current_index = len(stored.optimized_order)
            self.state = SessionState.COMPLETED
            self.logger.log("Itinerary already completed")
            return False

        if stored and stored.has_progress():
            self._saved_progress = stored
            self.needs_resume_prompt = True
            return True

        # No meaningful progress: proceed as an implicit restart, keeping any
        # stored order until a position is available to re-optimize from.
        if stored and stored.optimized_order:
            self.progress = stored
            self.progress.current_index = 0
        if self.position:
            self._restart()
        return False

    def _reconcile(self, stored: ProgressState) -> ProgressState:
        """Drop ids no longer in the itinerary and append new ones"""
        order = [site_id for site_id in stored.optimized_order if site_id in self.sites]
        if order:
            order.extend(site_id for site_id in self._site_order if site_id not in order)
        stored.optimized_order = order
        stored.visited = {s for s in stored.visited if s in self.sites}
        stored.skipped = {s for s in stored.skipped if s in self.sites}
        if order:
            stored.current_index = max(0, min(stored.current_index, len(order)))
        else:
            stored.current_index = 0
        return stored

    def resume(self) -> bool:
        """Restore the saved order, index, visited and skipped verbatim"""
        saved = self._saved_progress
        if saved is None or not saved.optimized_order:
            self.logger.log("Nothing to resume, restarting")
            return self.restart()

        self._hold_saves = False
        self._saved_progress = None
        self.needs_resume_prompt = False
        self.progress.optimized_order = list(saved.optimized_order)
        self.progress.current_index = saved.current_index
        self.progress.visited = set(saved.visited)
        self.progress.skipped = set(saved.skipped)
        if self.progress.last_position is None:
            self.progress.last_position = saved.last_position

        if self.progress.current_index >= len(self.progress.optimized_order):
            self._wrap_to_unvisited()
        self.state = SessionState.IN_PROGRESS
        self.logger.log("Resumed", {"index": self.progress.current_index})
        self._after_transition()
        return True

    def restart(self) -> bool:
        """Re-optimize from the current position and go back to the first site.

        Mid-tour, visited and skipped sites are kept and excluded from the new
        ordering. After completion, a restart clears all progress.
        """
        self._hold_saves = False
        return self._restart()

    def _restart(self) -> bool:
        if not self.position:
            self.logger.log("Cannot restart without a position; waiting for a fix")
            if self.state == SessionState.NOT_STARTED:
                # on_position restarts once a fix arrives
                self.needs_resume_prompt = False
            return False

        if self.state == SessionState.COMPLETED:
            self.progress.visited.clear()
            self.progress.skipped.clear()
            self._spawn(self._clear_store())
        elif self._saved_progress is not None:
            self.progress.visited = set(self._saved_progress.visited)
            self.progress.skipped = set(self._saved_progress.skipped)

        self._saved_progress = None
        self.needs_resume_prompt = False
        exclude = self.progress.visited | self.progress.skipped
        sites = [self.sites[site_id] for site_id in self._site_order]
        order = self.optimizer.optimize(self.position.coordinate, sites, exclude)

        self.progress.optimized_order = order
        self.progress.current_index = 0
        if not order:
            self.state = SessionState.NOT_STARTED
            self.logger.log("Itinerary has no sites")
            return False

        if order[0] in exclude:
            # Every site is visited or skipped
            if self.progress.is_complete():
                self._complete()
                return True
            self._wrap_to_unvisited()

        self.state = SessionState.IN_PROGRESS
        self.logger.log("Route optimized", {"order": order})
        self._after_transition()
        return True

    # ------------------------------------------------------------------
    # Explicit user actions
    # ------------------------------------------------------------------

    def next_site(self) -> bool:
        """Mark the active site visited and move on"""
        site = self.active_site
        if site is None:
            return False
        self._hold_saves = False
        self._mark_visited(site.id)
        self.logger.log("Next", {"visited": site.id})
        self._advance()
        return True

    def skip_site(self) -> bool:
        """Mark the active site skipped (not visited) and move on"""
        site = self.active_site
        if site is None:
            return False
        self._hold_saves = False
        self.progress.skipped.add(site.id)
        self.logger.log("Skipped", {"site": site.id})
        self._advance()
        return True

    def prev_site(self) -> bool:
        """Go back one site; visited flags are kept"""
        if self.state != SessionState.IN_PROGRESS or self.progress.current_index <= 0:
            return False
        self._hold_saves = False
        self.progress.current_index -= 1
        self.logger.log("Previous", {"index": self.progress.current_index})
        self._after_transition()
        return True

    def mark_done(self, site_id: Optional[str] = None) -> bool:
        """Toggle a site's visited flag without moving the index"""
        if self.state != SessionState.IN_PROGRESS:
            return False
        if site_id is None:
            site = self.active_site
            site_id = site.id if site else None
        if site_id not in self.sites:
            return False

        self._hold_saves = False
        if site_id in self.progress.visited:
            self.progress.visited.discard(site_id)
            self.logger.log("Unmarked visited", {"site": site_id})
        else:
            self._mark_visited(site_id)
            self.logger.log("Marked visited", {"site": site_id})

        if self.progress.is_complete():
            self._complete()
        else:
            self._persist()
        return True

    def set_mode(self, mode: TransportMode):
        """Switch transport mode: optimistic ETA now, provider route later"""
        if mode == self.mode:
            return
        self.mode = mode
        snapshot = self.navigator.change_mode(mode)
        self.logger.log("Transport mode changed", {
            "mode": mode.value,
            "eta": round(snapshot.eta_seconds) if snapshot else None,
        })
        self._request_route()

    # ------------------------------------------------------------------
    # Sensor events
    # ------------------------------------------------------------------

    def on_position(self, position: UserPosition):
        """Handle a routing-grade position update"""
        self.position = position
        self.position_available = True
        self.progress.last_position = position

        if self.state == SessionState.NOT_STARTED:
            if not self.needs_resume_prompt and not self._ended:
                self._restart()
            return
        if self.state != SessionState.IN_PROGRESS:
            return

        site = self.active_site
        if site is None:
            return

        result = self.arrival.check_arrival(position, site, self.progress.optimized_order,
                                            self.progress.visited)
        was_nearby = self.is_nearby
        self.is_nearby = result.is_nearby
        if result.is_nearby and not was_nearby:
            self.logger.log("Arrived near site", {"site": site.id, "distance": round(result.distance_meters)})
            self.announcer.speak(f"You have arrived at {site.name}")

        if result.auto_visit:
            self._hold_saves = False
            self._mark_visited(site.id)
            self.logger.log("Last site auto-marked as visited", {"site": site.id})
            self._advance()
            return

        self._sync_step()
        self._request_route()

    def on_position_unavailable(self, reason: str):
        """Keep the current route and progress visible; navigation pauses"""
        if self.position_available:
            self.logger.log("Position unavailable", {"reason": reason})
        self.position_available = False

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def drain(self):
        """Wait for all background directions requests and writes"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def end(self):
        """Stop navigating: fence in-flight requests and flush progress"""
        self._ended = True
        self.navigator.cancel()
        if self._save_failed:
            self._persist()
        await self.drain()
        self.logger.log("Session ended", self.get_state())

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _mark_visited(self, site_id: str):
        if site_id in self.progress.visited:
            return
        self.progress.visited.add(site_id)
        if self.backend and isinstance(self.identity, AuthenticatedIdentity):
            self._spawn(asyncio.to_thread(self.backend.record_visit, self.itinerary_id,
                                          site_id, self.identity.token))

    def _advance(self):
        if self.progress.is_complete():
            self._complete()
            return
        next_index = self.progress.current_index + 1
        if next_index < len(self.progress.optimized_order):
            self.progress.current_index = next_index
        else:
            self._wrap_to_unvisited()
        self._after_transition()

    def _wrap_to_unvisited(self):
        """Past the end with sites left: go to the first unvisited one"""
        order = self.progress.optimized_order
        next_id = get_next_site(order, self.progress.visited)
        self.progress.current_index = order.index(next_id) if next_id else len(order)

    def _complete(self):
        self.progress.current_index = len(self.progress.optimized_order)
        self.state = SessionState.COMPLETED
        self.is_nearby = False
        self.navigator.cancel()
        self.steps.reset()
        self.logger.log("Itinerary complete", {"visited": len(self.progress.visited)})
        self.announcer.speak("Itinerary complete")
        self._persist()

    def _after_transition(self):
        """Common tail of every index change: save and re-route"""
        self.steps.reset()
        self.is_nearby = False
        site = self.active_site
        if site and self.position:
            self.is_nearby = self.arrival.check_arrival(self.position, site).is_nearby
        self._persist()
        self._request_route()

    def _sync_step(self):
        snapshot = self.navigator.snapshot
        if not snapshot or not self.position:
            return
        index = self.steps.current_step(self.position, snapshot.steps)
        if index is None:
            return
        # A rebuilt snapshot starts at step 0 even when the closest step is unchanged
        snapshot.current_step_index = index
        if self.steps.update(self.position, snapshot.steps) is not None:
            self.announcer.speak(snapshot.steps[index].instruction)

    def _request_route(self):
        site = self.active_site
        if site is None or self.position is None or self._ended:
            return
        pending = self.navigator.build_route(self.position.coordinate, site, self.mode)
        self._spawn(self._apply_route(pending, site))

    async def _apply_route(self, pending: Awaitable[Optional[NavigationSnapshot]], site: Site):
        snapshot = await pending
        if snapshot is None:
            return
        self.logger.log("Route updated", {
            "site": site.id,
            "distance": round(snapshot.distance_meters),
            "eta": round(snapshot.eta_seconds),
            "fallback": snapshot.is_fallback,
        })
        self._sync_step()

    def _persist(self):
        if self._hold_saves:
            return
        self._spawn(self._save(self.progress.copy()))

    async def _save(self, state: ProgressState):
        async with self._save_lock:
            ok = await asyncio.to_thread(self.store.save, self.itinerary_id, self.identity, state)
        if ok:
            if self._save_failed:
                self.logger.log("Progress saved after earlier failure")
            self._save_failed = False
        else:
            self._save_failed = True
            self.logger.log("Progress not saved; will retry on next change")

    async def _clear_store(self):
        async with self._save_lock:
            await asyncio.to_thread(self.store.clear, self.itinerary_id, self.identity)

    def _spawn(self, coro):
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task
