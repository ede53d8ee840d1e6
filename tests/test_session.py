"""Tests for SessionController: resume/restart, user actions, arrival, persistence."""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock

import pytest
import requests

from tourguide.audio import Announcer
from tourguide.directions import ProviderRoute
from tourguide.logger import Logger
from tourguide.models import (
    AuthenticatedIdentity, Coordinate, DirectionStep, GuestIdentity, ProgressState, Site,
    TransportMode, UserPosition,
)
from tourguide.navigator import Navigator
from tourguide.progress import AuthenticatedProgressStore, GuestProgressStore
from tourguide.session import SessionController, SessionState

GUEST = GuestIdentity(session_id="guest-1")
USER = AuthenticatedIdentity(user_id="u1", token="secret")
NOW = datetime(2024, 5, 1, 12, 0, 0)

# Three sites ~1.1 km apart along the equator; START is ~110 m west of A
SITES = [
    Site(id="A", lat=0.0, lon=0.0, name="Alpha"),
    Site(id="B", lat=0.0, lon=0.01, name="Bravo"),
    Site(id="C", lat=0.0, lon=0.02, name="Charlie"),
]
START = UserPosition(lat=0.0, lon=-0.001)


def _near(site: Site) -> UserPosition:
    return UserPosition(lat=site.lat, lon=site.lon + 0.0001)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_session(store=None, identity=GUEST, backend=None, route=None) -> SessionController:
    directions = MagicMock()
    directions.get_route.return_value = route
    return SessionController(
        "it-1", SITES, identity,
        store=store if store is not None else GuestProgressStore(),
        navigator=Navigator(directions, now=lambda: NOW),
        announcer=Announcer(enabled=False),
        logger=Logger(echo=False),
        backend=backend,
    )


def _make_route() -> ProviderRoute:
    """Three maneuvers along the equator, ~440 m apart"""
    return ProviderRoute(
        distance_meters=1000.0,
        duration_seconds=714.0,
        geometry=[[-0.001, 0.0], [0.008, 0.0]],
        steps=[
            DirectionStep("Head east", Coordinate(0.0, 0.0)),
            DirectionStep("Continue straight", Coordinate(0.0, 0.004)),
            DirectionStep("Turn left", Coordinate(0.0, 0.008)),
        ],
    )


def _make_store(saved=None) -> MagicMock:
    store = MagicMock()
    store.load.return_value = saved
    store.save.return_value = True
    return store


def _run(scenario):
    return asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Opening: fresh, resume, restart
# ---------------------------------------------------------------------------


def test_fresh_open_optimizes_from_position():
    store = GuestProgressStore()
    session = _make_session(store)

    async def scenario():
        assert await session.open(START) is False
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS
    assert session.progress.optimized_order == ["A", "B", "C"]
    assert session.active_site.id == "A"
    assert session.snapshot.is_fallback
    assert session.snapshot.site_id == "A"
    assert store.load("it-1", GUEST).optimized_order == ["A", "B", "C"]


def test_open_without_position_waits_for_fix():
    session = _make_session()

    async def scenario():
        await session.open()
        assert session.state == SessionState.NOT_STARTED
        session.on_position(START)
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS
    assert session.current_index == 0


def test_resume_restores_saved_progress_verbatim():
    saved = ProgressState(optimized_order=["C", "B", "A"], current_index=1, visited={"C"})
    session = _make_session(_make_store(saved))

    async def scenario():
        assert await session.open(START) is True
        assert session.needs_resume_prompt
        session.resume()
        await session.drain()

    _run(scenario)
    assert session.progress.optimized_order == ["C", "B", "A"]
    assert session.current_index == 1
    assert session.progress.visited == {"C"}
    assert session.active_site.id == "B"


def test_restart_recomputes_order_and_keeps_visited():
    saved = ProgressState(optimized_order=["C", "B", "A"], current_index=1, visited={"C"})
    session = _make_session(_make_store(saved))

    async def scenario():
        await session.open(START)
        session.restart()
        await session.drain()

    _run(scenario)
    assert session.current_index == 0
    assert session.progress.optimized_order == ["A", "B", "C"]
    assert session.progress.visited == {"C"}
    assert session.state == SessionState.IN_PROGRESS


def test_restart_with_every_site_done_or_skipped_lands_on_unvisited():
    saved = ProgressState(optimized_order=["A", "B", "C"], current_index=1,
                          visited={"A"}, skipped={"B", "C"})
    session = _make_session(_make_store(saved))

    async def scenario():
        await session.open(START)
        session.restart()
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS
    assert session.progress.optimized_order == ["A", "B", "C"]
    assert session.active_site.id == "B"
    assert session.active_site.id not in session.progress.visited


def test_position_does_not_bypass_resume_prompt():
    saved = ProgressState(optimized_order=["C", "B", "A"], current_index=1, visited={"C"})
    session = _make_session(_make_store(saved))

    async def scenario():
        await session.open(START)
        session.on_position(_near(SITES[0]))
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.NOT_STARTED
    assert session.needs_resume_prompt


def test_stored_order_reconciled_with_current_sites():
    saved = ProgressState(optimized_order=["B", "gone", "A"], current_index=1, visited={"B", "gone"})
    session = _make_session(_make_store(saved))

    async def scenario():
        await session.open(START)
        session.resume()
        await session.drain()

    _run(scenario)
    assert session.progress.optimized_order == ["B", "A", "C"]
    assert session.progress.visited == {"B"}


def test_already_completed_opens_completed_and_restart_clears():
    store = GuestProgressStore()
    store.save("it-1", GUEST, ProgressState(optimized_order=["A", "B", "C"], visited={"A", "B", "C"}))
    session = _make_session(store)

    async def scenario():
        assert await session.open(START) is False
        assert session.state == SessionState.COMPLETED
        assert session.active_site is None
        session.restart()
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS
    assert session.progress.visited == set()
    assert store.load("it-1", GUEST).visited == set()


def test_restart_without_position_is_deferred():
    session = _make_session()

    async def scenario():
        await session.open()
        assert session.restart() is False
        session.on_position(START)
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS


# ---------------------------------------------------------------------------
# User actions
# ---------------------------------------------------------------------------


def test_next_skip_prev():
    session = _make_session()

    async def scenario():
        await session.open(START)
        session.next_site()
        assert session.progress.visited == {"A"}
        assert session.active_site.id == "B"
        session.skip_site()
        assert session.progress.skipped == {"B"}
        assert session.progress.visited == {"A"}
        assert session.active_site.id == "C"
        session.prev_site()
        await session.drain()

    _run(scenario)
    assert session.active_site.id == "B"
    assert session.progress.visited == {"A"}


def test_prev_at_first_site_is_noop():
    session = _make_session()

    async def scenario():
        await session.open(START)
        assert session.prev_site() is False
        await session.drain()

    _run(scenario)
    assert session.current_index == 0


def test_advancing_past_end_wraps_to_first_unvisited():
    session = _make_session()

    async def scenario():
        await session.open(START)
        session.next_site()
        session.skip_site()
        session.skip_site()
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.IN_PROGRESS
    assert session.active_site.id == "B"


def test_visiting_every_site_completes():
    store = GuestProgressStore()
    session = _make_session(store)

    async def scenario():
        await session.open(START)
        for _ in range(3):
            session.next_site()
        await session.drain()

    _run(scenario)
    assert session.state == SessionState.COMPLETED
    assert session.current_index == 3
    assert session.active_site is None
    assert session.snapshot is None
    assert store.load("it-1", GUEST).current_index == 3


def test_mark_done_toggles_without_moving():
    session = _make_session()

    async def scenario():
        await session.open(START)
        session.mark_done()
        assert session.progress.visited == {"A"}
        session.mark_done("A")
        await session.drain()

    _run(scenario)
    assert session.progress.visited == set()
    assert session.current_index == 0


def test_mode_change_is_optimistic_then_confirmed():
    session = _make_session()

    async def scenario():
        await session.open(START)
        await session.drain()
        distance = session.snapshot.distance_meters
        session.set_mode(TransportMode.DRIVING)
        assert session.snapshot.is_optimistic
        assert session.snapshot.eta_seconds == pytest.approx(distance / 8.33)
        await session.drain()

    _run(scenario)
    assert session.snapshot.mode == TransportMode.DRIVING
    assert not session.snapshot.is_optimistic


# ---------------------------------------------------------------------------
# Arrival
# ---------------------------------------------------------------------------


def test_arrival_at_non_last_site_only_flags_nearby():
    session = _make_session()

    async def scenario():
        await session.open(START)
        session.on_position(_near(SITES[0]))
        await session.drain()

    _run(scenario)
    assert session.is_nearby
    assert session.progress.visited == set()
    assert session.active_site.id == "A"


def test_arrival_at_last_unvisited_site_auto_marks():
    session = _make_session()

    async def scenario():
        await session.open(START)
        session.next_site()
        session.next_site()
        session.on_position(_near(SITES[2]))
        await session.drain()

    _run(scenario)
    assert session.progress.visited == {"A", "B", "C"}
    assert session.state == SessionState.COMPLETED


def test_rebuilt_route_keeps_current_step():
    session = _make_session(route=_make_route())

    async def scenario():
        await session.open(START)
        await session.drain()
        assert session.snapshot.current_step_index == 0
        session.on_position(UserPosition(lat=0.0, lon=0.0079))
        await session.drain()
        assert session.snapshot.current_step_index == 2
        session.on_position(UserPosition(lat=0.0, lon=0.0081))
        await session.drain()

    _run(scenario)
    assert session.snapshot.current_step_index == 2
    assert session.snapshot.steps[2].instruction == "Turn left"


def test_position_unavailable_keeps_route():
    session = _make_session()

    async def scenario():
        await session.open(START)
        await session.drain()
        session.on_position_unavailable("permission denied")

    _run(scenario)
    assert not session.position_available
    assert session.snapshot is not None
    assert session.active_site.id == "A"


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def test_failed_save_is_retried_on_end():
    store = _make_store()
    store.save.side_effect = [False, True]
    session = _make_session(store)

    async def scenario():
        await session.open(START)
        await session.drain()
        assert session._save_failed
        await session.end()

    _run(scenario)
    assert store.save.call_count == 2
    assert not session._save_failed
    saved = store.save.call_args[0][2]
    assert saved.optimized_order == ["A", "B", "C"]


def test_saves_are_applied_in_mutation_order():
    store = _make_store()
    session = _make_session(store)

    async def scenario():
        await session.open(START)
        session.next_site()
        session.next_site()
        await session.drain()

    _run(scenario)
    indexes = [c[0][2].current_index for c in store.save.call_args_list]
    assert indexes == [0, 1, 2]


def test_authenticated_visit_is_archived():
    backend = MagicMock()
    session = _make_session(_make_store(), identity=USER, backend=backend)

    async def scenario():
        await session.open(START)
        session.next_site()
        await session.drain()

    _run(scenario)
    backend.record_visit.assert_called_once_with("it-1", "A", "secret")


def test_unreadable_progress_is_not_overwritten_until_user_acts():
    client = MagicMock()
    client.get_progress.side_effect = requests.ConnectionError("offline")
    session = _make_session(AuthenticatedProgressStore(client), identity=USER)

    async def scenario():
        assert await session.open(START) is False
        await session.drain()
        assert session.state == SessionState.IN_PROGRESS
        assert session.active_site.id == "A"
        client.post_progress.assert_not_called()

        session.next_site()
        await session.drain()

    _run(scenario)
    client.post_progress.assert_called_once()
    payload = client.post_progress.call_args[0][1]
    assert payload["currentPinIndex"] == 1
    assert payload["visitedSites"] == ["A"]
