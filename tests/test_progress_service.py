import asyncio

import pytest

from appforge.services.progress_service import (
    GenerationConflict,
    GenerationSession,
    SessionRegistry,
    compute_progress,
    idle_subscription,
    initial_phases,
)


def _drain(sub):
    events = []
    while not sub.queue.empty():
        events.append(sub.queue.get_nowait())
    return events


def test_phase_weights_sum_to_100():
    assert sum(p["weight"] for p in initial_phases()) == 100


def test_progress_counts_half_weight_for_the_running_phase():
    phases = initial_phases()
    assert compute_progress(phases) == 0

    phases[0]["status"] = "completed"
    phases[1]["status"] = "in_progress"
    assert compute_progress(phases) == 5 + 15

    for p in phases:
        p["status"] = "completed"
    assert compute_progress(phases) == 100


def test_failed_phase_contributes_nothing():
    phases = initial_phases()
    phases[1]["status"] = "failed"
    assert compute_progress(phases) == 0


@pytest.mark.asyncio
async def test_new_subscriber_gets_connected_then_snapshot():
    session = GenerationSession("p1", log_replay_limit=3)
    session.update_phase("setup", "completed")
    for i in range(5):
        session.add_log(f"line {i}")

    sub = session.subscribe()
    events = _drain(sub)

    assert [e["type"] for e in events] == ["connected", "state"]
    state = events[1]["state"]
    assert state["progress"] == 5
    assert [log["message"] for log in state["logs"]] == ["line 2", "line 3", "line 4"]
    assert state["phases"][0]["status"] == "completed"


@pytest.mark.asyncio
async def test_events_reach_every_subscriber_in_order():
    session = GenerationSession("p1")
    a = session.subscribe()
    b = session.subscribe()
    _drain(a)
    _drain(b)

    session.update_phase("setup", "in_progress")
    session.add_log("working", "thinking")
    session.update_stats(backend_files=3, total_files=3)

    for sub in (a, b):
        events = _drain(sub)
        assert [e["type"] for e in events] == ["phase", "log", "stats"]
        assert events[0]["progress"] == 2.5
        assert events[1]["log"]["type"] == "thinking"
        assert events[2]["stats"]["backend_files"] == 3


def test_unknown_stat_is_rejected():
    session = GenerationSession("p1")
    with pytest.raises(KeyError):
        session.update_stats(bogus=1)


@pytest.mark.asyncio
async def test_subscription_iteration_stops_at_terminal_event():
    session = GenerationSession("p1")
    sub = session.subscribe()
    session.add_log("hi")
    session.broadcast({"type": "complete", "success": True})
    session.add_log("after the end")

    seen = [e["type"] async for e in sub]

    assert seen == ["connected", "state", "log", "complete"]


@pytest.mark.asyncio
async def test_closed_subscription_stops_receiving():
    session = GenerationSession("p1")
    sub = session.subscribe()
    sub.close()

    session.add_log("nobody listens")

    assert sub not in session.subscribers
    assert len(_drain(sub)) == 2


@pytest.mark.asyncio
async def test_idle_subscription_sends_snapshot_and_ends():
    seen = [e async for e in idle_subscription("p1", "deployed")]

    assert [e["type"] for e in seen] == ["connected", "state"]
    assert seen[1]["state"]["status"] == "deployed"
    assert seen[1]["state"]["progress"] == 0


@pytest.mark.asyncio
async def test_registry_rejects_a_second_live_session():
    registry = SessionRegistry()
    session = registry.create("p1")
    session.status = "generating"

    with pytest.raises(GenerationConflict):
        registry.create("p1")

    session.status = "succeeded"
    replacement = registry.create("p1")
    assert registry.get("p1") is replacement


@pytest.mark.asyncio
async def test_late_removal_keeps_newer_session():
    registry = SessionRegistry()
    old = registry.create("p1")
    old.status = "succeeded"
    new = registry.create("p1")

    registry.remove(old)

    assert registry.get("p1") is new


@pytest.mark.asyncio
async def test_scheduled_removal_ends_streams():
    registry = SessionRegistry()
    session = registry.create("p1")
    sub = session.subscribe()

    registry.schedule_removal(session, 0.01)
    await asyncio.sleep(0.05)

    assert registry.get("p1") is None
    seen = [e["type"] async for e in sub]
    assert seen == ["connected", "state"]
