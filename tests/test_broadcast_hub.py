"""Room bookkeeping for live runs and spectators."""

from __future__ import annotations

import pytest

from kapture.streaming.hub import RunBroadcastHub


class FakeTimer:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def hub(timer):
    return RunBroadcastHub(retention_seconds=60, timer=timer, wall_clock_ms=lambda: 1234)


def _events(deliveries):
    return [(d.target, d.event) for d in deliveries]


def _start(hub, sid="runner", run_id="r1", name="Sam"):
    return hub.handle(sid, "run:start", {"userId": "u1", "runId": run_id, "userName": name})


def test_start_acknowledges_runner(hub):
    deliveries = _start(hub)
    assert _events(deliveries) == [("runner", "run:started")]
    assert deliveries[0].data == {"runId": "r1", "roomName": "run:r1"}
    assert hub.active_run_count() == 1
    assert hub.room_members("r1") == {"runner"}


def test_start_without_run_id_errors(hub):
    deliveries = hub.handle("runner", "run:start", {"userId": "u1"})
    assert _events(deliveries) == [("runner", "error")]
    assert deliveries[0].data == {"message": "runId is required"}


def test_location_broadcast_excludes_sender(hub):
    _start(hub)
    hub.handle("fan1", "spectate:join", {"runId": "r1"})
    hub.handle("fan2", "spectate:join", {"runId": "r1"})
    location = {"latitude": 1.0, "longitude": 2.0, "timestamp": 5}
    deliveries = hub.handle(
        "runner", "run:location", {"runId": "r1", "location": location, "stats": {"distance": 0.1}}
    )
    assert _events(deliveries) == [("fan1", "run:update"), ("fan2", "run:update")]
    assert deliveries[0].data == {
        "runId": "r1",
        "location": location,
        "stats": {"distance": 0.1},
        "timestamp": 1234,
    }
    assert hub.get_run("r1").last_location == location


def test_location_without_location_ignored(hub):
    _start(hub)
    assert hub.handle("runner", "run:location", {"runId": "r1"}) == []


def test_pause_resume_finish_broadcasts(hub):
    _start(hub)
    hub.handle("fan", "spectate:join", {"runId": "r1"})
    assert _events(hub.handle("runner", "run:pause", {"runId": "r1"})) == [
        ("fan", "run:paused")
    ]
    assert hub.get_run("r1").status.value == "paused"
    assert _events(hub.handle("runner", "run:resume", {"runId": "r1"})) == [
        ("fan", "run:resumed")
    ]
    finish = hub.handle("runner", "run:finish", {"runId": "r1", "finalStats": {"distance": 3}})
    assert _events(finish) == [("fan", "run:finished")]
    assert finish[0].data == {"runId": "r1", "finalStats": {"distance": 3}}
    assert hub.active_run_count() == 0
    assert hub.get_run("r1").status.value == "completed"


def test_unknown_run_events_are_ignored(hub):
    assert hub.handle("runner", "run:pause", {"runId": "nope"}) == []
    assert hub.handle("runner", "run:finish", {}) == []
    assert hub.handle("runner", "made:up", {"runId": "r1"}) == []


def test_spectate_join_snapshot(hub):
    _start(hub)
    hub.handle("runner", "run:location", {"runId": "r1", "location": {"latitude": 1}, "stats": {"d": 1}})
    deliveries = hub.handle("fan", "spectate:join", {"runId": "r1"})
    assert _events(deliveries) == [("fan", "spectate:joined")]
    assert deliveries[0].data == {
        "runId": "r1",
        "location": {"latitude": 1},
        "stats": {"d": 1},
        "status": "active",
        "userName": "Sam",
    }
    assert hub.get_run("r1").spectators == ["fan"]


def test_spectate_unknown_run(hub):
    deliveries = hub.handle("fan", "spectate:join", {"runId": "ghost"})
    assert _events(deliveries) == [("fan", "spectate:error")]
    assert deliveries[0].data == {"message": "Run not found"}


def test_spectate_leave(hub):
    _start(hub)
    hub.handle("fan", "spectate:join", {"runId": "r1"})
    assert hub.handle("fan", "spectate:leave", {"runId": "r1"}) == []
    assert hub.get_run("r1").spectators == []
    assert hub.room_members("r1") == {"runner"}


def test_finished_runs_retained_then_expire(hub, timer):
    _start(hub)
    hub.handle("runner", "run:finish", {"runId": "r1", "finalStats": {"distance": 2}})
    timer.now = 59
    joined = hub.handle("late", "spectate:join", {"runId": "r1"})
    assert _events(joined) == [("late", "spectate:joined")]
    assert joined[0].data["stats"] == {"distance": 2}
    assert [r["runId"] for r in hub.list_runs()] == ["r1"]

    timer.now = 61
    assert hub.list_runs() == []
    assert hub.get_run("r1") is None


def test_runs_list(hub):
    _start(hub, run_id="r1", name="Sam")
    _start(hub, sid="other", run_id="r2", name=None)
    deliveries = hub.handle("fan", "runs:list", {})
    assert _events(deliveries) == [("fan", "runs:list")]
    runs = {r["runId"]: r for r in deliveries[0].data}
    assert runs["r1"]["userName"] == "Sam"
    assert runs["r2"]["userName"] == "Anonymous"
    assert runs["r1"]["spectatorCount"] == 0
    assert runs["r1"]["status"] == "active"


def test_runner_disconnect_notifies_room(hub):
    _start(hub)
    hub.handle("fan", "spectate:join", {"runId": "r1"})
    deliveries = hub.disconnect("runner")
    assert _events(deliveries) == [("fan", "run:disconnected")]
    assert hub.get_run("r1").status.value == "disconnected"
    assert hub.room_members("r1") == {"fan"}


def test_paused_run_owner_disconnect_keeps_status(hub):
    _start(hub)
    hub.handle("runner", "run:pause", {"runId": "r1"})
    assert hub.disconnect("runner") == []
    assert hub.get_run("r1").status.value == "paused"


def test_spectator_disconnect_removed_from_rooms(hub):
    _start(hub)
    hub.handle("fan", "spectate:join", {"runId": "r1"})
    assert hub.disconnect("fan") == []
    assert hub.get_run("r1").spectators == []
    assert hub.room_members("r1") == {"runner"}


def test_reconnected_runner_takes_over_run(hub):
    _start(hub)
    hub.handle("fan", "spectate:join", {"runId": "r1"})
    hub.disconnect("runner")
    deliveries = hub.handle(
        "runner2", "run:location", {"runId": "r1", "location": {"latitude": 1}}
    )
    assert _events(deliveries) == [("fan", "run:update")]
    run = hub.get_run("r1")
    assert run.owner_sid == "runner2"
    assert run.status.value == "active"


def test_non_mapping_payload_is_tolerated(hub):
    assert _events(hub.handle("fan", "spectate:join", None)) == [("fan", "spectate:error")]


@pytest.mark.parametrize("bad_id", [["r1"], {"id": "r1"}, 7])
def test_non_string_run_id_is_rejected(hub, bad_id):
    _start(hub)
    start = hub.handle("runner2", "run:start", {"runId": bad_id})
    assert _events(start) == [("runner2", "error")]
    assert _events(hub.handle("fan", "spectate:join", {"runId": bad_id})) == [
        ("fan", "spectate:error")
    ]
    assert hub.handle("runner", "run:location", {"runId": bad_id, "location": {"latitude": 1}}) == []
    assert hub.handle("runner", "run:finish", {"runId": bad_id}) == []
    assert hub.handle("fan", "spectate:leave", {"runId": bad_id}) == []
    assert hub.active_run_count() == 1
