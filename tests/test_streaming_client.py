"""Live channel framing and the best-effort streaming client."""

from __future__ import annotations

import json

import pytest

from conftest import fix
from kapture.models import RunStats
from kapture.streaming import StreamingClient, protocol


# --- framing --------------------------------------------------------------
def test_encode_event_frame():
    frame = protocol.encode_event("run:pause", {"runId": "r1"})
    assert frame == '42["run:pause",{"runId":"r1"}]'


@pytest.mark.parametrize(
    "text,kind",
    [
        ("2", "ping"),
        ("3", "pong"),
        ("40", "connect"),
        ('40{"sid":"abc"}', "connect"),
        ("41", "disconnect"),
        ("1", "close"),
        ("6", "unknown"),
    ],
)
def test_decode_control_frames(text, kind):
    assert protocol.decode_frame(text).kind == kind


def test_decode_open_frame():
    frame = protocol.decode_frame(protocol.encode_open("sid1", 25000, 20000))
    assert frame.kind == "open"
    assert frame.data["sid"] == "sid1"
    assert frame.data["pingInterval"] == 25000


def test_decode_event_frame():
    frame = protocol.decode_frame('42["run:update",{"runId":"r1"}]')
    assert (frame.kind, frame.event, frame.data) == ("event", "run:update", {"runId": "r1"})


def test_decode_event_without_payload():
    frame = protocol.decode_frame('42["runs:list"]')
    assert frame.event == "runs:list"
    assert frame.data is None


@pytest.mark.parametrize("text", ["42{bad", '42{"a":1}', "42[]", "42[1,2]"])
def test_decode_malformed_event_raises(text):
    with pytest.raises(ValueError):
        protocol.decode_frame(text)


# --- client fakes -----------------------------------------------------------
class FakeTransport:
    def __init__(self, opens=True):
        self.opens = opens
        self.sent = []
        self.closed = False
        self.on_message = None
        self.on_close = None
        self.open_calls = 0

    def open(self, on_message, on_close):
        self.open_calls += 1
        self.on_message = on_message
        self.on_close = on_close
        return self.opens

    def send(self, text):
        self.sent.append(text)

    def close(self):
        self.closed = True

    def events(self):
        return [json.loads(t[2:]) for t in self.sent if t.startswith("42")]


class FakeTimer:
    created = []

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.daemon = False
        self.started = False
        self.cancelled = False
        FakeTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True


@pytest.fixture(autouse=True)
def reset_fake_timers():
    FakeTimer.created = []


def _client(transport, **kwargs):
    return StreamingClient(
        "ws://live.test",
        transport_factory=lambda: transport,
        timer_factory=FakeTimer,
        **kwargs,
    )


# --- client -------------------------------------------------------------------
def test_connect_and_emit_run_events():
    transport = FakeTransport()
    client = _client(transport)
    assert client.connect() is True
    assert client.connected

    client.start_run("u1", "r1", None)
    client.send_location(fix(0, 0, 1000), RunStats(distance_km=0.5, duration_sec=120))
    client.pause_run()
    client.resume_run()
    client.finish_run(RunStats(distance_km=1.0))

    events = transport.events()
    assert [name for name, _ in events] == [
        "run:start",
        "run:location",
        "run:pause",
        "run:resume",
        "run:finish",
    ]
    assert events[0][1] == {"userId": "u1", "runId": "r1", "userName": "Anonymous Runner"}
    location_payload = events[1][1]
    assert location_payload["location"]["timestamp"] == 1000
    assert location_payload["stats"]["distance"] == 0.5
    assert "locations" not in location_payload["stats"]
    assert client.current_run_id is None


def test_run_events_need_a_current_run():
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    client.pause_run()
    client.resume_run()
    client.send_location(fix(), RunStats())
    client.finish_run(RunStats())
    assert transport.sent == []


def test_handshake_and_heartbeat_replies():
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    transport.on_message(protocol.encode_open("sid", 25000, 20000))
    transport.on_message("2")
    assert transport.sent == ["40", "3"]


def test_listeners_receive_events():
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    received = []
    client.on("run:update", received.append)
    transport.on_message('42["run:update",{"runId":"r1"}]')
    client.off("run:update", received.append)
    transport.on_message('42["run:update",{"runId":"r2"}]')
    assert received == [{"runId": "r1"}]


def test_malformed_frame_is_logged(caplog):
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    with caplog.at_level("ERROR"):
        transport.on_message("42{broken")
    assert "Error parsing live server frame" in caplog.text


def test_offline_queues_and_flushes_on_reconnect():
    transport = FakeTransport(opens=False)
    client = _client(transport)
    assert client.connect() is False
    client.start_run("u1", "r1", "Sam")
    client.pause_run()
    assert transport.sent == []

    timer = FakeTimer.created[-1]
    assert timer.delay == 1.0
    assert timer.started and timer.daemon
    transport.opens = True
    timer.callback()
    assert client.connected
    assert [name for name, _ in transport.events()] == ["run:start", "run:pause"]
    assert client.reconnect_attempts == 0


def test_offline_queue_is_bounded():
    transport = FakeTransport(opens=False)
    client = _client(transport, queue_size=2)
    client.connect()
    for name in ("a", "b", "c"):
        client.spectate_run(name)
    transport.opens = True
    FakeTimer.created[-1].callback()
    assert [data["runId"] for _, data in transport.events()] == ["b", "c"]


def test_reconnect_backoff_and_limit():
    transport = FakeTransport(opens=False)
    client = _client(transport, max_reconnect_attempts=5)
    client.connect()
    while FakeTimer.created and not FakeTimer.created[-1].cancelled:
        before = len(FakeTimer.created)
        FakeTimer.created[-1].callback()
        if len(FakeTimer.created) == before:
            break
    assert [t.delay for t in FakeTimer.created] == [1.0, 2.0, 4.0, 8.0, 10.0]
    assert client.reconnect_attempts == 5
    assert not client.connected


def test_server_close_triggers_reconnect():
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    transport.on_close("server gone")
    assert not client.connected
    assert len(FakeTimer.created) == 1


def test_disconnect_cancels_reconnect_and_clears_queue():
    transport = FakeTransport(opens=False)
    client = _client(transport)
    client.connect()
    client.start_run("u1", "r1")
    client.disconnect()
    assert FakeTimer.created[-1].cancelled
    assert transport.closed
    assert client.current_run_id is None
    transport.opens = True
    FakeTimer.created[-1].callback()
    assert transport.sent == []


def test_send_failures_are_dropped():
    class BrokenSend(FakeTransport):
        def send(self, text):
            raise ConnectionError("pipe closed")

    client = _client(BrokenSend())
    client.connect()
    client.start_run("u1", "r1")
    assert client.current_run_id == "r1"


def test_spectator_events():
    transport = FakeTransport()
    client = _client(transport)
    client.connect()
    client.spectate_run("r9")
    client.leave_spectate("r9")
    client.list_active_runs()
    assert transport.events() == [
        ["spectate:join", {"runId": "r9"}],
        ["spectate:leave", {"runId": "r9"}],
        ["runs:list", {}],
    ]
