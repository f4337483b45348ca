"""Text framing for the live run channel.

Frames follow the Engine.IO v4 / Socket.IO packet prefixes so a stock
Socket.IO peer can relay them:

* ``0{...}`` open (server handshake), ``2`` ping, ``3`` pong
* ``40`` namespace connect, ``41`` namespace disconnect
* ``42["event", data]`` application event
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, Optional

from ..utils import json_dumps_compact

OPEN = "0"
CLOSE = "1"
PING = "2"
PONG = "3"
CONNECT = "40"
DISCONNECT = "41"
EVENT_PREFIX = "42"

# Runner -> server
RUN_START = "run:start"
RUN_LOCATION = "run:location"
RUN_PAUSE = "run:pause"
RUN_RESUME = "run:resume"
RUN_FINISH = "run:finish"
# Spectator -> server
SPECTATE_JOIN = "spectate:join"
SPECTATE_LEAVE = "spectate:leave"
RUNS_LIST = "runs:list"
# Server -> clients
RUN_STARTED = "run:started"
RUN_UPDATE = "run:update"
RUN_PAUSED = "run:paused"
RUN_RESUMED = "run:resumed"
RUN_FINISHED = "run:finished"
RUN_DISCONNECTED = "run:disconnected"
SPECTATE_JOINED = "spectate:joined"
SPECTATE_ERROR = "spectate:error"
ERROR = "error"


@dataclass(frozen=True, slots=True)
class Frame:
    kind: str
    event: Optional[str] = None
    data: Any = None


def encode_event(event: str, data: Any) -> str:
    return EVENT_PREFIX + json_dumps_compact([event, data])


def encode_open(sid: str, ping_interval_ms: int, ping_timeout_ms: int) -> str:
    return OPEN + json_dumps_compact(
        {
            "sid": sid,
            "upgrades": [],
            "pingInterval": ping_interval_ms,
            "pingTimeout": ping_timeout_ms,
        }
    )


def encode_connect(sid: str) -> str:
    return CONNECT + json_dumps_compact({"sid": sid})


def decode_frame(text: str) -> Frame:
    """Parse one text frame.

    Raises:
        ValueError: If an event frame carries malformed JSON or is not a
            ``[name, payload]`` array.
    """

    if text.startswith(EVENT_PREFIX):
        parsed = json.loads(text[len(EVENT_PREFIX):])
        if not isinstance(parsed, list) or not parsed or not isinstance(parsed[0], str):
            raise ValueError("Event frame must be a [name, payload] array")
        data = parsed[1] if len(parsed) > 1 else None
        return Frame("event", parsed[0], data)
    if text.startswith(CONNECT):
        return Frame("connect")
    if text.startswith(DISCONNECT):
        return Frame("disconnect")
    if text == PING:
        return Frame("ping")
    if text == PONG:
        return Frame("pong")
    if text.startswith(OPEN):
        payload = text[len(OPEN):]
        return Frame("open", data=json.loads(payload) if payload else None)
    if text == CLOSE:
        return Frame("close")
    return Frame("unknown", data=text)


__all__ = ["Frame", "decode_frame", "encode_connect", "encode_event", "encode_open"]
