"""Live run streaming: wire framing, runner/spectator client and the hub."""

from .client import StreamingClient
from .hub import Delivery, LiveRun, RunBroadcastHub
from .protocol import Frame, decode_frame, encode_event

__all__ = [
    "Delivery",
    "Frame",
    "LiveRun",
    "RunBroadcastHub",
    "StreamingClient",
    "decode_frame",
    "encode_event",
]
