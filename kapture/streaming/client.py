"""Live run broadcasting to spectators.

The client is strictly best-effort: every public method is fire-and-forget
and never raises. When the server cannot be reached the client runs in
local-only mode, queueing a bounded number of frames and retrying the
connection with exponential backoff.
"""

from __future__ import annotations

from collections import deque
import logging
import threading
from typing import Any, Callable, Deque, Dict, Optional, Set, Tuple

from ..config import (
    DEFAULT_RUNNER_NAME,
    SOCKET_MAX_RECONNECT_ATTEMPTS,
    SOCKET_PATH,
    SOCKET_QUEUE_MAX_MESSAGES,
    SOCKET_RECONNECT_BASE_SECONDS,
    SOCKET_RECONNECT_MAX_SECONDS,
    SOCKET_URL,
)
from ..models import LocationPoint, RunStats
from . import protocol
from .transport import WebSocketTransport

Listener = Callable[[Any], None]
TransportFactory = Callable[[], Any]


class StreamingClient:
    def __init__(
        self,
        url: str = SOCKET_URL,
        *,
        transport_factory: TransportFactory | None = None,
        timer_factory: Callable[..., Any] = threading.Timer,
        max_reconnect_attempts: int = SOCKET_MAX_RECONNECT_ATTEMPTS,
        queue_size: int = SOCKET_QUEUE_MAX_MESSAGES,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self.url = url
        if transport_factory is None:
            full_url = url.rstrip("/") + SOCKET_PATH

            def transport_factory() -> Any:
                return WebSocketTransport(full_url)

        self._transport = transport_factory()
        self._timer_factory = timer_factory
        self._max_reconnect_attempts = max_reconnect_attempts
        self._queue: Deque[Tuple[str, Any]] = deque(maxlen=max(1, queue_size))
        self._listeners: Dict[str, Set[Listener]] = {}
        self._lock = threading.RLock()
        self._connected = False
        self._closing = False
        self._reconnect_attempts = 0
        self._reconnect_timer: Any = None
        self._current_run_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------
    @property
    def connected(self) -> bool:
        with self._lock:
            return self._connected

    @property
    def current_run_id(self) -> Optional[str]:
        with self._lock:
            return self._current_run_id

    @property
    def reconnect_attempts(self) -> int:
        with self._lock:
            return self._reconnect_attempts

    def connect(self) -> bool:
        """Open the live channel; False means operate local-only."""

        with self._lock:
            if self._connected:
                return True
            self._closing = False
        if self._open():
            return True
        self._log.info("Live streaming unavailable; continuing local-only")
        self._schedule_reconnect()
        return False

    def _open(self) -> bool:
        try:
            opened = bool(self._transport.open(self._handle_message, self._handle_close))
        except Exception as exc:
            self._log.debug("Transport open raised: %s", exc)
            opened = False
        if not opened:
            return False
        with self._lock:
            self._connected = True
            self._reconnect_attempts = 0
            self._flush_queue_locked()
        return True

    def _handle_close(self, reason: str) -> None:
        with self._lock:
            was_connected = self._connected
            self._connected = False
            if self._closing:
                return
        if was_connected:
            self._log.info("Disconnected from live server: %s", reason)
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        with self._lock:
            if self._closing or self._reconnect_timer is not None:
                return
            if self._reconnect_attempts >= self._max_reconnect_attempts:
                self._log.info("Max reconnection attempts reached")
                return
            delay = min(
                SOCKET_RECONNECT_BASE_SECONDS * (2 ** self._reconnect_attempts),
                SOCKET_RECONNECT_MAX_SECONDS,
            )
            self._reconnect_attempts += 1
            timer = self._timer_factory(delay, self._reconnect)
            timer.daemon = True
            self._reconnect_timer = timer
        self._log.debug(
            "Reconnect attempt %d scheduled in %.1fs", self._reconnect_attempts, delay
        )
        timer.start()

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_timer = None
            if self._closing or self._connected:
                return
        if not self._open():
            self._schedule_reconnect()

    def disconnect(self) -> None:
        with self._lock:
            self._closing = True
            timer, self._reconnect_timer = self._reconnect_timer, None
            self._connected = False
            self._current_run_id = None
            self._queue.clear()
        if timer is not None:
            timer.cancel()
        try:
            self._transport.close()
        except Exception:
            self._log.debug("Transport close raised", exc_info=True)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------
    def _send_frame_locked(self, frame: str) -> None:
        try:
            self._transport.send(frame)
        except Exception as exc:
            # Live samples are superseded by the next one; no retry.
            self._log.debug("Dropping frame after send failure: %s", exc)

    def _emit(self, event: str, data: Any) -> None:
        with self._lock:
            if self._connected:
                self._send_frame_locked(protocol.encode_event(event, data))
            else:
                self._queue.append((event, data))

    def _flush_queue_locked(self) -> None:
        while self._queue:
            event, data = self._queue.popleft()
            self._send_frame_locked(protocol.encode_event(event, data))

    def _handle_message(self, text: str) -> None:
        try:
            frame = protocol.decode_frame(text)
        except ValueError as exc:
            self._log.error("Error parsing live server frame: %s", exc)
            return
        if frame.kind == "open":
            with self._lock:
                self._send_frame_locked(protocol.CONNECT)
        elif frame.kind == "ping":
            with self._lock:
                self._send_frame_locked(protocol.PONG)
        elif frame.kind == "event" and frame.event:
            self._notify_listeners(frame.event, frame.data)

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def on(self, event: str, callback: Listener) -> None:
        with self._lock:
            self._listeners.setdefault(event, set()).add(callback)

    def off(self, event: str, callback: Listener) -> None:
        with self._lock:
            listeners = self._listeners.get(event)
            if listeners:
                listeners.discard(callback)

    def _notify_listeners(self, event: str, data: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for callback in listeners:
            try:
                callback(data)
            except Exception:
                self._log.error("Listener for %s failed", event, exc_info=True)

    # ------------------------------------------------------------------
    # Runner events
    # ------------------------------------------------------------------
    def start_run(
        self, user_id: str, run_id: str, user_name: str | None = None
    ) -> None:
        with self._lock:
            self._current_run_id = run_id
        self._emit(
            protocol.RUN_START,
            {
                "userId": user_id,
                "runId": run_id,
                "userName": user_name or DEFAULT_RUNNER_NAME,
            },
        )

    def send_location(self, location: LocationPoint, stats: RunStats) -> None:
        run_id = self.current_run_id
        if not run_id:
            return
        # Spectators rebuild the route from the update stream.
        self._emit(
            protocol.RUN_LOCATION,
            {
                "runId": run_id,
                "location": location.to_dict(),
                "stats": stats.to_dict(include_locations=False),
            },
        )

    def pause_run(self) -> None:
        run_id = self.current_run_id
        if run_id:
            self._emit(protocol.RUN_PAUSE, {"runId": run_id})

    def resume_run(self) -> None:
        run_id = self.current_run_id
        if run_id:
            self._emit(protocol.RUN_RESUME, {"runId": run_id})

    def finish_run(self, final_stats: RunStats) -> None:
        with self._lock:
            run_id, self._current_run_id = self._current_run_id, None
        if not run_id:
            return
        self._emit(
            protocol.RUN_FINISH,
            {"runId": run_id, "finalStats": final_stats.to_dict(include_locations=False)},
        )

    # ------------------------------------------------------------------
    # Spectator events
    # ------------------------------------------------------------------
    def spectate_run(self, run_id: str) -> None:
        self._emit(protocol.SPECTATE_JOIN, {"runId": run_id})

    def leave_spectate(self, run_id: str) -> None:
        self._emit(protocol.SPECTATE_LEAVE, {"runId": run_id})

    def list_active_runs(self) -> None:
        self._emit(protocol.RUNS_LIST, {})


__all__ = ["StreamingClient"]
