"""Room bookkeeping for the live broadcast server.

The hub is transport agnostic: ``handle`` and ``disconnect`` take a
connection id (``sid``) and return the deliveries the server must write.
Each run has a room holding its runner and spectators. Finished runs move to
a TTL cache so late spectators can still see the final state for a short
while.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from cachetools import TTLCache

from ..config import FINISHED_RUN_CACHE_SIZE, FINISHED_RUN_RETENTION_SECONDS
from ..models import RunStatus
from . import protocol

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Delivery:
    target: str
    event: str
    data: Any


@dataclass(slots=True)
class LiveRun:
    run_id: str
    owner_sid: str
    user_name: str
    start_time_ms: int
    status: RunStatus = RunStatus.ACTIVE
    last_location: Optional[Dict[str, Any]] = None
    last_stats: Optional[Dict[str, Any]] = None
    last_update_ms: Optional[int] = None
    final_stats: Optional[Dict[str, Any]] = None
    spectators: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "userName": self.user_name,
            "status": self.status.value,
            "lastLocation": self.last_location,
            "spectatorCount": len(self.spectators),
        }


def room_name(run_id: str) -> str:
    return f"run:{run_id}"


def _run_id(payload: Mapping[str, Any]) -> Optional[str]:
    """Return the payload's ``runId`` when it is a non-empty string."""

    run_id = payload.get("runId")
    if isinstance(run_id, str) and run_id:
        return run_id
    return None


def _epoch_ms() -> int:
    return int(time.time() * 1000)


class RunBroadcastHub:
    def __init__(
        self,
        *,
        retention_seconds: float = FINISHED_RUN_RETENTION_SECONDS,
        cache_size: int = FINISHED_RUN_CACHE_SIZE,
        timer: Callable[[], float] = time.monotonic,
        wall_clock_ms: Callable[[], int] = _epoch_ms,
    ) -> None:
        self._lock = threading.RLock()
        self._active: Dict[str, LiveRun] = {}
        self._finished: TTLCache[str, LiveRun] = TTLCache(
            maxsize=max(1, cache_size), ttl=retention_seconds, timer=timer
        )
        self._rooms: Dict[str, Set[str]] = {}
        self._now_ms = wall_clock_ms
        self._handlers: Dict[str, Callable[[str, Mapping[str, Any]], List[Delivery]]] = {
            protocol.RUN_START: self._on_run_start,
            protocol.RUN_LOCATION: self._on_run_location,
            protocol.RUN_PAUSE: self._on_run_pause,
            protocol.RUN_RESUME: self._on_run_resume,
            protocol.RUN_FINISH: self._on_run_finish,
            protocol.SPECTATE_JOIN: self._on_spectate_join,
            protocol.SPECTATE_LEAVE: self._on_spectate_leave,
            protocol.RUNS_LIST: self._on_runs_list,
        }

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_run(self, run_id: str) -> Optional[LiveRun]:
        with self._lock:
            run = self._active.get(run_id)
            if run is None:
                run = self._finished.get(run_id)
            return run

    def list_runs(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._finished.expire()
            runs = list(self._active.values()) + list(self._finished.values())
            return [run.summary() for run in runs]

    def active_run_count(self) -> int:
        with self._lock:
            return len(self._active)

    def room_members(self, run_id: str) -> Set[str]:
        with self._lock:
            return set(self._rooms.get(room_name(run_id), ()))

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def handle(self, sid: str, event: str, data: Any) -> List[Delivery]:
        handler = self._handlers.get(event)
        if handler is None:
            LOGGER.debug("Ignoring unknown event %s from %s", event, sid)
            return []
        payload = data if isinstance(data, Mapping) else {}
        with self._lock:
            return handler(sid, payload)

    def disconnect(self, sid: str) -> List[Delivery]:
        """Forget ``sid``; runs it owned and left active become disconnected."""

        deliveries: List[Delivery] = []
        with self._lock:
            for run in list(self._active.values()):
                if run.owner_sid == sid and run.status is RunStatus.ACTIVE:
                    run.status = RunStatus.DISCONNECTED
                    deliveries.extend(
                        self._to_room(
                            run.run_id,
                            protocol.RUN_DISCONNECTED,
                            {"runId": run.run_id},
                            exclude=sid,
                        )
                    )
                    LOGGER.info("[Run] Disconnected: %s", run.run_id)
                if sid in run.spectators:
                    run.spectators = [s for s in run.spectators if s != sid]
            for run in list(self._finished.values()):
                if sid in run.spectators:
                    run.spectators = [s for s in run.spectators if s != sid]
            for members in self._rooms.values():
                members.discard(sid)
            self._rooms = {name: m for name, m in self._rooms.items() if m}
        return deliveries

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _join(self, sid: str, run_id: str) -> None:
        self._rooms.setdefault(room_name(run_id), set()).add(sid)

    def _leave(self, sid: str, run_id: str) -> None:
        members = self._rooms.get(room_name(run_id))
        if members is None:
            return
        members.discard(sid)
        if not members:
            del self._rooms[room_name(run_id)]

    def _to_room(
        self, run_id: str, event: str, data: Any, *, exclude: str | None = None
    ) -> List[Delivery]:
        members = self._rooms.get(room_name(run_id), set())
        return [
            Delivery(target=member, event=event, data=data)
            for member in sorted(members)
            if member != exclude
        ]

    def _owned_run(self, sid: str, payload: Mapping[str, Any]) -> Optional[LiveRun]:
        run_id = _run_id(payload)
        if not run_id:
            return None
        run = self._active.get(run_id)
        if run is None:
            return None
        if run.owner_sid != sid:
            # Runner reconnected under a new connection id.
            LOGGER.info("[Run] %s now owned by %s", run_id, sid)
            run.owner_sid = sid
            self._join(sid, run_id)
        if run.status is RunStatus.DISCONNECTED:
            run.status = RunStatus.ACTIVE
        return run

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------
    def _on_run_start(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run_id = _run_id(payload)
        if not run_id:
            return [Delivery(sid, protocol.ERROR, {"message": "runId is required"})]
        user_name = payload.get("userName") or "Anonymous"
        self._finished.pop(run_id, None)
        self._join(sid, run_id)
        previous = self._active.get(run_id)
        self._active[run_id] = LiveRun(
            run_id=run_id,
            owner_sid=sid,
            user_name=user_name,
            start_time_ms=self._now_ms(),
            spectators=previous.spectators if previous else [],
        )
        LOGGER.info("[Run] Started: %s by %s", run_id, user_name)
        return [
            Delivery(
                sid, protocol.RUN_STARTED, {"runId": run_id, "roomName": room_name(run_id)}
            )
        ]

    def _on_run_location(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        location = payload.get("location")
        if not location:
            return []
        run = self._owned_run(sid, payload)
        if run is None:
            return []
        now = self._now_ms()
        run.last_location = location
        run.last_stats = payload.get("stats")
        run.last_update_ms = now
        return self._to_room(
            run.run_id,
            protocol.RUN_UPDATE,
            {
                "runId": run.run_id,
                "location": location,
                "stats": run.last_stats,
                "timestamp": now,
            },
            exclude=sid,
        )

    def _on_run_pause(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run = self._owned_run(sid, payload)
        if run is None:
            return []
        run.status = RunStatus.PAUSED
        LOGGER.info("[Run] Paused: %s", run.run_id)
        return self._to_room(
            run.run_id, protocol.RUN_PAUSED, {"runId": run.run_id}, exclude=sid
        )

    def _on_run_resume(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run = self._owned_run(sid, payload)
        if run is None:
            return []
        run.status = RunStatus.ACTIVE
        LOGGER.info("[Run] Resumed: %s", run.run_id)
        return self._to_room(
            run.run_id, protocol.RUN_RESUMED, {"runId": run.run_id}, exclude=sid
        )

    def _on_run_finish(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run = self._owned_run(sid, payload)
        if run is None:
            return []
        run.status = RunStatus.COMPLETED
        run.final_stats = payload.get("finalStats")
        del self._active[run.run_id]
        self._finished[run.run_id] = run
        LOGGER.info("[Run] Finished: %s", run.run_id)
        return self._to_room(
            run.run_id,
            protocol.RUN_FINISHED,
            {"runId": run.run_id, "finalStats": run.final_stats},
            exclude=sid,
        )

    def _on_spectate_join(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run_id = _run_id(payload)
        run = self.get_run(run_id) if run_id else None
        if run is None:
            return [Delivery(sid, protocol.SPECTATE_ERROR, {"message": "Run not found"})]
        self._join(sid, run.run_id)
        if sid not in run.spectators:
            run.spectators.append(sid)
        LOGGER.info("[Spectate] %s joined run %s", sid, run.run_id)
        return [
            Delivery(
                sid,
                protocol.SPECTATE_JOINED,
                {
                    "runId": run.run_id,
                    "location": run.last_location,
                    "stats": run.final_stats or run.last_stats,
                    "status": run.status.value,
                    "userName": run.user_name,
                },
            )
        ]

    def _on_spectate_leave(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        run_id = _run_id(payload)
        if not run_id:
            return []
        self._leave(sid, run_id)
        run = self.get_run(run_id)
        if run is not None:
            run.spectators = [s for s in run.spectators if s != sid]
        return []

    def _on_runs_list(self, sid: str, payload: Mapping[str, Any]) -> List[Delivery]:
        return [Delivery(sid, protocol.RUNS_LIST, self.list_runs())]


__all__ = ["Delivery", "LiveRun", "RunBroadcastHub", "room_name"]
