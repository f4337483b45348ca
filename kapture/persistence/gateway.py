"""Run persistence gateway interface and shared document-store logic.

The engine only needs the write side (start, batches, status, finish). The
read side (history, route reload, delete) serves the server's REST API and
offline tools.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
import threading
import uuid
from typing import Callable, List, Optional, Sequence, Tuple

from ..config import RUN_HISTORY_LIMIT
from ..errors import PersistenceError, RunNotFoundError
from ..models import LocationBatch, LocationPoint, RunSession, RunStats, RunStatus

RunWithRoute = Tuple[Optional[RunSession], List[LocationPoint]]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RunPersistenceGateway:
    """Durable storage for run sessions and their location batches.

    Write calls may raise :class:`PersistenceError`; the tracking engine
    treats every failure as non-fatal. ``save_location_batch`` is idempotent
    per ``(session_id, batch_index)``.
    """

    def start_session(self, user_id: str) -> str:
        raise NotImplementedError

    def save_location_batch(
        self, session_id: str, points: Sequence[LocationPoint], batch_index: int
    ) -> None:
        raise NotImplementedError

    def update_status(
        self,
        session_id: str,
        status: RunStatus,
        paused_duration_ms: int | None = None,
    ) -> None:
        raise NotImplementedError

    def finish_session(
        self, session_id: str, final_stats: RunStats, paused_duration_ms: int = 0
    ) -> None:
        raise NotImplementedError

    def get_user_run_history(
        self, user_id: str, limit: int = RUN_HISTORY_LIMIT
    ) -> List[RunSession]:
        raise NotImplementedError

    def get_run_with_route(self, run_id: str) -> RunWithRoute:
        raise NotImplementedError

    def delete_run_session(self, session_id: str) -> None:
        raise NotImplementedError


class DocumentRunStore(RunPersistenceGateway):
    """Gateway logic over simple session/batch document primitives.

    Subclasses provide storage via the ``_load_session`` / ``_write_session``
    / ``_iter_sessions`` / ``_write_batch`` / ``_load_batches`` hooks.
    """

    def __init__(
        self,
        *,
        id_factory: Callable[[], str] | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self._log = logging.getLogger(self.__class__.__name__)
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._now = now or _utc_now
        self._lock = threading.RLock()

    # Storage hooks -----------------------------------------------------
    def _load_session(self, session_id: str) -> Optional[RunSession]:
        raise NotImplementedError

    def _write_session(self, session: RunSession) -> None:
        raise NotImplementedError

    def _iter_sessions(self) -> List[RunSession]:
        raise NotImplementedError

    def _write_batch(self, session_id: str, batch: LocationBatch) -> None:
        raise NotImplementedError

    def _load_batches(self, session_id: str) -> List[LocationBatch]:
        raise NotImplementedError

    # Gateway -----------------------------------------------------------
    def _require_session(self, session_id: str) -> RunSession:
        if not session_id:
            raise RunNotFoundError("Session ID is required")
        session = self._load_session(session_id)
        if session is None:
            raise RunNotFoundError(f"Run session {session_id} not found")
        return session

    def start_session(self, user_id: str) -> str:
        if not user_id:
            raise PersistenceError("User ID is required to start a run session")
        now = self._now()
        session = RunSession(
            id=self._id_factory(),
            user_id=user_id,
            status=RunStatus.ACTIVE,
            start_time=now,
            updated_at=now,
        )
        with self._lock:
            self._write_session(session)
        self._log.info("Run session started: %s user=%s", session.id, user_id)
        return session.id

    def save_location_batch(
        self, session_id: str, points: Sequence[LocationPoint], batch_index: int
    ) -> None:
        if not points:
            return
        batch = LocationBatch(
            points=list(points), batch_index=batch_index, saved_at=self._now()
        )
        with self._lock:
            self._require_session(session_id)
            self._write_batch(session_id, batch)
        self._log.debug(
            "Location batch %d saved with %d points (session=%s)",
            batch_index,
            len(points),
            session_id,
        )

    def update_status(
        self,
        session_id: str,
        status: RunStatus,
        paused_duration_ms: int | None = None,
    ) -> None:
        with self._lock:
            session = self._require_session(session_id)
            session.status = RunStatus(status)
            if paused_duration_ms is not None:
                session.paused_duration_ms = int(paused_duration_ms)
            session.updated_at = self._now()
            self._write_session(session)
        self._log.info("Run status updated: %s -> %s", session_id, session.status.value)

    def finish_session(
        self, session_id: str, final_stats: RunStats, paused_duration_ms: int = 0
    ) -> None:
        with self._lock:
            session = self._require_session(session_id)
            now = self._now()
            session.apply_final_stats(final_stats, paused_duration_ms)
            session.status = RunStatus.COMPLETED
            session.end_time = now
            session.updated_at = now
            self._write_session(session)
        self._log.info("Run session completed: %s", session_id)

    def get_user_run_history(
        self, user_id: str, limit: int = RUN_HISTORY_LIMIT
    ) -> List[RunSession]:
        if not user_id or limit <= 0:
            return []
        with self._lock:
            sessions = [
                s
                for s in self._iter_sessions()
                if s.user_id == user_id and s.status is RunStatus.COMPLETED
            ]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions[:limit]

    def get_run_with_route(self, run_id: str) -> RunWithRoute:
        if not run_id:
            return None, []
        with self._lock:
            session = self._load_session(run_id)
            if session is None:
                return None, []
            batches = self._load_batches(run_id)
        route: List[LocationPoint] = []
        for batch in sorted(batches, key=lambda b: b.batch_index):
            route.extend(batch.points)
        # A re-queued batch lands under a later index than points flushed
        # while it was failing.
        route.sort(key=lambda p: p.timestamp_ms)
        return session, route

    def delete_run_session(self, session_id: str) -> None:
        # Soft delete: batches stay until an external cleanup removes them.
        self.update_status(session_id, RunStatus.DELETED)
        self._log.info("Run session marked for deletion: %s", session_id)


__all__ = ["DocumentRunStore", "RunPersistenceGateway", "RunWithRoute"]
