"""In-process run store used for local-only runs and tests."""

from __future__ import annotations

import copy
from typing import Dict, List, Optional

from ..models import LocationBatch, RunSession
from .gateway import DocumentRunStore


class InMemoryRunStore(DocumentRunStore):
    """Keeps sessions and batches in dictionaries; lost when the process exits."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._sessions: Dict[str, RunSession] = {}
        self._batches: Dict[str, Dict[int, LocationBatch]] = {}

    def _load_session(self, session_id: str) -> Optional[RunSession]:
        session = self._sessions.get(session_id)
        return copy.copy(session) if session is not None else None

    def _write_session(self, session: RunSession) -> None:
        self._sessions[session.id] = copy.copy(session)

    def _iter_sessions(self) -> List[RunSession]:
        return [copy.copy(s) for s in self._sessions.values()]

    def _write_batch(self, session_id: str, batch: LocationBatch) -> None:
        self._batches.setdefault(session_id, {})[batch.batch_index] = batch

    def _load_batches(self, session_id: str) -> List[LocationBatch]:
        return list(self._batches.get(session_id, {}).values())


__all__ = ["InMemoryRunStore"]
