"""Run store persisting sessions and location batches as JSON files.

Layout under the base directory::

    <session_id>/session.json
    <session_id>/locations/batch_000000.json

Files are written to a temporary sibling and atomically renamed, so readers
never observe half-written documents and re-saving a batch index simply
replaces it.
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config import RUN_STORE_DIR
from ..errors import PersistenceError
from ..models import LocationBatch, RunSession
from .gateway import DocumentRunStore

_SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class JsonRunStore(DocumentRunStore):
    def __init__(self, base_dir: str | Path | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        base = Path(base_dir if base_dir is not None else RUN_STORE_DIR)
        self._base_dir = base if base.is_absolute() else Path.cwd() / base
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self._log.info("JSON run store initialised dir=%s", self._base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _session_dir(self, session_id: str) -> Optional[Path]:
        if not session_id or not _SAFE_ID.match(session_id):
            return None
        return self._base_dir / session_id

    def _batch_path(self, session_dir: Path, batch_index: int) -> Path:
        return session_dir / "locations" / f"batch_{batch_index:06d}.json"

    def _read_file(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            with path.open("r", encoding="utf-8") as handle:
                return json.load(handle)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            self._log.error("Failed reading run store file %s: %s", path, exc)
            return None

    def _write_file(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = path.with_suffix(".tmp")
            with temp_path.open("w", encoding="utf-8") as handle:
                json.dump(payload, handle, ensure_ascii=True, indent=2)
            temp_path.replace(path)
        except OSError as exc:
            raise PersistenceError(f"Failed writing {path}: {exc}") from exc

    def _load_session(self, session_id: str) -> Optional[RunSession]:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            return None
        payload = self._read_file(session_dir / "session.json")
        if payload is None:
            return None
        try:
            return RunSession.from_dict(payload)
        except (KeyError, TypeError, ValueError) as exc:
            self._log.error("Corrupt session document for %s: %s", session_id, exc)
            return None

    def _write_session(self, session: RunSession) -> None:
        session_dir = self._session_dir(session.id)
        if session_dir is None:
            raise PersistenceError(f"Invalid session id {session.id!r}")
        self._write_file(session_dir / "session.json", session.to_dict())

    def _iter_sessions(self) -> List[RunSession]:
        sessions: List[RunSession] = []
        for child in sorted(self._base_dir.iterdir()):
            if not child.is_dir():
                continue
            session = self._load_session(child.name)
            if session is not None:
                sessions.append(session)
        return sessions

    def _write_batch(self, session_id: str, batch: LocationBatch) -> None:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            raise PersistenceError(f"Invalid session id {session_id!r}")
        self._write_file(self._batch_path(session_dir, batch.batch_index), batch.to_dict())

    def _load_batches(self, session_id: str) -> List[LocationBatch]:
        session_dir = self._session_dir(session_id)
        if session_dir is None:
            return []
        batches: List[LocationBatch] = []
        for path in sorted((session_dir / "locations").glob("batch_*.json")):
            payload = self._read_file(path)
            if payload is None:
                continue
            try:
                batches.append(LocationBatch.from_dict(payload))
            except (KeyError, TypeError, ValueError) as exc:
                self._log.error("Skipping corrupt batch file %s: %s", path, exc)
        return batches


__all__ = ["JsonRunStore"]
