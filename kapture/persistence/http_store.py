"""Run store client for the Kapture server's ``/runs`` REST API."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

import requests
from requests import Session

from ..config import REQUEST_TIMEOUT, RUN_API_BASE_URL, RUN_HISTORY_LIMIT
from ..errors import PersistenceError, RunNotFoundError
from ..models import LocationPoint, RunSession, RunStats, RunStatus
from .gateway import RunPersistenceGateway, RunWithRoute
from .session import create_default_session

LOGGER = logging.getLogger(__name__)


class HttpRunStore(RunPersistenceGateway):
    """Gateway speaking JSON over HTTP.

    Transport failures and non-2xx responses raise :class:`PersistenceError`
    (404 raises :class:`RunNotFoundError`) so the engine can log and retry.
    """

    def __init__(
        self,
        base_url: str = RUN_API_BASE_URL,
        *,
        session: Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._session = session or create_default_session()
        self._timeout = timeout

    def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(
                method, url, json=json, params=params, timeout=self._timeout
            )
        except requests.exceptions.RequestException as exc:
            raise PersistenceError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code == 404:
            raise RunNotFoundError(f"{method} {path}: not found")
        try:
            resp.raise_for_status()
        except requests.exceptions.HTTPError as exc:
            LOGGER.debug("Run store error body for %s %s: %s", method, path, resp.text)
            raise PersistenceError(
                f"{method} {path} returned HTTP {resp.status_code}"
            ) from exc
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as exc:
            raise PersistenceError(f"{method} {path} returned invalid JSON") from exc

    def start_session(self, user_id: str) -> str:
        if not user_id:
            raise PersistenceError("User ID is required to start a run session")
        data = self._request("POST", "/runs", json={"userId": user_id})
        if not isinstance(data, dict) or not data.get("id"):
            raise PersistenceError("Run store did not return a session id")
        session_id = str(data["id"])
        LOGGER.info("Run session started: %s", session_id)
        return session_id

    def save_location_batch(
        self, session_id: str, points: Sequence[LocationPoint], batch_index: int
    ) -> None:
        if not session_id or not points:
            return
        self._request(
            "PUT",
            f"/runs/{session_id}/locations/{batch_index}",
            json={"points": [p.to_dict() for p in points]},
        )

    def update_status(
        self,
        session_id: str,
        status: RunStatus,
        paused_duration_ms: int | None = None,
    ) -> None:
        body: dict[str, Any] = {"status": RunStatus(status).value}
        if paused_duration_ms is not None:
            body["pausedDuration"] = int(paused_duration_ms)
        self._request("PATCH", f"/runs/{session_id}", json=body)

    def finish_session(
        self, session_id: str, final_stats: RunStats, paused_duration_ms: int = 0
    ) -> None:
        self._request(
            "POST",
            f"/runs/{session_id}/finish",
            json={
                "stats": final_stats.to_dict(include_locations=False),
                "pausedDuration": int(paused_duration_ms),
            },
        )

    def get_user_run_history(
        self, user_id: str, limit: int = RUN_HISTORY_LIMIT
    ) -> List[RunSession]:
        if not user_id:
            return []
        data = self._request("GET", "/runs", params={"userId": user_id, "limit": limit})
        if not isinstance(data, list):
            raise PersistenceError("Run history response was not a list")
        return [RunSession.from_dict(item) for item in data]

    def get_run_with_route(self, run_id: str) -> RunWithRoute:
        if not run_id:
            return None, []
        try:
            data = self._request("GET", f"/runs/{run_id}")
        except RunNotFoundError:
            return None, []
        if not isinstance(data, dict) or "run" not in data:
            raise PersistenceError("Run response missing 'run'")
        route = [LocationPoint.from_dict(p) for p in data.get("route") or []]
        return RunSession.from_dict(data["run"]), route

    def delete_run_session(self, session_id: str) -> None:
        self._request("DELETE", f"/runs/{session_id}")


__all__ = ["HttpRunStore"]
