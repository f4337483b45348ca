"""FastAPI broadcast server.

Serves three things from one process:

* ``GET /health`` for liveness probes.
* ``/socket.io/`` websocket speaking the live run framing; rooms and run
  state live in :class:`~kapture.streaming.hub.RunBroadcastHub`.
* ``/runs`` REST API used by :class:`~kapture.persistence.HttpRunStore`,
  backed by a :class:`~kapture.persistence.JsonRunStore` by default.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Dict, Iterable, List, Optional
import uuid

from fastapi import (
    FastAPI,
    Query,
    Request,
    Response,
    WebSocket,
    WebSocketDisconnect,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .config import (
    CORS_ORIGIN,
    RUN_HISTORY_LIMIT,
    SOCKET_PING_INTERVAL_MS,
    SOCKET_PING_TIMEOUT_MS,
)
from .errors import PersistenceError, RunNotFoundError
from .models import LocationPoint, RunStats, RunStatus
from .persistence import JsonRunStore, RunPersistenceGateway
from .streaming import protocol
from .streaming.hub import Delivery, RunBroadcastHub

LOGGER = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StartRunBody(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1)


class LocationBody(_CamelModel):
    latitude: float
    longitude: float
    timestamp: int
    accuracy: Optional[float] = None

    def to_point(self) -> LocationPoint:
        return LocationPoint(
            latitude=self.latitude,
            longitude=self.longitude,
            timestamp_ms=self.timestamp,
            accuracy_m=self.accuracy,
        )


class LocationBatchBody(_CamelModel):
    points: List[LocationBody]


class StatusBody(_CamelModel):
    status: RunStatus
    paused_duration: Optional[int] = Field(default=None, alias="pausedDuration", ge=0)


class FinalStatsBody(_CamelModel):
    distance: float = Field(ge=0)
    duration: int = Field(ge=0)
    average_pace: float = Field(default=0.0, alias="averagePace", ge=0)
    captured_area: float = Field(default=0.0, alias="capturedArea", ge=0)

    def to_stats(self) -> RunStats:
        return RunStats(
            distance_km=self.distance,
            duration_sec=self.duration,
            average_pace_sec_per_km=self.average_pace,
            captured_area_m2=self.captured_area,
        )


class FinishBody(_CamelModel):
    stats: FinalStatsBody
    paused_duration: int = Field(default=0, alias="pausedDuration", ge=0)


# ---------------------------------------------------------------------------
# Websocket connections
# ---------------------------------------------------------------------------
class ConnectionManager:
    """Live websocket connections keyed by connection id."""

    def __init__(self) -> None:
        self.active_connections: Dict[str, WebSocket] = {}

    def add(self, sid: str, websocket: WebSocket) -> None:
        self.active_connections[sid] = websocket
        LOGGER.info("[Socket] Client connected: %s", sid)

    def remove(self, sid: str) -> None:
        if self.active_connections.pop(sid, None) is not None:
            LOGGER.info("[Socket] Client disconnected: %s", sid)

    async def deliver(self, deliveries: Iterable[Delivery]) -> None:
        for delivery in deliveries:
            websocket = self.active_connections.get(delivery.target)
            if websocket is None:
                continue
            try:
                await websocket.send_text(
                    protocol.encode_event(delivery.event, delivery.data)
                )
            except Exception as exc:
                # Receiver is gone; its own handler cleans up.
                LOGGER.debug("Delivery to %s failed: %s", delivery.target, exc)


async def _heartbeat(websocket: WebSocket, interval_seconds: float) -> None:
    try:
        while True:
            await asyncio.sleep(interval_seconds)
            await websocket.send_text(protocol.PING)
    except Exception as exc:
        # Socket closed; the receive loop handles the disconnect.
        LOGGER.debug("Heartbeat stopped: %s", exc)


def _origins(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()] or ["*"]


def create_app(
    store: RunPersistenceGateway | None = None,
    hub: RunBroadcastHub | None = None,
    *,
    cors_origin: str = CORS_ORIGIN,
    ping_interval_ms: int = SOCKET_PING_INTERVAL_MS,
    ping_timeout_ms: int = SOCKET_PING_TIMEOUT_MS,
) -> FastAPI:
    """Build the server application.

    ``store`` defaults to a :class:`JsonRunStore` in the configured
    directory and ``hub`` to a fresh :class:`RunBroadcastHub`.
    """

    run_store = store if store is not None else JsonRunStore()
    run_hub = hub if hub is not None else RunBroadcastHub()
    connections = ConnectionManager()

    app = FastAPI(title="Kapture", description="Live run tracking server")
    app.state.store = run_store
    app.state.hub = run_hub
    app.state.connections = connections
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_origins(cors_origin),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RunNotFoundError)
    async def _not_found(request: Request, exc: RunNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(PersistenceError)
    async def _bad_request(request: Request, exc: PersistenceError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.get("/health")
    def health() -> dict:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "activeRuns": run_hub.active_run_count(),
        }

    # -- live channel ----------------------------------------------------
    @app.websocket("/socket.io/")
    async def live_socket(websocket: WebSocket) -> None:
        sid = uuid.uuid4().hex
        await websocket.accept()
        connections.add(sid, websocket)
        await websocket.send_text(
            protocol.encode_open(sid, ping_interval_ms, ping_timeout_ms)
        )
        heartbeat = asyncio.create_task(
            _heartbeat(websocket, ping_interval_ms / 1000.0)
        )
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    frame = protocol.decode_frame(text)
                except ValueError as exc:
                    LOGGER.warning("[Socket] Bad frame from %s: %s", sid, exc)
                    continue
                if frame.kind == "connect":
                    await websocket.send_text(protocol.encode_connect(sid))
                elif frame.kind == "ping":
                    await websocket.send_text(protocol.PONG)
                elif frame.kind == "event" and frame.event:
                    await connections.deliver(
                        run_hub.handle(sid, frame.event, frame.data)
                    )
                elif frame.kind in ("disconnect", "close"):
                    await websocket.close()
                    break
        except WebSocketDisconnect:
            pass
        finally:
            heartbeat.cancel()
            connections.remove(sid)
            await connections.deliver(run_hub.disconnect(sid))

    # -- run store -------------------------------------------------------
    @app.post("/runs", status_code=status.HTTP_201_CREATED)
    def start_run(body: StartRunBody) -> dict:
        return {"id": run_store.start_session(body.user_id)}

    @app.get("/runs")
    def run_history(
        user_id: str = Query(alias="userId"), limit: int = RUN_HISTORY_LIMIT
    ) -> list:
        return [s.to_dict() for s in run_store.get_user_run_history(user_id, limit)]

    @app.get("/runs/{run_id}")
    def get_run(run_id: str) -> dict:
        session, route = run_store.get_run_with_route(run_id)
        if session is None:
            raise RunNotFoundError(f"Run session {run_id} not found")
        return {"run": session.to_dict(), "route": [p.to_dict() for p in route]}

    @app.put(
        "/runs/{run_id}/locations/{batch_index}",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    def save_batch(run_id: str, batch_index: int, body: LocationBatchBody) -> Response:
        if batch_index < 0:
            raise PersistenceError("Batch index must be non-negative")
        run_store.save_location_batch(
            run_id, [p.to_point() for p in body.points], batch_index
        )
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.patch("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
    def update_status(run_id: str, body: StatusBody) -> Response:
        run_store.update_status(run_id, body.status, body.paused_duration)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.post("/runs/{run_id}/finish", status_code=status.HTTP_204_NO_CONTENT)
    def finish_run(run_id: str, body: FinishBody) -> Response:
        run_store.finish_session(run_id, body.stats.to_stats(), body.paused_duration)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete("/runs/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_run(run_id: str) -> Response:
        run_store.delete_run_session(run_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return app


__all__ = ["ConnectionManager", "create_app"]
