"""Dataclasses describing fixes, run statistics and persisted sessions.

Python attributes use snake_case with explicit units; ``to_dict`` /
``from_dict`` produce the camelCase payloads exchanged with the broadcast
server and the run store.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

LatLon = Tuple[float, float]


class RunStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"
    DELETED = "deleted"


@dataclass(frozen=True, slots=True)
class LocationPoint:
    """A single GPS fix as delivered by the device location provider."""

    latitude: float
    longitude: float
    timestamp_ms: int
    accuracy_m: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp_ms,
        }
        if self.accuracy_m is not None:
            payload["accuracy"] = self.accuracy_m
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocationPoint":
        accuracy = data.get("accuracy")
        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            timestamp_ms=int(data["timestamp"]),
            accuracy_m=float(accuracy) if accuracy is not None else None,
        )


@dataclass(frozen=True, slots=True)
class CapturedPolygon:
    """Territory outline captured during a run (bounding-box ring)."""

    coordinates: Tuple[LatLon, ...]
    area_m2: float
    is_loop: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coordinates": [
                {"latitude": lat, "longitude": lon} for lat, lon in self.coordinates
            ],
            "area": self.area_m2,
            "isLoop": self.is_loop,
        }


@dataclass(frozen=True, slots=True)
class RunStats:
    """Snapshot of a run's metrics, recomputed on demand."""

    distance_km: float = 0.0
    duration_sec: int = 0
    average_pace_sec_per_km: float = 0.0
    captured_area_m2: float = 0.0
    raw_locations: Tuple[LocationPoint, ...] = ()
    captured_polygon: Optional[CapturedPolygon] = None

    def to_dict(self, *, include_locations: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "distance": self.distance_km,
            "duration": self.duration_sec,
            "averagePace": self.average_pace_sec_per_km,
            "capturedArea": self.captured_area_m2,
        }
        if include_locations:
            payload["locations"] = [p.to_dict() for p in self.raw_locations]
        if self.captured_polygon is not None:
            payload["capturedPolygon"] = self.captured_polygon.to_dict()
        return payload


@dataclass(slots=True)
class RunSession:
    """Durable record of one run, owned by the persistence layer."""

    id: str
    user_id: str
    status: RunStatus
    start_time: datetime
    end_time: Optional[datetime] = None
    total_distance_km: float = 0.0
    total_duration_sec: int = 0
    average_pace_sec_per_km: float = 0.0
    captured_area_m2: float = 0.0
    paused_duration_ms: int = 0
    updated_at: Optional[datetime] = None

    def apply_final_stats(self, stats: RunStats, paused_duration_ms: int) -> None:
        self.total_distance_km = stats.distance_km
        self.total_duration_sec = stats.duration_sec
        self.average_pace_sec_per_km = stats.average_pace_sec_per_km
        self.captured_area_m2 = stats.captured_area_m2
        self.paused_duration_ms = paused_duration_ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "status": self.status.value,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "totalDistance": self.total_distance_km,
            "totalDuration": self.total_duration_sec,
            "averagePace": self.average_pace_sec_per_km,
            "capturedArea": self.captured_area_m2,
            "pausedDuration": self.paused_duration_ms,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RunSession":
        end_time = data.get("endTime")
        updated_at = data.get("updatedAt")
        return cls(
            id=str(data["id"]),
            user_id=str(data["userId"]),
            status=RunStatus(data["status"]),
            start_time=datetime.fromisoformat(data["startTime"]),
            end_time=datetime.fromisoformat(end_time) if end_time else None,
            total_distance_km=float(data.get("totalDistance") or 0.0),
            total_duration_sec=int(data.get("totalDuration") or 0),
            average_pace_sec_per_km=float(data.get("averagePace") or 0.0),
            captured_area_m2=float(data.get("capturedArea") or 0.0),
            paused_duration_ms=int(data.get("pausedDuration") or 0),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(slots=True)
class LocationBatch:
    """Validated points flushed together; ``batch_index`` grows per session."""

    points: List[LocationPoint]
    batch_index: int
    saved_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": [p.to_dict() for p in self.points],
            "batchIndex": self.batch_index,
            "savedAt": self.saved_at.isoformat() if self.saved_at else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LocationBatch":
        saved_at = data.get("savedAt")
        return cls(
            points=[LocationPoint.from_dict(p) for p in data.get("points") or []],
            batch_index=int(data["batchIndex"]),
            saved_at=datetime.fromisoformat(saved_at) if saved_at else None,
        )


__all__ = [
    "CapturedPolygon",
    "LatLon",
    "LocationBatch",
    "LocationPoint",
    "RunSession",
    "RunStats",
    "RunStatus",
]
