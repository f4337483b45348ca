"""Kapture run tracking package."""

from .errors import (
    KaptureError,
    LocationPermissionError,
    PersistenceError,
    RunNotFoundError,
    StreamingError,
    TrackFormatError,
)
from .models import LocationPoint, RunSession, RunStats, RunStatus
from .tracking import RunTrackingEngine

__all__ = [
    "KaptureError",
    "LocationPermissionError",
    "LocationPoint",
    "PersistenceError",
    "RunNotFoundError",
    "RunSession",
    "RunStats",
    "RunStatus",
    "RunTrackingEngine",
    "StreamingError",
    "TrackFormatError",
]
