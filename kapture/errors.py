"""Central error types used across the application."""

from __future__ import annotations


class KaptureError(RuntimeError):
    """Base error for run tracking failures."""


class LocationPermissionError(KaptureError):
    """Raised when the location provider refuses or cannot grant access."""


class PersistenceError(KaptureError):
    """Raised when a run store read or write fails."""


class RunNotFoundError(PersistenceError):
    """Raised when a run session does not exist in the store."""


class StreamingError(KaptureError):
    """Raised when the live broadcast transport cannot deliver a frame."""


class TrackFormatError(KaptureError):
    """Raised when a recorded fix file is missing required columns."""


__all__ = [
    "KaptureError",
    "LocationPermissionError",
    "PersistenceError",
    "RunNotFoundError",
    "StreamingError",
    "TrackFormatError",
]
