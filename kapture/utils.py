"""General utility helpers shared across modules."""

from __future__ import annotations

import json
from datetime import datetime, date, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def format_duration(seconds: int) -> str:
    """Format seconds into an ``H:MM:SS`` (or ``M:SS``) string."""

    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    mins, sec = divmod(remainder, 60)
    if hours:
        return f"{hours}:{mins:02d}:{sec:02d}"
    return f"{mins}:{sec:02d}"


def format_pace(sec_per_km: float) -> str:
    """Format a pace in seconds per km as ``M:SS /km``; ``--`` when undefined."""

    if not sec_per_km or sec_per_km <= 0:
        return "--"
    mins, sec = divmod(int(round(sec_per_km)), 60)
    return f"{mins}:{sec:02d} /km"


def utc_from_ms(timestamp_ms: int) -> datetime:
    """Return an aware UTC datetime for a millisecond epoch timestamp."""

    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


def _normalise_value(value: Any) -> Any:
    """Convert objects to JSON-friendly representations."""

    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    if isinstance(value, set):
        return sorted(_normalise_value(item) for item in value)
    if isinstance(value, (list, tuple)):
        return [_normalise_value(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _normalise_value(val) for key, val in value.items()}
    return value


def json_dumps_compact(value: Any) -> str:
    """Return compact JSON preserving key order (wire frames)."""

    return json.dumps(_normalise_value(value), separators=(",", ":"))
