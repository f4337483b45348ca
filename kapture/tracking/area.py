"""Captured territory estimate for a validated track.

The area is the track's lat/lon bounding box converted to metres, not the
area of the polygon the runner traced. This is a known approximation: it
over-estimates for diagonal or L-shaped routes and is exactly zero for a
track that never leaves a single meridian or parallel.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..config import LOOP_CLOSE_THRESHOLD_KM, METERS_PER_DEGREE
from ..geo import distance_km, to_radians
from ..models import CapturedPolygon, LocationPoint

Bounds = Tuple[float, float, float, float]


def _bounds(track: Sequence[LocationPoint]) -> Bounds:
    coords = np.array([(p.latitude, p.longitude) for p in track], dtype=np.float64)
    min_lat, min_lng = coords.min(axis=0)
    max_lat, max_lng = coords.max(axis=0)
    return float(min_lat), float(max_lat), float(min_lng), float(max_lng)


def _bounds_area_m2(bounds: Bounds) -> float:
    min_lat, max_lat, min_lng, max_lng = bounds
    avg_lat = (min_lat + max_lat) / 2
    lat_meters = (max_lat - min_lat) * METERS_PER_DEGREE
    lng_meters = (max_lng - min_lng) * METERS_PER_DEGREE * math.cos(to_radians(avg_lat))
    return lat_meters * lng_meters


def area_m2(track: Sequence[LocationPoint]) -> float:
    """Return the bounding-box area of ``track`` in square metres."""

    if len(track) < 3:
        return 0.0
    return _bounds_area_m2(_bounds(track))


def captured_polygon(
    track: Sequence[LocationPoint],
    loop_threshold_km: float = LOOP_CLOSE_THRESHOLD_KM,
) -> Optional[CapturedPolygon]:
    """Return the closed bounding-box ring used for the area estimate.

    ``is_loop`` reports whether the runner finished back near the start; when
    False the ring is still closed, just not by the runner.
    """

    if len(track) < 3:
        return None
    bounds = _bounds(track)
    min_lat, max_lat, min_lng, max_lng = bounds
    ring = (
        (min_lat, min_lng),
        (min_lat, max_lng),
        (max_lat, max_lng),
        (max_lat, min_lng),
        (min_lat, min_lng),
    )
    is_loop = distance_km(track[0], track[-1]) <= loop_threshold_km
    return CapturedPolygon(
        coordinates=ring, area_m2=_bounds_area_m2(bounds), is_loop=is_loop
    )


__all__ = ["area_m2", "captured_polygon"]
