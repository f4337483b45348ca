"""Great-circle helpers for lat/lon fixes.

Distances are haversine on a spherical Earth (radius 6371 km). Good enough
for run tracking where consecutive fixes are metres apart.
"""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from .models import LocationPoint

EARTH_RADIUS_KM = 6371.0


def to_radians(degrees: float) -> float:
    return degrees * math.pi / 180.0


def distance_km(a: LocationPoint, b: LocationPoint) -> float:
    """Return the haversine distance between two fixes in kilometres."""

    d_lat = to_radians(b.latitude - a.latitude)
    d_lon = to_radians(b.longitude - a.longitude)
    lat1 = to_radians(a.latitude)
    lat2 = to_radians(b.latitude)
    h = (
        math.sin(d_lat / 2) * math.sin(d_lat / 2)
        + math.sin(d_lon / 2) * math.sin(d_lon / 2) * math.cos(lat1) * math.cos(lat2)
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def track_distance_km(points: Sequence[LocationPoint]) -> float:
    """Return the summed pairwise haversine distance along ``points``.

    Vectorised equivalent of summing :func:`distance_km` over consecutive
    pairs; results agree within floating point tolerance.
    """

    if len(points) < 2:
        return 0.0
    coords = np.radians(
        np.array([(p.latitude, p.longitude) for p in points], dtype=np.float64)
    )
    lat = coords[:, 0]
    d_lat = np.diff(lat)
    d_lon = np.diff(coords[:, 1])
    h = np.sin(d_lat / 2) ** 2 + np.sin(d_lon / 2) ** 2 * np.cos(lat[:-1]) * np.cos(
        lat[1:]
    )
    c = 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))
    return float(EARTH_RADIUS_KM * c.sum())


__all__ = ["EARTH_RADIUS_KM", "distance_km", "to_radians", "track_distance_km"]
