"""Decide whether a raw fix should extend the validated track."""

from __future__ import annotations

from typing import Sequence

from ..config import MAX_ACCURACY_M, MIN_DISTANCE_THRESHOLD_KM
from ..geo import distance_km
from ..models import LocationPoint


class LocationFilter:
    """Pure predicate over (candidate, track); the caller appends on True.

    Rules, in order: reject fixes whose reported accuracy is worse than
    ``max_accuracy_m``; accept the first fix of a track; otherwise accept only
    when the fix moved at least ``min_distance_km`` from the last point.
    """

    def __init__(
        self,
        max_accuracy_m: float = MAX_ACCURACY_M,
        min_distance_km: float = MIN_DISTANCE_THRESHOLD_KM,
    ) -> None:
        self.max_accuracy_m = max_accuracy_m
        self.min_distance_km = min_distance_km

    def is_valid(
        self, candidate: LocationPoint, track: Sequence[LocationPoint]
    ) -> bool:
        accuracy = candidate.accuracy_m
        if accuracy is not None and accuracy > self.max_accuracy_m:
            return False
        if not track:
            return True
        return distance_km(track[-1], candidate) >= self.min_distance_km


__all__ = ["LocationFilter"]
