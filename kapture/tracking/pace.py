"""Smoothed average pace from cumulative distance and active duration."""

from __future__ import annotations

from collections import deque
from typing import Deque

from ..config import (
    PACE_MAX_SEC_PER_KM,
    PACE_MIN_DISTANCE_CHANGE_KM,
    PACE_MIN_DISTANCE_KM,
    PACE_MIN_SEC_PER_KM,
    PACE_WINDOW_SIZE,
)


class PaceEstimator:
    """Sliding, linearly weighted pace window.

    A new sample (``duration / distance`` over the whole run) is taken only
    once the run has progressed at least ``PACE_MIN_DISTANCE_CHANGE_KM`` since
    the last accepted sample, so per-second recomputes do not make the pace
    oscillate. Samples outside ``[PACE_MIN_SEC_PER_KM, PACE_MAX_SEC_PER_KM]``
    are discarded as sensor artefacts.
    """

    def __init__(self, window_size: int = PACE_WINDOW_SIZE) -> None:
        if window_size < 1:
            raise ValueError("window_size must be >= 1")
        self.recent_paces: Deque[float] = deque(maxlen=window_size)
        self.last_calculated_distance_km = 0.0

    def reset(self) -> None:
        self.recent_paces.clear()
        self.last_calculated_distance_km = 0.0

    def update(self, distance_km: float, duration_sec: int) -> float:
        """Offer the current totals and return the smoothed pace (sec/km)."""

        if distance_km < PACE_MIN_DISTANCE_KM or duration_sec == 0:
            return 0.0
        change = distance_km - self.last_calculated_distance_km
        if change >= PACE_MIN_DISTANCE_CHANGE_KM:
            sample = duration_sec / distance_km
            if PACE_MIN_SEC_PER_KM <= sample <= PACE_MAX_SEC_PER_KM:
                self.recent_paces.append(sample)
                self.last_calculated_distance_km = distance_km
        return self.current()

    def current(self) -> float:
        """Weighted average of the window; the newest sample weighs the most."""

        count = len(self.recent_paces)
        if count == 0:
            return 0.0
        if count == 1:
            return self.recent_paces[0]
        weighted = sum(pace * (i + 1) for i, pace in enumerate(self.recent_paces))
        total_weight = count * (count + 1) / 2
        return weighted / total_weight


__all__ = ["PaceEstimator"]
