"""Global pytest fixtures & helpers.

Adds project root to path and provides fixtures for driving the tracking
engine on simulated time with a replayed location source.
"""
from __future__ import annotations

import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from kapture.errors import PersistenceError
from kapture.models import LocationPoint
from kapture.persistence import InMemoryRunStore
from kapture.tools.replay import InlineDispatcher
from kapture.tracking import (
    ManualTimerFactory,
    ReplayLocationSource,
    RunTrackingEngine,
    SimulatedClock,
)

# Degrees of longitude at the equator covering roughly 5.56 m.
STEP_DEG = 0.00005


# --- Factory helpers -------------------------------------------------
def fix(lat=0.0, lon=0.0, t_ms=0, accuracy=5.0):
    return LocationPoint(latitude=lat, longitude=lon, timestamp_ms=t_ms, accuracy_m=accuracy)


def eastward_fixes(count, *, step_deg=STEP_DEG, step_ms=1000, start_ms=0):
    return [fix(0.0, i * step_deg, start_ms + i * step_ms) for i in range(count)]


class RecordingStreaming:
    """Captures streaming calls made by the engine."""

    def __init__(self):
        self.calls = []

    def __getattr__(self, name):
        def _record(*args):
            self.calls.append((name, args))

        return _record

    def names(self):
        return [name for name, _ in self.calls]


class FlakyStore(InMemoryRunStore):
    """In-memory store whose batch saves fail ``failures`` times (``None`` = always)."""

    def __init__(self, failures=None, **kwargs):
        super().__init__(**kwargs)
        self.failures = failures
        self.save_attempts = []

    def save_location_batch(self, session_id, points, batch_index):
        self.save_attempts.append((batch_index, len(points)))
        if self.failures is None or self.failures > 0:
            if self.failures is not None:
                self.failures -= 1
            raise PersistenceError("simulated write failure")
        super().save_location_batch(session_id, points, batch_index)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def clock():
    return SimulatedClock(0)


@pytest.fixture
def timers():
    return ManualTimerFactory()


@pytest.fixture
def source():
    return ReplayLocationSource()


@pytest.fixture
def make_engine(source, clock, timers):
    def _make(**kwargs):
        kwargs.setdefault("clock", clock)
        kwargs.setdefault("timer_factory", timers)
        kwargs.setdefault("dispatcher", InlineDispatcher())
        return RunTrackingEngine(kwargs.pop("location_source", source), **kwargs)

    return _make
