"""GPS filtering, pace/area estimation and the run tracking engine."""

from .area import area_m2, captured_polygon
from .engine import EngineState, RunTrackingEngine
from .location_filter import LocationFilter
from .location_source import LocationSource, LocationSubscription, ReplayLocationSource
from .pace import PaceEstimator
from .scheduling import (
    ManualTimer,
    ManualTimerFactory,
    RepeatingTimer,
    SimulatedClock,
    SystemClock,
)

__all__ = [
    "EngineState",
    "LocationFilter",
    "LocationSource",
    "LocationSubscription",
    "ManualTimer",
    "ManualTimerFactory",
    "PaceEstimator",
    "ReplayLocationSource",
    "RepeatingTimer",
    "RunTrackingEngine",
    "SimulatedClock",
    "SystemClock",
    "area_m2",
    "captured_polygon",
]
