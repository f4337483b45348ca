"""Pace smoothing and captured area estimates."""

from __future__ import annotations

import math

import pytest

from conftest import eastward_fixes, fix
from kapture.config import METERS_PER_DEGREE
from kapture.tracking import PaceEstimator, area_m2, captured_polygon


# --- pace -------------------------------------------------------------
def test_pace_zero_before_minimum_distance():
    est = PaceEstimator()
    assert est.update(0.009, 60) == 0.0
    assert not est.recent_paces


def test_pace_zero_for_zero_duration():
    assert PaceEstimator().update(0.5, 0) == 0.0


def test_pace_sample_accepted_within_bounds():
    est = PaceEstimator()
    assert est.update(1.0, 300) == pytest.approx(300.0)
    assert est.last_calculated_distance_km == 1.0


@pytest.mark.parametrize("duration", [60, 2000])
def test_pace_samples_outside_bounds_discarded(duration):
    est = PaceEstimator()
    assert est.update(1.0, duration) == 0.0
    assert est.last_calculated_distance_km == 0.0


def test_pace_requires_distance_change_between_samples():
    est = PaceEstimator()
    est.update(1.0, 300)
    # Only 3 m further: no new sample even though duration grew.
    assert est.update(1.003, 400) == pytest.approx(300.0)
    assert len(est.recent_paces) == 1


def test_pace_weighting_favours_newest_sample():
    est = PaceEstimator()
    est.update(1.0, 300)
    est.update(2.0, 1200)  # 600 s/km
    # (300 * 1 + 600 * 2) / 3
    assert est.current() == pytest.approx(500.0)


def test_pace_window_is_bounded():
    est = PaceEstimator(window_size=3)
    for i in range(1, 6):
        est.update(float(i), 300 * i)
    assert len(est.recent_paces) == 3


def test_pace_reset():
    est = PaceEstimator()
    est.update(1.0, 300)
    est.reset()
    assert est.current() == 0.0
    assert est.last_calculated_distance_km == 0.0


def test_slow_cumulative_sample_rejected_scenario_c():
    """0.02 km over 130 s is ~6500 s/km, above the upper bound."""

    est = PaceEstimator()
    assert est.update(0.02, 130) == 0.0


def test_window_size_validation():
    with pytest.raises(ValueError):
        PaceEstimator(window_size=0)


# --- area -------------------------------------------------------------
def test_area_zero_for_fewer_than_three_points():
    assert area_m2([]) == 0.0
    assert area_m2(eastward_fixes(2)) == 0.0
    assert captured_polygon(eastward_fixes(2)) is None


def test_area_zero_for_colinear_east_west_track():
    assert area_m2(eastward_fixes(6)) == 0.0


def test_area_bounding_box():
    track = [fix(0.0, 0.0), fix(0.001, 0.0), fix(0.001, 0.001), fix(0.0, 0.001)]
    expected = (0.001 * METERS_PER_DEGREE) * (
        0.001 * METERS_PER_DEGREE * math.cos(math.radians(0.0005))
    )
    assert area_m2(track) == pytest.approx(expected, rel=1e-9)


def test_area_never_negative():
    track = [fix(0.001, 0.001), fix(0.0, 0.0), fix(0.0005, 0.002)]
    assert area_m2(track) >= 0.0


def test_captured_polygon_loop():
    track = [
        fix(0.0, 0.0),
        fix(0.001, 0.0),
        fix(0.001, 0.001),
        fix(0.0, 0.001),
        fix(0.0, 0.0001),  # ~11 m from the start
    ]
    polygon = captured_polygon(track)
    assert polygon is not None
    assert polygon.is_loop is True
    assert polygon.coordinates[0] == polygon.coordinates[-1]
    assert len(polygon.coordinates) == 5
    assert polygon.area_m2 == pytest.approx(area_m2(track))
    payload = polygon.to_dict()
    assert payload["isLoop"] is True
    assert payload["coordinates"][0] == {"latitude": 0.0, "longitude": 0.0}


def test_captured_polygon_open_route():
    track = [fix(0.0, 0.0), fix(0.001, 0.0), fix(0.001, 0.001)]
    polygon = captured_polygon(track)
    assert polygon is not None
    assert polygon.is_loop is False
