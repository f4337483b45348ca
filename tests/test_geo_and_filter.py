"""Haversine helpers and the location filter."""

from __future__ import annotations

import math

import pytest

from conftest import STEP_DEG, eastward_fixes, fix
from kapture.geo import distance_km, to_radians, track_distance_km
from kapture.tracking import LocationFilter


def test_distance_zero_for_same_point():
    assert distance_km(fix(51.5, -0.12), fix(51.5, -0.12)) == 0.0


def test_distance_one_degree_latitude():
    d = distance_km(fix(0.0, 0.0), fix(1.0, 0.0))
    assert d == pytest.approx(6371.0 * math.pi / 180.0, rel=1e-9)


def test_distance_is_symmetric():
    a, b = fix(51.48, -3.18), fix(51.49, -3.17)
    assert distance_km(a, b) == pytest.approx(distance_km(b, a))


def test_to_radians():
    assert to_radians(180.0) == pytest.approx(math.pi)


def test_track_distance_matches_pairwise_sum():
    points = [fix(51.48 + i * 0.0001, -3.18 + (i % 3) * 0.0002) for i in range(12)]
    pairwise = sum(distance_km(a, b) for a, b in zip(points, points[1:]))
    assert track_distance_km(points) == pytest.approx(pairwise, rel=1e-9)


@pytest.mark.parametrize("count", [0, 1])
def test_track_distance_short_tracks(count):
    assert track_distance_km(eastward_fixes(count)) == 0.0


def test_first_fix_accepted():
    assert LocationFilter().is_valid(fix(0, 0, 0, 5), []) is True


def test_small_move_accepted_scenario_a():
    first = fix(0.0, 0.0, 0, 5)
    second = fix(0.0, STEP_DEG, 1000, 5)
    assert LocationFilter().is_valid(second, [first]) is True
    assert distance_km(first, second) == pytest.approx(0.0055, abs=1e-4)


def test_poor_accuracy_rejected_scenario_b():
    far_away = fix(0.0, 0.01, 1000, 35)
    assert LocationFilter().is_valid(far_away, [fix(0, 0, 0, 5)]) is False
    assert LocationFilter().is_valid(far_away, []) is False


def test_accuracy_exactly_at_limit_accepted():
    assert LocationFilter().is_valid(fix(0, 0, 0, 30.0), []) is True


def test_missing_accuracy_is_not_rejected():
    assert LocationFilter().is_valid(fix(0, 0, 0, None), []) is True


def test_jitter_below_threshold_rejected():
    track = [fix(0, 0, 0)]
    jitter = fix(0.0, 0.00002, 1000)  # ~2.2 m
    assert LocationFilter().is_valid(jitter, track) is False


def test_filter_is_idempotent():
    """A point just appended to the track is a duplicate and must be rejected."""

    flt = LocationFilter()
    track = []
    for candidate in eastward_fixes(5):
        assert flt.is_valid(candidate, track)
        track.append(candidate)
        assert flt.is_valid(candidate, track) is False


def test_custom_thresholds():
    flt = LocationFilter(max_accuracy_m=10.0, min_distance_km=0.001)
    assert flt.is_valid(fix(0, 0, 0, 12.0), []) is False
    assert flt.is_valid(fix(0, 0.00002, 1000, 5.0), [fix(0, 0, 0)]) is True
