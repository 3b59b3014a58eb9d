"""
Tests for lap segmentation

Synthetic circuits: a 36-point circle of radius 100m per lap (chord ~17.4m,
so a 10m start/finish radius only matches exact returns to the start) and
straight lines that never return.
"""

import math

import numpy as np
import pytest

from masterlap.analysis.lap_segmenter import (
    LapSegmenter,
    build_even_lap_boundaries,
    build_lap_boundaries,
    derive_lap_count,
    detect_laps_near_start,
    find_lap_and_rel_s,
    find_lap_boundaries_by_distance,
    lap_boundaries_from_telemetry,
    prune_short_laps,
    validate_boundaries,
)
from masterlap.config.config import RunParameters
from masterlap.session.models import LapStrategy, RaceType, Sample, TrackPath

POINTS_PER_LAP = 36
RADIUS = 100.0


def make_circle_path(laps=3, points_per_lap=POINTS_PER_LAP, radius=RADIUS) -> TrackPath:
    """laps * points_per_lap points around a circle starting at the origin"""
    n = laps * points_per_lap
    angles = 2 * math.pi * np.arange(n) / points_per_lap
    x = radius * np.cos(angles) - radius
    y = radius * np.sin(angles)
    steps = np.hypot(np.diff(x), np.diff(y))
    s = np.concatenate(([0.0], np.cumsum(steps)))
    return TrackPath(s=s, x=x, y=y, theta=angles + math.pi / 2)


def make_line_path(length=1000.0, spacing=10.0) -> TrackPath:
    s = np.arange(0.0, length + spacing / 2, spacing)
    return TrackPath(s=s, x=s.copy(), y=np.zeros_like(s), theta=np.zeros_like(s))


def make_samples(n, lap_numbers=None):
    return [
        Sample(time=i * 0.1, speed=10.0,
               lap_number=lap_numbers[i] if lap_numbers is not None else None)
        for i in range(n)
    ]


class TestTelemetryBoundaries:
    """Tests for lap_boundaries_from_telemetry()"""

    def test_lap_counter_increments(self):
        samples = make_samples(5, [1, 1, 2, 2, 3])
        assert lap_boundaries_from_telemetry(samples) == [0, 2, 4, 5]

    def test_no_counter_reported(self):
        assert lap_boundaries_from_telemetry(make_samples(5)) is None

    def test_constant_counter(self):
        assert lap_boundaries_from_telemetry(make_samples(4, [2, 2, 2, 2])) is None

    def test_missing_values_skipped(self):
        samples = make_samples(6, [None, 1, None, 2, None, 2])
        assert lap_boundaries_from_telemetry(samples) == [0, 3, 6]

    def test_empty(self):
        assert lap_boundaries_from_telemetry([]) is None


class TestProximityBoundaries:
    """Tests for detect_laps_near_start() and prune_short_laps()"""

    def test_returns_to_start(self):
        path = make_circle_path(laps=3)
        assert detect_laps_near_start(path, 10.0, 200.0) == [0, 36, 72, 108]

    def test_min_distance_blocks_early_return(self):
        path = make_circle_path(laps=3)
        assert detect_laps_near_start(path, 10.0, 1000.0) == [0, 72, 108]

    def test_open_path_has_no_interior_boundary(self):
        path = make_line_path()
        assert detect_laps_near_start(path, 10.0, 200.0) == [0, len(path)]

    def test_prune_drops_short_lap(self):
        path = make_circle_path(laps=3)
        pruned = prune_short_laps(path, [0, 5, 36, 72, 108], min_spacing=200.0)
        assert pruned == [0, 36, 72, 108]

    def test_prune_keeps_ends(self):
        path = make_circle_path(laps=1)
        assert prune_short_laps(path, [0, 36], min_spacing=200.0) == [0, 36]


class TestDistanceAndEvenBoundaries:
    """Tests for find_lap_boundaries_by_distance() and build_even_lap_boundaries()"""

    def test_distance_threshold(self):
        path = make_line_path()
        boundaries = find_lap_boundaries_by_distance(path, 300.0, 10.0, 60.0)
        assert boundaries == [0, 29, 58, 87, 101]

    def test_distance_threshold_floor(self):
        path = make_line_path()
        boundaries = find_lap_boundaries_by_distance(path, 100.0, 50.0, 400.0)
        assert boundaries == [0, 40, 80, 101]

    def test_distance_needs_two_points(self):
        path = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[0.0])
        assert find_lap_boundaries_by_distance(path, 300.0, 10.0, 60.0) is None

    def test_even_spacing(self):
        path = make_line_path()
        assert build_even_lap_boundaries(path, 3) == [0, 34, 67, 101]

    def test_even_single_lap(self):
        path = make_line_path()
        assert build_even_lap_boundaries(path, 1) == [0, 101]


class TestDeriveLapCount:
    """Tests for derive_lap_count()"""

    @pytest.mark.parametrize("distance,expected", [
        (0.0, 1),
        (1000.0, 1),
        (120000.0, 2),
        (1e7, 8),
    ])
    def test_estimate(self, distance, expected):
        assert derive_lap_count(distance) == expected

    def test_preferred_wins(self):
        assert derive_lap_count(1e7, preferred=3) == 3


class TestBuildLapBoundaries:
    """Tests for the strategy chain in build_lap_boundaries()"""

    def test_proximity_first(self):
        boundaries, strategy = build_lap_boundaries(make_circle_path(laps=3), laps=1)
        assert strategy == LapStrategy.PROXIMITY
        assert boundaries == [0, 36, 72, 108]

    def test_enforced_lap_count(self):
        boundaries, strategy = build_lap_boundaries(make_circle_path(laps=3), laps=2,
                                                    enforce_lap_count=True)
        assert strategy == LapStrategy.PROXIMITY
        assert boundaries == [0, 36, 108]

    def test_distance_when_no_return(self):
        boundaries, strategy = build_lap_boundaries(
            make_line_path(), laps=1, lap_length=300.0, lap_tolerance=10.0, min_spacing=50.0,
        )
        assert strategy == LapStrategy.DISTANCE
        assert boundaries == [0, 29, 58, 87, 101]

    def test_even_fallback_for_tiny_path(self):
        path = TrackPath(s=[0.0, 10.0, 20.0], x=[0.0, 10.0, 20.0], y=[0.0] * 3, theta=[0.0] * 3)
        boundaries, strategy = build_lap_boundaries(path, laps=1)
        assert strategy == LapStrategy.EVEN
        assert boundaries == [0, 3]

    def test_even_when_lap_count_known(self):
        boundaries, strategy = build_lap_boundaries(make_line_path(), laps=3, lap_length=300.0)
        assert strategy == LapStrategy.EVEN
        assert boundaries == [0, 34, 67, 101]

    @pytest.mark.parametrize("laps,lap_length", [(1, 0.0), (3, 0.0), (1, 300.0), (2, 0.0)])
    def test_results_are_valid_boundary_sets(self, laps, lap_length):
        for path in (make_circle_path(laps=3), make_line_path()):
            boundaries, _ = build_lap_boundaries(path, laps=laps, lap_length=lap_length)
            assert validate_boundaries(boundaries, len(path))


class TestBoundaryHelpers:
    """Tests for validate_boundaries() and find_lap_and_rel_s()"""

    def test_validate(self):
        assert validate_boundaries([0, 5, 10], 10)
        assert not validate_boundaries([0], 10)
        assert not validate_boundaries([0, 5, 9], 10)
        assert not validate_boundaries([0, 5, 5, 10], 10)
        assert not validate_boundaries([-1, 5, 10], 10)

    def test_find_lap_and_rel_s(self):
        path = make_line_path()
        boundaries = [0, 29, 58, 101]
        assert find_lap_and_rel_s(boundaries, path, 0) == (1, 0.0)
        lap, rel_s = find_lap_and_rel_s(boundaries, path, 30)
        assert lap == 2
        assert rel_s == pytest.approx(10.0)
        assert find_lap_and_rel_s(boundaries, path, 101) == (0, 0.0)


class TestLapSegmenter:
    """Tests for LapSegmenter.segment()"""

    def test_closed_loop_is_lapped(self):
        path = make_circle_path(laps=3)
        result = LapSegmenter().segment(make_samples(len(path)), path)
        assert result.race_type == RaceType.LAPPED
        assert result.strategy == LapStrategy.PROXIMITY
        assert result.boundaries == [0, 36, 72, 108]
        assert result.lap_count == 3

    def test_forced_sprint(self):
        path = make_circle_path(laps=3)
        result = LapSegmenter(RunParameters(force_sprint=True)).segment(make_samples(len(path)), path)
        assert result.race_type == RaceType.SPRINT
        assert result.strategy == LapStrategy.WHOLE_PATH
        assert result.boundaries == [0, len(path)]

    def test_open_path_is_sprint(self):
        path = make_line_path()
        result = LapSegmenter().segment(make_samples(len(path)), path)
        assert result.race_type == RaceType.SPRINT
        assert result.boundaries == [0, 101]

    def test_single_known_lap_is_sprint(self):
        path = TrackPath(s=[0.0, 10.0, 20.0], x=[0.0, 10.0, 20.0], y=[0.0] * 3, theta=[0.0] * 3)
        result = LapSegmenter(RunParameters(lap_count=1)).segment(make_samples(3), path)
        assert result.race_type == RaceType.SPRINT
        assert result.boundaries == [0, 3]

    def test_telemetry_is_authoritative(self):
        path = make_line_path(length=40.0)
        samples = make_samples(5, [1, 1, 2, 2, 3])
        result = LapSegmenter(RunParameters(force_sprint=False)).segment(samples, path)
        assert result.strategy == LapStrategy.TELEMETRY
        assert result.race_type == RaceType.LAPPED
        assert result.boundaries == [0, 2, 4, 5]

    def test_known_lap_count_on_open_path(self):
        path = make_line_path()
        result = LapSegmenter(RunParameters(lap_count=3)).segment(make_samples(len(path)), path)
        assert result.race_type == RaceType.LAPPED
        assert result.strategy == LapStrategy.EVEN
        assert result.boundaries == [0, 34, 67, 101]

    def test_laps_iteration(self):
        path = make_circle_path(laps=2)
        result = LapSegmenter().segment(make_samples(len(path)), path)
        assert list(result.laps()) == [(1, 0, 36), (2, 36, 72)]
