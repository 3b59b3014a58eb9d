"""
Tests for master path construction

Loop closure, arc-length resampling, similarity fitting and lap averaging.
"""

import math

import numpy as np
import pytest

from masterlap.analysis.master_builder import (
    SimilarityTransform,
    align_to_reference,
    average_laps,
    build_master_from_boundaries,
    build_master_lap,
    build_master_path,
    close_loop,
    fit_similarity,
    full_laps,
    normalize_lap_segment,
    resample_path,
)
from masterlap.session.models import TrackPath


def make_circle_lap(points=37, radius=100.0, cx=30.0, cy=-20.0) -> TrackPath:
    """One closed lap: the last point repeats the first"""
    angles = 2 * math.pi * np.arange(points) / (points - 1)
    x = cx + radius * np.cos(angles)
    y = cy + radius * np.sin(angles)
    steps = np.hypot(np.diff(x), np.diff(y))
    s = np.concatenate(([0.0], np.cumsum(steps)))
    return TrackPath(s=s, x=x, y=y, theta=angles + math.pi / 2)


def make_square_lap(side=100.0, spacing=10.0) -> TrackPath:
    """Closed square traced counter-clockwise from the origin, one point every `spacing` meters"""
    per_side = int(side / spacing)
    xs, ys, thetas = [], [], []
    corners = [(0.0, 0.0), (side, 0.0), (side, side), (0.0, side)]
    directions = [(1, 0), (0, 1), (-1, 0), (0, -1)]
    for (x0, y0), (ux, uy) in zip(corners, directions):
        heading = math.atan2(uy, ux)
        for j in range(per_side):
            xs.append(x0 + j * spacing * ux)
            ys.append(y0 + j * spacing * uy)
            thetas.append(heading)
    xs.append(0.0)
    ys.append(0.0)
    thetas.append(thetas[-1])
    path = TrackPath(s=np.zeros(len(xs)), x=xs, y=ys, theta=thetas)
    return path.with_recomputed_arc_length()


def transformed(path: TrackPath, angle: float, scale: float, tx: float, ty: float) -> TrackPath:
    x, y = SimilarityTransform(angle, scale, tx, ty).apply(path.x, path.y)
    return TrackPath(s=path.s * scale, x=x, y=y, theta=path.theta + angle)


class TestCloseLoop:
    """Tests for close_loop() and normalize_lap_segment()"""

    def test_drift_removed(self):
        path = TrackPath(s=[0, 10, 20, 30], x=[0, 10, 10, 5], y=[0, 0, 10, 3], theta=[0] * 4)
        closed = close_loop(path)
        assert closed.x[-1] == closed.x[0]
        assert closed.y[-1] == closed.y[0]
        # Middle points lose a proportional share of the drift
        assert closed.x[1] == pytest.approx(10 - 5 / 3)
        assert closed.y[2] == pytest.approx(10 - 2)
        np.testing.assert_array_equal(closed.s, path.s)

    def test_already_closed_unchanged(self):
        lap = make_square_lap()
        closed = close_loop(lap)
        np.testing.assert_array_equal(closed.x, lap.x)
        np.testing.assert_array_equal(closed.y, lap.y)

    def test_normalize_restarts_arc_length(self):
        lap = make_square_lap()
        shifted = TrackPath(s=lap.s + 500.0, x=lap.x, y=lap.y, theta=lap.theta)
        normalized = normalize_lap_segment(shifted)
        assert normalized.s[0] == 0.0
        assert normalized.s[-1] == pytest.approx(400.0)


class TestResamplePath:
    """Tests for resample_path()"""

    def test_point_count_and_even_spacing(self):
        lap = normalize_lap_segment(make_circle_lap())
        resampled = resample_path(lap, 500)
        assert len(resampled) == 500
        assert resampled.s[0] == 0.0
        assert resampled.s[-1] == pytest.approx(lap.s[-1])
        np.testing.assert_allclose(np.diff(resampled.s), lap.s[-1] / 499)

    def test_closed_lap_arc_length_consistent(self):
        lap = normalize_lap_segment(make_square_lap())
        resampled = resample_path(lap, 41)
        recomputed = resampled.with_recomputed_arc_length()
        assert recomputed.s[-1] == pytest.approx(resampled.s[-1], abs=1e-9)
        assert recomputed.s[-1] == pytest.approx(400.0, abs=1e-9)

    def test_interpolates_between_points(self):
        path = TrackPath(s=[0.0, 10.0], x=[0.0, 10.0], y=[0.0, 0.0], theta=[0.0, 0.0])
        resampled = resample_path(path, 3)
        np.testing.assert_allclose(resampled.x, [0.0, 5.0, 10.0])

    def test_heading_interpolates_across_wrap(self):
        path = TrackPath(s=[0.0, 10.0], x=[0.0, 10.0], y=[0.0, 0.0],
                         theta=[math.pi - 0.1, -math.pi + 0.1])
        resampled = resample_path(path, 3)
        assert abs(math.sin(resampled.theta[1])) < 1e-9
        assert math.cos(resampled.theta[1]) == pytest.approx(-1.0)

    def test_degenerate_inputs(self):
        single = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[0.0])
        assert resample_path(single, 10) is None
        flat = TrackPath(s=[0.0, 0.0], x=[0.0, 0.0], y=[0.0, 0.0], theta=[0.0, 0.0])
        assert resample_path(flat, 10) is None
        assert resample_path(make_square_lap(), 1) is None


class TestFitSimilarity:
    """Tests for fit_similarity() and align_to_reference()"""

    def test_identity(self):
        ref = resample_path(normalize_lap_segment(make_circle_lap()), 200)
        fit = fit_similarity(ref, ref)
        assert fit.angle == pytest.approx(0.0, abs=1e-12)
        assert fit.scale == pytest.approx(1.0)
        assert fit.tx == pytest.approx(0.0, abs=1e-9)
        assert fit.ty == pytest.approx(0.0, abs=1e-9)

    def test_recovers_known_transform(self):
        ref = resample_path(normalize_lap_segment(make_circle_lap()), 200)
        lap = transformed(ref, -0.3, 0.5, 7.0, -3.0)
        fit = fit_similarity(ref, lap)
        assert fit.angle == pytest.approx(0.3)
        assert fit.scale == pytest.approx(2.0)

        aligned = align_to_reference(ref, lap)
        np.testing.assert_allclose(aligned.x, ref.x, atol=1e-9)
        np.testing.assert_allclose(aligned.y, ref.y, atol=1e-9)
        np.testing.assert_allclose(aligned.theta, ref.theta, atol=1e-9)

    def test_first_point_anchored(self):
        ref = resample_path(normalize_lap_segment(make_circle_lap()), 100)
        noisy = TrackPath(s=ref.s, x=ref.x + np.linspace(0, 3, 100), y=ref.y, theta=ref.theta)
        aligned = align_to_reference(ref, noisy)
        assert aligned.x[0] == pytest.approx(ref.x[0])
        assert aligned.y[0] == pytest.approx(ref.y[0])

    def test_length_mismatch_gives_identity(self):
        ref = resample_path(make_square_lap(), 10)
        lap = resample_path(make_square_lap(), 12)
        assert fit_similarity(ref, lap) == SimilarityTransform()


class TestAverageLaps:
    """Tests for average_laps()"""

    def test_positions_averaged(self):
        a = TrackPath(s=[0.0, 1.0], x=[0.0, 2.0], y=[0.0, 0.0], theta=[0.0, 0.0])
        b = TrackPath(s=[0.0, 1.5], x=[2.0, 4.0], y=[2.0, 2.0], theta=[0.0, 0.0])
        avg = average_laps([a, b])
        np.testing.assert_allclose(avg.x, [1.0, 3.0])
        np.testing.assert_allclose(avg.y, [1.0, 1.0])
        np.testing.assert_array_equal(avg.s, a.s)

    def test_heading_circular_mean(self):
        a = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[3.1])
        b = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[-3.1])
        avg = average_laps([a, b])
        assert math.cos(avg.theta[0] - math.pi) == pytest.approx(1.0, abs=1e-6)


class TestBuildMasterLap:
    """Tests for build_master_lap(), build_master_from_boundaries() and build_master_path()"""

    def test_single_lap_unchanged(self):
        lap = make_circle_lap()
        master = build_master_lap([lap], 300)
        expected = resample_path(normalize_lap_segment(lap), 300)
        np.testing.assert_allclose(master.x, expected.x, rtol=0, atol=1e-12)
        np.testing.assert_allclose(master.y, expected.y, rtol=0, atol=1e-12)
        np.testing.assert_allclose(master.s, expected.s, rtol=0, atol=1e-12)
        np.testing.assert_allclose(master.theta, expected.theta, rtol=0, atol=1e-12)

    def test_transformed_copy_aligns_onto_first(self):
        lap = make_circle_lap()
        copy = transformed(lap, 0.7, 1.1, 50.0, -20.0)
        master = build_master_lap([lap, copy], 300)
        expected = resample_path(normalize_lap_segment(lap), 300)
        np.testing.assert_allclose(master.x, expected.x, atol=1e-6)
        np.testing.assert_allclose(master.y, expected.y, atol=1e-6)

    def test_master_point_count(self):
        master = build_master_lap([make_circle_lap(), make_circle_lap(cx=0.0)], 128)
        assert len(master) == 128
        assert master.s[0] == 0.0

    def test_unusable_input(self):
        assert build_master_lap([], 100) is None
        assert build_master_lap([make_circle_lap()], 1) is None
        single = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[0.0])
        assert build_master_lap([single], 100) is None

    def test_from_boundaries(self):
        one = make_circle_lap()
        joined = TrackPath(
            s=np.concatenate([one.s, one.s[-1] + one.s[1:]]),
            x=np.concatenate([one.x, one.x[1:]]),
            y=np.concatenate([one.y, one.y[1:]]),
            theta=np.concatenate([one.theta, one.theta[1:]]),
        )
        master = build_master_from_boundaries(joined, [0, 37, len(joined)], 200)
        assert len(master) == 200
        assert build_master_from_boundaries(joined, [0], 200) is None

    def test_sprint_path_keeps_ends(self):
        s = np.arange(0.0, 101.0, 10.0)
        path = TrackPath(s=s + 40.0, x=s, y=np.zeros_like(s), theta=np.zeros_like(s))
        master = build_master_path(path, 21)
        assert len(master) == 21
        assert master.x[0] == 0.0
        assert master.x[-1] == pytest.approx(100.0)
        assert master.s[0] == 0.0
        assert master.s[-1] == pytest.approx(100.0)

    def test_sprint_path_too_short(self):
        single = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[0.0])
        assert build_master_path(single, 10) is None


class TestFullLaps:
    """Tests for full_laps()"""

    def test_drops_partial_tail(self):
        lap = make_circle_lap()
        tail = lap.segment(0, 3)
        kept = full_laps([lap, make_circle_lap(cx=0.0), tail])
        assert len(kept) == 2
        assert all(segment.length > 600.0 for segment in kept)

    def test_single_point_segments_dropped(self):
        single = TrackPath(s=[0.0], x=[0.0], y=[0.0], theta=[0.0])
        assert len(full_laps([make_circle_lap(), single])) == 1
        assert full_laps([single]) == []

    def test_zero_ratio_keeps_all(self):
        lap = make_circle_lap()
        assert len(full_laps([lap, lap.segment(0, 3)], ratio=0.0)) == 2

    def test_master_not_distorted_by_tail(self):
        lap = make_circle_lap()
        segments = [lap, transformed(lap, 0.4, 1.0, 10.0, 5.0), lap.segment(0, 3)]
        master = build_master_lap(full_laps(segments), 200)
        radius = np.hypot(master.x - 30.0, master.y + 20.0)
        assert radius.min() > 99.0
        assert radius.max() < 100.5

    def test_from_boundaries_skips_tail(self):
        one = make_circle_lap()
        joined = TrackPath(
            s=np.concatenate([one.s, one.s[-1] + one.s[1:4]]),
            x=np.concatenate([one.x, one.x[1:4]]),
            y=np.concatenate([one.y, one.y[1:4]]),
            theta=np.concatenate([one.theta, one.theta[1:4]]),
        )
        master = build_master_from_boundaries(joined, [0, 37, len(joined)], 200)
        expected = build_master_lap([one], 200)
        np.testing.assert_allclose(master.x, expected.x, atol=1e-9)
        np.testing.assert_allclose(master.y, expected.y, atol=1e-9)
