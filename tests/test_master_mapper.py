"""
Tests for mapping onto the master path and the timeline cursors
"""

import numpy as np
import pytest

from masterlap.analysis.master_mapper import (
    CursorArena,
    TimelineCursor,
    map_rel_s_to_master,
    map_to_master,
)
from masterlap.session.models import TrackPath


@pytest.fixture
def master():
    """Straight master path, 0..100m with a point every 10m"""
    s = np.arange(0.0, 101.0, 10.0)
    return TrackPath(s=s, x=s.copy(), y=np.zeros_like(s), theta=np.zeros_like(s))


def make_lap(s_values, y=0.0):
    s = np.asarray(s_values, dtype=float)
    return TrackPath(s=s, x=s.copy(), y=np.full_like(s, y), theta=np.zeros_like(s))


class TestMapToMaster:
    """Tests for map_to_master()"""

    def test_nearest_index_by_arc_length(self, master):
        mapped = map_to_master(make_lap([0, 4, 6, 14]), master)
        assert [m.match.index for m in mapped] == [0, 0, 1, 1]

    def test_scaled_arc_length(self, master):
        mapped = map_to_master(make_lap([0, 4, 6, 14]), master, scale_s=2.0)
        assert [m.rel_s for m in mapped] == pytest.approx([0, 8, 12, 28])
        assert [m.match.index for m in mapped] == [0, 1, 1, 3]

    def test_relative_to_lap_start(self, master):
        mapped = map_to_master(make_lap([500, 504, 516]), master)
        assert [m.rel_s for m in mapped] == pytest.approx([0, 4, 16])
        assert [m.match.index for m in mapped] == [0, 0, 2]

    def test_zero_scale_treated_as_one(self, master):
        mapped = map_to_master(make_lap([0, 14]), master, scale_s=0.0)
        assert mapped[1].rel_s == pytest.approx(14.0)

    def test_midpoint_tie_picks_lower_index(self, master):
        mapped = map_to_master(make_lap([0, 5]), master)
        assert mapped[1].match.index == 0

    def test_beyond_master_end(self, master):
        mapped = map_to_master(make_lap([0, 250]), master)
        assert mapped[1].match.index == 10

    def test_distance_squared(self, master):
        lap = TrackPath(s=[0.0, 4.0], x=[0.0, 4.0], y=[0.0, 3.0], theta=[0.0, 0.0])
        mapped = map_to_master(lap, master)
        assert mapped[1].match.index == 0
        assert mapped[1].match.distance_sq == pytest.approx(25.0)

    def test_session_indices_and_callback(self, master):
        seen = []
        mapped = map_to_master(make_lap([0, 10, 20]), master, start_index=40, emit=seen.append)
        assert [m.index for m in mapped] == [40, 41, 42]
        assert seen == mapped

    def test_empty_inputs(self, master):
        assert map_to_master(TrackPath.empty(), master) == []
        assert map_to_master(make_lap([0, 1]), TrackPath.empty()) == []


class TestMapRelSToMaster:
    """Tests for map_rel_s_to_master()"""

    def test_matches_full_lap_mapping(self, master):
        lap = make_lap([0, 4, 6, 14, 37, 99])
        for mapping in map_to_master(lap, master):
            single = map_rel_s_to_master(master, mapping.rel_s, mapping.x, mapping.y)
            assert single == mapping.match

    def test_empty_master(self):
        assert map_rel_s_to_master(TrackPath.empty(), 5.0, 0.0, 0.0) is None

    def test_before_start_clamps(self, master):
        assert map_rel_s_to_master(master, -3.0, 0.0, 0.0).index == 0


class TestTimelineCursor:
    """Tests for TimelineCursor and CursorArena"""

    TIMES = [0.0, 1.0, 2.0, 3.0, 4.0]

    def test_forward_steps(self):
        cursor = TimelineCursor()
        assert cursor.locate(self.TIMES, 0.5) == 0
        assert cursor.locate(self.TIMES, 1.5) == 1
        assert cursor.locate(self.TIMES, 2.0) == 2

    def test_jumps_and_rewinds(self):
        cursor = TimelineCursor()
        assert cursor.locate(self.TIMES, 3.2) == 3
        assert cursor.locate(self.TIMES, 0.2) == 0
        assert cursor.locate(self.TIMES, 3.9) == 3

    def test_out_of_range(self):
        cursor = TimelineCursor()
        assert cursor.locate(self.TIMES, 10.0) == 4
        assert cursor.locate(self.TIMES, -1.0) == 0
        assert cursor.locate([], 1.0) == 0

    def test_arena_keeps_one_cursor_per_key(self):
        arena = CursorArena()
        a = arena.cursor("a")
        assert arena.cursor("a") is a
        assert arena.cursor("b") is not a
        assert len(arena) == 2
        arena.reset()
        assert len(arena) == 0
