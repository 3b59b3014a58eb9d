"""
Mapping of reconstructed points onto the master path.

A lap's local arc length is scaled onto the master's arc-length range and the
nearer of the two bracketing master points (by arc length) is chosen. The
full-lap variant advances its bracket monotonically, so a lap maps in O(n).
"""

import bisect
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Optional, Sequence

import numpy as np

from ..session.models import MasterMatch, TrackPath


@dataclass(frozen=True)
class PointMapping:
    """One lap point expressed in master terms"""
    index: int          # index into the full session
    rel_s: float        # scaled arc length since lap start
    x: float
    y: float
    match: MasterMatch


def _closest_by_s(master_s: np.ndarray, j: int, rel_s: float) -> int:
    if j + 1 < len(master_s) and rel_s - master_s[j] > master_s[j + 1] - rel_s:
        return j + 1
    return j


def _match(master: TrackPath, index: int, px: float, py: float) -> MasterMatch:
    mx = float(master.x[index])
    my = float(master.y[index])
    dx = px - mx
    dy = py - my
    return MasterMatch(
        index=index,
        master_s=float(master.s[index]),
        x=mx,
        y=my,
        distance_sq=dx * dx + dy * dy,
    )


def map_to_master(lap: TrackPath,
                  master: TrackPath,
                  scale_s: float = 1.0,
                  emit: Optional[Callable[[PointMapping], None]] = None,
                  start_index: int = 0) -> List[PointMapping]:
    """
    Map every point of a lap segment onto the master path.

    Args:
        lap: Lap segment points in session order
        master: Master path
        scale_s: Master length / lap length; 0 is treated as 1
        emit: Optional callback invoked per mapped point
        start_index: Session index of the lap's first point

    Returns:
        List of PointMapping in lap order
    """
    if len(lap) == 0 or len(master) == 0:
        return []
    if scale_s == 0:
        scale_s = 1.0

    master_s = master.s
    s0 = lap.s[0]
    out = []
    j = 0
    for i in range(len(lap)):
        rel_s = float((lap.s[i] - s0) * scale_s)
        while j + 1 < len(master_s) and master_s[j + 1] <= rel_s:
            j += 1
        closest = _closest_by_s(master_s, j, rel_s)
        px = float(lap.x[i])
        py = float(lap.y[i])
        mapping = PointMapping(
            index=start_index + i,
            rel_s=rel_s,
            x=px,
            y=py,
            match=_match(master, closest, px, py),
        )
        if emit is not None:
            emit(mapping)
        out.append(mapping)
    return out


def map_rel_s_to_master(master: TrackPath, rel_s: float, px: float, py: float) -> Optional[MasterMatch]:
    """Map a single arc-length position (and its raw point) to the closest master point."""
    if len(master) == 0:
        return None
    # Last index with master_s <= rel_s, floored at 0
    j = max(int(np.searchsorted(master.s, rel_s, side="right")) - 1, 0)
    closest = _closest_by_s(master.s, j, rel_s)
    return _match(master, closest, px, py)


class TimelineCursor:
    """
    Remembers the last bracket found in a time-ordered sequence.

    locate() returns the index i with times[i] <= t < times[i + 1], stepping
    forward from the remembered position when t moved a little and falling
    back to a binary search otherwise.
    """

    def __init__(self):
        self.index = 0

    def locate(self, times: Sequence[float], t: float) -> int:
        n = len(times)
        if n == 0:
            return 0
        i = min(self.index, n - 1)

        if times[i] <= t:
            if i + 1 >= n or t < times[i + 1]:
                self.index = i
                return i
            if i + 2 >= n or t < times[i + 2]:
                self.index = i + 1
                return i + 1

        self.index = max(bisect.bisect_right(times, t) - 1, 0)
        return self.index


class CursorArena:
    """One TimelineCursor per tracked entity (session)"""

    def __init__(self):
        self._cursors: Dict[Hashable, TimelineCursor] = {}

    def cursor(self, key: Hashable) -> TimelineCursor:
        if key not in self._cursors:
            self._cursors[key] = TimelineCursor()
        return self._cursors[key]

    def reset(self) -> None:
        self._cursors.clear()

    def __len__(self) -> int:
        return len(self._cursors)
