"""
Overtake detection across sessions.

Every session's mapped points are turned into a progress curve
(lap - 1 + relative arc length / observed lap length). For each pair of
sessions both timelines are merged in time order and each side's progress is
interpolated at the merged time; a change in which session is ahead is an
overtake credited to the session now in front, stamped at that merged time.
"""

import itertools
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from ..analysis.master_mapper import CursorArena, TimelineCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressPoint:
    """A session point on the shared basis: session time, lap, relative arc length, master position"""
    time: float
    lap: int
    rel_s: float
    master_x: float = 0.0
    master_y: float = 0.0


@dataclass(frozen=True)
class OvertakeEvent:
    source: str
    target: str
    time: float
    lap: int
    rel_s: float
    master_x: float
    master_y: float

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "target": self.target,
            "time": self.time,
            "lap": self.lap,
            "rel_s": self.rel_s,
            "master_x": self.master_x,
            "master_y": self.master_y,
        }


def lap_lengths(points: Sequence[ProgressPoint]) -> Dict[int, float]:
    """Observed length per lap: the largest relative arc length seen in it."""
    lengths: Dict[int, float] = {}
    for p in points:
        if p.rel_s > lengths.get(p.lap, 0.0):
            lengths[p.lap] = p.rel_s
    return lengths


def progress(point: ProgressPoint, lengths: Dict[int, float]) -> float:
    lap_len = lengths.get(point.lap, 0.0)
    if lap_len <= 0:
        lap_len = 1.0
    return (point.lap - 1) + point.rel_s / lap_len


def point_at_time(points: Sequence[ProgressPoint], times: Sequence[float], t: float,
                  cursor: Optional[TimelineCursor] = None) -> Optional[ProgressPoint]:
    """
    Linearly interpolated point at time t, clamped to the first/last point.

    The lap number is taken from the earlier bracketing point. Across a lap
    change the earlier point is held, since relative arc length restarts.
    """
    if not points:
        return None
    if t <= times[0]:
        return points[0]
    if t >= times[-1]:
        return points[-1]

    cursor = cursor or TimelineCursor()
    lo = cursor.locate(times, t)
    hi = min(lo + 1, len(points) - 1)
    p1, p2 = points[lo], points[hi]
    span = p2.time - p1.time
    if span <= 0 or p1.lap != p2.lap:
        return p1
    alpha = (t - p1.time) / span
    return ProgressPoint(
        time=t,
        lap=p1.lap,
        rel_s=p1.rel_s + (p2.rel_s - p1.rel_s) * alpha,
        master_x=p1.master_x + (p2.master_x - p1.master_x) * alpha,
        master_y=p1.master_y + (p2.master_y - p1.master_y) * alpha,
    )


def detect_pair(a_name: str, b_name: str,
                a_points: Sequence[ProgressPoint], b_points: Sequence[ProgressPoint],
                arena: Optional[CursorArena] = None) -> List[OvertakeEvent]:
    """Overtakes between two sessions, in time order."""
    events: List[OvertakeEvent] = []
    if not a_points or not b_points:
        return events

    arena = arena or CursorArena()
    cursor_a = arena.cursor(a_name)
    cursor_b = arena.cursor(b_name)
    a_times = [p.time for p in a_points]
    b_times = [p.time for p in b_points]
    len_a = lap_lengths(a_points)
    len_b = lap_lengths(b_points)
    max_t = min(a_times[-1], b_times[-1])

    ia = ib = 0
    prev_ahead = 0
    while ia < len(a_points) and ib < len(b_points):
        t = min(a_times[ia], b_times[ib])
        if t > max_t:
            break

        pa = point_at_time(a_points, a_times, t, cursor_a)
        pb = point_at_time(b_points, b_times, t, cursor_b)
        diff = progress(pa, len_a) - progress(pb, len_b)
        ahead = (diff > 0) - (diff < 0)

        if ahead != 0:
            if prev_ahead != 0 and ahead != prev_ahead:
                if ahead > 0:
                    winner = pa
                    source, target = a_name, b_name
                else:
                    winner = pb
                    source, target = b_name, a_name
                events.append(OvertakeEvent(
                    source=source,
                    target=target,
                    time=t,
                    lap=winner.lap,
                    rel_s=winner.rel_s,
                    master_x=winner.master_x,
                    master_y=winner.master_y,
                ))
            prev_ahead = ahead

        if ia + 1 < len(a_points) and (ib + 1 >= len(b_points) or a_times[ia + 1] <= b_times[ib + 1]):
            ia += 1
        else:
            ib += 1

    return events


def detect_overtakes(mapped: Dict[str, Sequence[ProgressPoint]]) -> List[OvertakeEvent]:
    """
    Overtakes for every unordered pair of sessions.

    Args:
        mapped: Session name -> time-ordered progress points

    Returns:
        Events grouped by pair (pairs in sorted name order), each group in time order
    """
    arena = CursorArena()
    events: List[OvertakeEvent] = []
    for a_name, b_name in itertools.combinations(sorted(mapped), 2):
        pair_events = detect_pair(a_name, b_name, mapped[a_name], mapped[b_name], arena)
        events.extend(pair_events)
    if events:
        logger.debug(f"Detected {len(events)} overtakes across {len(mapped)} sessions")
    return events
