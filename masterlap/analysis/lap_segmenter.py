"""
Lap segmentation for reconstructed paths.

Boundary index sets are ordered, strictly increasing lists of indices into a
session's points; consecutive pairs delimit one lap and the final entry is the
end-exclusive point count.

Strategies, in priority order:
    1. Telemetry lap counter (authoritative when reported)
    2. Proximity to the start point, with pruning of spurious short laps
    3. Distance threshold against an expected lap length
    4. Even spacing by arc length
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..config.config import RunParameters
from ..session.models import LapSegmentation, LapStrategy, RaceType, Sample, TrackPath
from ..utils.numeric import median

logger = logging.getLogger(__name__)

# Lap count estimate when none is known: one lap per this many meters
LAP_COUNT_ESTIMATE_DISTANCE = 50000.0
MAX_ESTIMATED_LAPS = 8
DEFAULT_START_FINISH_RADIUS = 10.0


def lap_boundaries_from_telemetry(samples: Sequence[Sample]) -> Optional[List[int]]:
    """
    Boundaries where the reported lap counter increases.

    Returns None when the source reports no lap counter or it never increases.
    """
    if not samples:
        return None

    boundaries = [0]
    last = None
    for i, sample in enumerate(samples):
        current = sample.lap_number
        if current is None:
            continue
        if last is None:
            last = current
            continue
        if current >= last + 1:
            boundaries.append(i)
            last = current

    if len(boundaries) < 2:
        return None
    if boundaries[-1] != len(samples):
        boundaries.append(len(samples))
    return boundaries


def detect_laps_near_start(path: TrackPath, radius: float, min_lap_distance: float) -> List[int]:
    """
    Mark a boundary each time the path returns within radius of its start
    after traveling at least min_lap_distance since the previous boundary.

    Always starts with 0 and ends with len(path).
    """
    n = len(path)
    if n == 0:
        return []

    start_x, start_y = path.x[0], path.y[0]
    r2 = radius * radius
    dist_sq = (path.x - start_x) ** 2 + (path.y - start_y) ** 2

    boundaries = [0]
    last_s = path.s[0]
    for i in range(1, n):
        if dist_sq[i] <= r2 and path.s[i] - last_s >= min_lap_distance:
            boundaries.append(i)
            last_s = path.s[i]

    if boundaries[-1] != n:
        boundaries.append(n)
    return boundaries


def _lap_length(path: TrackPath, start: int, end: int) -> float:
    return float(path.s[end - 1] - path.s[start])


def prune_short_laps(path: TrackPath, boundaries: List[int], min_spacing: float,
                     ratio: float = 0.8) -> List[int]:
    """
    Drop interior boundaries that close a lap shorter than ratio * median lap
    length or shorter than min_spacing. First and last boundaries are kept.
    """
    if len(boundaries) <= 2:
        return list(boundaries)

    n = len(path)
    lengths = []
    for start, end in zip(boundaries[:-1], boundaries[1:]):
        end = min(end, n)
        if end > start:
            lengths.append(_lap_length(path, start, end))
    if not lengths:
        return list(boundaries)

    med = median(lengths)
    kept = [boundaries[0]]
    for i in range(1, len(boundaries) - 1):
        start = boundaries[i - 1]
        end = min(boundaries[i], n)
        if end <= start:
            continue
        seg_len = _lap_length(path, start, end)
        if seg_len >= med * ratio and seg_len >= min_spacing:
            kept.append(boundaries[i])
    kept.append(boundaries[-1])

    if len(kept) != len(boundaries):
        logger.debug(f"Pruned {len(boundaries) - len(kept)} short laps (median {med:.1f}m)")
    return kept


def find_lap_boundaries_by_distance(path: TrackPath, expected_lap: float, tolerance: float,
                                    min_lap_distance: float) -> Optional[List[int]]:
    """
    Mark a boundary whenever arc length since the last boundary reaches
    expected_lap - tolerance and at least min_lap_distance.

    Returns None for fewer than 2 points.
    """
    n = len(path)
    if n < 2:
        return None

    boundaries = [0]
    last_s = path.s[0]
    threshold = max(expected_lap - tolerance, min_lap_distance)
    for i in range(1, n):
        if path.s[i] - last_s >= threshold:
            boundaries.append(i)
            last_s = path.s[i]

    if boundaries[-1] != n:
        boundaries.append(n)
    return boundaries


def build_even_lap_boundaries(path: TrackPath, laps: int) -> List[int]:
    """Split the path into `laps` laps of equal arc length."""
    n = len(path)
    if laps < 1 or n == 0:
        return [0, n]
    total = float(path.s[-1])
    if total <= 0:
        return [0, n]

    lap_len = total / laps
    target = lap_len
    boundaries = [0]
    for i in range(n):
        if path.s[i] >= target and len(boundaries) < laps:
            boundaries.append(i)
            target += lap_len

    if boundaries[-1] != n:
        boundaries.append(n)
    return boundaries


def derive_lap_count(total_distance: float, preferred: int = 0) -> int:
    """Lap count to use when none is known, clamped to 1..MAX_ESTIMATED_LAPS."""
    if preferred > 0:
        return preferred
    if total_distance <= 0:
        return 1
    laps = int(round(total_distance / LAP_COUNT_ESTIMATE_DISTANCE))
    return max(1, min(laps, MAX_ESTIMATED_LAPS))


def build_lap_boundaries(path: TrackPath,
                         laps: int,
                         lap_length: float = 0.0,
                         lap_tolerance: float = 25.0,
                         min_spacing: float = 200.0,
                         enforce_lap_count: bool = False,
                         radius: float = DEFAULT_START_FINISH_RADIUS,
                         prune_ratio: float = 0.8) -> Tuple[List[int], LapStrategy]:
    """
    Run the geometric strategies in priority order.

    A strategy's result is accepted only when it found at least one interior
    boundary; otherwise the next strategy runs. Even spacing always answers.

    Returns:
        Tuple of (boundaries, strategy that produced them)
    """
    if radius <= 0:
        radius = DEFAULT_START_FINISH_RADIUS

    proximity = detect_laps_near_start(path, radius, min_spacing)
    proximity = prune_short_laps(path, proximity, min_spacing, prune_ratio)
    if enforce_lap_count and laps > 0 and len(proximity) - 1 > laps:
        proximity = proximity[:laps] + [len(path)]
    if len(proximity) > 2:
        return proximity, LapStrategy.PROXIMITY

    if lap_length > 0 and laps <= 1:
        by_distance = find_lap_boundaries_by_distance(
            path, lap_length, lap_tolerance, max(min_spacing, lap_length * 0.2)
        )
        if by_distance is not None and len(by_distance) > 2:
            return by_distance, LapStrategy.DISTANCE

    return build_even_lap_boundaries(path, laps), LapStrategy.EVEN


def validate_boundaries(boundaries: Sequence[int], point_count: int) -> bool:
    """True when boundaries has >= 2 strictly increasing entries starting at >= 0 and ending at point_count."""
    if len(boundaries) < 2:
        return False
    if boundaries[0] < 0 or boundaries[-1] != point_count:
        return False
    return bool(np.all(np.diff(np.asarray(boundaries)) > 0))


def find_lap_and_rel_s(boundaries: Sequence[int], path: TrackPath, index: int) -> Tuple[int, float]:
    """
    Lap number (1-based) and arc length since that lap's start for a point index.

    Returns (0, 0.0) when the index is outside every lap.
    """
    for lap_number in range(1, len(boundaries)):
        start = boundaries[lap_number - 1]
        end = boundaries[lap_number]
        if start <= index < end:
            return lap_number, float(path.s[index] - path.s[start])
    return 0, 0.0


class LapSegmenter:
    """Classifies a session as lapped or sprint and segments it into laps"""

    def __init__(self, params: Optional[RunParameters] = None):
        self.params = params or RunParameters()

    def segment(self, samples: Sequence[Sample], path: TrackPath) -> LapSegmentation:
        """
        Segment one session.

        Priority: forced sprint, reported lap counter, known lap count,
        closed loop detected by proximity, otherwise a single open path.
        """
        p = self.params
        n = len(path)
        whole = LapSegmentation([0, n], LapStrategy.WHOLE_PATH, RaceType.SPRINT)

        if p.force_sprint:
            return whole

        telemetry = lap_boundaries_from_telemetry(samples) if len(samples) == n else None
        if telemetry is not None:
            logger.debug(f"Using reported lap counter: {len(telemetry) - 1} laps")
            return LapSegmentation(telemetry, LapStrategy.TELEMETRY, RaceType.LAPPED)

        radius = p.start_finish_radius if p.start_finish_radius > 0 else DEFAULT_START_FINISH_RADIUS
        is_loop = len(detect_laps_near_start(path, radius, p.min_lap_spacing)) > 2

        if p.lap_count > 0:
            laps = p.lap_count
            lapped = laps > 1
        elif is_loop:
            laps = derive_lap_count(path.length, p.lap_count)
            lapped = True
        else:
            laps = 1
            lapped = False

        if not lapped:
            return whole

        boundaries, strategy = build_lap_boundaries(
            path,
            laps,
            lap_length=p.expected_lap_length,
            lap_tolerance=p.lap_tolerance,
            min_spacing=p.min_lap_spacing,
            enforce_lap_count=p.lap_count > 0,
            radius=radius,
            prune_ratio=p.lap_prune_ratio,
        )
        logger.debug(f"Segmented {len(boundaries) - 1} laps via {strategy.value}")
        return LapSegmentation(boundaries, strategy, RaceType.LAPPED)
