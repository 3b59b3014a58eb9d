"""
Master path construction.

Lapped runs: every lap segment is closed, resampled to a fixed number of
points evenly spaced by arc length, aligned to the first lap with a
closed-form similarity fit (rotation, uniform scale, translation) and averaged
point by point.

Sprint runs: one whole path is resampled without closing or alignment so
absolute position is preserved.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..session.models import TrackPath
from ..utils.numeric import median, wrap_angle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimilarityTransform:
    """p' = scale * R(angle) * p + (tx, ty)"""
    angle: float = 0.0
    scale: float = 1.0
    tx: float = 0.0
    ty: float = 0.0

    def apply(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        cos_t = math.cos(self.angle)
        sin_t = math.sin(self.angle)
        out_x = self.scale * (cos_t * x - sin_t * y) + self.tx
        out_y = self.scale * (sin_t * x + cos_t * y) + self.ty
        return out_x, out_y

    def to_dict(self) -> dict:
        return {"angle": self.angle, "scale": self.scale, "tx": self.tx, "ty": self.ty}


def close_loop(path: TrackPath) -> TrackPath:
    """
    Remove end-to-start drift by subtracting a linearly growing share of it,
    then snap the last point onto the first. Arc length is left unchanged.
    """
    n = len(path)
    if n < 2:
        return path.copy()

    dx = path.x[-1] - path.x[0]
    dy = path.y[-1] - path.y[0]
    if dx == 0 and dy == 0:
        return path.copy()

    t = np.arange(n) / (n - 1)
    x = path.x - t * dx
    y = path.y - t * dy
    x[-1] = x[0]
    y[-1] = y[0]
    return TrackPath(s=path.s.copy(), x=x, y=y, theta=path.theta.copy())


def normalize_lap_segment(path: TrackPath) -> TrackPath:
    """Close a lap and recompute its arc length from the closed geometry (starting at 0)."""
    return close_loop(path).with_recomputed_arc_length()


def resample_path(path: TrackPath, samples: int) -> Optional[TrackPath]:
    """
    Resample to `samples` points evenly spaced by arc length.

    Each output point interpolates linearly between the two raw points that
    bracket its target arc length. Output arc length is local (0..length).
    Returns None for fewer than 2 input points, fewer than 2 samples or a
    zero-length path.
    """
    n = len(path)
    if n < 2 or samples < 2:
        return None

    s0 = path.s[0]
    lap_len = float(path.s[-1] - s0)
    if lap_len <= 0:
        return None

    out_s = np.empty(samples)
    out_x = np.empty(samples)
    out_y = np.empty(samples)
    out_theta = np.empty(samples)

    j = 0
    for i in range(samples):
        target_local = i * lap_len / (samples - 1)
        target = s0 + target_local

        while j < n - 1 and path.s[j + 1] < target:
            j += 1

        out_s[i] = target_local
        if j == n - 1:
            out_x[i] = path.x[-1]
            out_y[i] = path.y[-1]
            out_theta[i] = path.theta[-1]
            continue

        denom = path.s[j + 1] - path.s[j]
        t = (target - path.s[j]) / denom if denom > 0 else 0.0
        out_x[i] = path.x[j] + t * (path.x[j + 1] - path.x[j])
        out_y[i] = path.y[j] + t * (path.y[j + 1] - path.y[j])
        out_theta[i] = path.theta[j] + t * wrap_angle(path.theta[j + 1] - path.theta[j])

    return TrackPath(s=out_s, x=out_x, y=out_y, theta=out_theta)


def fit_similarity(ref: TrackPath, lap: TrackPath) -> SimilarityTransform:
    """
    Least-squares rotation and uniform scale mapping lap onto ref about their
    centroids, followed by a shift that puts the first point exactly on ref's.

    Both paths must have the same point count; otherwise the identity is returned.
    """
    n = len(ref)
    if len(lap) != n or n == 0:
        return SimilarityTransform()

    c_ref_x, c_ref_y = ref.x.mean(), ref.y.mean()
    c_lap_x, c_lap_y = lap.x.mean(), lap.y.mean()
    rx = ref.x - c_ref_x
    ry = ref.y - c_ref_y
    lx = lap.x - c_lap_x
    ly = lap.y - c_lap_y

    a = float(np.sum(lx * rx + ly * ry))
    b = float(np.sum(lx * ry - ly * rx))
    denom = math.hypot(a, b)
    if denom > 0:
        cos_t, sin_t = a / denom, b / denom
    else:
        cos_t, sin_t = 1.0, 0.0

    rotated_x = cos_t * lx - sin_t * ly
    rotated_y = sin_t * lx + cos_t * ly
    num = float(np.sum(rx * rotated_x + ry * rotated_y))
    den = float(np.sum(lx * lx + ly * ly))
    scale = num / den if den > 0 else 1.0

    # Translation taking the lap centroid onto the ref centroid after rotation and scale
    tx = c_ref_x - scale * (cos_t * c_lap_x - sin_t * c_lap_y)
    ty = c_ref_y - scale * (sin_t * c_lap_x + cos_t * c_lap_y)

    # Anchor the first point on the reference start
    first_x = scale * (cos_t * lap.x[0] - sin_t * lap.y[0]) + tx
    first_y = scale * (sin_t * lap.x[0] + cos_t * lap.y[0]) + ty
    tx += ref.x[0] - first_x
    ty += ref.y[0] - first_y

    return SimilarityTransform(angle=math.atan2(sin_t, cos_t), scale=scale, tx=float(tx), ty=float(ty))


def align_to_reference(ref: TrackPath, lap: TrackPath) -> TrackPath:
    """Apply fit_similarity(ref, lap) to lap. Arc length is kept; heading is rotated."""
    if len(lap) != len(ref) or len(ref) == 0:
        return lap.copy()
    transform = fit_similarity(ref, lap)
    x, y = transform.apply(lap.x, lap.y)
    theta = lap.theta + transform.angle
    return TrackPath(s=lap.s.copy(), x=x, y=y, theta=theta)


def average_laps(aligned: Sequence[TrackPath]) -> TrackPath:
    """
    Point-by-point mean of equally sized aligned laps.

    Arc length comes from the first (reference) lap. Heading is the circular
    mean of each lap's heading relative to the reference.
    """
    ref = aligned[0]
    xs = np.vstack([lap.x for lap in aligned])
    ys = np.vstack([lap.y for lap in aligned])
    rel = np.vstack([np.arctan2(np.sin(lap.theta - ref.theta), np.cos(lap.theta - ref.theta))
                     for lap in aligned])
    theta = ref.theta + np.arctan2(np.sin(rel).mean(axis=0), np.cos(rel).mean(axis=0))
    return TrackPath(s=ref.s.copy(), x=xs.mean(axis=0), y=ys.mean(axis=0), theta=theta)


def full_laps(segments: Sequence[TrackPath], ratio: float = 0.8) -> List[TrackPath]:
    """
    Drop partial laps before averaging.

    Keeps segments with at least 2 points whose length reaches `ratio` times
    the median segment length, so the leftover piece after the last line
    crossing does not distort the master. A ratio of 0 keeps every usable
    segment.
    """
    usable = [segment for segment in segments if len(segment) >= 2]
    if not usable or ratio <= 0:
        return usable
    cutoff = ratio * median([segment.length for segment in usable])
    kept = [segment for segment in usable if segment.length >= cutoff]
    if len(kept) < len(usable):
        logger.debug(f"Dropped {len(usable) - len(kept)} partial laps shorter than {cutoff:.1f}m")
    return kept


def build_master_lap(segments: Sequence[TrackPath], samples: int) -> Optional[TrackPath]:
    """
    Build the averaged master lap from lap segments.

    Segments with fewer than 2 points or zero length are skipped; partial laps
    should already be removed with full_laps(). Returns None when samples < 2
    or no segment qualifies.
    """
    if samples < 2:
        return None

    laps: List[TrackPath] = []
    for segment in segments:
        if len(segment) < 2:
            continue
        resampled = resample_path(normalize_lap_segment(segment), samples)
        if resampled is not None:
            laps.append(resampled)

    if not laps:
        return None

    ref = laps[0]
    aligned = [ref] + [align_to_reference(ref, lap) for lap in laps[1:]]
    master = average_laps(aligned)
    logger.debug(f"Master lap from {len(aligned)} laps, {samples} points, length {master.length:.1f}m")
    return master


def build_master_from_boundaries(path: TrackPath, boundaries: Sequence[int],
                                 samples: int, prune_ratio: float = 0.8) -> Optional[TrackPath]:
    """Slice a path at lap boundaries and build the master lap from its full laps."""
    if len(boundaries) < 2 or samples < 2:
        return None

    n = len(path)
    bounds = list(boundaries)
    if bounds[-1] != n:
        bounds.append(n)

    segments = []
    for start, end in zip(bounds[:-1], bounds[1:]):
        end = min(end, n)
        if end <= start + 1:
            continue
        segments.append(path.segment(start, end))
    return build_master_lap(full_laps(segments, prune_ratio), samples)


def build_master_path(path: TrackPath, samples: int) -> Optional[TrackPath]:
    """Resample an open (sprint) path by arc length without closing or alignment."""
    if len(path) < 2 or samples < 2:
        return None
    return resample_path(path.with_recomputed_arc_length(), samples)
