"""
Path reconstruction from raw samples.

Turns one session's ordered samples into a TrackPath (arc length, planar
position, heading), one point per sample. Two modes:

- absolute: the source reports world position; positions are re-based so the
  first sample sits at the origin.
- dead reckoning: heading is integrated from a smoothed longitudinal
  acceleration based yaw-rate proxy and position advanced by speed * dt.
"""

import logging
import math
from typing import Optional, Sequence, Tuple

import numpy as np

from ..session.models import ReconstructionMode, Sample, TrackPath
from ..utils.numeric import clean_float

logger = logging.getLogger(__name__)

# Dead-reckoning integration limits
MIN_DT = 0.016          # seconds, also used for corrupt steps
MAX_DT = 0.25           # seconds
MIN_SPEED = 0.1         # m/s floor applied to integrated speed
YAW_RATE_MIN_SPEED = 2.0  # m/s below which the yaw-rate proxy is zero
AX_SMOOTHING = 0.15     # weight of the newest acceleration sample

HEADING_EPS = 1e-6


def _finite_position(sample: Sample) -> Optional[Tuple[float, float]]:
    """Planar position when reported and finite, else None."""
    if not sample.has_position:
        return None
    px, pz = sample.planar_position
    if not (math.isfinite(px) and math.isfinite(pz)):
        return None
    return px, pz


def select_mode(samples: Sequence[Sample]) -> ReconstructionMode:
    """
    Choose the reconstruction mode supported by the samples.

    Absolute mode needs a finite planar position on most samples and at least
    two distinct positions; a source that reports all-zero coordinates is
    treated as not reporting position. Isolated bad positions are held over
    by _build_absolute().
    """
    if not samples:
        return ReconstructionMode.DEAD_RECKONING

    first = None
    moved = False
    valid = 0
    for sample in samples:
        pos = _finite_position(sample)
        if pos is None:
            continue
        valid += 1
        if first is None:
            first = pos
        elif pos != first:
            moved = True

    if moved and valid * 2 > len(samples):
        return ReconstructionMode.ABSOLUTE
    return ReconstructionMode.DEAD_RECKONING


def build_track(samples: Sequence[Sample]) -> TrackPath:
    """
    Reconstruct the driven path for one session.

    Args:
        samples: Ordered samples for one session

    Returns:
        TrackPath with one point per sample

    Raises:
        ValueError: if fewer than 2 samples are given
    """
    path, _ = build_track_with_mode(samples)
    return path


def build_track_with_mode(samples: Sequence[Sample]) -> Tuple[TrackPath, ReconstructionMode]:
    """Same as build_track() but also reports which mode produced the path."""
    if len(samples) < 2:
        raise ValueError(f"Need at least 2 samples to build a track, got {len(samples)}")

    mode = select_mode(samples)
    if mode == ReconstructionMode.ABSOLUTE:
        path = _build_absolute(samples)
    else:
        path = _build_dead_reckoning(samples)

    logger.debug(f"Reconstructed {len(path)} points ({mode.value}), length {path.length:.1f}m")
    return path, mode


def _build_absolute(samples: Sequence[Sample]) -> TrackPath:
    n = len(samples)
    s = np.zeros(n)
    x = np.zeros(n)
    y = np.zeros(n)
    theta = np.zeros(n)

    x0, y0 = next(p for p in map(_finite_position, samples) if p is not None)
    heading = 0.0
    dist = 0.0

    for i, sample in enumerate(samples):
        pos = _finite_position(sample)
        if pos is None:
            # Hold the previous position; the step adds no arc length
            x[i] = x[i - 1] if i > 0 else 0.0
            y[i] = y[i - 1] if i > 0 else 0.0
        else:
            x[i] = pos[0] - x0
            y[i] = pos[1] - y0

        if i > 0:
            dx = x[i] - x[i - 1]
            dy = y[i] - y[i - 1]
            dist += math.hypot(dx, dy)
        else:
            dx = dy = 0.0
        s[i] = dist

        # Heading precedence: reported yaw, velocity vector, travel direction, previous
        yaw = sample.yaw
        if yaw is not None and math.isfinite(yaw):
            heading = yaw
        else:
            vx = clean_float(sample.vel_x)
            vz = clean_float(sample.vel_z)
            if math.hypot(vx, vz) > HEADING_EPS:
                heading = math.atan2(vz, vx)
            elif math.hypot(dx, dy) > HEADING_EPS:
                heading = math.atan2(dy, dx)
        theta[i] = heading

    return TrackPath(s=s, x=x, y=y, theta=theta)


def _step_dt(prev_time: float, cur_time: float) -> float:
    dt = clean_float(cur_time - prev_time, MIN_DT)
    if dt < MIN_DT or dt > MAX_DT:
        return MIN_DT
    return dt


def _build_dead_reckoning(samples: Sequence[Sample]) -> TrackPath:
    n = len(samples)
    s = np.zeros(n)
    x = np.zeros(n)
    y = np.zeros(n)
    theta = np.zeros(n)

    first = samples[0]
    heading = clean_float(math.atan2(clean_float(first.vel_z), clean_float(first.vel_x)), 0.0)
    theta[0] = heading

    smooth_ax = clean_float(first.accel_x, 0.0)
    last_speed = clean_float(first.speed, 0.0)
    px = py = dist = 0.0

    for i in range(1, n):
        prev = samples[i - 1]
        cur = samples[i]

        dt = _step_dt(prev.time, cur.time)

        smooth_ax = smooth_ax * (1 - AX_SMOOTHING) + clean_float(cur.accel_x, 0.0) * AX_SMOOTHING

        speed = clean_float(cur.speed, last_speed)
        last_speed = speed
        if speed < MIN_SPEED:
            speed = MIN_SPEED

        yaw_rate = smooth_ax / speed if speed > YAW_RATE_MIN_SPEED else 0.0
        heading += yaw_rate * dt

        dx = math.cos(heading) * speed * dt
        dy = math.sin(heading) * speed * dt
        px += dx
        py += dy
        dist += math.hypot(dx, dy)

        s[i] = dist
        x[i] = px
        y[i] = py
        theta[i] = heading

    return TrackPath(s=s, x=x, y=y, theta=theta)
