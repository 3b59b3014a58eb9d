"""
Shared numeric helpers for track reconstruction and analysis.

Consolidates the small scalar/series utilities used across modules:
- clean_float(): NaN/Inf guard with a caller-chosen fallback
- clamp(): bound a value to [lo, hi]
- wrap_angle(): fold an angle into (-pi, pi]
- median() / percentile(): order statistics on plain sequences
- smooth_series(): trailing moving average
- Unit conversion constants (replaces bare 2.23694 / 3.6 literals)
"""

import math
from typing import Sequence

import numpy as np


# --- Constants ---

MPS_TO_MPH = 2.23694
"""Meters per second to miles per hour conversion factor."""

MPS_TO_KMH = 3.6
"""Meters per second to kilometres per hour conversion factor."""

KMH_TO_MPH = 0.621371

MPH_TO_KMH = 1.60934


# --- Scalar Guards ---

def clean_float(value, fallback: float = 0.0) -> float:
    """
    Replace NaN, Inf and None with a fallback value.

    Args:
        value: Value to check
        fallback: Value to return when the input is not a finite number

    Returns:
        The value as float if finite, otherwise fallback
    """
    if value is None:
        return fallback
    try:
        value = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(value) or math.isinf(value):
        return fallback
    return value


def clamp(value: float, lo: float, hi: float) -> float:
    """Bound value to the closed range [lo, hi]."""
    if value < lo:
        return lo
    if value > hi:
        return hi
    return value


def wrap_angle(angle: float) -> float:
    """Fold an angle in radians into (-pi, pi]."""
    while angle > math.pi:
        angle -= 2 * math.pi
    while angle <= -math.pi:
        angle += 2 * math.pi
    return angle


# --- Order Statistics ---

def median(values: Sequence[float]) -> float:
    """Median of a sequence, 0.0 when empty."""
    if len(values) == 0:
        return 0.0
    return float(np.median(np.asarray(values, dtype=float)))


def percentile(values: Sequence[float], p: float) -> float:
    """
    Linear-interpolated percentile with p expressed as a fraction (0-1).

    Returns 0.0 for an empty sequence. p is clamped to [0, 1].
    """
    if len(values) == 0:
        return 0.0
    p = clamp(p, 0.0, 1.0)
    return float(np.quantile(np.asarray(values, dtype=float), p))


# --- Series ---

def smooth_series(values: Sequence[float], window: int) -> np.ndarray:
    """
    Trailing moving average.

    Each output value is the mean of the last `window` inputs (fewer at the
    start of the series). A window of 1 or less returns the input unchanged.
    """
    arr = np.asarray(values, dtype=float)
    if window <= 1 or len(arr) == 0:
        return arr
    cumsum = np.cumsum(arr)
    out = np.empty_like(arr)
    head = min(window, len(arr))
    out[:head] = cumsum[:head] / np.arange(1, head + 1)
    if len(arr) > window:
        out[window:] = (cumsum[window:] - cumsum[:-window]) / window
    return out
