"""
Surface classification from per-wheel telemetry.

Puddle, rumble-strip and surface-rumble indicators are smoothed with a
trailing moving average and mapped to one label per sample, in priority
order: puddle, rumble, rough, tarmac.
"""

from collections import Counter
from typing import Dict, List, Optional, Sequence

import numpy as np

from ..config.thresholds import SurfaceThresholds
from ..session.models import Sample
from ..utils.numeric import smooth_series

SURFACE_PUDDLE = "puddle"
SURFACE_RUMBLE = "rumble"
SURFACE_ROUGH = "rough"
SURFACE_TARMAC = "tarmac"


def classify_surface(samples: Sequence[Sample],
                     thresholds: Optional[SurfaceThresholds] = None) -> List[str]:
    """One surface label per sample."""
    th = thresholds or SurfaceThresholds()
    if not samples:
        return []

    puddle = smooth_series([s.wheel_in_puddle.total() for s in samples], th.window)
    rumble = smooth_series([s.wheel_on_rumble.total() for s in samples], th.window)
    rough = smooth_series([s.surface_rumble.mean_abs() for s in samples], th.window)

    labels = np.full(len(samples), SURFACE_TARMAC, dtype=object)
    labels[rough >= th.rough_threshold] = SURFACE_ROUGH
    labels[rumble >= th.rumble_threshold] = SURFACE_RUMBLE
    labels[puddle >= th.puddle_threshold] = SURFACE_PUDDLE
    return [str(label) for label in labels]


def dominant_surface(counts: Dict[str, int]) -> str:
    """Most frequent label; ties go to the label counted first. Empty string for no counts."""
    if not counts:
        return ""
    return Counter(counts).most_common(1)[0][0]
