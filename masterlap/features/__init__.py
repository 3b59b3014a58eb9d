"""
Per-session and cross-session analysis: events, overtakes, lap timing,
surface labels and derived dynamics channels.
"""

from .event_detection import EventDetector, detect_events, sample_speed
from .overtakes import (
    ProgressPoint,
    OvertakeEvent,
    detect_overtakes,
    detect_pair,
    point_at_time,
    lap_lengths,
    progress,
)
from .lap_metrics import (
    compute_lap_metrics,
    best_sector_times,
    expected_time_for_progress,
    LapDeltaTracker,
)
from .surface import (
    classify_surface,
    dominant_surface,
    SURFACE_PUDDLE,
    SURFACE_RUMBLE,
    SURFACE_ROUGH,
    SURFACE_TARMAC,
)
from .dynamics import DynamicsChannels, compute_dynamics, fahrenheit_to_celsius

__all__ = [
    'EventDetector',
    'detect_events',
    'sample_speed',
    'ProgressPoint',
    'OvertakeEvent',
    'detect_overtakes',
    'detect_pair',
    'point_at_time',
    'lap_lengths',
    'progress',
    'compute_lap_metrics',
    'best_sector_times',
    'expected_time_for_progress',
    'LapDeltaTracker',
    'classify_surface',
    'dominant_surface',
    'SURFACE_PUDDLE',
    'SURFACE_RUMBLE',
    'SURFACE_ROUGH',
    'SURFACE_TARMAC',
    'DynamicsChannels',
    'compute_dynamics',
    'fahrenheit_to_celsius',
]
