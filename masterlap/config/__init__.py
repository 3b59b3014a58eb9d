"""
Run parameters, environment configuration and detection thresholds.
"""

from .config import Config, RunParameters, get_config
from .thresholds import (
    EventThresholds,
    SurfaceThresholds,
    DEFAULT_EVENT_THRESHOLDS,
    DEFAULT_SURFACE_THRESHOLDS,
)

__all__ = [
    'Config',
    'RunParameters',
    'get_config',
    'EventThresholds',
    'SurfaceThresholds',
    'DEFAULT_EVENT_THRESHOLDS',
    'DEFAULT_SURFACE_THRESHOLDS',
]
