"""
Shared utilities: numeric guards, JSON sanitizing, run tracing.
"""

from .numeric import (
    clean_float,
    clamp,
    wrap_angle,
    median,
    percentile,
    smooth_series,
    MPS_TO_MPH,
    MPS_TO_KMH,
)
from .json_helpers import sanitize_for_json
from .calculation_trace import PipelineTrace, SessionTrace, SanityCheck

__all__ = [
    'clean_float',
    'clamp',
    'wrap_angle',
    'median',
    'percentile',
    'smooth_series',
    'MPS_TO_MPH',
    'MPS_TO_KMH',
    'sanitize_for_json',
    'PipelineTrace',
    'SessionTrace',
    'SanityCheck',
]
