"""
JSON-safety helpers for run results.

sanitize_for_json(): NaN/Inf/numpy type cleanup for JSON serialization.
"""

import math
from enum import Enum

import numpy as np


def sanitize_for_json(obj):
    """
    Recursively replace NaN/Inf with None and numpy types with native Python types.

    Handles dicts, lists, tuples, numpy arrays, numpy scalars, enums and Python floats.
    """
    if isinstance(obj, dict):
        return {k: sanitize_for_json(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [sanitize_for_json(v) for v in obj]
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, float) and (math.isnan(obj) or math.isinf(obj)):
        return None
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        v = float(obj)
        return None if math.isnan(v) or math.isinf(v) else v
    elif isinstance(obj, np.ndarray):
        return sanitize_for_json(obj.tolist())
    return obj

