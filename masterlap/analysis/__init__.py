"""
Geometry pipeline: path reconstruction, lap segmentation, master path
construction and mapping onto the master path.
"""

from .reconstruction import build_track, build_track_with_mode, select_mode
from .lap_segmenter import (
    LapSegmenter,
    lap_boundaries_from_telemetry,
    detect_laps_near_start,
    prune_short_laps,
    find_lap_boundaries_by_distance,
    build_even_lap_boundaries,
    build_lap_boundaries,
    derive_lap_count,
    find_lap_and_rel_s,
    validate_boundaries,
)
from .master_builder import (
    SimilarityTransform,
    close_loop,
    normalize_lap_segment,
    resample_path,
    fit_similarity,
    align_to_reference,
    average_laps,
    full_laps,
    build_master_lap,
    build_master_from_boundaries,
    build_master_path,
)
from .master_mapper import (
    PointMapping,
    map_to_master,
    map_rel_s_to_master,
    TimelineCursor,
    CursorArena,
)

__all__ = [
    'build_track',
    'build_track_with_mode',
    'select_mode',
    'LapSegmenter',
    'lap_boundaries_from_telemetry',
    'detect_laps_near_start',
    'prune_short_laps',
    'find_lap_boundaries_by_distance',
    'build_even_lap_boundaries',
    'build_lap_boundaries',
    'derive_lap_count',
    'find_lap_and_rel_s',
    'validate_boundaries',
    'SimilarityTransform',
    'close_loop',
    'normalize_lap_segment',
    'resample_path',
    'fit_similarity',
    'align_to_reference',
    'average_laps',
    'full_laps',
    'build_master_lap',
    'build_master_from_boundaries',
    'build_master_path',
    'PointMapping',
    'map_to_master',
    'map_rel_s_to_master',
    'TimelineCursor',
    'CursorArena',
]
