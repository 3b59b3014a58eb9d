"""
Pipeline orchestration and output records.
"""

from .results import CarOutput, CarPoint, EventRecord, HeatmapPoint, MasterPointOut, RunResult
from .runner import (
    NoUsableSessionsError,
    SessionResult,
    process_session,
    build_master,
    map_session,
    merge_partials,
    run_sessions,
    run_files,
    load_sessions,
)

__all__ = [
    'CarOutput',
    'CarPoint',
    'EventRecord',
    'HeatmapPoint',
    'MasterPointOut',
    'RunResult',
    'NoUsableSessionsError',
    'SessionResult',
    'process_session',
    'build_master',
    'map_session',
    'merge_partials',
    'run_sessions',
    'run_files',
    'load_sessions',
]
