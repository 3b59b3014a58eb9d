"""
Session data models and the DataFrame ingestion adapter.
"""

from .models import (
    Sample,
    WheelSet,
    Trackpoint,
    TrackPath,
    LapSegmentation,
    Event,
    EventType,
    RaceType,
    ReconstructionMode,
    LapStrategy,
    MasterMatch,
    LapMetrics,
)
from .channels import (
    samples_from_dataframe,
    load_session_file,
    load_session_parquet,
    discover_session_files,
)

__all__ = [
    'Sample',
    'WheelSet',
    'Trackpoint',
    'TrackPath',
    'LapSegmentation',
    'Event',
    'EventType',
    'RaceType',
    'ReconstructionMode',
    'LapStrategy',
    'MasterMatch',
    'LapMetrics',
    'samples_from_dataframe',
    'load_session_file',
    'load_session_parquet',
    'discover_session_files',
]
