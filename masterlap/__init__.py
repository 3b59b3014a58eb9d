"""
masterlap - master-lap reconstruction, alignment and analysis for vehicle telemetry.

Reconstructs each session's driven path, segments it into laps, averages the
laps of every session into one canonical master path and re-expresses all
sessions on it for cross-session comparison, timing and event detection.
"""

__version__ = "0.1.0"
