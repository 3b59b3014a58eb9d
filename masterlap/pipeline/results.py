"""
Output records of a pipeline run.

All records expose to_dict() with JSON-safe values; per-session points and the
master path also have DataFrame views for analysis in pandas.
"""

from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional

import pandas as pd

from ..session.models import LapMetrics, RaceType, WheelSet
from ..utils.calculation_trace import PipelineTrace
from ..utils.json_helpers import sanitize_for_json


@dataclass
class MasterPointOut:
    """One master path point with its dominant surface label"""
    rel_s: float
    x: float
    y: float
    surface: str = ""

    def to_dict(self) -> dict:
        result = {"rel_s": self.rel_s, "x": self.x, "y": self.y}
        if self.surface:
            result["surface"] = self.surface
        return result


@dataclass
class HeatmapPoint:
    """Traffic, speed and acceleration accumulated at one master index"""
    index: int
    rel_s: float
    x: float
    y: float
    avg_accel: float
    avg_speed_mph: float
    count: int
    surface: str = ""
    surface_counts: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class EventRecord:
    """An event from one session (or an overtake between two), mapped onto the master path"""
    type: str
    source: str
    time: float
    note: str
    index: int = 0
    target: str = ""
    lap: int = 0
    rel_s: float = 0.0
    master_index: Optional[int] = None
    master_rel_s: Optional[float] = None
    master_x: Optional[float] = None
    master_y: Optional[float] = None
    distance_sq: Optional[float] = None

    def to_dict(self) -> dict:
        result = {
            "type": self.type,
            "source": self.source,
            "time": self.time,
            "note": self.note,
            "index": self.index,
            "lap": self.lap,
            "rel_s": self.rel_s,
        }
        if self.target:
            result["target"] = self.target
        for key in ("master_index", "master_rel_s", "master_x", "master_y", "distance_sq"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        return result


@dataclass
class CarPoint:
    """One session sample expressed on the master path, with derived channels"""
    time: float
    lap: int
    rel_s: float
    heading: float
    master_x: float
    master_y: float
    speed_mph: float
    speed_kmh: float
    gear: int
    delta: float
    long_acc: float
    lat_acc: float
    yaw_rate: float
    yaw_deg_s: float
    throttle: float
    brake: float
    steer_raw: float
    throttle_input: float = 0.0
    brake_input: float = 0.0
    steer_input: float = 0.0
    susp_travel: WheelSet = WheelSet()
    tire_temp_c: WheelSet = WheelSet()
    surface: str = ""
    distance_sq: float = 0.0

    def to_dict(self) -> dict:
        result = asdict(self)
        for name in ("susp_travel", "tire_temp_c"):
            wheels = getattr(self, name)
            result[name] = {"fl": wheels.fl, "fr": wheels.fr, "rl": wheels.rl, "rr": wheels.rr}
        return result

    def flat_dict(self) -> dict:
        """Flattened per-wheel fields, one column each"""
        result = asdict(self)
        for name in ("susp_travel", "tire_temp_c"):
            wheels = getattr(self, name)
            del result[name]
            for corner in ("fl", "fr", "rl", "rr"):
                result[f"{name}_{corner}"] = getattr(wheels, corner)
        return result


@dataclass
class CarOutput:
    """Per-session output"""
    source: str
    race_type: RaceType
    lap_strategy: str = ""
    reconstruction_mode: str = ""
    points: List[CarPoint] = field(default_factory=list)
    lap_metrics: List[LapMetrics] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "race_type": self.race_type.value,
            "lap_strategy": self.lap_strategy,
            "reconstruction_mode": self.reconstruction_mode,
            "points": [p.to_dict() for p in self.points],
            "lap_times": [m.to_dict() for m in self.lap_metrics],
        }

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([p.flat_dict() for p in self.points])


@dataclass
class RunResult:
    """Everything one pipeline run produces"""
    race_type: RaceType
    master: List[MasterPointOut] = field(default_factory=list)
    heatmap: List[HeatmapPoint] = field(default_factory=list)
    events: List[EventRecord] = field(default_factory=list)
    cars: List[CarOutput] = field(default_factory=list)
    failed_sessions: Dict[str, str] = field(default_factory=dict)
    trace: Optional[PipelineTrace] = None

    def car(self, source: str) -> Optional[CarOutput]:
        for car in self.cars:
            if car.source == source:
                return car
        return None

    def events_of_type(self, event_type: str) -> List[EventRecord]:
        return [e for e in self.events if e.type == event_type]

    def master_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([m.to_dict() for m in self.master])

    def to_dict(self) -> dict:
        result = {
            "race_type": self.race_type.value,
            "master": [m.to_dict() for m in self.master],
            "heatmap": [h.to_dict() for h in self.heatmap],
            "events": [e.to_dict() for e in self.events],
            "cars": [c.to_dict() for c in self.cars],
        }
        if self.failed_sessions:
            result["failed_sessions"] = dict(self.failed_sessions)
        if self.trace is not None:
            result["trace"] = self.trace.to_dict()
        return sanitize_for_json(result)
