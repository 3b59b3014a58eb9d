"""
Data models for telemetry sessions and reconstructed track geometry.

Samples are immutable recorded vehicle states; Trackpoints and TrackPaths are
the reconstructed geometry; Events, MasterMatches and LapMetrics are the
analysis products that flow into the run result.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterator, List, NamedTuple, Optional, Tuple

import numpy as np
import pandas as pd


class RaceType(str, Enum):
    LAPPED = "lapped"
    SPRINT = "sprint"


class ReconstructionMode(str, Enum):
    ABSOLUTE = "absolute"
    DEAD_RECKONING = "dead_reckoning"


class LapStrategy(str, Enum):
    TELEMETRY = "telemetry"
    PROXIMITY = "proximity"
    DISTANCE = "distance"
    EVEN = "even"
    WHOLE_PATH = "whole_path"


class EventType(str, Enum):
    RESET = "reset"
    CRASH = "crash"
    COLLISION = "collision"
    RUMBLE = "rumble"
    PUDDLE = "puddle"
    DRIFT = "drift"
    TRACTION = "traction"
    POSITION_GAIN = "position_gain"
    POSITION_LOSS = "position_loss"
    POLE_GAIN = "pole_gain"
    POLE_LOSS = "pole_loss"
    SURFACE = "surface"
    OVERTAKE = "overtake"


class WheelSet(NamedTuple):
    """One value per wheel: front-left, front-right, rear-left, rear-right."""
    fl: float = 0.0
    fr: float = 0.0
    rl: float = 0.0
    rr: float = 0.0

    def total(self) -> float:
        return self.fl + self.fr + self.rl + self.rr

    def mean(self) -> float:
        return self.total() / 4

    def mean_abs(self) -> float:
        return (abs(self.fl) + abs(self.fr) + abs(self.rl) + abs(self.rr)) / 4


@dataclass(frozen=True)
class Sample:
    """
    One recorded instant of vehicle state.

    Time is in seconds and speed in m/s. Position, yaw, driver inputs, lap
    number and race position are optional; None means the source did not
    report the channel.
    """
    time: float
    speed: float
    accel_x: float = 0.0
    accel_y: float = 0.0
    accel_z: float = 0.0
    vel_x: float = 0.0
    vel_y: float = 0.0
    vel_z: float = 0.0
    pos_x: Optional[float] = None
    pos_y: Optional[float] = None
    pos_z: Optional[float] = None
    yaw: Optional[float] = None
    ang_vel_y: float = 0.0
    speed_mph: float = 0.0
    speed_kmh: float = 0.0
    gear: int = 0
    tire_slip_angle: WheelSet = WheelSet()
    tire_combined_slip: WheelSet = WheelSet()
    wheel_on_rumble: WheelSet = WheelSet()
    wheel_in_puddle: WheelSet = WheelSet()
    surface_rumble: WheelSet = WheelSet()
    tire_temp: WheelSet = WheelSet()
    susp_travel: WheelSet = WheelSet()
    throttle: Optional[int] = None  # raw 0-255
    brake: Optional[int] = None  # raw 0-255
    steer: Optional[int] = None  # raw -127..127
    lap_number: Optional[int] = None
    race_position: Optional[int] = None
    is_race_on: bool = True

    @property
    def has_position(self) -> bool:
        """True when the source reported a planar world position."""
        return self.pos_x is not None and self.pos_z is not None

    @property
    def planar_position(self) -> Tuple[float, float]:
        """World position projected on the ground plane (X, Z)."""
        return (self.pos_x or 0.0, self.pos_z or 0.0)


@dataclass(frozen=True)
class Trackpoint:
    """A reconstructed geometric sample: arc length, planar position, heading."""
    s: float
    x: float
    y: float
    theta: float = 0.0


@dataclass
class TrackPath:
    """
    Ordered reconstructed geometry stored column-wise.

    s is cumulative arc length, (x, y) the planar position and theta the
    heading in radians. All four arrays share one length.
    """
    s: np.ndarray
    x: np.ndarray
    y: np.ndarray
    theta: np.ndarray

    def __post_init__(self):
        self.s = np.asarray(self.s, dtype=float)
        self.x = np.asarray(self.x, dtype=float)
        self.y = np.asarray(self.y, dtype=float)
        self.theta = np.asarray(self.theta, dtype=float)
        n = len(self.s)
        if not (len(self.x) == len(self.y) == len(self.theta) == n):
            raise ValueError("TrackPath arrays must share one length")

    def __len__(self) -> int:
        return len(self.s)

    def __iter__(self) -> Iterator[Trackpoint]:
        for i in range(len(self)):
            yield self.point(i)

    @classmethod
    def empty(cls) -> "TrackPath":
        return cls(s=[], x=[], y=[], theta=[])

    def point(self, index: int) -> Trackpoint:
        return Trackpoint(
            s=float(self.s[index]),
            x=float(self.x[index]),
            y=float(self.y[index]),
            theta=float(self.theta[index]),
        )

    def segment(self, start: int, end: int) -> "TrackPath":
        """Copy of the end-exclusive index range [start, end)."""
        return TrackPath(
            s=self.s[start:end].copy(),
            x=self.x[start:end].copy(),
            y=self.y[start:end].copy(),
            theta=self.theta[start:end].copy(),
        )

    def copy(self) -> "TrackPath":
        return self.segment(0, len(self))

    @property
    def length(self) -> float:
        """Arc length covered from the first to the last point."""
        if len(self) == 0:
            return 0.0
        return float(self.s[-1] - self.s[0])

    def with_recomputed_arc_length(self) -> "TrackPath":
        """Copy whose arc length restarts at 0 and follows the point geometry."""
        if len(self) == 0:
            return self.copy()
        steps = np.hypot(np.diff(self.x), np.diff(self.y))
        s = np.concatenate(([0.0], np.cumsum(steps)))
        return TrackPath(s=s, x=self.x.copy(), y=self.y.copy(), theta=self.theta.copy())

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame({"s": self.s, "x": self.x, "y": self.y, "theta": self.theta})


@dataclass
class LapSegmentation:
    """Lap boundary index set plus how it was obtained."""
    boundaries: List[int]
    strategy: LapStrategy
    race_type: RaceType = RaceType.LAPPED

    @property
    def lap_count(self) -> int:
        return max(len(self.boundaries) - 1, 0)

    def laps(self) -> Iterator[Tuple[int, int, int]]:
        """Yield (lap_number, start, end) with 1-based lap numbers and end-exclusive bounds."""
        for lap_number in range(1, len(self.boundaries)):
            yield lap_number, self.boundaries[lap_number - 1], self.boundaries[lap_number]

    def to_dict(self) -> dict:
        return {
            "boundaries": list(self.boundaries),
            "strategy": self.strategy.value,
            "race_type": self.race_type.value,
            "lap_count": self.lap_count,
        }


@dataclass(frozen=True)
class Event:
    """A discrete occurrence detected in one session's samples."""
    type: EventType
    time: float
    index: int
    note: str = ""

    def with_time_base(self, start_time: float) -> "Event":
        """Copy shifted so that start_time becomes t=0 (clamped at 0)."""
        return replace(self, time=max(self.time - start_time, 0.0))

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "time": self.time,
            "index": self.index,
            "note": self.note,
        }


@dataclass(frozen=True)
class MasterMatch:
    """A point's position expressed on the master path."""
    index: int
    master_s: float
    x: float
    y: float
    distance_sq: float


@dataclass
class LapMetrics:
    """Timing for one lap and its equal-distance sectors"""
    lap: int
    lap_time: float
    sector_times: List[float] = field(default_factory=list)
    sector_deltas: List[float] = field(default_factory=list)

    def to_dict(self) -> dict:
        result = {
            "lap": self.lap,
            "lap_time": self.lap_time,
        }
        if self.sector_times:
            result["sector_times"] = list(self.sector_times)
        if self.sector_deltas:
            result["sector_deltas"] = list(self.sector_deltas)
        return result
