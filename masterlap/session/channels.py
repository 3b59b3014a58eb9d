"""
DataFrame to Sample adapter for session import.

Maps logical channel names onto whatever column names a recording uses,
converts units at the boundary and builds the immutable Sample list the
pipeline consumes. Parsing files is left to pandas.
"""

import logging
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .models import Sample, WheelSet
from ..utils.numeric import MPS_TO_KMH, MPS_TO_MPH

logger = logging.getLogger(__name__)

# Logical channel name -> list of candidate column names (priority order)
CHANNEL_CANDIDATES = {
    "time": ["time", "Time", "time_s", "timestamp_s"],
    "time_ms": ["timestampms", "TimestampMS", "timestamp_ms", "time_ms"],
    "speed": ["speed_mps", "speed", "Speed", "SpeedMPS"],
    "speed_kmh": ["speed_kph", "speed_kmh", "SpeedKMH"],
    "speed_mph": ["speed_mph", "SpeedMPH"],
    "accel_x": ["accel_x", "AccelX", "acceleration_x"],
    "accel_y": ["accel_y", "AccelY", "acceleration_y"],
    "accel_z": ["accel_z", "AccelZ", "acceleration_z"],
    "vel_x": ["vel_x", "VelX", "velocity_x"],
    "vel_y": ["vel_y", "VelY", "velocity_y"],
    "vel_z": ["vel_z", "VelZ", "velocity_z"],
    "pos_x": ["pos_x", "PosX", "position_x"],
    "pos_y": ["pos_y", "PosY", "position_y"],
    "pos_z": ["pos_z", "PosZ", "position_z"],
    "yaw": ["yaw", "Yaw", "heading"],
    "ang_vel_y": ["ang_vel_y", "AngVelY", "yaw_rate"],
    "gear": ["gear", "Gear"],
    "throttle": ["accel", "throttle", "Throttle", "ThrottleRaw"],
    "brake": ["brake", "Brake"],
    "steer": ["steer", "Steer"],
    "lap_number": ["lap_number", "LapNumber", "lap"],
    "race_position": ["race_position", "RacePosition", "position"],
    "is_race_on": ["israceon", "is_race_on", "IsRaceOn"],
}

# Per-wheel channels: logical prefix -> column prefix candidates, suffixed _fl/_fr/_rl/_rr
WHEEL_CHANNELS = {
    "tire_slip_angle": ["tire_slip_angle"],
    "tire_combined_slip": ["tire_combined_slip"],
    "wheel_on_rumble": ["wheel_on_rumble"],
    "wheel_in_puddle": ["wheel_in_puddle"],
    "surface_rumble": ["surface_rumble"],
    "tire_temp": ["tire_temp"],
    "susp_travel": ["susp_travel"],
}

WHEEL_SUFFIXES = ("fl", "fr", "rl", "rr")

REQUIRED_CHANNELS = ["speed", "accel_x", "accel_y", "accel_z", "vel_x", "vel_y", "vel_z"]

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def find_column_name(df: pd.DataFrame, candidates: List[str]) -> Optional[str]:
    """
    Find a column name by trying multiple candidates.

    Args:
        df: DataFrame to search
        candidates: List of candidate column names

    Returns:
        Matching column name, or None if not found
    """
    for name in candidates:
        if name in df.columns:
            return name

    columns_lower = {str(c).lower(): c for c in df.columns}
    for name in candidates:
        actual = columns_lower.get(name.lower())
        if actual is not None:
            return actual

    return None


def build_channel_map(df: pd.DataFrame) -> Dict[str, str]:
    """Map logical channel names (including per-wheel ones) to DataFrame columns."""
    channel_map = {}
    for logical, candidates in CHANNEL_CANDIDATES.items():
        matched = find_column_name(df, candidates)
        if matched is not None:
            channel_map[logical] = matched

    for logical, prefixes in WHEEL_CHANNELS.items():
        for suffix in WHEEL_SUFFIXES:
            matched = find_column_name(df, [f"{p}_{suffix}" for p in prefixes])
            if matched is not None:
                channel_map[f"{logical}_{suffix}"] = matched

    return channel_map


def _float_column(df: pd.DataFrame, channel_map: Dict[str, str], logical: str) -> Optional[np.ndarray]:
    col = channel_map.get(logical)
    if col is None:
        return None
    return pd.to_numeric(df[col], errors="coerce").to_numpy(dtype=float)


def _flag_column(df: pd.DataFrame, col: str) -> np.ndarray:
    """Parse a boolean-ish column (true/false, 1/0, yes/no, on/off)."""
    series = df[col]
    if series.dtype == bool:
        return series.to_numpy()
    as_text = series.astype(str).str.strip().str.lower()
    numeric = pd.to_numeric(series, errors="coerce").fillna(0.0)
    result = numeric.to_numpy() != 0
    result = np.where(as_text.isin(_TRUE_STRINGS), True, result)
    result = np.where(as_text.isin(_FALSE_STRINGS), False, result)
    return result


def _optional_value(values: Optional[np.ndarray], i: int) -> Optional[float]:
    if values is None:
        return None
    v = values[i]
    if np.isnan(v):
        return None
    return float(v)


def _optional_int(values: Optional[np.ndarray], i: int) -> Optional[int]:
    v = _optional_value(values, i)
    return None if v is None else int(v)


def samples_from_dataframe(df: pd.DataFrame, drop_inactive: bool = True) -> List[Sample]:
    """
    Build Samples from an already-parsed telemetry DataFrame.

    Time comes from a seconds column or a millisecond timestamp column. Speed
    is taken in m/s, or derived from km/h or mph when only those are present.
    Rows whose race-active flag is off are dropped unless drop_inactive is
    False.

    Raises:
        ValueError: if a required channel is missing.
    """
    channel_map = build_channel_map(df)

    has_speed = any(k in channel_map for k in ("speed", "speed_kmh", "speed_mph"))
    missing = [c for c in REQUIRED_CHANNELS if c not in channel_map and not (c == "speed" and has_speed)]
    if "time" not in channel_map and "time_ms" not in channel_map:
        missing.insert(0, "time")
    if missing:
        raise ValueError(
            f"Required channels not found: {missing}. "
            f"Available columns: {list(df.columns)}"
        )

    n = len(df)
    if "time" in channel_map:
        time = _float_column(df, channel_map, "time")
    else:
        time = _float_column(df, channel_map, "time_ms") / 1000.0

    zeros = np.zeros(n)
    speed = _float_column(df, channel_map, "speed")
    speed_kmh = _float_column(df, channel_map, "speed_kmh")
    speed_mph = _float_column(df, channel_map, "speed_mph")
    speed = np.nan_to_num(speed) if speed is not None else zeros.copy()
    speed_kmh = np.nan_to_num(speed_kmh) if speed_kmh is not None else zeros.copy()
    speed_mph = np.nan_to_num(speed_mph) if speed_mph is not None else zeros.copy()

    speed = np.where((speed == 0) & (speed_kmh > 0), speed_kmh / MPS_TO_KMH, speed)
    speed = np.where((speed == 0) & (speed_mph > 0), speed_mph / MPS_TO_MPH, speed)
    speed_kmh = np.where((speed_kmh == 0) & (speed > 0), speed * MPS_TO_KMH, speed_kmh)
    speed_mph = np.where((speed_mph == 0) & (speed > 0), speed * MPS_TO_MPH, speed_mph)

    floats = {}
    for logical in ("accel_x", "accel_y", "accel_z", "vel_x", "vel_y", "vel_z", "ang_vel_y"):
        values = _float_column(df, channel_map, logical)
        floats[logical] = values if values is not None else zeros

    optional = {
        logical: _float_column(df, channel_map, logical)
        for logical in ("pos_x", "pos_y", "pos_z", "yaw", "gear", "throttle", "brake",
                        "steer", "lap_number", "race_position")
    }

    wheels = {}
    for logical in WHEEL_CHANNELS:
        columns = []
        for suffix in WHEEL_SUFFIXES:
            values = _float_column(df, channel_map, f"{logical}_{suffix}")
            columns.append(np.nan_to_num(values) if values is not None else zeros)
        wheels[logical] = columns

    if "is_race_on" in channel_map:
        race_on = _flag_column(df, channel_map["is_race_on"])
    else:
        race_on = np.ones(n, dtype=bool)

    samples = []
    for i in range(n):
        if drop_inactive and not race_on[i]:
            continue
        gear = _optional_int(optional["gear"], i)
        samples.append(Sample(
            time=float(time[i]),
            speed=float(speed[i]),
            accel_x=float(floats["accel_x"][i]),
            accel_y=float(floats["accel_y"][i]),
            accel_z=float(floats["accel_z"][i]),
            vel_x=float(floats["vel_x"][i]),
            vel_y=float(floats["vel_y"][i]),
            vel_z=float(floats["vel_z"][i]),
            pos_x=_optional_value(optional["pos_x"], i),
            pos_y=_optional_value(optional["pos_y"], i),
            pos_z=_optional_value(optional["pos_z"], i),
            yaw=_optional_value(optional["yaw"], i),
            ang_vel_y=float(np.nan_to_num(floats["ang_vel_y"][i])),
            speed_mph=float(speed_mph[i]),
            speed_kmh=float(speed_kmh[i]),
            gear=gear if gear is not None else 0,
            tire_slip_angle=WheelSet(*(float(c[i]) for c in wheels["tire_slip_angle"])),
            tire_combined_slip=WheelSet(*(float(c[i]) for c in wheels["tire_combined_slip"])),
            wheel_on_rumble=WheelSet(*(float(c[i]) for c in wheels["wheel_on_rumble"])),
            wheel_in_puddle=WheelSet(*(float(c[i]) for c in wheels["wheel_in_puddle"])),
            surface_rumble=WheelSet(*(float(c[i]) for c in wheels["surface_rumble"])),
            tire_temp=WheelSet(*(float(c[i]) for c in wheels["tire_temp"])),
            susp_travel=WheelSet(*(float(c[i]) for c in wheels["susp_travel"])),
            throttle=_optional_int(optional["throttle"], i),
            brake=_optional_int(optional["brake"], i),
            steer=_optional_int(optional["steer"], i),
            lap_number=_optional_int(optional["lap_number"], i),
            race_position=_optional_int(optional["race_position"], i),
            is_race_on=bool(race_on[i]),
        ))

    dropped = n - len(samples)
    if dropped:
        logger.debug(f"Dropped {dropped} inactive rows of {n}")

    return samples


def load_session_file(path: str, drop_inactive: bool = True) -> List[Sample]:
    """
    Read a Parquet or CSV recording and convert it to Samples.

    Raises:
        FileNotFoundError: if the path does not exist.
        ValueError: for unsupported extensions or missing required channels.
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    suffix = file_path.suffix.lower()
    if suffix == ".parquet":
        df = pd.read_parquet(file_path)
    elif suffix == ".csv":
        df = pd.read_csv(file_path)
    else:
        raise ValueError(f"Unsupported session file type: {file_path.name}")

    samples = samples_from_dataframe(df, drop_inactive=drop_inactive)
    logger.info(f"Loaded {len(samples)} samples from {file_path.name}")
    return samples


def load_session_parquet(path: str, drop_inactive: bool = True) -> List[Sample]:
    """Read a Parquet recording and convert it to Samples."""
    if Path(path).suffix.lower() != ".parquet":
        raise ValueError(f"Not a Parquet file: {Path(path).name}")
    return load_session_file(path, drop_inactive=drop_inactive)


def discover_session_files(folders: List[str]) -> List[str]:
    """Recursively collect .parquet and .csv files under the given folders, de-duplicated."""
    seen = set()
    found = []
    for folder in folders:
        root = Path(folder)
        if not root.is_dir():
            logger.warning(f"Skipping {folder}: not a directory")
            continue
        for path in sorted(root.rglob("*")):
            if path.is_file() and path.suffix.lower() in (".parquet", ".csv"):
                key = str(path)
                if key not in seen:
                    seen.add(key)
                    found.append(key)
    return found
