"""
Derived per-sample dynamics channels.

Reported channels are preferred when the source fills them; otherwise they
are derived from speed and reconstructed heading:

- longitudinal acceleration: accel_x, else dv/dt
- yaw rate: ang_vel_y, else wrapped heading change / dt
- lateral acceleration: accel_y, else speed * yaw rate where accel_y is zero
- throttle/brake proxies: longitudinal acceleration scaled by the 90th
  percentile of positive/negative values, overridden by pedal inputs
"""

from dataclasses import dataclass
from typing import List, Sequence

import numpy as np

from ..session.models import Sample, TrackPath
from ..utils.numeric import KMH_TO_MPH, MPH_TO_KMH, MPS_TO_MPH, percentile, smooth_series

PEDAL_FULL_SCALE = 255.0
STEER_FULL_SCALE = 127.0
PROXY_PERCENTILE = 0.9
SUSPENSION_SMOOTHING_WINDOW = 5


def fahrenheit_to_celsius(temp_f):
    return (temp_f - 32.0) * 5.0 / 9.0


@dataclass
class DynamicsChannels:
    """Per-sample derived channels for one session, all the same length as the samples"""
    long_acc: np.ndarray
    lat_acc: np.ndarray
    yaw_rate: np.ndarray
    accel: np.ndarray              # dv/dt, falling back to long_acc; used for heatmaps
    throttle: np.ndarray           # 0-1
    brake: np.ndarray              # 0-1
    throttle_input: np.ndarray     # 0-1 when the pedal is reported, else 0
    brake_input: np.ndarray
    steer_input: np.ndarray        # -1..1 when steering is reported, else 0
    steer_raw: np.ndarray
    speed_mph: np.ndarray
    speed_kmh: np.ndarray
    susp_travel: List[np.ndarray]  # smoothed FL, FR, RL, RR
    tire_temp_c: List[np.ndarray]  # FL, FR, RL, RR

    def __len__(self) -> int:
        return len(self.long_acc)


def _clamp01(values: np.ndarray) -> np.ndarray:
    return np.clip(np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0), 0.0, 1.0)


def _clamp_sym(values: np.ndarray) -> np.ndarray:
    return np.clip(np.nan_to_num(values, nan=0.0, posinf=0.0, neginf=0.0), -1.0, 1.0)


def _proxy_scale(magnitudes: np.ndarray, peak: float, fallback: float) -> float:
    scale = percentile(magnitudes, PROXY_PERCENTILE) if len(magnitudes) else 0.0
    if scale <= 0:
        scale = peak
    if scale <= 0:
        scale = fallback
    return scale


def compute_dynamics(samples: Sequence[Sample], path: TrackPath) -> DynamicsChannels:
    """Derive the dynamics channels for one session's samples and reconstructed path."""
    n = len(samples)
    time = np.array([s.time for s in samples], dtype=float)
    speed = np.nan_to_num(np.array([s.speed for s in samples], dtype=float))
    accel_x = np.nan_to_num(np.array([s.accel_x for s in samples], dtype=float))
    accel_y = np.nan_to_num(np.array([s.accel_y for s in samples], dtype=float))
    ang_vel_y = np.nan_to_num(np.array([s.ang_vel_y for s in samples], dtype=float))

    dt = np.zeros(n)
    dv = np.zeros(n)
    if n > 1:
        dt[1:] = np.diff(time)
        dv[1:] = np.diff(speed)
    valid_dt = dt > 0
    dv_dt = np.zeros(n)
    dv_dt[valid_dt] = dv[valid_dt] / dt[valid_dt]

    # Longitudinal acceleration
    if np.any(accel_x != 0):
        long_acc = accel_x.copy()
    else:
        long_acc = dv_dt.copy()

    # Yaw rate and lateral acceleration
    lat_acc = accel_y.copy()
    if np.any(ang_vel_y != 0):
        yaw_rate = ang_vel_y.copy()
    else:
        yaw_rate = np.zeros(n)
        m = min(n, len(path))
        if m > 1:
            d_theta = np.diff(path.theta[:m])
            d_theta = np.arctan2(np.sin(d_theta), np.cos(d_theta))
            step_ok = valid_dt[1:m]
            rates = np.zeros(m - 1)
            rates[step_ok] = d_theta[step_ok] / dt[1:m][step_ok]
            yaw_rate[1:m] = rates
            fill = np.zeros(n, dtype=bool)
            fill[1:m] = step_ok & (lat_acc[1:m] == 0)
            lat_acc[fill] = speed[fill] * yaw_rate[fill]

    # Throttle/brake proxies from acceleration
    positive = long_acc[long_acc > 0]
    negative = -long_acc[long_acc < 0]
    peak_pos = float(positive.max()) if len(positive) else 0.0
    peak_neg = float(negative.max()) if len(negative) else 0.0
    scale_pos = _proxy_scale(positive, peak_pos, 1.0)
    scale_neg = _proxy_scale(negative, peak_neg, scale_pos)

    throttle = _clamp01(long_acc / scale_pos)
    brake = np.where(long_acc >= 0, 0.0, _clamp01(-long_acc / scale_neg))

    throttle_input = np.zeros(n)
    brake_input = np.zeros(n)
    steer_input = np.zeros(n)
    steer_raw = np.zeros(n)
    for i, s in enumerate(samples):
        if s.throttle is not None or s.brake is not None:
            throttle_input[i] = (s.throttle or 0) / PEDAL_FULL_SCALE
            brake_input[i] = (s.brake or 0) / PEDAL_FULL_SCALE
            throttle[i] = min(max(throttle_input[i], 0.0), 1.0)
            brake[i] = min(max(brake_input[i], 0.0), 1.0)
        if s.steer is not None:
            steer_input[i] = s.steer / STEER_FULL_SCALE
            steer_raw[i] = s.steer
    throttle_input = _clamp01(throttle_input)
    brake_input = _clamp01(brake_input)
    steer_input = _clamp_sym(steer_input)

    # Speeds in display units
    speed_mph = np.nan_to_num(np.array([s.speed_mph for s in samples], dtype=float))
    speed_kmh = np.nan_to_num(np.array([s.speed_kmh for s in samples], dtype=float))
    speed_mph = np.where((speed_mph == 0) & (speed_kmh > 0), speed_kmh * KMH_TO_MPH, speed_mph)
    derived = speed_mph == 0
    speed_mph = np.where(derived, speed * MPS_TO_MPH, speed_mph)
    speed_kmh = np.where(derived, speed_mph * MPH_TO_KMH, speed_kmh)
    speed_kmh = np.where((speed_kmh == 0) & (speed_mph > 0), speed_mph * MPH_TO_KMH, speed_kmh)

    accel = np.where(dv_dt != 0, dv_dt, long_acc)

    susp_travel = [
        smooth_series([s.susp_travel[w] for s in samples], SUSPENSION_SMOOTHING_WINDOW)
        for w in range(4)
    ]
    tire_temp_c = [
        fahrenheit_to_celsius(np.array([s.tire_temp[w] for s in samples], dtype=float))
        for w in range(4)
    ]

    return DynamicsChannels(
        long_acc=long_acc,
        lat_acc=lat_acc,
        yaw_rate=yaw_rate,
        accel=accel,
        throttle=throttle,
        brake=brake,
        throttle_input=throttle_input,
        brake_input=brake_input,
        steer_input=steer_input,
        steer_raw=steer_raw,
        speed_mph=speed_mph,
        speed_kmh=speed_kmh,
        susp_travel=susp_travel,
        tire_temp_c=tire_temp_c,
    )
