"""
Detection thresholds for event and surface classification.

All values are empirically chosen defaults. Detectors receive an instance at
construction so callers and tests can override individual fields.
"""

from dataclasses import dataclass, asdict


@dataclass(frozen=True)
class EventThresholds:
    """Thresholds used by EventDetector"""
    stop_speed: float = 1.0              # m/s considered stopped
    crash_decel: float = -8.0            # m/s^2 deceleration to call a crash
    crash_min_pre_speed: float = 5.0     # m/s required before the drop
    collision_accel_mag: float = 12.0    # m/s^2 acceleration spike for collision
    collision_speed_drop: float = 2.0    # m/s required drop for collision
    reset_min_duration: float = 1.5      # seconds near-zero to call a reset
    reset_vel_epsilon: float = 0.25      # m/s velocity magnitude considered zero
    dedupe_window: float = 1.0           # seconds between same-type events
    rumble_threshold: float = 0.8        # summed wheel-on-rumble
    puddle_threshold: float = 0.5        # summed wheel-in-puddle
    drift_slip_angle: float = 0.3        # mean abs slip angle (rad), ~17 degrees
    drift_min_speed: float = 8.0         # m/s
    traction_slip: float = 0.4           # mean combined slip
    traction_throttle: int = 120         # raw throttle (0-255)
    max_step_seconds: float = 1.0        # larger sample gaps give no rate information

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "EventThresholds":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)


@dataclass(frozen=True)
class SurfaceThresholds:
    """Thresholds used by surface classification"""
    window: int = 30                     # samples in the trailing average
    puddle_threshold: float = 0.5        # smoothed summed wheel-in-puddle
    rumble_threshold: float = 0.8        # smoothed summed wheel-on-rumble
    rough_threshold: float = 0.3         # smoothed mean surface rumble

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_EVENT_THRESHOLDS = EventThresholds()
DEFAULT_SURFACE_THRESHOLDS = SurfaceThresholds()
