"""
Event Detection Module

Single left-to-right scan of one session's samples producing timestamped
driving events: resets, crashes, collisions, rumble and puddle contact,
drifts, traction loss, and race position / pole changes.

Each event type has its own dedupe window. Drift and traction loss are
edge-triggered: they re-arm only after their condition clears.
"""

import logging
import math
from typing import Dict, List, Optional, Sequence

from ..config.thresholds import EventThresholds
from ..session.models import Event, EventType, Sample
from ..utils.numeric import clean_float

logger = logging.getLogger(__name__)


def sample_speed(sample: Sample) -> float:
    """Speed in m/s, 0 for missing, negative or non-finite values."""
    speed = clean_float(sample.speed, 0.0)
    return speed if speed > 0 else 0.0


class EventDetector:
    """
    Detects discrete driving events in one session.

    Thresholds are injected at construction; the detector keeps no state
    between detect() calls.
    """

    def __init__(self, thresholds: Optional[EventThresholds] = None):
        self.thresholds = thresholds or EventThresholds()

    def detect(self, samples: Sequence[Sample]) -> List[Event]:
        """
        Scan samples and return events in detection order.

        Samples before the race-active flag first turns on are skipped; once it
        turns off again the scan stops.
        """
        th = self.thresholds
        events: List[Event] = []
        if len(samples) < 2:
            return events

        last_of_type: Dict[EventType, float] = {}

        def emit(event_type: EventType, index: int, time: float, note: str,
                 dedupe_time: Optional[float] = None) -> bool:
            now = time if dedupe_time is None else dedupe_time
            last = last_of_type.get(event_type)
            if last is not None and now - last < th.dedupe_window:
                return False
            events.append(Event(type=event_type, time=time, index=index, note=note))
            last_of_type[event_type] = now
            return True

        reset_start = None
        reset_accum = 0.0
        reset_emitted = False
        seen_on = False
        drift_active = False
        traction_active = False
        last_pos = None

        for i in range(1, len(samples)):
            prev = samples[i - 1]
            cur = samples[i]

            if not cur.is_race_on and not seen_on:
                continue
            if cur.is_race_on:
                seen_on = True
            else:
                break
            if not prev.is_race_on:
                continue

            if prev.race_position is not None and prev.race_position > 0:
                last_pos = prev.race_position

            dt = clean_float(cur.time - prev.time, 0.0)
            if dt <= 0 or dt > th.max_step_seconds:
                dt = 0.0

            speed_prev = sample_speed(prev)
            speed_cur = sample_speed(cur)
            d_speed = speed_cur - speed_prev
            decel = d_speed / dt if dt > 0 else 0.0

            ax = clean_float(cur.accel_x)
            ay = clean_float(cur.accel_y)
            az = clean_float(cur.accel_z)
            accel_mag = math.sqrt(ax * ax + ay * ay + az * az)
            vel_mag = math.hypot(clean_float(cur.vel_x), clean_float(cur.vel_z))

            # Race position changes
            position = cur.race_position
            if last_pos is not None and position is not None and position > 0 and position != last_pos:
                note = f"position {last_pos} → {position}"
                if position < last_pos:
                    emit(EventType.POSITION_GAIN, i, cur.time, note)
                else:
                    emit(EventType.POSITION_LOSS, i, cur.time, note)
                if last_pos == 1 and position > 1:
                    emit(EventType.POLE_LOSS, i, cur.time, note)
                elif last_pos > 1 and position == 1:
                    emit(EventType.POLE_GAIN, i, cur.time, note)
                last_pos = position

            # Reset: sustained near-zero movement, once per stationary run
            if vel_mag < th.reset_vel_epsilon and speed_cur < th.stop_speed:
                if reset_start is None:
                    reset_start = i
                    reset_accum = 0.0
                    reset_emitted = False
                reset_accum += dt
                if not reset_emitted and reset_accum >= th.reset_min_duration:
                    emit(EventType.RESET, reset_start, samples[reset_start].time,
                         "near-zero movement", dedupe_time=cur.time)
                    reset_emitted = True
            else:
                reset_start = None
                reset_accum = 0.0
                reset_emitted = False

            # Crash: hard deceleration to a stop
            if (speed_prev > th.crash_min_pre_speed and speed_cur < th.stop_speed
                    and decel <= th.crash_decel):
                emit(EventType.CRASH, i, cur.time, "hard stop")

            # Collision: acceleration spike with a speed drop short of a stop
            if (accel_mag >= th.collision_accel_mag and d_speed < -th.collision_speed_drop
                    and speed_cur >= th.stop_speed):
                emit(EventType.COLLISION, i, cur.time, "accel spike + speed drop")

            if cur.wheel_on_rumble.total() >= th.rumble_threshold:
                emit(EventType.RUMBLE, i, cur.time, "wheel on rumble")

            if cur.wheel_in_puddle.total() >= th.puddle_threshold:
                emit(EventType.PUDDLE, i, cur.time, "wheel in puddle")

            # Drift: high mean slip angle at speed
            if cur.tire_slip_angle.mean_abs() >= th.drift_slip_angle and speed_cur >= th.drift_min_speed:
                if not drift_active:
                    emit(EventType.DRIFT, i, cur.time, "high slip angle")
                drift_active = True
            else:
                drift_active = False

            # Traction loss: high combined slip under throttle
            throttle = cur.throttle if cur.throttle is not None else 0
            if (cur.tire_combined_slip.mean() >= th.traction_slip
                    and throttle >= th.traction_throttle and speed_cur >= th.stop_speed):
                if not traction_active:
                    emit(EventType.TRACTION, i, cur.time, "traction loss")
                traction_active = True
            else:
                traction_active = False

        logger.debug(f"Detected {len(events)} events in {len(samples)} samples")
        return events


def detect_events(samples: Sequence[Sample], thresholds: Optional[EventThresholds] = None) -> List[Event]:
    """Convenience wrapper around EventDetector(thresholds).detect(samples)."""
    return EventDetector(thresholds).detect(samples)
