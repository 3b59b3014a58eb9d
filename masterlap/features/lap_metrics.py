"""
Lap and sector timing.

Sectors are equal arc-length slices of a lap. The best (smallest positive)
time per sector across a session's laps is the baseline for sector deltas and
for the continuous time delta along a lap.
"""

import math
from typing import Dict, List, Sequence

from ..session.models import LapMetrics, Sample, TrackPath


def compute_lap_metrics(samples: Sequence[Sample], path: TrackPath,
                        boundaries: Sequence[int], sectors: int = 3) -> List[LapMetrics]:
    """
    Lap time and sector times per lap.

    Laps with fewer than 2 points are skipped. With sectors <= 0 only lap
    times are produced.
    """
    if not samples or len(path) == 0 or len(boundaries) < 2:
        return []
    sectors = max(sectors, 0)

    out: List[LapMetrics] = []
    for lap_number in range(1, len(boundaries)):
        start = boundaries[lap_number - 1]
        end = boundaries[lap_number]
        if start < 0 or end > len(samples) or end > len(path) or end <= start + 1:
            continue

        metrics = LapMetrics(lap=lap_number, lap_time=samples[end - 1].time - samples[start].time)

        if sectors > 0:
            sector_times = [0.0] * sectors
            s0 = path.s[start]
            lap_len = max(float(path.s[end - 1] - s0), 0.0)
            ptr = start
            for k in range(sectors):
                seg_start = s0 + k * lap_len / sectors
                seg_end = s0 + (k + 1) * lap_len / sectors
                while ptr < end and path.s[ptr] < seg_start:
                    ptr += 1
                idx_start = ptr
                while ptr < end and path.s[ptr] < seg_end:
                    ptr += 1
                idx_end = min(ptr, end - 1)
                if idx_end <= idx_start:
                    continue
                sector_times[k] = samples[idx_end].time - samples[idx_start].time
            metrics.sector_times = sector_times

        out.append(metrics)

    if sectors > 0 and out:
        best = [math.inf] * sectors
        for metrics in out:
            for k, t in enumerate(metrics.sector_times):
                if 0 < t < best[k]:
                    best[k] = t
        for metrics in out:
            if not metrics.sector_times:
                continue
            metrics.sector_deltas = [
                0.0 if math.isinf(best[k]) or t == 0 else t - best[k]
                for k, t in enumerate(metrics.sector_times)
            ]

    return out


def best_sector_times(laps: Sequence[LapMetrics]) -> List[float]:
    """Smallest positive time per sector index; 0.0 where no lap has one."""
    best: List[float] = []
    for metrics in laps:
        for k, t in enumerate(metrics.sector_times):
            if t <= 0:
                continue
            while len(best) <= k:
                best.append(0.0)
            if best[k] == 0 or t < best[k]:
                best[k] = t
    return best


def expected_time_for_progress(best: Sequence[float], lap_length: float, rel_s: float) -> float:
    """
    Elapsed time a lap built from the best sectors would show at rel_s:
    full best times of completed sectors plus the covered fraction of the
    current one.
    """
    if lap_length <= 0 or not best:
        return 0.0
    sector_len = lap_length / len(best)
    idx = min(max(int(rel_s / sector_len), 0), len(best) - 1)
    in_sector = rel_s - idx * sector_len
    return sum(best[:idx]) + best[idx] * (in_sector / sector_len)


class LapDeltaTracker:
    """
    Continuous time delta against the best-sector baseline.

    The first delta seen in each lap becomes that lap's offset so every lap
    starts at zero.
    """

    def __init__(self, best: Sequence[float]):
        self.best = list(best)
        self._offsets: Dict[int, float] = {}

    def delta(self, lap: int, elapsed: float, lap_length: float, rel_s: float) -> float:
        raw = elapsed - expected_time_for_progress(self.best, lap_length, rel_s)
        if lap not in self._offsets:
            self._offsets[lap] = raw
        return raw - self._offsets[lap]
