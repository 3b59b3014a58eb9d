"""
Pipeline orchestration.

Stage 1 runs one worker per session (reconstruct, segment, detect events).
After the join the master path is built from every usable session's laps.
Stage 2 runs one worker per session again, mapping it onto the read-only
master path and accumulating private heatmap/surface partials, which are
merged once all workers finish.

A session that fails in either stage is logged, recorded in
RunResult.failed_sessions and left out; it never aborts the others.

Usage:
    python -m masterlap.pipeline.runner --folder data/sessions --out result.json
"""

import argparse
import json
import logging
import sys
from collections import Counter
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from ..analysis.lap_segmenter import LapSegmenter, find_lap_and_rel_s
from ..analysis.master_builder import build_master_lap, build_master_path, full_laps
from ..analysis.master_mapper import map_rel_s_to_master, map_to_master
from ..analysis.reconstruction import build_track_with_mode
from ..config.config import RunParameters, get_config
from ..config.thresholds import EventThresholds, SurfaceThresholds
from ..features.dynamics import compute_dynamics
from ..features.event_detection import EventDetector
from ..features.lap_metrics import LapDeltaTracker, best_sector_times, compute_lap_metrics
from ..features.overtakes import ProgressPoint, detect_overtakes
from ..features.surface import classify_surface, dominant_surface
from ..session.channels import discover_session_files, load_session_file
from ..session.models import (
    Event,
    EventType,
    LapSegmentation,
    RaceType,
    ReconstructionMode,
    Sample,
    TrackPath,
    WheelSet,
)
from ..utils.calculation_trace import PipelineTrace
from ..utils.numeric import median
from .results import CarOutput, CarPoint, EventRecord, HeatmapPoint, MasterPointOut, RunResult

logger = logging.getLogger(__name__)

# Sanity check bounds
MASTER_LENGTH_RATIO_RANGE = (0.8, 1.2)
MAX_RMS_RESIDUAL_FRACTION = 0.05


class NoUsableSessionsError(RuntimeError):
    """No session survived processing, or no master path could be built"""


@dataclass
class SessionResult:
    """Stage 1 output for one session"""
    source: str
    samples: List[Sample]
    path: TrackPath
    mode: ReconstructionMode
    segmentation: LapSegmentation
    events: List[Event]

    @property
    def distance(self) -> float:
        return float(self.path.s[-1]) if len(self.path) else 0.0

    @property
    def duration(self) -> float:
        return self.samples[-1].time - self.samples[0].time if self.samples else 0.0

    def lap_segments(self) -> List[TrackPath]:
        return [self.path.segment(start, end) for _, start, end in self.segmentation.laps()]


@dataclass
class MappingPartial:
    """Stage 2 output for one session: its car output plus private accumulators"""
    car: CarOutput
    events: List[EventRecord]
    progress: List[ProgressPoint]
    sum_speed: np.ndarray
    count_speed: np.ndarray
    sum_accel: np.ndarray
    count_accel: np.ndarray
    surface_counts: List[Counter]
    residual_sum: float = 0.0
    residual_count: int = 0


@dataclass
class MasterBuild:
    path: TrackPath
    race_type: RaceType
    lap_count: int
    reference_lengths: List[float] = field(default_factory=list)


# --- Stage 1 ---

def process_session(source: str, samples: Sequence[Sample],
                    params: RunParameters,
                    thresholds: EventThresholds) -> SessionResult:
    """
    Reconstruct, segment and event-scan one session.

    Raises:
        ValueError: if the session has fewer than 2 samples
    """
    samples = list(samples)
    path, mode = build_track_with_mode(samples)
    segmentation = LapSegmenter(params).segment(samples, path)
    events = EventDetector(thresholds).detect(samples)
    return SessionResult(
        source=source,
        samples=samples,
        path=path,
        mode=mode,
        segmentation=segmentation,
        events=events,
    )


# --- Master ---

def build_master(results: Sequence[SessionResult], params: RunParameters) -> Optional[MasterBuild]:
    """
    Build the master path from stage 1 results (in input order).

    Any sprint session (or force_sprint) makes the run a sprint: the first
    session's whole path is resampled. Otherwise all full laps of all sessions
    are aligned and averaged, or only the first one when use_master is off;
    partial laps shorter than lap_prune_ratio x the median lap are left out.
    """
    if not results:
        return None

    sprint = params.force_sprint or any(r.segmentation.race_type == RaceType.SPRINT for r in results)
    if sprint:
        first = results[0]
        path = build_master_path(first.path, params.master_samples)
        if path is None:
            return None
        return MasterBuild(path=path, race_type=RaceType.SPRINT, lap_count=1,
                           reference_lengths=[first.path.length])

    segments = full_laps([segment for r in results for segment in r.lap_segments()],
                         params.lap_prune_ratio)
    if not params.use_master:
        segments = segments[:1]
    path = build_master_lap(segments, params.master_samples)
    if path is None:
        return None
    return MasterBuild(path=path, race_type=RaceType.LAPPED, lap_count=len(segments),
                       reference_lengths=[s.length for s in segments])


# --- Stage 2 ---

def lap_scale(master_length: float, lap_length: float) -> float:
    """Factor taking a lap's relative arc length onto the master; 1.0 when either length is zero."""
    if lap_length > 0 and master_length > 0:
        return master_length / lap_length
    return 1.0


def map_session(result: SessionResult, master: TrackPath, params: RunParameters,
                surface_thresholds: SurfaceThresholds) -> MappingPartial:
    """Map one session onto the master path and accumulate its partials."""
    samples = result.samples
    path = result.path
    m = len(master)
    t0 = samples[0].time

    partial = MappingPartial(
        car=CarOutput(
            source=result.source,
            race_type=result.segmentation.race_type,
            lap_strategy=result.segmentation.strategy.value,
            reconstruction_mode=result.mode.value,
        ),
        events=[],
        progress=[],
        sum_speed=np.zeros(m),
        count_speed=np.zeros(m, dtype=int),
        sum_accel=np.zeros(m),
        count_accel=np.zeros(m, dtype=int),
        surface_counts=[Counter() for _ in range(m)],
    )

    dyn = compute_dynamics(samples, path)
    surfaces = classify_surface(samples, surface_thresholds)
    boundaries = result.segmentation.boundaries
    lap_metrics = compute_lap_metrics(samples, path, boundaries, params.sector_count)
    partial.car.lap_metrics = lap_metrics
    deltas = LapDeltaTracker(best_sector_times(lap_metrics))

    master_len = float(master.s[-1])
    lap_scales: Dict[int, float] = {}
    last_surface = ""

    for lap, start, end in result.segmentation.laps():
        segment = path.segment(start, min(end, len(path)))
        if len(segment) == 0:
            continue
        lap_start_time = max(samples[start].time - t0, 0.0)
        lap_len = segment.length
        scale = lap_scale(master_len, lap_len)
        lap_scales[lap] = scale

        for mapping in map_to_master(segment, master, scale, start_index=start):
            i = mapping.index
            match = mapping.match
            t = samples[i].time - t0
            surface = surfaces[i]

            partial.sum_speed[match.index] += dyn.speed_mph[i]
            partial.count_speed[match.index] += 1
            if dyn.accel[i] != 0:
                partial.sum_accel[match.index] += dyn.accel[i]
                partial.count_accel[match.index] += 1
            partial.surface_counts[match.index][surface] += 1
            partial.residual_sum += match.distance_sq
            partial.residual_count += 1

            local_rel_s = mapping.rel_s / scale
            delta = deltas.delta(lap, t - lap_start_time, lap_len, local_rel_s)

            partial.car.points.append(CarPoint(
                time=t,
                lap=lap,
                rel_s=mapping.rel_s,
                heading=float(path.theta[i]),
                master_x=match.x,
                master_y=match.y,
                speed_mph=float(dyn.speed_mph[i]),
                speed_kmh=float(dyn.speed_kmh[i]),
                gear=samples[i].gear,
                delta=delta,
                long_acc=float(dyn.long_acc[i]),
                lat_acc=float(dyn.lat_acc[i]),
                yaw_rate=float(dyn.yaw_rate[i]),
                yaw_deg_s=float(np.degrees(dyn.yaw_rate[i])),
                throttle=float(dyn.throttle[i]),
                brake=float(dyn.brake[i]),
                steer_raw=float(dyn.steer_raw[i]),
                throttle_input=float(dyn.throttle_input[i]),
                brake_input=float(dyn.brake_input[i]),
                steer_input=float(dyn.steer_input[i]),
                susp_travel=WheelSet(*(float(c[i]) for c in dyn.susp_travel)),
                tire_temp_c=WheelSet(*(float(c[i]) for c in dyn.tire_temp_c)),
                surface=surface,
                distance_sq=match.distance_sq,
            ))
            partial.progress.append(ProgressPoint(
                time=t,
                lap=lap,
                rel_s=mapping.rel_s,
                master_x=match.x,
                master_y=match.y,
            ))

            if surface != last_surface:
                partial.events.append(EventRecord(
                    type=EventType.SURFACE.value,
                    source=result.source,
                    time=t,
                    note=f"surface change {surface}",
                    index=i,
                    lap=lap,
                    rel_s=mapping.rel_s,
                    master_index=match.index,
                    master_rel_s=match.master_s,
                    master_x=match.x,
                    master_y=match.y,
                    distance_sq=match.distance_sq,
                ))
                last_surface = surface

    for event in result.events:
        if not 0 <= event.index < len(path):
            continue
        event = event.with_time_base(t0)
        lap, rel_s = find_lap_and_rel_s(boundaries, path, event.index)
        rel_s *= lap_scales.get(lap, 1.0)
        match = map_rel_s_to_master(master, rel_s, float(path.x[event.index]), float(path.y[event.index]))
        partial.events.append(EventRecord(
            type=event.type.value,
            source=result.source,
            time=event.time,
            note=event.note,
            index=event.index,
            lap=lap,
            rel_s=rel_s,
            master_index=match.index if match else None,
            master_rel_s=match.master_s if match else None,
            master_x=match.x if match else None,
            master_y=match.y if match else None,
            distance_sq=match.distance_sq if match else None,
        ))

    return partial


# --- Merge ---

def merge_partials(master: TrackPath, partials: Sequence[MappingPartial]
                   ) -> Tuple[List[MasterPointOut], List[HeatmapPoint], List[EventRecord], List[CarOutput]]:
    """Sum every worker's private accumulators and build heatmap and master output."""
    m = len(master)
    sum_speed = np.zeros(m)
    count_speed = np.zeros(m, dtype=int)
    sum_accel = np.zeros(m)
    count_accel = np.zeros(m, dtype=int)
    surface_counts = [Counter() for _ in range(m)]
    events: List[EventRecord] = []
    cars: List[CarOutput] = []

    for partial in partials:
        cars.append(partial.car)
        events.extend(partial.events)
        sum_speed += partial.sum_speed
        count_speed += partial.count_speed
        sum_accel += partial.sum_accel
        count_accel += partial.count_accel
        for k in range(m):
            if partial.surface_counts[k]:
                surface_counts[k].update(partial.surface_counts[k])

    master_out = [
        MasterPointOut(rel_s=float(master.s[k]), x=float(master.x[k]), y=float(master.y[k]))
        for k in range(m)
    ]
    heatmap = []
    for k in range(m):
        if count_speed[k] == 0:
            continue
        surface = dominant_surface(surface_counts[k])
        master_out[k].surface = surface
        heatmap.append(HeatmapPoint(
            index=k,
            rel_s=float(master.s[k]),
            x=float(master.x[k]),
            y=float(master.y[k]),
            avg_accel=float(sum_accel[k] / count_accel[k]) if count_accel[k] else 0.0,
            avg_speed_mph=float(sum_speed[k] / count_speed[k]),
            count=int(count_speed[k]),
            surface=surface,
            surface_counts=dict(surface_counts[k]),
        ))
    return master_out, heatmap, events, cars


# --- Orchestration ---

def _make_executor(params: RunParameters) -> Executor:
    if params.use_processes:
        return ProcessPoolExecutor(max_workers=params.max_workers)
    return ThreadPoolExecutor(max_workers=params.max_workers)


def _run_parallel(params: RunParameters, jobs: Dict[str, Tuple[Callable, tuple]],
                  failed: Dict[str, str], stage: str) -> Dict[str, object]:
    """Run one job per session; failures are logged and recorded, never re-raised."""
    results = {}
    with _make_executor(params) as executor:
        futures = {executor.submit(fn, *args): source for source, (fn, args) in jobs.items()}
        for future in as_completed(futures):
            source = futures[future]
            try:
                results[source] = future.result()
            except Exception as e:
                logger.error(f"Session {source} failed during {stage}: {e}")
                failed[source] = f"{stage}: {e}"
    return results


def run_sessions(sessions: Dict[str, Sequence[Sample]],
                 params: Optional[RunParameters] = None,
                 thresholds: Optional[EventThresholds] = None,
                 surface_thresholds: Optional[SurfaceThresholds] = None,
                 include_trace: bool = False,
                 failed_sessions: Optional[Dict[str, str]] = None) -> RunResult:
    """
    Run the full pipeline over already-loaded sessions.

    Args:
        sessions: Source label -> ordered samples
        params: Run parameters (defaults when omitted)
        thresholds: Event detection thresholds
        surface_thresholds: Surface classification thresholds
        include_trace: Attach a PipelineTrace to the result
        failed_sessions: Failures recorded before this call (e.g. load errors)

    Returns:
        RunResult

    Raises:
        ValueError: for invalid parameters
        NoUsableSessionsError: when no session survives or no master path can be built
    """
    params = params or RunParameters()
    params.validate()
    thresholds = thresholds or EventThresholds()
    surface_thresholds = surface_thresholds or SurfaceThresholds()
    failed: Dict[str, str] = dict(failed_sessions or {})

    trace = None
    if include_trace:
        trace = PipelineTrace(timestamp=datetime.now().isoformat())
        for key, value in params.to_dict().items():
            trace.record_parameter(key, value)

    # Stage 1
    stage1 = _run_parallel(
        params,
        {source: (process_session, (source, samples, params, thresholds))
         for source, samples in sessions.items()},
        failed,
        "processing",
    )

    usable: List[SessionResult] = []
    for source in sessions:
        result = stage1.get(source)
        if result is None:
            continue
        if result.segmentation.lap_count < 1:
            logger.warning(f"No laps detected for {source}, skipping")
            failed[source] = "segmentation: no laps detected"
            continue
        logger.info(
            f"Session {source}: laps={result.segmentation.lap_count} "
            f"({result.segmentation.strategy.value}) dist={result.distance:.1f}m "
            f"time={result.duration:.1f}s events={len(result.events)}"
        )
        usable.append(result)

    if trace is not None:
        for source in sessions:
            session_trace = trace.session(source)
            session_trace.sample_count = len(sessions[source])
            if source in failed:
                session_trace.error = failed[source]
        for result in usable:
            session_trace = trace.session(result.source)
            session_trace.reconstruction_mode = result.mode.value
            session_trace.lap_strategy = result.segmentation.strategy.value
            session_trace.race_type = result.segmentation.race_type.value
            session_trace.lap_count = result.segmentation.lap_count
            session_trace.distance_m = result.distance
            session_trace.duration_s = result.duration
            session_trace.event_count = len(result.events)

    if not usable:
        raise NoUsableSessionsError(f"No usable sessions out of {len(sessions)}")

    master_build = build_master(usable, params)
    if master_build is None:
        raise NoUsableSessionsError("Master path could not be built from the usable sessions")
    master = master_build.path
    logger.info(
        f"Master {master_build.race_type.value} path: {len(master)} points, "
        f"{master.length:.1f}m from {master_build.lap_count} laps"
    )

    # Stage 2
    stage2 = _run_parallel(
        params,
        {r.source: (map_session, (r, master, params, surface_thresholds)) for r in usable},
        failed,
        "mapping",
    )
    partials = [stage2[r.source] for r in usable if r.source in stage2]

    master_out, heatmap, events, cars = merge_partials(master, partials)

    progress = {p.car.source: p.progress for p in partials if p.progress}
    if len(progress) > 1:
        for overtake in detect_overtakes(progress):
            events.append(EventRecord(
                type=EventType.OVERTAKE.value,
                source=overtake.source,
                target=overtake.target,
                time=overtake.time,
                note=f"{overtake.source} passed {overtake.target}",
                lap=overtake.lap,
                rel_s=overtake.rel_s,
                master_x=overtake.master_x,
                master_y=overtake.master_y,
            ))
    events.sort(key=lambda e: e.time)

    race_type = RaceType.LAPPED if any(c.race_type == RaceType.LAPPED for c in cars) else RaceType.SPRINT

    if trace is not None:
        _record_master_checks(trace, master_build, partials, sessions, usable, failed)

    return RunResult(
        race_type=race_type,
        master=master_out,
        heatmap=heatmap,
        events=events,
        cars=cars,
        failed_sessions=failed,
        trace=trace,
    )


def _record_master_checks(trace: PipelineTrace, master_build: MasterBuild,
                          partials: Sequence[MappingPartial],
                          sessions: Dict[str, Sequence[Sample]],
                          usable: Sequence[SessionResult],
                          failed: Dict[str, str]) -> None:
    master = master_build.path
    trace.record_master("race_type", master_build.race_type.value)
    trace.record_master("points", len(master))
    trace.record_master("length_m", master.length)
    trace.record_master("input_laps", master_build.lap_count)

    # Master length against the median input lap
    reference = median(master_build.reference_lengths)
    if reference > 0:
        ratio = master.length / reference
        lo, hi = MASTER_LENGTH_RATIO_RANGE
        status = "pass" if lo <= ratio <= hi else "warn"
        trace.add_check(
            "master_length_plausible", status,
            f"master/median lap length ratio {ratio:.3f}",
            expected=f"{lo}-{hi}", actual=round(ratio, 4),
        )
    else:
        trace.add_check("master_length_plausible", "warn", "input laps have zero length")

    # Mapping residuals
    residual_sum = sum(p.residual_sum for p in partials)
    residual_count = sum(p.residual_count for p in partials)
    for partial in partials:
        if partial.residual_count:
            trace.session(partial.car.source).mean_residual_sq = partial.residual_sum / partial.residual_count
    if residual_count and master.length > 0:
        rms = float(np.sqrt(residual_sum / residual_count))
        fraction = rms / master.length
        status = "pass" if fraction <= MAX_RMS_RESIDUAL_FRACTION else "warn"
        trace.add_check(
            "mapping_residual_reasonable", status,
            f"RMS residual {rms:.2f}m ({fraction:.1%} of master length)",
            expected=f"<= {MAX_RMS_RESIDUAL_FRACTION:.0%}", actual=round(fraction, 4),
        )

    # Session survival
    used = len(partials)
    total = len(sessions) + len([s for s in failed if s not in sessions])
    status = "pass" if used == total else "warn"
    trace.add_check(
        "sessions_usable", status,
        f"{used} of {total} sessions usable",
        expected=total, actual=used,
    )
    for source, message in failed.items():
        trace.warnings.append(f"{source}: {message}")


def load_sessions(paths: Sequence[str]) -> Tuple[Dict[str, List[Sample]], Dict[str, str]]:
    """
    Load session files keyed by file stem.

    Returns:
        Tuple of (sessions, failures) where failures maps source to error message
    """
    sessions: Dict[str, List[Sample]] = {}
    failures: Dict[str, str] = {}
    for path in paths:
        source = Path(path).stem
        suffix = 2
        while source in sessions or source in failures:
            source = f"{Path(path).stem}_{suffix}"
            suffix += 1
        try:
            sessions[source] = load_session_file(path)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load {path}: {e}")
            failures[source] = f"load: {e}"
    return sessions, failures


def run_files(paths: Sequence[str], params: Optional[RunParameters] = None,
              thresholds: Optional[EventThresholds] = None,
              include_trace: bool = False) -> RunResult:
    """Load session files and run the pipeline over them."""
    sessions, failures = load_sessions(paths)
    return run_sessions(sessions, params, thresholds,
                        include_trace=include_trace, failed_sessions=failures)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point"""
    config = get_config()
    logging.basicConfig(
        level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description="Build a master lap and map telemetry sessions onto it")
    parser.add_argument("--file", action="append", default=[],
                        help="Session file (.parquet or .csv), repeatable")
    parser.add_argument("--folder", action="append", default=[],
                        help="Folder searched recursively for session files, repeatable")
    parser.add_argument("--lap-length", type=float, default=config.LAP_LENGTH,
                        help="Expected lap length in meters (0 = unknown)")
    parser.add_argument("--lap-tol", type=float, default=config.LAP_TOLERANCE,
                        help="Lap length tolerance in meters")
    parser.add_argument("--lap-count", type=int, default=config.LAP_COUNT,
                        help="Known lap count (0 = unknown)")
    parser.add_argument("--min-lap-spacing", type=float, default=config.MIN_LAP_SPACING,
                        help="Minimum distance in meters between lap boundaries")
    parser.add_argument("--start-finish-radius", type=float, default=config.START_FINISH_RADIUS,
                        help="Radius in meters around the start used for lap detection")
    parser.add_argument("--master-samples", type=int, default=config.MASTER_SAMPLES,
                        help="Points on the resampled master path")
    parser.add_argument("--no-master", action="store_true",
                        help="Build the master path from the first lap only instead of averaging")
    parser.add_argument("--sprint", action="store_true", default=config.FORCE_SPRINT,
                        help="Treat every session as a point-to-point run")
    parser.add_argument("--sectors", type=int, default=config.SECTOR_COUNT,
                        help="Equal-distance sectors per lap")
    parser.add_argument("--workers", type=int, default=config.MAX_WORKERS,
                        help="Worker pool size")
    parser.add_argument("--processes", action="store_true",
                        help="Use a process pool instead of threads")
    parser.add_argument("--trace", action="store_true",
                        help="Include the pipeline trace and sanity checks in the output")
    parser.add_argument("--out", default=None,
                        help="Write JSON here instead of stdout")

    args = parser.parse_args(argv)

    paths = list(args.file) + discover_session_files(args.folder)
    if not paths:
        logger.error("No session files found; provide --file and/or --folder")
        return 1
    logger.info(f"Input files: {len(paths)}")

    try:
        params = config.run_parameters(
            expected_lap_length=args.lap_length,
            lap_tolerance=args.lap_tol,
            lap_count=args.lap_count,
            min_lap_spacing=args.min_lap_spacing,
            start_finish_radius=args.start_finish_radius,
            master_samples=args.master_samples,
            use_master=not args.no_master and config.USE_MASTER,
            force_sprint=args.sprint,
            sector_count=args.sectors,
            max_workers=args.workers,
            use_processes=args.processes,
        )
        result = run_files(paths, params, include_trace=args.trace)
    except (ValueError, NoUsableSessionsError) as e:
        logger.error(str(e))
        return 1

    payload = json.dumps(result.to_dict(), indent=2)
    if args.out:
        Path(args.out).parent.mkdir(parents=True, exist_ok=True)
        Path(args.out).write_text(payload)
        logger.info(f"Wrote {args.out} ({len(payload)} bytes)")
    else:
        sys.stdout.write(payload + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
