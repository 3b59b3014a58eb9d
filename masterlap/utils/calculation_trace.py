"""
Pipeline traceability and sanity check infrastructure.

Records which parameters, per-session stage outcomes and master-path
statistics produced a run, and validates the run against geometric
plausibility checks.

Usage:
    trace = PipelineTrace(timestamp=...)
    trace.record_parameter("master_samples", 4000)
    trace.session("car_a").lap_strategy = "proximity"
    trace.record_master("length_m", 5120.4)
    trace.add_check("master_length_plausible", "pass", "ratio 1.02")
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class SanityCheck:
    """A single validation check on a pipeline result."""
    name: str
    status: str  # "pass", "warn", "fail"
    message: str
    expected: Optional[Any] = None
    actual: Optional[Any] = None
    severity: str = "warning"  # "info", "warning", "error"

    def to_dict(self) -> dict:
        result = {
            "name": self.name,
            "status": self.status,
            "message": self.message,
            "severity": self.severity,
        }
        if self.expected is not None:
            result["expected"] = self.expected
        if self.actual is not None:
            result["actual"] = self.actual
        return result


@dataclass
class SessionTrace:
    """Stage outcomes for one session."""
    source: str
    sample_count: int = 0
    reconstruction_mode: Optional[str] = None
    lap_strategy: Optional[str] = None
    race_type: Optional[str] = None
    lap_count: int = 0
    distance_m: float = 0.0
    duration_s: float = 0.0
    event_count: int = 0
    mean_residual_sq: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "sample_count": self.sample_count,
            "reconstruction_mode": self.reconstruction_mode,
            "lap_strategy": self.lap_strategy,
            "race_type": self.race_type,
            "lap_count": self.lap_count,
            "distance_m": self.distance_m,
            "duration_s": self.duration_s,
            "event_count": self.event_count,
            "mean_residual_sq": self.mean_residual_sq,
            "error": self.error,
        }


@dataclass
class PipelineTrace:
    """Records the full trace of a pipeline run for debugging.

    Attached to RunResult when include_trace=True is passed to
    run_sessions(). Zero overhead when not requested.
    """
    timestamp: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    sessions: Dict[str, SessionTrace] = field(default_factory=dict)
    master: Dict[str, Any] = field(default_factory=dict)
    sanity_checks: List[SanityCheck] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """True if any sanity check has status 'fail'."""
        return any(c.status == "fail" for c in self.sanity_checks)

    @property
    def has_warnings(self) -> bool:
        """True if any sanity check has status 'warn'."""
        return any(c.status == "warn" for c in self.sanity_checks)

    def session(self, source: str) -> SessionTrace:
        """Return the stage record for a session, creating it on first use."""
        if source not in self.sessions:
            self.sessions[source] = SessionTrace(source=source)
        return self.sessions[source]

    def add_check(self, name: str, status: str, message: str,
                  expected: Optional[Any] = None, actual: Optional[Any] = None,
                  severity: str = "warning") -> None:
        """Append a SanityCheck."""
        self.sanity_checks.append(SanityCheck(
            name=name, status=status, message=message,
            expected=expected, actual=actual, severity=severity,
        ))

    def record_parameter(self, key: str, value: Any) -> None:
        """Record a run parameter applied."""
        self.parameters[key] = value

    def record_master(self, key: str, value: Any) -> None:
        """Record a master-path statistic."""
        self.master[key] = value

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "parameters": self.parameters,
            "sessions": {k: v.to_dict() for k, v in self.sessions.items()},
            "master": self.master,
            "sanity_checks": [c.to_dict() for c in self.sanity_checks],
            "warnings": self.warnings,
            "has_failures": self.has_failures,
            "has_warnings": self.has_warnings,
        }
