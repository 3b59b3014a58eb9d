"""Tests for the pipeline trace infrastructure.

Tests the SanityCheck, SessionTrace and PipelineTrace dataclasses.
"""

import json

from masterlap.utils.calculation_trace import PipelineTrace, SanityCheck, SessionTrace


class TestSanityCheck:
    """Tests for SanityCheck dataclass."""

    def test_creation_minimal(self):
        check = SanityCheck(name="test_check", status="pass", message="OK")
        assert check.name == "test_check"
        assert check.status == "pass"
        assert check.expected is None
        assert check.actual is None
        assert check.severity == "warning"

    def test_to_dict_minimal(self):
        d = SanityCheck(name="x", status="pass", message="ok").to_dict()
        assert d == {
            "name": "x",
            "status": "pass",
            "message": "ok",
            "severity": "warning",
        }

    def test_to_dict_full(self):
        check = SanityCheck(
            name="master_length_plausible", status="warn", message="ratio 1.31",
            expected="0.8-1.2", actual=1.31, severity="warning",
        )
        d = check.to_dict()
        assert d["expected"] == "0.8-1.2"
        assert d["actual"] == 1.31


class TestSessionTrace:
    """Tests for SessionTrace dataclass."""

    def test_defaults(self):
        trace = SessionTrace(source="car_a")
        assert trace.lap_count == 0
        assert trace.error is None

    def test_to_dict(self):
        trace = SessionTrace(source="car_a", sample_count=120, lap_strategy="proximity", lap_count=3)
        d = trace.to_dict()
        assert d["source"] == "car_a"
        assert d["lap_strategy"] == "proximity"
        assert d["lap_count"] == 3


class TestPipelineTrace:
    """Tests for PipelineTrace dataclass."""

    def test_creation(self):
        trace = PipelineTrace(timestamp="2026-02-10T12:00:00+00:00")
        assert trace.parameters == {}
        assert trace.sessions == {}
        assert trace.sanity_checks == []
        assert not trace.has_failures
        assert not trace.has_warnings

    def test_session_created_once(self):
        trace = PipelineTrace(timestamp="t")
        first = trace.session("car_a")
        first.lap_count = 2
        assert trace.session("car_a") is first
        assert trace.sessions["car_a"].lap_count == 2

    def test_checks_drive_flags(self):
        trace = PipelineTrace(timestamp="t")
        trace.add_check("a", "pass", "ok")
        assert not trace.has_warnings
        trace.add_check("b", "warn", "hmm")
        assert trace.has_warnings
        assert not trace.has_failures
        trace.add_check("c", "fail", "bad", severity="error")
        assert trace.has_failures
        assert trace.sanity_checks[2].severity == "error"

    def test_record_parameter_and_master(self):
        trace = PipelineTrace(timestamp="t")
        trace.record_parameter("master_samples", 4000)
        trace.record_master("length_m", 5120.4)
        assert trace.parameters["master_samples"] == 4000
        assert trace.master["length_m"] == 5120.4

    def test_to_dict_json_serializable(self):
        trace = PipelineTrace(timestamp="t")
        trace.record_parameter("use_master", True)
        trace.session("car_a").sample_count = 10
        trace.add_check("sessions_usable", "pass", "1 of 1", expected=1, actual=1)
        trace.warnings.append("car_b: load failed")
        d = json.loads(json.dumps(trace.to_dict()))
        assert d["sessions"]["car_a"]["sample_count"] == 10
        assert d["sanity_checks"][0]["name"] == "sessions_usable"
        assert d["warnings"] == ["car_b: load failed"]
        assert d["has_failures"] is False
