"""Tests for execution-baseline report validation."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from gate_diagnostics.execution_baseline import (
    ExecutionBaselineOptions,
    build_execution_baseline_summary,
    validate_execution_baseline_report,
)
from gate_diagnostics.io_utils import read_json_report


def make_report(**overrides: Any) -> dict[str, Any]:
    report: dict[str, Any] = {
        "schemaVersion": "1.0",
        "runId": "baseline-1",
        "startedAt": "2026-02-01T00:00:00Z",
        "finishedAt": "2026-02-01T00:02:00Z",
        "durationMs": 120000,
        "query": {"since": "2026-01-25T00:00:00Z", "days": 7, "batchSize": 200},
        "totals": {
            "executions": 10,
            "completed": 8,
            "running": 1,
            "pending": 1,
            "success": 6,
            "failed": 1,
            "canceled": 1,
            "timeoutFailures": 1,
        },
        "rates": {
            "successRate": 0.6,
            "failedRate": 0.1,
            "canceledRate": 0.1,
            "timeoutRate": 0.1,
            "completedSuccessRate": 0.75,
        },
        "latencyMs": {"sampleCount": 8, "p50": 100, "p90": 200, "p95": 300, "p99": 400},
        "gate": {
            "passed": True,
            "evaluated": True,
            "thresholds": {"minSuccessRate": 0.5, "maxP95DurationMs": 1000},
            "violations": [],
            "warnings": [],
        },
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(report.get(key), dict):
            report[key] = {**report[key], **value}
        else:
            report[key] = value
    return report


def test_consistent_report_passes() -> None:
    result = validate_execution_baseline_report(make_report())
    assert result.ok, result.validation_errors
    assert result.warnings == ()
    assert result.projection["total_executions"] == 10
    assert result.projection["p95_duration_ms"] == 300
    assert result.projection["query_days"] == 7


def test_completed_total_mismatch_is_single_error() -> None:
    result = validate_execution_baseline_report(
        make_report(totals={"completed": 9, "running": 0}, rates={"completedSuccessRate": 0.666667})
    )
    assert result.validation_errors == (
        "Execution baseline report totals mismatch: totals.completed expected 8, actual 9.",
    )


def test_rate_mismatch() -> None:
    result = validate_execution_baseline_report(make_report(rates={"successRate": 0.5}))
    assert result.validation_errors == (
        "Execution baseline report rates.successRate mismatch: expected 0.6, actual 0.5.",
    )


def test_timeouts_cannot_exceed_failed() -> None:
    result = validate_execution_baseline_report(
        make_report(totals={"timeoutFailures": 2}, rates={"timeoutRate": 0.2})
    )
    assert result.validation_errors == (
        "Execution baseline report totals.timeoutFailures cannot exceed totals.failed: "
        "timeoutFailures=2, failed=1.",
    )


def test_percentile_order() -> None:
    result = validate_execution_baseline_report(make_report(latencyMs={"p90": 350}))
    assert len(result.validation_errors) == 1
    assert "percentile order is invalid" in result.validation_errors[0]


def test_zero_samples_with_latency_is_warning() -> None:
    result = validate_execution_baseline_report(make_report(latencyMs={"sampleCount": 0}))
    assert result.ok
    assert result.warnings == (
        "Execution baseline report latencyMs sampleCount=0 but percentile values are non-zero.",
    )


def test_gate_pass_with_violations() -> None:
    result = validate_execution_baseline_report(
        make_report(gate={"violations": ["success rate below minimum"]})
    )
    assert result.validation_errors == (
        "Execution baseline report gate.passed cannot be true when gate.violations is non-empty.",
    )


def test_gate_fail_without_violations_is_warning() -> None:
    result = validate_execution_baseline_report(make_report(gate={"passed": False}))
    assert result.ok
    assert result.warnings == (
        "Execution baseline report gate.passed=false but gate.violations is empty.",
    )


class TestStrictnessOptions:
    def test_require_gate_pass(self) -> None:
        options = ExecutionBaselineOptions(require_gate_pass=True)
        result = validate_execution_baseline_report(make_report(gate={"passed": False}), options)
        assert (
            "Execution baseline report gate.passed must be true when require-gate-pass is enabled."
            in result.validation_errors
        )

    def test_require_no_warnings(self) -> None:
        options = ExecutionBaselineOptions(require_no_warnings=True)
        result = validate_execution_baseline_report(
            make_report(gate={"warnings": ["few samples"]}), options
        )
        assert result.validation_errors == (
            "Execution baseline report gate.warnings must be empty when require-no-warnings "
            "is enabled (actual=1).",
        )

    def test_schema_version_mismatch(self) -> None:
        options = ExecutionBaselineOptions(expected_report_schema_version="2.0")
        result = validate_execution_baseline_report(make_report(), options)
        assert result.validation_errors == (
            "Execution baseline report schema version mismatch: expected 2.0, actual 1.0.",
        )


def test_unreadable_file_reports_single_read_error(tmp_path: Path) -> None:
    loaded = read_json_report(tmp_path / "missing.json")
    summary = build_execution_baseline_summary(loaded)
    assert summary.failed
    assert summary.validation_errors == (
        f"Failed to read execution baseline report file ({loaded.path}): {loaded.error}",
    )
    assert summary.report is not None and summary.report["run_id"] is None


def test_non_object_report() -> None:
    result = validate_execution_baseline_report("nope")
    assert result.validation_errors == ("Execution baseline report must be an object.",)
