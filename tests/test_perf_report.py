"""Tests for perf report validation."""
from __future__ import annotations

from typing import Any

from gate_diagnostics.perf_report import REQUIRED_SCENARIO_IDS, validate_perf_report


def _metric(metric_id: str, p50: float = 10, p95: float = 20, p99: float = 30) -> dict[str, Any]:
    return {"id": metric_id, "sampleSize": 50, "p50Ms": p50, "p95Ms": p95, "p99Ms": p99}


def _report(metrics: list[dict[str, Any]], violations: list[Any] | None = None) -> dict[str, Any]:
    return {
        "schemaVersion": "1.0",
        "generatedAt": "2026-01-01T00:00:00Z",
        "thresholdCheck": {"limits": [], "violations": violations or []},
        "metrics": metrics,
    }


def test_valid_report() -> None:
    result = validate_perf_report(_report([_metric(i) for i in REQUIRED_SCENARIO_IDS]))
    assert result.ok, result.validation_errors
    assert result.projection["violations"] == 0
    assert result.projection["p95_by_scenario"]["pass-low-risk"] == 20


def test_percentile_order_and_missing_scenario() -> None:
    metrics = [_metric("pass-low-risk", p50=25, p95=20), _metric("soft-block-high-risk")]
    result = validate_perf_report(_report(metrics))
    assert result.validation_errors == (
        "Perf percentile order invalid (p50 > p95): pass-low-risk",
        "Perf report missing scenario: hard-block-by-rule",
    )


def test_custom_required_scenarios() -> None:
    result = validate_perf_report(_report([_metric("only")]), required_scenario_ids=("only",))
    assert result.ok


def test_empty_metrics() -> None:
    result = validate_perf_report(_report([]))
    assert "Perf report metrics must be a non-empty array." in result.validation_errors


def test_schema_version_mismatch_is_error() -> None:
    report = _report([_metric(i) for i in REQUIRED_SCENARIO_IDS])
    report["schemaVersion"] = "2.0"
    result = validate_perf_report(report)
    assert result.validation_errors == (
        "Perf report schema version mismatch: expected 1.0, actual 2.0.",
    )
    assert validate_perf_report(report, expected_schema_version="2.0").ok
