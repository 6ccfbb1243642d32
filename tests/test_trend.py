"""Tests for regression-trend detection and threshold resolution."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from gate_diagnostics.checks import Findings
from gate_diagnostics.io_utils import read_json_report, save_json
from gate_diagnostics.trend import (
    DEFAULT_TREND_THRESHOLDS,
    build_trend_summary,
    compare_trend,
    extract_file_thresholds,
    resolve_thresholds,
)


def baseline(
    *,
    run_id: str = "run",
    success: float = 0.9,
    failed: float = 0.05,
    timeout: float = 0.01,
    p95: float = 20000,
    executions: int = 100,
) -> dict[str, Any]:
    return {
        "schemaVersion": "1.0",
        "runId": run_id,
        "finishedAt": "2026-02-01T00:00:00Z",
        "rates": {"successRate": success, "failedRate": failed, "timeoutRate": timeout},
        "latencyMs": {"p95": p95},
        "totals": {"executions": executions},
        "gate": {"passed": True},
    }


DEFAULTS = resolve_thresholds()


class TestCompareTrend:
    def test_stable_run_succeeds(self) -> None:
        result = compare_trend(baseline(), baseline(run_id="ref"), DEFAULTS)
        assert result.status == "SUCCESS"
        assert result.regressions == ()
        assert result.delta["success_rate"] == 0

    def test_success_rate_drop(self) -> None:
        result = compare_trend(baseline(success=0.8), baseline(), DEFAULTS)
        assert result.status == "FAILED"
        assert result.regressions == (
            "successRate drop exceeds threshold: delta=-0.1, limit=-0.05",
        )

    def test_p95_increase_boundary_is_strict(self) -> None:
        thresholds = resolve_thresholds({"maxP95DurationIncreaseMs": 5000})
        at_limit = compare_trend(baseline(p95=25000), baseline(p95=20000), thresholds)
        assert at_limit.status == "SUCCESS"
        over_limit = compare_trend(baseline(p95=25001), baseline(p95=20000), thresholds)
        assert over_limit.regressions == (
            "p95 duration increase exceeds threshold: deltaMs=5001, limitMs=5000",
        )

    def test_improvement_never_regresses(self) -> None:
        result = compare_trend(
            baseline(success=0.99, failed=0.0, timeout=0.0, p95=1000),
            baseline(success=0.5, failed=0.4, timeout=0.2, p95=90000),
            DEFAULTS,
        )
        assert result.status == "SUCCESS"
        assert result.delta["p95_duration_ms"] == -89000

    def test_failed_and_timeout_increase(self) -> None:
        result = compare_trend(baseline(failed=0.2, timeout=0.05), baseline(), DEFAULTS)
        assert result.regressions == (
            "failedRate increase exceeds threshold: delta=0.15, limit=0.05",
            "timeoutRate increase exceeds threshold: delta=0.04, limit=0.02",
        )

    def test_missing_reference_allowed_is_skipped(self) -> None:
        result = compare_trend(
            baseline(), None, DEFAULTS, allow_missing_reference=True, reference_path="ref.json"
        )
        assert result.status == "SKIPPED"
        assert result.warnings == ("reference report missing: ref.json",)
        assert result.validation_errors == ()

    def test_missing_reference_required(self) -> None:
        result = compare_trend(
            baseline(),
            None,
            DEFAULTS,
            allow_missing_reference=True,
            require_reference=True,
            reference_path="ref.json",
        )
        assert result.status == "FAILED"
        assert result.validation_errors == ("reference report is required but missing: ref.json",)

    def test_missing_reference_without_flags_fails(self) -> None:
        result = compare_trend(baseline(), None, DEFAULTS, reference_path="ref.json")
        assert result.validation_errors == ("reference report missing: ref.json",)

    def test_invalid_current_report(self) -> None:
        report = baseline()
        report["rates"]["successRate"] = 1.5
        result = compare_trend(report, baseline(), DEFAULTS)
        assert result.status == "FAILED"
        assert result.validation_errors == (
            "current report rates.successRate must be a number between 0 and 1.",
        )
        assert result.delta["success_rate"] is None


class TestThresholds:
    def test_precedence_cli_over_file_over_default(self) -> None:
        thresholds = resolve_thresholds(
            {"maxSuccessRateDrop": 0.1, "maxFailedRateIncrease": None},
            {"maxSuccessRateDrop": 0.2, "maxFailedRateIncrease": 0.3},
        )
        assert thresholds.get("maxSuccessRateDrop") == 0.1
        assert thresholds.get("maxFailedRateIncrease") == 0.3
        assert thresholds.get("maxTimeoutRateIncrease") == DEFAULT_TREND_THRESHOLDS["maxTimeoutRateIncrease"]
        assert thresholds.as_dict()["thresholdSources"] == {
            "maxSuccessRateDrop": "CLI_ARG",
            "maxFailedRateIncrease": "THRESHOLDS_FILE",
            "maxTimeoutRateIncrease": "DEFAULT",
            "maxP95DurationIncreaseMs": "DEFAULT",
        }

    def test_extract_reads_trend_section(self) -> None:
        findings = Findings()
        values = extract_file_thresholds(
            {"gate": {}, "trend": {"maxSuccessRateDrop": 0.07}}, findings
        )
        assert values["maxSuccessRateDrop"] == 0.07
        assert values["maxP95DurationIncreaseMs"] is None
        assert findings.ok

    def test_extract_rejects_negative_values(self) -> None:
        findings = Findings()
        values = extract_file_thresholds({"maxTimeoutRateIncrease": -1}, findings)
        assert values["maxTimeoutRateIncrease"] is None
        assert findings.validation_errors == [
            "thresholds maxTimeoutRateIncrease must be a non-negative number."
        ]


class TestBuildTrendSummary:
    def _files(self, tmp_path: Path, current: Any, reference: Any | None):
        current_path = tmp_path / "current.json"
        reference_path = tmp_path / "reference.json"
        save_json(current, current_path)
        if reference is not None:
            save_json(reference, reference_path)
        return read_json_report(current_path), read_json_report(reference_path)

    def test_missing_default_thresholds_file_is_warning(self, tmp_path: Path) -> None:
        current, reference = self._files(tmp_path, baseline(), baseline())
        thresholds = read_json_report(tmp_path / "thresholds.json")
        summary = build_trend_summary(current, reference, thresholds)
        assert summary.status == "SUCCESS"
        assert summary.warnings == (
            f"thresholds file missing, using default trend thresholds: {thresholds.path}",
        )

    def test_missing_explicit_thresholds_file_is_error(self, tmp_path: Path) -> None:
        current, reference = self._files(tmp_path, baseline(), baseline())
        thresholds = read_json_report(tmp_path / "thresholds.json")
        summary = build_trend_summary(current, reference, thresholds, thresholds_file_explicit=True)
        assert summary.failed
        assert summary.validation_errors == (f"thresholds file missing: {thresholds.path}",)

    def test_file_thresholds_apply(self, tmp_path: Path) -> None:
        current, reference = self._files(tmp_path, baseline(success=0.88), baseline())
        thresholds_path = tmp_path / "thresholds.json"
        save_json({"trend": {"maxSuccessRateDrop": 0.01}}, thresholds_path)
        summary = build_trend_summary(current, reference, read_json_report(thresholds_path))
        assert summary.failed
        assert summary.extras["regression_count"] == 1
        assert summary.inputs["thresholdSources"]["maxSuccessRateDrop"] == "THRESHOLDS_FILE"

    def test_skipped_when_reference_missing_and_allowed(self, tmp_path: Path) -> None:
        current, reference = self._files(tmp_path, baseline(), None)
        summary = build_trend_summary(current, reference, None, allow_missing_reference=True)
        assert summary.status == "SKIPPED"
        assert summary.exit_code == 0
        assert summary.warnings == (f"reference report missing: {reference.path}",)

    def test_unreadable_reference_skips_comparison(self, tmp_path: Path) -> None:
        current, _ = self._files(tmp_path, baseline(), None)
        broken = tmp_path / "reference.json"
        broken.write_text("{")
        reference = read_json_report(broken)
        summary = build_trend_summary(current, reference, None, allow_missing_reference=True)
        assert summary.failed
        assert summary.validation_errors == (f"Failed to read {reference.path}: {reference.error}",)
        assert summary.warnings == ()
