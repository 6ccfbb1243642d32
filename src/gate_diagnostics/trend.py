"""Regression trend between a current and a reference execution baseline.

Thresholds resolve per key with precedence CLI argument > thresholds file >
built-in default, and the winning source is recorded next to each value.
Deltas are ``current - reference``; a metric regresses only when its delta is
strictly beyond the threshold in the harmful direction.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from gate_diagnostics.checks import (
    Findings,
    as_record,
    format_number,
    is_non_empty_string,
    is_number,
    read_non_negative_int,
    read_non_negative_number,
    read_rate,
)
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.summary import (
    STATUS_FAILED,
    STATUS_SKIPPED,
    STATUS_SUCCESS,
    ValidationSummary,
    build_validation_summary,
)

log = logging.getLogger(__name__)

THRESHOLD_KEYS = (
    "maxSuccessRateDrop",
    "maxFailedRateIncrease",
    "maxTimeoutRateIncrease",
    "maxP95DurationIncreaseMs",
)
DEFAULT_TREND_THRESHOLDS: dict[str, float] = {
    "maxSuccessRateDrop": 0.05,
    "maxFailedRateIncrease": 0.05,
    "maxTimeoutRateIncrease": 0.02,
    "maxP95DurationIncreaseMs": 10000,
}

SOURCE_CLI_ARG = "CLI_ARG"
SOURCE_THRESHOLDS_FILE = "THRESHOLDS_FILE"
SOURCE_DEFAULT = "DEFAULT"


@dataclass(frozen=True, slots=True)
class ThresholdSet:
    """Resolved regression thresholds keyed by their external names."""

    values: dict[str, float | None]
    sources: dict[str, str]

    def get(self, key: str) -> float | None:
        return self.values.get(key)

    def as_dict(self) -> dict[str, Any]:
        return {**self.values, "thresholdSources": dict(self.sources)}


@dataclass(frozen=True, slots=True)
class RegressionResult:
    status: str
    current: dict[str, Any]
    reference: dict[str, Any]
    delta: dict[str, Any]
    thresholds: ThresholdSet
    regressions: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    validation_errors: tuple[str, ...] = ()

    def as_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "current": self.current,
            "reference": self.reference,
            "delta": self.delta,
            "thresholds": self.thresholds.as_dict(),
            "regression_count": len(self.regressions),
            "regressions": list(self.regressions),
            "warnings": list(self.warnings),
            "validation_errors": list(self.validation_errors),
        }


def resolve_thresholds(
    overrides: Mapping[str, float | None] | None = None,
    file_values: Mapping[str, float | None] | None = None,
    defaults: Mapping[str, float | None] = DEFAULT_TREND_THRESHOLDS,
) -> ThresholdSet:
    overrides = overrides or {}
    file_values = file_values or {}
    values: dict[str, float | None] = {}
    sources: dict[str, str] = {}
    for key in THRESHOLD_KEYS:
        if overrides.get(key) is not None:
            values[key], sources[key] = overrides[key], SOURCE_CLI_ARG
        elif file_values.get(key) is not None:
            values[key], sources[key] = file_values[key], SOURCE_THRESHOLDS_FILE
        else:
            values[key], sources[key] = defaults.get(key), SOURCE_DEFAULT
    log.debug("Resolved trend thresholds: %s (sources %s)", values, sources)
    return ThresholdSet(values=values, sources=sources)


def extract_file_thresholds(payload: Any, findings: Findings) -> dict[str, float | None]:
    """Read thresholds from a config payload: its ``trend`` section, else the root."""
    if not isinstance(payload, dict):
        findings.error("thresholds file content must be an object.")
        return {}
    container: Mapping[str, Any] = payload
    trend = payload.get("trend")
    if trend is not None:
        if not isinstance(trend, dict):
            findings.error("thresholds file trend must be an object when provided.")
            return {}
        container = trend
    values: dict[str, float | None] = {}
    for key in THRESHOLD_KEYS:
        value = container.get(key)
        if value is None:
            values[key] = None
        elif not is_number(value) or value < 0:
            findings.error(f"thresholds {key} must be a non-negative number.")
            values[key] = None
        else:
            values[key] = value
    return values


def empty_baseline_projection() -> dict[str, Any]:
    return {
        "run_id": None,
        "finished_at": None,
        "success_rate": None,
        "failed_rate": None,
        "timeout_rate": None,
        "p95_duration_ms": None,
        "executions": None,
        "gate_passed": None,
    }


def project_baseline_report(report: Any, name: str, findings: Findings) -> dict[str, Any]:
    """Extract and range-check the metrics the trend compares."""
    if not isinstance(report, dict):
        findings.error(f"{name} report must be an object.")
        return empty_baseline_projection()
    if not is_non_empty_string(report.get("schemaVersion")):
        findings.error(f"{name} report schemaVersion is required.")
    if not is_non_empty_string(report.get("runId")):
        findings.error(f"{name} report runId is required.")
    sections = {}
    for key in ("rates", "latencyMs", "totals", "gate"):
        sections[key] = as_record(report.get(key))
        if sections[key] is None:
            findings.error(f"{name} report {key} must be an object.")
    gate = sections["gate"]
    gate_passed = gate.get("passed") if gate is not None else None
    if gate_passed is not None and not isinstance(gate_passed, bool):
        findings.error(f"{name} report gate.passed must be a boolean when provided.")
        gate_passed = None
    rates = sections["rates"]
    return {
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "finished_at": report.get("finishedAt") if isinstance(report.get("finishedAt"), str) else None,
        "success_rate": read_rate(rates, "successRate", f"{name} report rates.successRate", findings),
        "failed_rate": read_rate(rates, "failedRate", f"{name} report rates.failedRate", findings),
        "timeout_rate": read_rate(rates, "timeoutRate", f"{name} report rates.timeoutRate", findings),
        "p95_duration_ms": read_non_negative_number(
            sections["latencyMs"], "p95", f"{name} report latencyMs.p95", findings
        ),
        "executions": read_non_negative_int(
            sections["totals"], "executions", f"{name} report totals.executions", findings
        ),
        "gate_passed": gate_passed,
    }


def _delta(current: Any, reference: Any, digits: int) -> float | None:
    if current is None or reference is None:
        return None
    return round(current - reference, digits)


def compute_delta(current: Mapping[str, Any], reference: Mapping[str, Any]) -> dict[str, Any]:
    executions = None
    if current["executions"] is not None and reference["executions"] is not None:
        executions = current["executions"] - reference["executions"]
    return {
        "success_rate": _delta(current["success_rate"], reference["success_rate"], 6),
        "failed_rate": _delta(current["failed_rate"], reference["failed_rate"], 6),
        "timeout_rate": _delta(current["timeout_rate"], reference["timeout_rate"], 6),
        "p95_duration_ms": _delta(current["p95_duration_ms"], reference["p95_duration_ms"], 3),
        "executions": executions,
    }


def detect_regressions(delta: Mapping[str, Any], thresholds: ThresholdSet) -> list[str]:
    regressions: list[str] = []
    limit = thresholds.get("maxSuccessRateDrop")
    value = delta["success_rate"]
    if limit is not None and value is not None and value < -limit:
        regressions.append(
            f"successRate drop exceeds threshold: delta={format_number(value)}, "
            f"limit=-{format_number(limit)}"
        )
    for key, metric, name in (
        ("maxFailedRateIncrease", "failed_rate", "failedRate"),
        ("maxTimeoutRateIncrease", "timeout_rate", "timeoutRate"),
    ):
        limit, value = thresholds.get(key), delta[metric]
        if limit is not None and value is not None and value > limit:
            regressions.append(
                f"{name} increase exceeds threshold: delta={format_number(value)}, "
                f"limit={format_number(limit)}"
            )
    limit = thresholds.get("maxP95DurationIncreaseMs")
    value = delta["p95_duration_ms"]
    if limit is not None and value is not None and value > limit:
        regressions.append(
            f"p95 duration increase exceeds threshold: deltaMs={format_number(value)}, "
            f"limitMs={format_number(limit)}"
        )
    return regressions


def compare_trend(
    current: Any,
    reference: Any | None,
    thresholds: ThresholdSet,
    *,
    allow_missing_reference: bool = False,
    require_reference: bool = False,
    reference_path: str = "reference",
) -> RegressionResult:
    """Compare two baseline reports; ``reference=None`` means it does not exist."""
    findings = Findings()
    current_projection = project_baseline_report(current, "current", findings)
    delta: dict[str, Any] = {
        "success_rate": None,
        "failed_rate": None,
        "timeout_rate": None,
        "p95_duration_ms": None,
        "executions": None,
    }
    regressions: list[str] = []

    if reference is None:
        reference_projection = empty_baseline_projection()
        if require_reference:
            findings.error(f"reference report is required but missing: {reference_path}")
        elif allow_missing_reference:
            findings.warn(f"reference report missing: {reference_path}")
        else:
            findings.error(f"reference report missing: {reference_path}")
    else:
        reference_projection = project_baseline_report(reference, "reference", findings)
        delta = compute_delta(current_projection, reference_projection)
        regressions = detect_regressions(delta, thresholds)

    if findings.validation_errors or regressions:
        status = STATUS_FAILED
    elif reference is None:
        status = STATUS_SKIPPED
    else:
        status = STATUS_SUCCESS

    return RegressionResult(
        status=status,
        current={"exists": current is not None, **current_projection},
        reference={"exists": reference is not None, **reference_projection},
        delta=delta,
        thresholds=thresholds,
        regressions=tuple(regressions),
        warnings=tuple(findings.warnings),
        validation_errors=tuple(findings.validation_errors),
    )


def build_trend_summary(
    current_file: LoadedReport,
    reference_file: LoadedReport,
    thresholds_file: LoadedReport | None,
    *,
    thresholds_file_explicit: bool = False,
    overrides: Mapping[str, float | None] | None = None,
    allow_missing_reference: bool = False,
    require_reference: bool = False,
) -> ValidationSummary:
    """Run the trend comparison over loaded files and fold in loading outcomes."""
    findings = Findings()
    file_values: dict[str, float | None] = {}
    if thresholds_file is not None:
        if not thresholds_file.exists:
            if thresholds_file_explicit:
                findings.error(f"thresholds file missing: {thresholds_file.path}")
            else:
                findings.warn(
                    f"thresholds file missing, using default trend thresholds: {thresholds_file.path}"
                )
        elif thresholds_file.error:
            findings.error(f"Failed to read {thresholds_file.path}: {thresholds_file.error}")
        else:
            file_values = extract_file_thresholds(thresholds_file.data, findings)
    thresholds = resolve_thresholds(overrides, file_values)

    extras: dict[str, Any] = {
        "current": {"exists": current_file.exists, **empty_baseline_projection()},
        "reference": {"exists": reference_file.exists, **empty_baseline_projection()},
        "delta": dict.fromkeys(
            ("success_rate", "failed_rate", "timeout_rate", "p95_duration_ms", "executions")
        ),
        "regression_count": 0,
        "regressions": [],
    }
    unreadable = [f for f in (current_file, reference_file) if f.exists and f.error]
    if not current_file.exists:
        findings.error(f"Failed to read {current_file.path}: {current_file.error}")
    for loaded in unreadable:
        findings.error(f"Failed to read {loaded.path}: {loaded.error}")

    status = STATUS_FAILED
    if current_file.ok and not unreadable:
        result = compare_trend(
            current_file.data,
            reference_file.data if reference_file.exists else None,
            thresholds,
            allow_missing_reference=allow_missing_reference,
            require_reference=require_reference,
            reference_path=reference_file.path,
        )
        findings.validation_errors.extend(result.validation_errors)
        findings.warnings.extend(result.warnings)
        status = result.status
        extras = {
            "current": result.current,
            "reference": result.reference,
            "delta": result.delta,
            "regression_count": len(result.regressions),
            "regressions": list(result.regressions),
        }
    if findings.validation_errors:
        status = STATUS_FAILED

    inputs = {
        "current_report_file": current_file.path,
        "reference_report_file": reference_file.path,
        "thresholds_file": thresholds_file.path if thresholds_file is not None else None,
        "thresholds_file_exists": bool(thresholds_file and thresholds_file.exists),
        "allow_missing_reference": allow_missing_reference,
        "require_reference": require_reference,
        **thresholds.as_dict(),
    }
    return build_validation_summary(
        inputs=inputs,
        report=None,
        validation_errors=findings.validation_errors,
        warnings=findings.warnings,
        status=status,
        extras=extras,
    )
