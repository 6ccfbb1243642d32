"""Execution-baseline report validation.

The execution baseline summarizes workflow executions over a query window:
counter totals, derived rates, latency percentiles and the gate verdict that
the baseline job computed. Validation covers:

- field structure and ranges for every section
- counter identities (completed, executions, timeout failures)
- each rate recomputed from its counters within ``RATE_TOLERANCE``
- percentile ordering and the gate verdict against its violations
- optional strictness flags (gate pass, gate evaluated, no gate warnings)
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from gate_diagnostics.checks import (
    Findings,
    ReportValidation,
    as_record,
    format_number,
    is_non_empty_string,
    parse_iso_timestamp,
    rates_match,
    read_bool,
    read_non_negative_int,
    read_non_negative_number,
    read_optional_positive_number,
    read_optional_rate,
    read_positive_int,
    read_rate,
    read_string_list,
    to_rate,
)
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.summary import ValidationSummary, build_validation_summary

DEFAULT_REPORT_FILE = "logs/workflow-execution-baseline-report.json"
DEFAULT_EXPECTED_SCHEMA_VERSION = "1.0"

_LABEL = "Execution baseline report"


@dataclass(frozen=True, slots=True)
class ExecutionBaselineOptions:
    expected_report_schema_version: str = DEFAULT_EXPECTED_SCHEMA_VERSION
    require_gate_pass: bool = False
    require_gate_evaluated: bool = False
    require_no_warnings: bool = False


def empty_projection() -> dict[str, Any]:
    return {
        "schema_version": None,
        "run_id": None,
        "gate_passed": None,
        "gate_evaluated": None,
        "violations_count": None,
        "warnings_count": None,
        "total_executions": None,
        "completed_executions": None,
        "success_rate": None,
        "failed_rate": None,
        "canceled_rate": None,
        "timeout_rate": None,
        "p95_duration_ms": None,
        "query_since": None,
        "query_days": None,
    }


def _check_rate(
    name: str,
    actual: float | None,
    numerator: int | None,
    denominator: int | None,
    findings: Findings,
) -> None:
    if actual is None or numerator is None or denominator is None:
        return
    expected = to_rate(numerator, denominator)
    if not rates_match(actual, expected):
        findings.error(
            f"{_LABEL} rates.{name} mismatch: expected {format_number(expected)}, "
            f"actual {format_number(actual)}."
        )


def validate_execution_baseline_report(
    report: Any, options: ExecutionBaselineOptions | None = None
) -> ReportValidation:
    options = options or ExecutionBaselineOptions()
    findings = Findings()
    if not isinstance(report, dict):
        findings.error(f"{_LABEL} must be an object.")
        return ReportValidation.from_findings(empty_projection(), findings)

    schema_version = report.get("schemaVersion")
    if not is_non_empty_string(schema_version):
        findings.error(f"{_LABEL} schemaVersion is required.")
    elif schema_version != options.expected_report_schema_version:
        findings.error(
            f"{_LABEL} schema version mismatch: expected "
            f"{options.expected_report_schema_version}, actual {schema_version}."
        )
    if not is_non_empty_string(report.get("runId")):
        findings.error(f"{_LABEL} runId is required.")

    started_at = parse_iso_timestamp(report.get("startedAt"))
    finished_at = parse_iso_timestamp(report.get("finishedAt"))
    if started_at is None:
        findings.error(f"{_LABEL} startedAt must be a valid ISO datetime string.")
    if finished_at is None:
        findings.error(f"{_LABEL} finishedAt must be a valid ISO datetime string.")
    if started_at is not None and finished_at is not None and finished_at < started_at:
        findings.error(f"{_LABEL} finishedAt must be greater than or equal to startedAt.")
    read_non_negative_number(report, "durationMs", f"{_LABEL} durationMs", findings)

    query = as_record(report.get("query"))
    if query is None:
        findings.error(f"{_LABEL} query must be an object.")
    if parse_iso_timestamp(query.get("since") if query else None) is None:
        findings.error(f"{_LABEL} query.since must be a valid ISO datetime string.")
    query_days = read_positive_int(query, "days", f"{_LABEL} query.days", findings)
    read_positive_int(query, "batchSize", f"{_LABEL} query.batchSize", findings)

    totals = as_record(report.get("totals"))
    if totals is None:
        findings.error(f"{_LABEL} totals must be an object.")
    counts = {
        key: read_non_negative_int(totals, key, f"{_LABEL} totals.{key}", findings)
        for key in (
            "executions",
            "completed",
            "running",
            "pending",
            "success",
            "failed",
            "canceled",
            "timeoutFailures",
        )
    }
    _check_totals(counts, findings)

    rates = as_record(report.get("rates"))
    if rates is None:
        findings.error(f"{_LABEL} rates must be an object.")
    rate_values = {
        key: read_rate(rates, key, f"{_LABEL} rates.{key}", findings)
        for key in ("successRate", "failedRate", "canceledRate", "timeoutRate", "completedSuccessRate")
    }
    executions = counts["executions"]
    _check_rate("successRate", rate_values["successRate"], counts["success"], executions, findings)
    _check_rate("failedRate", rate_values["failedRate"], counts["failed"], executions, findings)
    _check_rate("canceledRate", rate_values["canceledRate"], counts["canceled"], executions, findings)
    _check_rate("timeoutRate", rate_values["timeoutRate"], counts["timeoutFailures"], executions, findings)
    _check_rate(
        "completedSuccessRate",
        rate_values["completedSuccessRate"],
        counts["success"],
        counts["completed"],
        findings,
    )

    p95 = _check_latency(as_record(report.get("latencyMs")), findings)
    gate = _check_gate(as_record(report.get("gate")), options, findings)

    projection = {
        "schema_version": schema_version if isinstance(schema_version, str) else None,
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "gate_passed": gate["passed"],
        "gate_evaluated": gate["evaluated"],
        "violations_count": len(gate["violations"]),
        "warnings_count": len(gate["warnings"]),
        "total_executions": executions,
        "completed_executions": counts["completed"],
        "success_rate": rate_values["successRate"],
        "failed_rate": rate_values["failedRate"],
        "canceled_rate": rate_values["canceledRate"],
        "timeout_rate": rate_values["timeoutRate"],
        "p95_duration_ms": p95,
        "query_since": query.get("since") if query and isinstance(query.get("since"), str) else None,
        "query_days": query_days,
    }
    return ReportValidation.from_findings(projection, findings)


def _check_totals(counts: dict[str, int | None], findings: Findings) -> None:
    completed = counts["completed"]
    parts = [counts["success"], counts["failed"], counts["canceled"]]
    if completed is not None and all(p is not None for p in parts):
        expected = sum(p for p in parts if p is not None)
        if completed != expected:
            findings.error(
                f"{_LABEL} totals mismatch: totals.completed expected {expected}, actual {completed}."
            )
    executions = counts["executions"]
    parts = [completed, counts["running"], counts["pending"]]
    if executions is not None and all(p is not None for p in parts):
        expected = sum(p for p in parts if p is not None)
        if executions != expected:
            findings.error(
                f"{_LABEL} totals mismatch: totals.executions expected {expected}, actual {executions}."
            )
    timeouts, failed = counts["timeoutFailures"], counts["failed"]
    if timeouts is not None and failed is not None and timeouts > failed:
        findings.error(
            f"{_LABEL} totals.timeoutFailures cannot exceed totals.failed: "
            f"timeoutFailures={timeouts}, failed={failed}."
        )


def _check_latency(latency: Any, findings: Findings) -> float | None:
    if latency is None:
        findings.error(f"{_LABEL} latencyMs must be an object.")
    sample_count = read_non_negative_int(
        latency, "sampleCount", f"{_LABEL} latencyMs.sampleCount", findings
    )
    p50, p90, p95, p99 = (
        read_non_negative_number(latency, key, f"{_LABEL} latencyMs.{key}", findings)
        for key in ("p50", "p90", "p95", "p99")
    )
    if (
        p50 is not None
        and p90 is not None
        and p95 is not None
        and p99 is not None
        and not p50 <= p90 <= p95 <= p99
    ):
        findings.error(
            f"{_LABEL} latencyMs percentile order is invalid: p50 <= p90 <= p95 <= p99 is required."
        )
    if sample_count == 0 and any(p not in (None, 0) for p in (p50, p90, p95, p99)):
        findings.warn(f"{_LABEL} latencyMs sampleCount=0 but percentile values are non-zero.")
    return p95


def _check_gate(
    gate: Any, options: ExecutionBaselineOptions, findings: Findings
) -> dict[str, Any]:
    if gate is None:
        findings.error(f"{_LABEL} gate must be an object.")
    passed = read_bool(gate, "passed", f"{_LABEL} gate.passed", findings)
    evaluated = read_bool(gate, "evaluated", f"{_LABEL} gate.evaluated", findings)

    thresholds = as_record(gate.get("thresholds")) if gate is not None else None
    if thresholds is None:
        findings.error(f"{_LABEL} gate.thresholds must be an object.")
    for key in ("minSuccessRate", "maxFailureRate", "maxCanceledRate", "maxTimeoutRate"):
        read_optional_rate(thresholds, key, f"{_LABEL} gate.thresholds.{key}", findings)
    read_optional_positive_number(
        thresholds, "maxP95DurationMs", f"{_LABEL} gate.thresholds.maxP95DurationMs", findings
    )

    violations = read_string_list(
        gate.get("violations") if gate else None, f"{_LABEL} gate.violations", findings
    )
    gate_warnings = read_string_list(
        gate.get("warnings") if gate else None, f"{_LABEL} gate.warnings", findings
    )

    if passed is True and violations:
        findings.error(f"{_LABEL} gate.passed cannot be true when gate.violations is non-empty.")
    if passed is False and not violations:
        findings.warn(f"{_LABEL} gate.passed=false but gate.violations is empty.")

    if options.require_gate_pass and passed is not True:
        findings.error(f"{_LABEL} gate.passed must be true when require-gate-pass is enabled.")
    if options.require_gate_evaluated and evaluated is not True:
        findings.error(
            f"{_LABEL} gate.evaluated must be true when require-gate-evaluated is enabled."
        )
    if options.require_no_warnings and gate_warnings:
        findings.error(
            f"{_LABEL} gate.warnings must be empty when require-no-warnings is enabled "
            f"(actual={len(gate_warnings)})."
        )
    return {
        "passed": passed,
        "evaluated": evaluated,
        "violations": violations,
        "warnings": gate_warnings,
    }


def build_execution_baseline_summary(
    loaded: LoadedReport, options: ExecutionBaselineOptions | None = None
) -> ValidationSummary:
    """Validate a loaded report file; a read failure skips all field checks."""
    options = options or ExecutionBaselineOptions()
    inputs = {"report_file": loaded.path, **asdict(options)}
    if not loaded.ok:
        return build_validation_summary(
            inputs=inputs,
            report=empty_projection(),
            validation_errors=[
                f"Failed to read execution baseline report file ({loaded.path}): {loaded.error}"
            ],
            warnings=[],
        )
    result = validate_execution_baseline_report(loaded.data, options)
    return build_validation_summary(
        inputs=inputs,
        report=result.projection,
        validation_errors=result.validation_errors,
        warnings=result.warnings,
    )
