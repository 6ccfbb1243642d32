"""Smoke run report validation.

A smoke report records each step of a smoke run with every attempt the
runner made. The validator checks:

- top-level identity fields, mode and status enums
- per-step and per-attempt structure
- summary counters against counts derived from the steps
- ``totalRetries`` against the sum of per-step ``retryCount``
- ``failedStepName`` against the first failed step
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from gate_diagnostics.checks import (
    Findings,
    ReportValidation,
    as_integer,
    as_record,
    is_non_empty_string,
    is_number,
)

SMOKE_MODES = ("base", "extended", "gate")
SMOKE_STATUSES = ("SUCCESS", "FAILED")
DEFAULT_EXPECTED_SCHEMA_VERSION = "1.0"
SUMMARY_COUNTERS = ("totalSteps", "successfulSteps", "failedSteps", "totalRetries")


def _step_label(step: Any, index: int) -> str:
    if isinstance(step, dict) and is_non_empty_string(step.get("name")):
        return step["name"]
    return f"#{index}"


def _validate_attempts(step: dict[str, Any], label: str, findings: Findings) -> list[dict[str, Any]]:
    attempts = step.get("attempts")
    if not isinstance(attempts, list) or not attempts:
        findings.error(f"Smoke step attempts must be non-empty: {label}")
        return []
    valid: list[dict[str, Any]] = []
    for attempt in attempts:
        if not isinstance(attempt, dict):
            findings.error(f"Smoke attempt must be an object: {label}")
            continue
        index = as_integer(attempt.get("attempt"))
        if index is None or index < 1:
            findings.error(f"Smoke attempt index invalid: {label}")
        if not is_number(attempt.get("exitCode")):
            findings.error(f"Smoke attempt exitCode invalid: {label}")
        duration = attempt.get("durationMs")
        if not is_number(duration) or duration < 0:
            findings.error(f"Smoke attempt duration invalid: {label}")
        valid.append(attempt)
    return valid


def validate_smoke_report(
    report: Any, *, expected_schema_version: str = DEFAULT_EXPECTED_SCHEMA_VERSION
) -> ReportValidation:
    findings = Findings()
    if not isinstance(report, dict):
        findings.error("Smoke report must be an object.")
        return ReportValidation.from_findings(_empty_projection(), findings)

    schema_version = report.get("schemaVersion")
    if not is_non_empty_string(schema_version):
        findings.error("Smoke report schemaVersion is required.")
    elif schema_version != expected_schema_version:
        findings.error(
            f"Smoke report schema version mismatch: expected {expected_schema_version}, "
            f"actual {schema_version}."
        )
    if not is_non_empty_string(report.get("runId")):
        findings.error("Smoke report runId is required.")
    mode = report.get("mode")
    if mode not in SMOKE_MODES:
        findings.error(f"Smoke report mode is invalid: {mode}")
    status = report.get("status")
    if status not in SMOKE_STATUSES:
        findings.error(f"Smoke report status is invalid: {status}")

    steps = report.get("steps")
    if not isinstance(steps, list) or not steps:
        findings.error("Smoke report steps must be a non-empty array.")
        steps = None
    summary = as_record(report.get("summary"))
    if summary is None:
        findings.error("Smoke report summary is required.")

    retry_total: int | None = 0
    first_failed_name: str | None = None
    for index, step in enumerate(steps or []):
        label = _step_label(step, index)
        if not isinstance(step, dict):
            findings.error(f"Smoke step must be an object: {label}")
            retry_total = None
            continue
        if not is_non_empty_string(step.get("id")):
            findings.error(f"Smoke step id is required: {label}")
        if not is_non_empty_string(step.get("name")):
            findings.error(f"Smoke step name is required: {label}")
        if not isinstance(step.get("args"), list):
            findings.error(f"Smoke step args must be an array: {label}")
        step_status = step.get("status")
        if step_status not in SMOKE_STATUSES:
            findings.error(f"Smoke step status is invalid: {label}")
        elif step_status == "FAILED" and first_failed_name is None:
            first_failed_name = step.get("name")

        attempts = _validate_attempts(step, label, findings)
        raw_retry = step.get("retryCount", 0)
        retry_count = as_integer(0 if raw_retry is None else raw_retry)
        if retry_count is None or retry_count < 0:
            findings.error(f"Smoke step retryCount must be a non-negative integer: {label}")
            retry_total = None
        else:
            if retry_total is not None:
                retry_total += retry_count
            if attempts and retry_count != len(attempts) - 1:
                findings.warn(
                    f"Smoke step retryCount does not match attempts: {label} "
                    f"(retryCount={retry_count}, attempts={len(attempts)})"
                )

    counters = _read_summary_counters(summary, findings) if summary is not None else {}
    if steps is not None and summary is not None:
        _check_summary_counters(
            steps, counters, summary.get("failedStepName"), retry_total, first_failed_name, findings
        )

    projection = {
        "mode": mode if mode in SMOKE_MODES else None,
        "status": status if status in SMOKE_STATUSES else None,
        "duration_ms": report.get("durationMs") if is_number(report.get("durationMs")) else 0,
        "total_steps": counters.get("totalSteps"),
        "failed_step_name": (summary.get("failedStepName") or None) if summary is not None else None,
        "total_retries": counters.get("totalRetries"),
        "started_at": report.get("startedAt") if isinstance(report.get("startedAt"), str) else None,
        "finished_at": report.get("finishedAt") if isinstance(report.get("finishedAt"), str) else None,
    }
    return ReportValidation.from_findings(projection, findings)


def _read_summary_counters(summary: Mapping[str, Any], findings: Findings) -> dict[str, int | None]:
    counters: dict[str, int | None] = {}
    for key in SUMMARY_COUNTERS:
        value = as_integer(summary.get(key))
        if value is None or value < 0:
            findings.error(f"Smoke summary {key} must be a non-negative integer.")
            value = None
        counters[key] = value
    return counters


def _check_summary_counters(
    steps: list[Any],
    counters: Mapping[str, int | None],
    declared_failed_name: Any,
    retry_total: int | None,
    first_failed_name: str | None,
    findings: Findings,
) -> None:
    """Compare the declared counters with the steps; invalid counters are skipped."""
    computed = {
        "successfulSteps": sum(1 for s in steps if isinstance(s, dict) and s.get("status") == "SUCCESS"),
        "failedSteps": sum(1 for s in steps if isinstance(s, dict) and s.get("status") == "FAILED"),
        "totalRetries": retry_total,
    }
    total_steps = counters.get("totalSteps")
    if total_steps is not None and total_steps != len(steps):
        findings.error(
            "Smoke summary totalSteps does not match steps length: "
            f"expected {len(steps)}, actual {total_steps}."
        )
    for key, expected in computed.items():
        actual = counters.get(key)
        if actual is not None and expected is not None and actual != expected:
            findings.error(
                f"Smoke summary {key} does not match computed value: "
                f"expected {expected}, actual {actual}."
            )
    declared_failed = declared_failed_name or None
    if declared_failed is not None and declared_failed != first_failed_name:
        findings.error(
            "Smoke summary failedStepName does not match first failed step: "
            f"expected {first_failed_name}, actual {declared_failed}."
        )


def _empty_projection() -> dict[str, Any]:
    return {
        "mode": None,
        "status": None,
        "duration_ms": 0,
        "total_steps": None,
        "failed_step_name": None,
        "total_retries": None,
        "started_at": None,
        "finished_at": None,
    }
