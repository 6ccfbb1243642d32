"""Self-check suite report validation.

The self-check suite runs each diagnostics component's own test target in
order and stops at the first failure. Its report carries the failure
fingerprint and the quick-locate fields the suite runner resolved; both are
recomputed here from the recorded steps and must agree.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from gate_diagnostics.checks import (
    Findings,
    ReportValidation,
    as_record,
    is_non_empty_string,
    is_number,
)
from gate_diagnostics.fingerprint import verify_recorded_fingerprint
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.quick_locate import (
    SELF_CHECK_SUITE_CHAIN,
    check_declared_quick_locate,
    resolve_self_check_suite_quick_locate,
)
from gate_diagnostics.summary import ValidationSummary, build_validation_summary

DEFAULT_REPORT_FILE = "logs/workflow-summary-self-check-report.json"
DEFAULT_EXPECTED_SCHEMA_VERSION = "1.0"

DEFAULT_STEP_OVERRIDE_COMMANDS: dict[str, str] = {
    "report-validate-self-check": "pytest -q tests/test_report_bundle.py",
    "execution-baseline-report-validate-self-check": "pytest -q tests/test_execution_baseline.py",
    "execution-baseline-trend-self-check": "pytest -q tests/test_trend.py",
    "quality-gate-validation-guidance-self-check": "pytest -q tests/test_guidance.py",
    "quality-gate-report-validate-self-check": "pytest -q tests/test_quality_gate_report.py",
    "summary-self-check-report-validate-self-check": "pytest -q tests/test_self_check_report.py",
}

_LABEL = "Self-check report"


@dataclass(frozen=True, slots=True)
class SelfCheckOptions:
    report_file: str = DEFAULT_REPORT_FILE
    expected_report_schema_version: str = DEFAULT_EXPECTED_SCHEMA_VERSION
    step_override_commands: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_STEP_OVERRIDE_COMMANDS)
    )
    quick_locate_overrides_disabled: bool = False


def validate_self_check_report(
    report: Any, options: SelfCheckOptions | None = None
) -> ReportValidation:
    options = options or SelfCheckOptions()
    findings = Findings()
    if not isinstance(report, dict):
        findings.error(f"{_LABEL} must be an object.")
        return ReportValidation.from_findings({"status": None, "executed_steps": 0}, findings)

    schema_version = report.get("schemaVersion")
    if not is_non_empty_string(schema_version):
        findings.error(f"{_LABEL} schemaVersion is required.")
    elif schema_version != options.expected_report_schema_version:
        findings.error(
            f"{_LABEL} schema version mismatch: expected {options.expected_report_schema_version}, "
            f"actual {schema_version}."
        )
    for key in ("runId", "startedAt", "finishedAt"):
        if not is_non_empty_string(report.get(key)):
            findings.error(f"{_LABEL} {key} is required.")
    duration = report.get("durationMs")
    if not is_number(duration) or duration < 0:
        findings.error(f"{_LABEL} durationMs must be a non-negative number.")
    status = report.get("status")
    if status not in ("SUCCESS", "FAILED"):
        findings.error(f"{_LABEL} status is invalid: {status}.")

    summary = as_record(report.get("summary"))
    if summary is None:
        findings.error(f"{_LABEL} summary is required.")
        summary = {}
    steps = report.get("steps") if isinstance(report.get("steps"), list) else None
    if steps is None:
        findings.error(f"{_LABEL} steps must be an array.")
    elif not steps:
        findings.error(f"{_LABEL} steps must not be empty.")

    failed_step_ids: list[str] | None = None
    raw_failed = summary.get("failedStepIds")
    if not isinstance(raw_failed, list):
        findings.error(f"{_LABEL} summary.failedStepIds must be an array.")
    elif not all(is_non_empty_string(v) for v in raw_failed):
        findings.error(f"{_LABEL} summary.failedStepIds must contain non-empty strings.")
    else:
        failed_step_ids = list(raw_failed)

    steps_by_id: dict[str, Mapping[str, Any]] = {}
    successful = failed = 0
    for step in steps or []:
        if not isinstance(step, dict):
            findings.error(f"{_LABEL} step must be an object.")
            continue
        step_id = step.get("id")
        if not is_non_empty_string(step_id):
            findings.error(f"{_LABEL} step id is required.")
        elif step_id in steps_by_id:
            findings.error(f"{_LABEL} step id must be unique: {step_id}.")
        else:
            steps_by_id[step_id] = step
        if not is_non_empty_string(step.get("name")):
            findings.error(f"{_LABEL} step name is required.")
        if not is_non_empty_string(step.get("command")):
            findings.error(f"{_LABEL} step command is required.")
        if not isinstance(step.get("args"), list):
            findings.error(f"{_LABEL} step args must be an array: {step_id}.")
        if step.get("status") not in ("SUCCESS", "FAILED", "PENDING"):
            findings.error(f"{_LABEL} step status is invalid: {step_id}.")
        step_duration = step.get("durationMs")
        if not is_number(step_duration) or step_duration < 0:
            findings.error(f"{_LABEL} step durationMs invalid: {step_id}.")
        if step.get("status") == "SUCCESS":
            successful += 1
        elif step.get("status") == "FAILED":
            failed += 1

    total = summary.get("totalSteps")
    if not is_number(total) or total <= 0:
        findings.error(f"{_LABEL} summary.totalSteps must be a positive number.")
    elif steps is not None and total < len(steps):
        findings.error(
            f"Self-check summary totalSteps must be >= executed steps ({len(steps)}), got {total}."
        )
    for key, expected in (("successfulSteps", successful), ("failedSteps", failed)):
        actual = summary.get(key)
        if not is_number(actual) or actual < 0:
            findings.error(f"{_LABEL} summary.{key} must be a non-negative number.")
        elif actual != expected:
            findings.error(f"Self-check summary {key} mismatch: expected {expected}, actual {actual}.")
    for step_id in failed_step_ids or []:
        if step_id not in steps_by_id:
            findings.error(f"Self-check summary failed step id not found in steps: {step_id}.")

    first_failed = steps_by_id.get(failed_step_ids[0]) if failed_step_ids else None
    if first_failed is None:
        first_failed = next(
            (s for s in steps_by_id.values() if s.get("status") == "FAILED"), None
        )
    computed = resolve_self_check_suite_quick_locate(
        first_failed,
        options.step_override_commands,
        overrides_disabled=options.quick_locate_overrides_disabled,
    )
    check_declared_quick_locate(summary, SELF_CHECK_SUITE_CHAIN, computed, findings, _LABEL)
    if first_failed is None and is_non_empty_string(summary.get("quickLocateFirstFailedOutput")):
        findings.warn(
            f"{_LABEL} summary.quickLocateFirstFailedOutput exists but no failed step is available."
        )

    fingerprint = summary.get("failureFingerprint")
    if fingerprint is not None:
        verify_recorded_fingerprint(fingerprint, steps_by_id, failed_step_ids, findings, _LABEL)
    if status == "SUCCESS" and failed_step_ids:
        findings.error(f"{_LABEL} status SUCCESS cannot have failedStepIds.")
    if status == "FAILED" and failed_step_ids is not None and not failed_step_ids:
        findings.warn(f"{_LABEL} status FAILED has no failedStepIds.")
    if status == "FAILED" and failed_step_ids and fingerprint is None:
        findings.error(
            f"{_LABEL} summary.failureFingerprint is required when failedStepIds is not empty."
        )
    if status == "SUCCESS" and fingerprint is not None:
        findings.warn(f"{_LABEL} summary.failureFingerprint should be null when status is SUCCESS.")
    if failed_step_ids is not None and not failed_step_ids and fingerprint is not None:
        findings.warn(
            f"{_LABEL} summary.failureFingerprint exists but summary.failedStepIds is empty."
        )

    fingerprint_record = fingerprint if isinstance(fingerprint, Mapping) else {}
    projection = {
        "schema_version": schema_version if isinstance(schema_version, str) else None,
        "status": status if isinstance(status, str) else None,
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "total_steps": total if is_number(total) else None,
        "executed_steps": len(steps) if steps is not None else 0,
        "successful_steps": summary.get("successfulSteps") if is_number(summary.get("successfulSteps")) else None,
        "failed_steps": summary.get("failedSteps") if is_number(summary.get("failedSteps")) else None,
        "failed_step_ids": failed_step_ids or [],
        "quick_locate": computed.as_dict(),
        "has_failure_fingerprint": bool(fingerprint_record),
        "failure_fingerprint_step_id": fingerprint_record.get("stepId"),
        "failure_fingerprint_hash_algorithm": fingerprint_record.get("hashAlgorithm"),
        "failure_fingerprint_hash": fingerprint_record.get("hash"),
    }
    return ReportValidation.from_findings(projection, findings)


def build_self_check_summary(
    loaded: LoadedReport, options: SelfCheckOptions | None = None
) -> ValidationSummary:
    options = options or SelfCheckOptions()
    inputs = {
        "report_file": loaded.path,
        "expected_report_schema_version": options.expected_report_schema_version,
        "quick_locate_overrides_disabled": options.quick_locate_overrides_disabled,
    }
    if not loaded.ok:
        return build_validation_summary(
            inputs=inputs,
            report=None,
            validation_errors=[f"Failed to read self-check report: {loaded.error}"],
            warnings=[],
        )
    result = validate_self_check_report(loaded.data, options)
    return build_validation_summary(
        inputs=inputs,
        report=result.projection,
        validation_errors=result.validation_errors,
        warnings=result.warnings,
    )
