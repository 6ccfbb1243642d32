"""Quality-gate report validation.

The quality gate is the umbrella CI run. Its report lists every step it ran,
the artifact files it produced and a summary that must agree with the steps.
Besides the structural checks, validation builds the failure index for the
first error, the failure-index diagnostics block and the quick-locate
resolution that tells an operator which command to rerun first.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from gate_diagnostics.checks import (
    Findings,
    ReportValidation,
    as_record,
    is_non_empty_string,
    is_number,
)
from gate_diagnostics.fingerprint import verify_recorded_fingerprint
from gate_diagnostics.guidance import (
    DEFAULT_REPORT_FILE,
    DEFAULT_REPORT_SCHEMA_VERSION,
    DEFAULT_VALIDATION_SUMMARY_FILE,
    build_failure_index,
    build_failure_index_diagnostics,
)
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.quick_locate import resolve_quality_gate_quick_locate
from gate_diagnostics.report_bundle import normalize_path_for_compare
from gate_diagnostics.summary import ValidationSummary, build_validation_summary

REQUIRED_ARTIFACTS = (
    "smokeReportFile",
    "perfReportFile",
    "summaryMarkdownFile",
    "summaryJsonFile",
    "qualityGateReportFile",
)
OPTION_ARTIFACT_PAIRS = (
    ("reportFile", "qualityGateReportFile"),
    ("summaryMarkdownFile", "summaryMarkdownFile"),
    ("summaryJsonFile", "summaryJsonFile"),
    ("smokeReportFile", "smokeReportFile"),
    ("perfReportFile", "perfReportFile"),
)
STEP_STATUSES = ("SUCCESS", "FAILED", "PENDING")
SUMMARY_JSON_ASSERT_STEP_ID = "summary-json-assert"

_LABEL = "Quality gate report"


@dataclass(frozen=True, slots=True)
class QualityGateOptions:
    report_file: str = DEFAULT_REPORT_FILE
    summary_json_file: str = DEFAULT_VALIDATION_SUMMARY_FILE
    expected_report_schema_version: str = DEFAULT_REPORT_SCHEMA_VERSION
    require_summary_json_assert: bool = False
    allow_report_file_path_mismatch: bool = False
    require_artifact_option_path_match: bool = True
    root: str = "."


def empty_projection() -> dict[str, Any]:
    return {
        "schema_version": None,
        "run_id": None,
        "status": None,
        "total_steps": None,
        "successful_steps": None,
        "failed_steps": None,
        "failed_step_ids": [],
        "has_summary_json_assert": False,
        "report_file_path_matches_artifact": None,
        "artifact_option_path_checked_count": 0,
        "artifact_option_path_mismatch_count": 0,
        "artifact_quality_gate_report_file": None,
        "artifact_summary_markdown_file": None,
        "artifact_summary_json_file": None,
        "artifact_smoke_report_file": None,
        "artifact_perf_report_file": None,
        "step_ids": [],
    }


def _check_artifacts(
    report: Mapping[str, Any], options: QualityGateOptions, findings: Findings
) -> dict[str, Any]:
    artifacts = as_record(report.get("artifacts"))
    report_options = as_record(report.get("options"))
    info: dict[str, Any] = {"matches": None, "checked": 0, "mismatched": 0}
    if report_options is None:
        findings.error(f"{_LABEL} options is required.")
    if artifacts is None:
        findings.error(f"{_LABEL} artifacts is required.")
        return info
    for key in REQUIRED_ARTIFACTS:
        if not is_non_empty_string(artifacts.get(key)):
            findings.error(f"{_LABEL} artifacts.{key} is required.")

    recorded = artifacts.get("qualityGateReportFile")
    if isinstance(recorded, str):
        expected_path = normalize_path_for_compare(options.report_file, options.root)
        recorded_path = normalize_path_for_compare(recorded, options.root)
        info["matches"] = bool(expected_path and recorded_path and expected_path == recorded_path)
        if not info["matches"]:
            message = (
                f"{_LABEL} path mismatch: input {options.report_file} vs "
                f"artifacts.qualityGateReportFile {recorded}."
            )
            if options.allow_report_file_path_mismatch:
                findings.warn(message)
            else:
                findings.error(message)

    if options.require_artifact_option_path_match and report_options is not None:
        for option_key, artifact_key in OPTION_ARTIFACT_PAIRS:
            option_value = report_options.get(option_key)
            artifact_value = artifacts.get(artifact_key)
            if not is_non_empty_string(option_value) or not is_non_empty_string(artifact_value):
                continue
            info["checked"] += 1
            if normalize_path_for_compare(option_value, options.root) != normalize_path_for_compare(
                artifact_value, options.root
            ):
                info["mismatched"] += 1
                findings.error(
                    f"{_LABEL} options/artifacts path mismatch: options.{option_key}={option_value}, "
                    f"artifacts.{artifact_key}={artifact_value}."
                )
    return info


def _read_failed_step_ids(value: Any, findings: Findings) -> list[str] | None:
    if not isinstance(value, list):
        findings.error(f"{_LABEL} summary.failedStepIds must be an array.")
        return None
    if not all(is_non_empty_string(v) for v in value):
        findings.error(f"{_LABEL} summary.failedStepIds must contain non-empty strings.")
        return None
    return list(value)


def _check_failed_step_ids(
    failed_step_ids: list[str],
    failed_from_steps: list[str],
    steps_by_id: Mapping[str, Any],
    findings: Findings,
) -> None:
    for step_id in failed_step_ids:
        if step_id not in steps_by_id:
            findings.error(f"{_LABEL} summary.failedStepIds includes unknown step id: {step_id}.")
    if len(failed_step_ids) != len(failed_from_steps):
        findings.error(
            f"{_LABEL} summary.failedStepIds count mismatch: expected {len(failed_from_steps)}, "
            f"actual {len(failed_step_ids)}."
        )
        return
    for step_id in failed_from_steps:
        if step_id not in failed_step_ids:
            findings.error(f"{_LABEL} summary.failedStepIds missing failed step id: {step_id}.")


def _check_summary_json_assert(
    summary: Mapping[str, Any],
    assert_step: Mapping[str, Any] | None,
    options: QualityGateOptions,
    findings: Findings,
) -> bool:
    raw = summary.get("summaryJsonAssert")
    exists = raw is not None
    status = reason_code = None
    if exists and not isinstance(raw, Mapping):
        findings.error(f"{_LABEL} summary.summaryJsonAssert must be an object.")
    elif exists:
        status = raw.get("status") if isinstance(raw.get("status"), str) else None
        reason_code = raw.get("reasonCode") if isinstance(raw.get("reasonCode"), str) else None
        if raw.get("status") not in ("SUCCESS", "FAILED"):
            findings.error(f"{_LABEL} summary.summaryJsonAssert.status is invalid: {raw.get('status')}.")
        if raw.get("reasonCode") is not None and reason_code is None:
            findings.error(f"{_LABEL} summary.summaryJsonAssert.reasonCode must be string or null.")
        if raw.get("reason") is not None and not isinstance(raw.get("reason"), str):
            findings.error(f"{_LABEL} summary.summaryJsonAssert.reason must be string or null.")
        count = raw.get("validationErrorCount")
        if count is not None and (not is_number(count) or count < 0):
            findings.error(
                f"{_LABEL} summary.summaryJsonAssert.validationErrorCount must be "
                "non-negative number or null."
            )
        if status == "SUCCESS" and reason_code != "OK":
            findings.warn(f"{_LABEL} summary.summaryJsonAssert.status is SUCCESS but reasonCode is not OK.")

    if options.require_summary_json_assert and not exists:
        findings.error(
            f"{_LABEL} summary.summaryJsonAssert is required by require-summary-json-assert."
        )
    if assert_step is not None and not exists:
        findings.error(
            f"{_LABEL} summary.summaryJsonAssert is required when summary-json-assert step exists."
        )
    if assert_step is None and exists:
        findings.warn(f"{_LABEL} has summary.summaryJsonAssert but no summary-json-assert step.")
    if assert_step is not None and exists and isinstance(raw, Mapping):
        if assert_step.get("status") != status:
            findings.error(
                f"{_LABEL} summaryJsonAssert status mismatch: step={assert_step.get('status')}, "
                f"summary={status}."
            )
        assertion = as_record(assert_step.get("assertion"))
        if assertion is None:
            findings.warn(f"{_LABEL} summary-json-assert step has no assertion object.")
        else:
            step_code = assertion.get("reasonCode") if isinstance(assertion.get("reasonCode"), str) else None
            if reason_code and step_code and reason_code != step_code:
                findings.error(
                    f"{_LABEL} summaryJsonAssert reasonCode mismatch: step={step_code}, "
                    f"summary={reason_code}."
                )
    return exists


def validate_quality_gate_report(
    report: Any, options: QualityGateOptions | None = None
) -> ReportValidation:
    options = options or QualityGateOptions()
    findings = Findings()
    if not isinstance(report, dict):
        findings.error(f"{_LABEL} must be an object.")
        return ReportValidation.from_findings(empty_projection(), findings)

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

    artifact_info = _check_artifacts(report, options, findings)

    summary = as_record(report.get("summary"))
    if summary is None:
        findings.error(f"{_LABEL} summary is required.")
        summary = {}
    steps = report.get("steps") if isinstance(report.get("steps"), list) else None
    if steps is None:
        findings.error(f"{_LABEL} steps must be an array.")
    elif not steps:
        findings.error(f"{_LABEL} steps must not be empty.")

    step_ids: list[str] = []
    steps_by_id: dict[str, Mapping[str, Any]] = {}
    failed_from_steps: list[str] = []
    successful = failed = 0
    assert_step: Mapping[str, Any] | None = None
    for step in steps or []:
        if not isinstance(step, dict):
            findings.error(f"{_LABEL} step must be an object.")
            continue
        step_id = step.get("id")
        if not is_non_empty_string(step_id):
            findings.error(f"{_LABEL} step id is required.")
        else:
            if step_id in steps_by_id:
                findings.error(f"{_LABEL} step id must be unique: {step_id}.")
            step_ids.append(step_id)
            steps_by_id[step_id] = step
        if not is_non_empty_string(step.get("name")):
            findings.error(f"{_LABEL} step name is required: {step_id}.")
        if not is_non_empty_string(step.get("command")):
            findings.error(f"{_LABEL} step command is required: {step_id}.")
        if not isinstance(step.get("args"), list):
            findings.error(f"{_LABEL} step args must be an array: {step_id}.")
        if step.get("status") not in STEP_STATUSES:
            findings.error(f"{_LABEL} step status is invalid: {step_id}.")
        step_duration = step.get("durationMs")
        if not is_number(step_duration) or step_duration < 0:
            findings.error(f"{_LABEL} step durationMs must be non-negative: {step_id}.")
        if step.get("status") == "SUCCESS":
            successful += 1
        elif step.get("status") == "FAILED":
            failed += 1
            if is_non_empty_string(step_id):
                failed_from_steps.append(step_id)
        if step_id == SUMMARY_JSON_ASSERT_STEP_ID:
            assert_step = step

    failed_step_ids = _read_failed_step_ids(summary.get("failedStepIds"), findings)
    counters = {
        "totalSteps": summary.get("totalSteps"),
        "successfulSteps": summary.get("successfulSteps"),
        "failedSteps": summary.get("failedSteps"),
    }
    if not is_number(counters["totalSteps"]) or counters["totalSteps"] <= 0:
        findings.error(f"{_LABEL} summary.totalSteps must be a positive number.")
    for key in ("successfulSteps", "failedSteps"):
        if not is_number(counters[key]) or counters[key] < 0:
            findings.error(f"{_LABEL} summary.{key} must be a non-negative number.")
    expected_counts = {
        "totalSteps": len(steps) if steps is not None else None,
        "successfulSteps": successful,
        "failedSteps": failed,
    }
    for key, expected in expected_counts.items():
        actual = counters[key]
        if expected is not None and is_number(actual) and actual != expected:
            findings.error(f"{_LABEL} summary.{key} mismatch: expected {expected}, actual {actual}.")

    if failed_step_ids is not None:
        _check_failed_step_ids(failed_step_ids, failed_from_steps, steps_by_id, findings)

    if summary.get("failureFingerprint") is not None:
        verify_recorded_fingerprint(
            summary["failureFingerprint"], steps_by_id, failed_step_ids, findings, _LABEL
        )

    has_assert = _check_summary_json_assert(summary, assert_step, options, findings)

    if status == "SUCCESS" and failed_from_steps:
        findings.error(f"{_LABEL} status SUCCESS cannot contain failed steps.")
    if status == "FAILED" and not failed_from_steps:
        findings.warn(f"{_LABEL} status FAILED has no failed steps.")

    artifacts = as_record(report.get("artifacts")) or {}

    def artifact(key: str) -> str | None:
        value = artifacts.get(key)
        return value if isinstance(value, str) else None

    projection = {
        "schema_version": schema_version if isinstance(schema_version, str) else None,
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "status": status if isinstance(status, str) else None,
        "total_steps": counters["totalSteps"] if is_number(counters["totalSteps"]) else None,
        "successful_steps": counters["successfulSteps"] if is_number(counters["successfulSteps"]) else None,
        "failed_steps": counters["failedSteps"] if is_number(counters["failedSteps"]) else None,
        "failed_step_ids": failed_step_ids or [],
        "has_summary_json_assert": has_assert,
        "report_file_path_matches_artifact": artifact_info["matches"],
        "artifact_option_path_checked_count": artifact_info["checked"],
        "artifact_option_path_mismatch_count": artifact_info["mismatched"],
        "artifact_quality_gate_report_file": artifact("qualityGateReportFile"),
        "artifact_summary_markdown_file": artifact("summaryMarkdownFile"),
        "artifact_summary_json_file": artifact("summaryJsonFile"),
        "artifact_smoke_report_file": artifact("smokeReportFile"),
        "artifact_perf_report_file": artifact("perfReportFile"),
        "step_ids": step_ids,
    }
    return ReportValidation.from_findings(projection, findings)


def build_quality_gate_summary(
    loaded: LoadedReport, options: QualityGateOptions | None = None
) -> ValidationSummary:
    """Validate a loaded quality-gate report and attach failure diagnostics."""
    options = options or QualityGateOptions()
    inputs = asdict(options)
    inputs.pop("root")
    if loaded.ok:
        result = validate_quality_gate_report(loaded.data, options)
        projection = result.projection
        errors, warnings = list(result.validation_errors), list(result.warnings)
    else:
        projection = empty_projection()
        errors, warnings = [f"Failed to read quality gate report: {loaded.error}"], []

    failure_index = build_failure_index(errors, inputs, projection)
    diagnostics = build_failure_index_diagnostics(errors, failure_index)
    quick_locate = resolve_quality_gate_quick_locate(
        loaded.data if loaded.ok else None, failure_index
    )
    return build_validation_summary(
        inputs=inputs,
        report=projection,
        validation_errors=errors,
        warnings=warnings,
        extras={
            "first_validation_error": (failure_index or {}).get("message") or (errors[0] if errors else None),
            "failure_index": failure_index,
            "failure_index_diagnostics": diagnostics,
            "quick_locate": quick_locate.as_dict(),
        },
    )
