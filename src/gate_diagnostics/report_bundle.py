"""Combined validation of the smoke, perf and quality-gate report bundle.

The bundle check validates each report on its own and then applies the
option-synthesized rules that span reports: required statuses and modes,
freshness against a cut-off timestamp, maximum report age, and agreement of
the artifact paths recorded by the quality gate with the paths in use.
"""
from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any

from gate_diagnostics.checks import Findings, as_record, format_number, parse_iso_timestamp
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.perf_report import (
    DEFAULT_EXPECTED_SCHEMA_VERSION as DEFAULT_PERF_SCHEMA_VERSION,
    REQUIRED_SCENARIO_IDS,
    validate_perf_report,
)
from gate_diagnostics.smoke_report import (
    DEFAULT_EXPECTED_SCHEMA_VERSION as DEFAULT_SMOKE_SCHEMA_VERSION,
    SMOKE_MODES,
    validate_smoke_report,
)
from gate_diagnostics.summary import SUMMARY_SCHEMA_VERSION, ValidationSummary, build_validation_summary

DEFAULT_SMOKE_REPORT = "logs/workflow-smoke-gate-report.json"
DEFAULT_PERF_REPORT = "logs/workflow-perf-risk-gate-baseline.json"


@dataclass(frozen=True, slots=True)
class BundleOptions:
    smoke_report_path: str = DEFAULT_SMOKE_REPORT
    perf_report_path: str = DEFAULT_PERF_REPORT
    quality_gate_report_path: str | None = None
    summary_markdown_file: str | None = None
    summary_json_file: str | None = None
    allow_missing_smoke_report: bool = False
    allow_missing_perf_report: bool = False
    require_smoke_success: bool = False
    require_smoke_mode: str | None = None
    require_perf_no_violations: bool = False
    require_quality_gate_success: bool = False
    require_reports_generated_after: str | None = None
    max_report_age_ms: float | None = None
    expected_summary_schema_version: str | None = None
    expected_smoke_schema_version: str = DEFAULT_SMOKE_SCHEMA_VERSION
    expected_perf_schema_version: str = DEFAULT_PERF_SCHEMA_VERSION
    required_scenario_ids: tuple[str, ...] = REQUIRED_SCENARIO_IDS
    root: str = "."


def normalize_path_for_compare(path: Any, root: str = ".") -> str | None:
    if not isinstance(path, str) or not path.strip():
        return None
    return os.path.normpath(os.path.join(os.path.abspath(root), path.strip()))


def _load_section(
    loaded: LoadedReport, *, kind: str, allow_missing: bool, findings: Findings
) -> Any | None:
    if not loaded.exists and allow_missing:
        findings.warn(f"{kind} report missing: {loaded.path}")
        return None
    if not loaded.ok:
        findings.error(f"Failed to read {loaded.path}: {loaded.error}")
        return None
    return loaded.data


def _project_quality_gate(
    report: Any, options: BundleOptions, findings: Findings
) -> dict[str, Any] | None:
    if not isinstance(report, dict):
        findings.error("Quality gate report must be an object.")
        return None
    status = report.get("status")
    if status not in ("SUCCESS", "FAILED"):
        findings.error(f"Quality gate report status is invalid: {status}")
    artifacts = as_record(report.get("artifacts"))
    if artifacts is None:
        findings.error("Quality gate report artifacts is required.")
    else:
        pairs = [
            ("smoke report", "smokeReportFile", options.smoke_report_path),
            ("perf report", "perfReportFile", options.perf_report_path),
            ("summary", "summaryMarkdownFile", options.summary_markdown_file),
            ("summary json", "summaryJsonFile", options.summary_json_file),
        ]
        for label, key, in_use in pairs:
            expected = normalize_path_for_compare(in_use, options.root)
            recorded = normalize_path_for_compare(artifacts.get(key), options.root)
            if expected and recorded and expected != recorded:
                findings.error(
                    f"Quality gate {label} path mismatch: {artifacts.get(key)} vs {in_use}."
                )

    summary = as_record(report.get("summary")) or {}
    failed_ids = summary.get("failedStepIds")
    artifacts = artifacts or {}
    return {
        "status": status,
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "failed_steps": list(failed_ids) if isinstance(failed_ids, list) else [],
        "smoke_report_file": _str_or_none(artifacts.get("smokeReportFile")),
        "perf_report_file": _str_or_none(artifacts.get("perfReportFile")),
        "summary_markdown_file": _str_or_none(artifacts.get("summaryMarkdownFile")),
        "summary_json_file": _str_or_none(artifacts.get("summaryJsonFile")),
    }


def _str_or_none(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _check_freshness(
    smoke: dict[str, Any] | None,
    perf: dict[str, Any] | None,
    cutoff_text: str,
    findings: Findings,
) -> None:
    cutoff = parse_iso_timestamp(cutoff_text)
    if cutoff is None:
        findings.error(f"Invalid require-reports-generated-after value: {cutoff_text}")
        return
    if smoke is not None:
        stamp_text = smoke["finished_at"] or smoke["started_at"]
        if not stamp_text:
            findings.error("Smoke report missing startedAt/finishedAt for freshness check.")
        else:
            stamp = parse_iso_timestamp(stamp_text)
            if stamp is None:
                findings.error(f"Smoke report timestamp is invalid: {stamp_text}")
            elif stamp < cutoff:
                findings.error(f"Smoke report is stale: {stamp_text} < {cutoff_text}.")
    if perf is not None:
        stamp = parse_iso_timestamp(perf["generated_at"])
        if stamp is None:
            findings.error(f"Perf report generatedAt is invalid: {perf['generated_at']}")
        elif stamp < cutoff:
            findings.error(f"Perf report is stale: {perf['generated_at']} < {cutoff_text}.")


def _check_age(
    smoke: dict[str, Any] | None,
    perf: dict[str, Any] | None,
    max_age_ms: float,
    now: datetime,
    findings: Findings,
) -> None:
    def age_ms(stamp: datetime) -> float:
        return (now - stamp).total_seconds() * 1000.0

    if smoke is not None:
        stamp_text = smoke["finished_at"] or smoke["started_at"]
        if not stamp_text:
            findings.error("Smoke report missing startedAt/finishedAt for age check.")
        else:
            stamp = parse_iso_timestamp(stamp_text)
            if stamp is None:
                findings.error(f"Smoke report timestamp is invalid: {stamp_text}")
            elif age_ms(stamp) > max_age_ms:
                findings.error(f"Smoke report age exceeded {format_number(max_age_ms)}ms.")
    if perf is not None:
        stamp = parse_iso_timestamp(perf["generated_at"])
        if stamp is None:
            findings.error(f"Perf report generatedAt is invalid: {perf['generated_at']}")
        elif age_ms(stamp) > max_age_ms:
            findings.error(f"Perf report age exceeded {format_number(max_age_ms)}ms.")


def validate_report_bundle(
    smoke_file: LoadedReport,
    perf_file: LoadedReport,
    quality_gate_file: LoadedReport | None,
    options: BundleOptions,
    *,
    now: datetime | None = None,
) -> ValidationSummary:
    findings = Findings()
    smoke: dict[str, Any] | None = None
    perf: dict[str, Any] | None = None
    quality_gate: dict[str, Any] | None = None

    smoke_data = _load_section(
        smoke_file, kind="Smoke", allow_missing=options.allow_missing_smoke_report, findings=findings
    )
    if smoke_data is not None:
        result = validate_smoke_report(
            smoke_data, expected_schema_version=options.expected_smoke_schema_version
        )
        findings.validation_errors.extend(result.validation_errors)
        findings.warnings.extend(result.warnings)
        smoke = result.projection if result.ok else None

    perf_data = _load_section(
        perf_file, kind="Perf", allow_missing=options.allow_missing_perf_report, findings=findings
    )
    if perf_data is not None:
        result = validate_perf_report(
            perf_data,
            required_scenario_ids=options.required_scenario_ids,
            expected_schema_version=options.expected_perf_schema_version,
        )
        findings.validation_errors.extend(result.validation_errors)
        findings.warnings.extend(result.warnings)
        perf = result.projection if result.ok else None

    if options.require_smoke_success:
        if smoke is None:
            findings.error("Smoke report is required to enforce success status.")
        elif smoke["status"] != "SUCCESS":
            findings.error(f"Smoke report status must be SUCCESS, got {smoke['status']}.")

    if options.require_smoke_mode:
        if options.require_smoke_mode not in SMOKE_MODES:
            findings.error(f"Invalid require-smoke-mode value: {options.require_smoke_mode}")
        elif smoke is None:
            findings.error("Smoke report is required to enforce smoke mode.")
        elif smoke["mode"] != options.require_smoke_mode:
            findings.error(
                f"Smoke report mode must be {options.require_smoke_mode}, got {smoke['mode']}."
            )

    if options.require_perf_no_violations:
        if perf is None:
            findings.error("Perf report is required to enforce threshold violations check.")
        elif perf["violations"]:
            findings.error(f"Perf report has threshold violations: {perf['violations']}.")

    if quality_gate_file is not None:
        if not quality_gate_file.ok:
            findings.error(f"Failed to read {quality_gate_file.path}: {quality_gate_file.error}")
        else:
            quality_gate = _project_quality_gate(quality_gate_file.data, options, findings)

    if options.require_quality_gate_success:
        if quality_gate is None:
            findings.error("Quality gate report is required to enforce success status.")
        elif quality_gate["status"] != "SUCCESS":
            findings.error(
                f"Quality gate report status must be SUCCESS, got {quality_gate['status']}."
            )

    if options.require_reports_generated_after:
        _check_freshness(smoke, perf, options.require_reports_generated_after, findings)

    if options.max_report_age_ms is not None:
        _check_age(smoke, perf, options.max_report_age_ms, now or datetime.now(UTC), findings)

    expected_version = options.expected_summary_schema_version
    if expected_version and expected_version != SUMMARY_SCHEMA_VERSION:
        findings.error(
            f"Summary json schema version mismatch: expected {expected_version}, "
            f"actual {SUMMARY_SCHEMA_VERSION}."
        )

    inputs = asdict(options)
    inputs["required_scenario_ids"] = list(options.required_scenario_ids)
    return build_validation_summary(
        inputs=inputs,
        report=None,
        validation_errors=findings.validation_errors,
        warnings=findings.warnings,
        extras={"smoke": smoke, "perf": perf, "quality_gate": quality_gate},
    )


def render_markdown_summary(
    summary: ValidationSummary,
    *,
    scenario_ids: tuple[str, ...] = REQUIRED_SCENARIO_IDS,
) -> str:
    """Render the bundle summary as a markdown digest for CI step output."""
    smoke = summary.extras.get("smoke")
    perf = summary.extras.get("perf")
    quality_gate = summary.extras.get("quality_gate")
    lines = [
        "# Workflow Report Summary",
        "",
        f"- Smoke report: {'loaded' if smoke else 'missing'}",
        f"- Perf report: {'loaded' if perf else 'missing'}",
        f"- Quality gate report: {'loaded' if quality_gate else 'missing'}",
        "",
    ]
    if smoke:
        lines += [
            "## Smoke",
            "",
            "| Field | Value |",
            "|---|---|",
            f"| Mode | `{smoke['mode']}` |",
            f"| Status | `{smoke['status']}` |",
            f"| Duration | `{float(smoke['duration_ms'] or 0):.2f}ms` |",
            f"| Steps | `{smoke['total_steps']}` |",
            f"| Retries | `{smoke['total_retries']}` |",
            f"| Failed Step | `{smoke['failed_step_name'] or 'N/A'}` |",
            "",
        ]
    if perf:
        lines += ["## Perf (P95)", "", "| Scenario | P95(ms) |", "|---|---:|"]
        for scenario_id in scenario_ids:
            p95 = perf["p95_by_scenario"].get(scenario_id)
            lines.append(f"| `{scenario_id}` | {f'{p95:.4f}' if p95 is not None else 'N/A'} |")
        lines += ["", f"- Threshold violations: `{perf['violations']}`", ""]
    if quality_gate:
        lines += [
            "## Quality Gate",
            "",
            "| Field | Value |",
            "|---|---|",
            f"| Status | `{quality_gate['status']}` |",
            f"| Run ID | `{quality_gate['run_id'] or 'N/A'}` |",
            f"| Failed Steps | `{', '.join(map(str, quality_gate['failed_steps'])) or 'N/A'}` |",
            f"| Smoke Report | `{quality_gate['smoke_report_file'] or 'N/A'}` |",
            f"| Perf Report | `{quality_gate['perf_report_file'] or 'N/A'}` |",
            f"| Summary Markdown | `{quality_gate['summary_markdown_file'] or 'N/A'}` |",
            f"| Summary JSON | `{quality_gate['summary_json_file'] or 'N/A'}` |",
            "",
        ]
    if summary.warnings:
        lines += ["## Warnings", ""] + [f"- {w}" for w in summary.warnings] + [""]
    if summary.validation_errors:
        lines += ["## Validation Errors", ""] + [f"- {e}" for e in summary.validation_errors] + [""]
    return "\n".join(lines)
