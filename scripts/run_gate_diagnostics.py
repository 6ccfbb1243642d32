#!/usr/bin/env python3
"""Hosting script for workflow gate diagnostics.

Each subcommand reads its report files, runs the matching validator and writes
a validation summary JSON before exiting non-zero when the summary FAILED.

Usage:
    python scripts/run_gate_diagnostics.py reports --require-smoke-success
    python scripts/run_gate_diagnostics.py execution-baseline --require-gate-pass
    python scripts/run_gate_diagnostics.py trend --allow-missing-reference
    python scripts/run_gate_diagnostics.py reference --mode ensure
    python scripts/run_gate_diagnostics.py reference-ci-state --trend-outcome success ...
    python scripts/run_gate_diagnostics.py quality-gate --require-summary-json-assert
    python scripts/run_gate_diagnostics.py self-check
    python scripts/run_gate_diagnostics.py guidance --first-validation-error "..."
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from pathlib import Path
from typing import Any

from gate_diagnostics.baseline_reference import (
    DEFAULT_CURRENT_REPORT,
    DEFAULT_REFERENCE_REPORT,
    REFERENCE_MODES,
    build_reference_summary,
    copies_current,
    evaluate_reference_ci_state,
    plan_reference_action,
    reference_preflight_errors,
)
from gate_diagnostics.execution_baseline import (
    DEFAULT_REPORT_FILE as DEFAULT_EXECUTION_BASELINE_REPORT,
    ExecutionBaselineOptions,
    build_execution_baseline_summary,
)
from gate_diagnostics.guidance import (
    DEFAULT_REPORT_FILE as DEFAULT_QUALITY_GATE_REPORT,
    DEFAULT_VALIDATION_SUMMARY_FILE,
    format_count_map,
    resolve_guidance,
)
from gate_diagnostics.io_utils import read_json_report, save_json
from gate_diagnostics.perf_report import DEFAULT_EXPECTED_SCHEMA_VERSION as DEFAULT_PERF_SCHEMA_VERSION
from gate_diagnostics.quality_gate_report import QualityGateOptions, build_quality_gate_summary
from gate_diagnostics.quick_locate import QuickLocateResolution, format_quick_locate_lines
from gate_diagnostics.report_bundle import (
    DEFAULT_PERF_REPORT,
    DEFAULT_SMOKE_REPORT,
    BundleOptions,
    render_markdown_summary,
    validate_report_bundle,
)
from gate_diagnostics.self_check_report import (
    DEFAULT_REPORT_FILE as DEFAULT_SELF_CHECK_REPORT,
    SelfCheckOptions,
    build_self_check_summary,
)
from gate_diagnostics.smoke_report import DEFAULT_EXPECTED_SCHEMA_VERSION as DEFAULT_SMOKE_SCHEMA_VERSION
from gate_diagnostics.summary import ValidationSummary
from gate_diagnostics.trend import build_trend_summary

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG = ROOT / "config" / "execution_baseline_thresholds.json"

log = logging.getLogger("gate_diagnostics")


def _resolve(path: str | Path) -> Path:
    p = Path(path)
    return p if p.is_absolute() else ROOT / p


def _emit(summary: ValidationSummary, summary_file: str, name: str) -> int:
    """Write the summary first, then report and return the exit code."""
    path = _resolve(summary_file)
    save_json(summary.as_dict(), path)
    log.info(
        "%s status=%s warnings=%d errors=%d summary=%s",
        name,
        summary.status,
        len(summary.warnings),
        len(summary.validation_errors),
        path,
    )
    if summary.warnings:
        log.warning("%s warnings: %s", name, " | ".join(summary.warnings))
    if summary.failed:
        log.error("%s failed: %s", name, " | ".join(summary.validation_errors))
    return summary.exit_code


def _log_quick_locate(payload: dict[str, Any] | None) -> None:
    if not payload:
        return
    details = {
        k: v
        for k, v in payload.items()
        if k not in ("priority", "source", "first_fix_route", "command", "first_failed_output")
    }
    resolution = QuickLocateResolution(
        priority=tuple(payload["priority"]),
        source=payload["source"],
        first_fix_route=payload["first_fix_route"],
        command=payload.get("command"),
        first_failed_output=payload.get("first_failed_output"),
        details=details,
    )
    for line in format_quick_locate_lines(resolution):
        log.info(line)


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_reports(args: argparse.Namespace) -> int:
    options = BundleOptions(
        smoke_report_path=args.smoke_report_file,
        perf_report_path=args.perf_report_file,
        quality_gate_report_path=args.quality_gate_report_file,
        summary_markdown_file=args.summary_markdown_file,
        summary_json_file=args.summary_json_file,
        allow_missing_smoke_report=args.allow_missing_smoke_report,
        allow_missing_perf_report=args.allow_missing_perf_report,
        require_smoke_success=args.require_smoke_success,
        require_smoke_mode=args.require_smoke_mode,
        require_perf_no_violations=args.require_perf_no_violations,
        require_quality_gate_success=args.require_quality_gate_success,
        require_reports_generated_after=args.require_reports_generated_after,
        max_report_age_ms=args.max_report_age_ms,
        expected_summary_schema_version=args.expected_summary_schema_version,
        expected_smoke_schema_version=args.expected_smoke_schema_version,
        expected_perf_schema_version=args.expected_perf_schema_version,
        root=str(ROOT),
    )
    summary = validate_report_bundle(
        read_json_report(_resolve(options.smoke_report_path)),
        read_json_report(_resolve(options.perf_report_path)),
        read_json_report(_resolve(options.quality_gate_report_path))
        if options.quality_gate_report_path
        else None,
        options,
    )
    if args.summary_markdown_file:
        markdown_path = _resolve(args.summary_markdown_file)
        markdown_path.parent.mkdir(parents=True, exist_ok=True)
        markdown_path.write_text(render_markdown_summary(summary), encoding="utf-8")
        log.info("Markdown summary written: %s", markdown_path)
    return _emit(summary, args.summary_json_file, "report-validate")


def cmd_execution_baseline(args: argparse.Namespace) -> int:
    options = ExecutionBaselineOptions(
        expected_report_schema_version=args.expected_report_schema_version,
        require_gate_pass=args.require_gate_pass,
        require_gate_evaluated=args.require_gate_evaluated,
        require_no_warnings=args.require_no_warnings,
    )
    summary = build_execution_baseline_summary(read_json_report(_resolve(args.report_file)), options)
    return _emit(summary, args.summary_json_file, "execution-baseline-report-validate")


def cmd_trend(args: argparse.Namespace) -> int:
    thresholds_path = args.thresholds_file or str(DEFAULT_CONFIG)
    overrides = {
        "maxSuccessRateDrop": args.max_success_rate_drop,
        "maxFailedRateIncrease": args.max_failed_rate_increase,
        "maxTimeoutRateIncrease": args.max_timeout_rate_increase,
        "maxP95DurationIncreaseMs": args.max_p95_duration_increase_ms,
    }
    summary = build_trend_summary(
        read_json_report(_resolve(args.current_report_file)),
        read_json_report(_resolve(args.reference_report_file)),
        read_json_report(_resolve(thresholds_path)),
        thresholds_file_explicit=args.thresholds_file is not None,
        overrides=overrides,
        allow_missing_reference=args.allow_missing_reference,
        require_reference=args.require_reference,
    )
    for regression in summary.extras.get("regressions", []):
        log.warning("regression: %s", regression)
    return _emit(summary, args.summary_json_file, "execution-baseline-trend")


def cmd_reference(args: argparse.Namespace) -> int:
    current_path = _resolve(args.current_report_file)
    reference_path = _resolve(args.reference_report_file)
    current = read_json_report(current_path)
    reference_before = read_json_report(reference_path)

    errors = reference_preflight_errors(current, reference_before)
    action = "NONE"
    if not errors:
        action = plan_reference_action(
            args.mode, current_exists=current.exists, reference_exists=reference_before.exists
        )
        if copies_current(action):
            reference_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(current_path, reference_path)
            log.info("Reference %s: %s -> %s", action, current_path, reference_path)

    summary = build_reference_summary(
        args.mode,
        action,
        current,
        reference_before,
        read_json_report(reference_path),
        validation_errors=errors,
    )
    return _emit(summary, args.summary_json_file, f"execution-baseline-reference mode={args.mode}")


def cmd_reference_ci_state(args: argparse.Namespace) -> int:
    summary = evaluate_reference_ci_state(
        {
            "execution_baseline_gate": args.execution_baseline_gate_outcome,
            "execution_baseline_report_validate": args.execution_baseline_report_validate_outcome,
            "reference_ensure": args.reference_ensure_outcome,
            "trend": args.trend_outcome,
            "reference_promote": args.reference_promote_outcome,
            "cache_restore": args.cache_restore_outcome,
            "cache_save": args.cache_save_outcome,
            "cache_hit": args.cache_hit,
        },
        ci={
            "workflow_run_id": args.workflow_run_id,
            "workflow_run_attempt": args.workflow_run_attempt,
            "repository": args.repository,
            "ref_name": args.ref_name,
            "sha": args.sha,
        },
    )
    return _emit(summary, args.summary_json_file, "execution-baseline-reference-ci-state")


def cmd_quality_gate(args: argparse.Namespace) -> int:
    options = QualityGateOptions(
        report_file=args.report_file,
        summary_json_file=args.summary_json_file,
        expected_report_schema_version=args.expected_report_schema_version,
        require_summary_json_assert=args.require_summary_json_assert,
        allow_report_file_path_mismatch=args.allow_report_file_path_mismatch,
        require_artifact_option_path_match=not args.skip_artifact_option_path_match,
        root=str(ROOT),
    )
    summary = build_quality_gate_summary(read_json_report(_resolve(args.report_file)), options)
    failure_index = summary.extras.get("failure_index")
    if failure_index:
        log.info(
            "failure index: reason_code=%s suggested_command=%s",
            failure_index["reason_code"],
            failure_index["suggested_command"],
        )
        diagnostics = summary.extras["failure_index_diagnostics"]
        log.info("reason codes: %s", format_count_map(diagnostics["reason_code_counts"]))
    _log_quick_locate(summary.extras.get("quick_locate"))
    return _emit(summary, args.summary_json_file, "quality-gate-report-validate")


def cmd_self_check(args: argparse.Namespace) -> int:
    options = SelfCheckOptions(
        report_file=args.report_file,
        expected_report_schema_version=args.expected_report_schema_version,
        quick_locate_overrides_disabled=args.disable_quick_locate_overrides,
    )
    summary = build_self_check_summary(read_json_report(_resolve(args.report_file)), options)
    if summary.report:
        _log_quick_locate(summary.report.get("quick_locate"))
    return _emit(summary, args.summary_json_file, "summary-self-check-report-validate")


def cmd_guidance(args: argparse.Namespace) -> int:
    record = resolve_guidance(
        failure_reason_code=args.failure_reason_code,
        first_validation_error=args.first_validation_error,
        inputs={
            "report_file": args.report_file,
            "summary_json_file": args.summary_json_file,
            "expected_report_schema_version": args.expected_report_schema_version,
        },
    )
    for key, value in record.as_dict().items():
        print(f"{key}: {value if value is not None else 'N/A'}")
    return 0


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate workflow gate reports")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("reports", help="Validate the smoke/perf/quality-gate report bundle")
    p.add_argument("--smoke-report-file", default=DEFAULT_SMOKE_REPORT)
    p.add_argument("--perf-report-file", default=DEFAULT_PERF_REPORT)
    p.add_argument("--quality-gate-report-file", default=None)
    p.add_argument("--summary-markdown-file", default=None)
    p.add_argument("--summary-json-file", default="logs/workflow-report-validation.json")
    p.add_argument("--allow-missing-smoke-report", action="store_true")
    p.add_argument("--allow-missing-perf-report", action="store_true")
    p.add_argument("--require-smoke-success", action="store_true")
    p.add_argument("--require-smoke-mode", default=None)
    p.add_argument("--require-perf-no-violations", action="store_true")
    p.add_argument("--require-quality-gate-success", action="store_true")
    p.add_argument("--require-reports-generated-after", default=None)
    p.add_argument("--max-report-age-ms", type=float, default=None)
    p.add_argument("--expected-summary-schema-version", default=None)
    p.add_argument("--expected-smoke-schema-version", default=DEFAULT_SMOKE_SCHEMA_VERSION)
    p.add_argument("--expected-perf-schema-version", default=DEFAULT_PERF_SCHEMA_VERSION)
    p.set_defaults(func=cmd_reports)

    p = sub.add_parser("execution-baseline", help="Validate an execution baseline report")
    p.add_argument("--report-file", default=DEFAULT_EXECUTION_BASELINE_REPORT)
    p.add_argument(
        "--summary-json-file", default="logs/workflow-execution-baseline-report-validation.json"
    )
    p.add_argument("--expected-report-schema-version", default="1.0")
    p.add_argument("--require-gate-pass", action="store_true")
    p.add_argument("--require-gate-evaluated", action="store_true")
    p.add_argument("--require-no-warnings", action="store_true")
    p.set_defaults(func=cmd_execution_baseline)

    p = sub.add_parser("trend", help="Compare the current baseline against the reference")
    p.add_argument("--current-report-file", default=DEFAULT_EXECUTION_BASELINE_REPORT)
    p.add_argument("--reference-report-file", default=DEFAULT_REFERENCE_REPORT)
    p.add_argument(
        "--thresholds-file",
        default=None,
        help=f"Trend thresholds JSON (default: {DEFAULT_CONFIG.relative_to(ROOT)})",
    )
    p.add_argument("--summary-json-file", default="logs/workflow-execution-baseline-trend.json")
    p.add_argument("--max-success-rate-drop", type=float, default=None)
    p.add_argument("--max-failed-rate-increase", type=float, default=None)
    p.add_argument("--max-timeout-rate-increase", type=float, default=None)
    p.add_argument("--max-p95-duration-increase-ms", type=float, default=None)
    p.add_argument("--allow-missing-reference", action="store_true")
    p.add_argument("--require-reference", action="store_true")
    p.set_defaults(func=cmd_trend)

    p = sub.add_parser("reference", help="Ensure or promote the trend reference report")
    p.add_argument("--mode", choices=REFERENCE_MODES, default="ensure")
    p.add_argument("--current-report-file", default=DEFAULT_CURRENT_REPORT)
    p.add_argument("--reference-report-file", default=DEFAULT_REFERENCE_REPORT)
    p.add_argument(
        "--summary-json-file", default="logs/workflow-execution-baseline-reference-operation.json"
    )
    p.set_defaults(func=cmd_reference)

    p = sub.add_parser("reference-ci-state", help="Summarize reference lifecycle CI outcomes")
    for name in (
        "execution-baseline-gate-outcome",
        "execution-baseline-report-validate-outcome",
        "reference-ensure-outcome",
        "trend-outcome",
        "reference-promote-outcome",
        "cache-restore-outcome",
        "cache-save-outcome",
        "cache-hit",
        "workflow-run-id",
        "workflow-run-attempt",
        "repository",
        "ref-name",
        "sha",
    ):
        p.add_argument(f"--{name}", default=None)
    p.add_argument(
        "--summary-json-file", default="logs/workflow-execution-baseline-reference-ci-state.json"
    )
    p.set_defaults(func=cmd_reference_ci_state)

    p = sub.add_parser("quality-gate", help="Validate a quality gate report")
    p.add_argument("--report-file", default=DEFAULT_QUALITY_GATE_REPORT)
    p.add_argument("--summary-json-file", default=DEFAULT_VALIDATION_SUMMARY_FILE)
    p.add_argument("--expected-report-schema-version", default="1.0")
    p.add_argument("--require-summary-json-assert", action="store_true")
    p.add_argument("--allow-report-file-path-mismatch", action="store_true")
    p.add_argument("--skip-artifact-option-path-match", action="store_true")
    p.set_defaults(func=cmd_quality_gate)

    p = sub.add_parser("self-check", help="Validate a self-check suite report")
    p.add_argument("--report-file", default=DEFAULT_SELF_CHECK_REPORT)
    p.add_argument(
        "--summary-json-file", default="logs/workflow-summary-self-check-validation.json"
    )
    p.add_argument("--expected-report-schema-version", default="1.0")
    p.add_argument("--disable-quick-locate-overrides", action="store_true")
    p.set_defaults(func=cmd_self_check)

    p = sub.add_parser("guidance", help="Resolve remediation guidance for a failure")
    p.add_argument("--failure-reason-code", default=None)
    p.add_argument("--first-validation-error", default=None)
    p.add_argument("--report-file", default=DEFAULT_QUALITY_GATE_REPORT)
    p.add_argument("--summary-json-file", default=DEFAULT_VALIDATION_SUMMARY_FILE)
    p.add_argument("--expected-report-schema-version", default="1.0")
    p.set_defaults(func=cmd_guidance)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
