"""Workflow gate diagnostics: report validation, regression trends, failure guidance."""
from __future__ import annotations

from gate_diagnostics.baseline_reference import (
    evaluate_reference_ci_state,
    extract_reference_meta,
    plan_reference_action,
)
from gate_diagnostics.execution_baseline import (
    ExecutionBaselineOptions,
    build_execution_baseline_summary,
    validate_execution_baseline_report,
)
from gate_diagnostics.fingerprint import FailureFingerprint, fingerprint_first_failure
from gate_diagnostics.guidance import (
    GuidanceRecord,
    build_failure_index,
    build_failure_index_diagnostics,
    classify_validation_error,
    resolve_guidance,
)
from gate_diagnostics.io_utils import LoadedReport, read_json_report
from gate_diagnostics.perf_report import validate_perf_report
from gate_diagnostics.quality_gate_report import (
    QualityGateOptions,
    build_quality_gate_summary,
    validate_quality_gate_report,
)
from gate_diagnostics.quick_locate import QuickLocateResolution, resolve_quick_locate
from gate_diagnostics.report_bundle import BundleOptions, validate_report_bundle
from gate_diagnostics.self_check_report import (
    SelfCheckOptions,
    build_self_check_summary,
    validate_self_check_report,
)
from gate_diagnostics.smoke_report import validate_smoke_report
from gate_diagnostics.summary import ValidationSummary
from gate_diagnostics.trend import ThresholdSet, build_trend_summary, compare_trend

__all__ = [
    "BundleOptions",
    "ExecutionBaselineOptions",
    "FailureFingerprint",
    "GuidanceRecord",
    "LoadedReport",
    "QualityGateOptions",
    "QuickLocateResolution",
    "SelfCheckOptions",
    "ThresholdSet",
    "ValidationSummary",
    "build_execution_baseline_summary",
    "build_failure_index",
    "build_failure_index_diagnostics",
    "build_quality_gate_summary",
    "build_self_check_summary",
    "build_trend_summary",
    "classify_validation_error",
    "compare_trend",
    "evaluate_reference_ci_state",
    "extract_reference_meta",
    "fingerprint_first_failure",
    "plan_reference_action",
    "read_json_report",
    "resolve_guidance",
    "resolve_quick_locate",
    "validate_execution_baseline_report",
    "validate_perf_report",
    "validate_quality_gate_report",
    "validate_report_bundle",
    "validate_self_check_report",
    "validate_smoke_report",
]
