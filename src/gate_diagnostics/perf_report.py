"""Performance benchmark report validation."""
from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from gate_diagnostics.checks import Findings, ReportValidation, as_record, is_non_empty_string, is_number

REQUIRED_SCENARIO_IDS = ("pass-low-risk", "soft-block-high-risk", "hard-block-by-rule")
DEFAULT_EXPECTED_SCHEMA_VERSION = "1.0"


def _read_percentile(metric: dict[str, Any], key: str, label: str, findings: Findings) -> float | None:
    value = metric.get(key)
    if not is_number(value) or value < 0:
        findings.error(f"Perf {label} invalid: {metric.get('id')}")
        return None
    return value


def validate_perf_report(
    report: Any,
    *,
    required_scenario_ids: Sequence[str] = REQUIRED_SCENARIO_IDS,
    expected_schema_version: str = DEFAULT_EXPECTED_SCHEMA_VERSION,
) -> ReportValidation:
    """Check metric structure, percentile ordering and scenario coverage."""
    findings = Findings()
    projection: dict[str, Any] = {"generated_at": None, "violations": None, "p95_by_scenario": {}}
    if not isinstance(report, dict):
        findings.error("Perf report must be an object.")
        return ReportValidation.from_findings(projection, findings)

    generated_at = report.get("generatedAt")
    if not is_non_empty_string(generated_at):
        findings.error("Perf report generatedAt is required.")
    else:
        projection["generated_at"] = generated_at
    schema_version = report.get("schemaVersion")
    if not is_non_empty_string(schema_version):
        findings.error("Perf report schemaVersion is required.")
    elif schema_version != expected_schema_version:
        findings.error(
            f"Perf report schema version mismatch: expected {expected_schema_version}, "
            f"actual {schema_version}."
        )

    threshold_check = as_record(report.get("thresholdCheck"))
    if threshold_check is None:
        findings.error("Perf report thresholdCheck is required.")
    else:
        if not isinstance(threshold_check.get("limits"), list):
            findings.error("Perf report thresholdCheck.limits must be an array.")
        violations = threshold_check.get("violations")
        if not isinstance(violations, list):
            findings.error("Perf report thresholdCheck.violations must be an array.")
        else:
            projection["violations"] = len(violations)

    metrics = report.get("metrics")
    if not isinstance(metrics, list) or not metrics:
        findings.error("Perf report metrics must be a non-empty array.")
        return ReportValidation.from_findings(projection, findings)

    scenario_ids: set[str] = set()
    p95_by_scenario: dict[str, Any] = {}
    for metric in metrics:
        if not isinstance(metric, dict):
            findings.error("Perf metric must be an object.")
            continue
        metric_id = metric.get("id")
        if not is_non_empty_string(metric_id):
            findings.error("Perf metric id is required.")
            continue
        sample_size = metric.get("sampleSize")
        if not is_number(sample_size) or sample_size <= 0:
            findings.error(f"Perf sampleSize invalid: {metric_id}")
        p50 = _read_percentile(metric, "p50Ms", "p50", findings)
        p95 = _read_percentile(metric, "p95Ms", "p95", findings)
        p99 = _read_percentile(metric, "p99Ms", "p99", findings)
        if p50 is not None and p95 is not None and p50 > p95:
            findings.error(f"Perf percentile order invalid (p50 > p95): {metric_id}")
        if p95 is not None and p99 is not None and p95 > p99:
            findings.error(f"Perf percentile order invalid (p95 > p99): {metric_id}")
        scenario_ids.add(metric_id)
        p95_by_scenario[metric_id] = p95

    for scenario_id in required_scenario_ids:
        if scenario_id not in scenario_ids:
            findings.error(f"Perf report missing scenario: {scenario_id}")

    projection["p95_by_scenario"] = p95_by_scenario
    return ReportValidation.from_findings(projection, findings)
