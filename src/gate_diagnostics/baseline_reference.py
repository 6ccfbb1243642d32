"""Execution-baseline reference lifecycle.

The trend comparison needs a reference report from an earlier healthy run.
CI keeps it in a cache and moves it through two modes:

- ``ensure``: keep an existing reference, or seed one from the current report
- ``promote``: replace the reference with the current report

``evaluate_reference_ci_state`` folds the outcomes of the CI steps around that
lifecycle into a single SUCCESS / PARTIAL / FAILED verdict.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from gate_diagnostics.checks import as_integer, as_record, is_number
from gate_diagnostics.io_utils import LoadedReport
from gate_diagnostics.summary import (
    STATUS_FAILED,
    STATUS_PARTIAL,
    STATUS_SUCCESS,
    ValidationSummary,
    build_validation_summary,
)

log = logging.getLogger(__name__)

MODE_ENSURE = "ensure"
MODE_PROMOTE = "promote"
REFERENCE_MODES = (MODE_ENSURE, MODE_PROMOTE)

ACTION_NONE = "NONE"
ACTION_PRESERVED = "PRESERVED"
ACTION_SEEDED = "SEEDED_FROM_CURRENT"
ACTION_PROMOTED = "PROMOTED_FROM_CURRENT"

DEFAULT_CURRENT_REPORT = "logs/workflow-execution-baseline-report.json"
DEFAULT_REFERENCE_REPORT = "logs/workflow-execution-baseline-reference.json"

OUTCOME_SUCCESS = "success"
OUTCOME_FAILURE = "failure"
OUTCOME_SKIPPED = "skipped"

# (outcome key, label used in the "is required" error)
REQUIRED_OUTCOMES = (
    ("execution_baseline_gate", "execution baseline gate outcome"),
    ("execution_baseline_report_validate", "execution baseline report validate outcome"),
    ("reference_ensure", "reference ensure outcome"),
    ("trend", "trend outcome"),
    ("reference_promote", "reference promote outcome"),
)


def plan_reference_action(mode: str, *, current_exists: bool, reference_exists: bool) -> str:
    """Action the lifecycle takes for ``mode``; copying is left to the caller."""
    if mode not in REFERENCE_MODES:
        raise ValueError(f"invalid mode: {mode}. supported modes: {', '.join(REFERENCE_MODES)}")
    if not current_exists:
        action = ACTION_NONE
    elif mode == MODE_PROMOTE:
        action = ACTION_PROMOTED
    elif reference_exists:
        action = ACTION_PRESERVED
    else:
        action = ACTION_SEEDED
    log.debug(
        "reference mode=%s current_exists=%s reference_exists=%s -> %s",
        mode,
        current_exists,
        reference_exists,
        action,
    )
    return action


def copies_current(action: str) -> bool:
    return action in (ACTION_SEEDED, ACTION_PROMOTED)


def extract_reference_meta(report: Any) -> dict[str, Any]:
    report = as_record(report) or {}
    rates = as_record(report.get("rates")) or {}
    latency = as_record(report.get("latencyMs")) or {}
    totals = as_record(report.get("totals")) or {}

    def number(container: Mapping[str, Any], key: str) -> float | None:
        value = container.get(key)
        return value if is_number(value) else None

    return {
        "run_id": report.get("runId") if isinstance(report.get("runId"), str) else None,
        "finished_at": report.get("finishedAt") if isinstance(report.get("finishedAt"), str) else None,
        "success_rate": number(rates, "successRate"),
        "failed_rate": number(rates, "failedRate"),
        "timeout_rate": number(rates, "timeoutRate"),
        "p95_duration_ms": number(latency, "p95"),
        "executions": as_integer(totals.get("executions")),
    }


def reference_preflight_errors(current: LoadedReport, reference: LoadedReport) -> list[str]:
    """Errors that stop the lifecycle before any file is copied."""
    errors: list[str] = []
    if current.exists and current.error:
        errors.append(f"failed to read current report: {current.error}")
    if reference.exists and reference.error:
        errors.append(f"failed to read reference report: {reference.error}")
    if not current.exists:
        errors.append(f"current report missing: {current.path}")
    return errors


def build_reference_summary(
    mode: str,
    action: str,
    current: LoadedReport,
    reference_before: LoadedReport,
    reference_after: LoadedReport,
    *,
    validation_errors: list[str] | None = None,
) -> ValidationSummary:
    errors = list(validation_errors or [])
    if reference_after.exists and reference_after.error:
        errors.append(f"failed to read reference report after {mode}: {reference_after.error}")

    def section(loaded: LoadedReport) -> dict[str, Any]:
        return {"exists": loaded.exists, **extract_reference_meta(loaded.data if loaded.ok else None)}

    return build_validation_summary(
        inputs={
            "mode": mode,
            "current_report_file": current.path,
            "reference_report_file": reference_before.path,
        },
        report=None,
        validation_errors=errors,
        warnings=[],
        extras={
            "mode": mode,
            "action": action,
            "current": section(current),
            "reference_before": section(reference_before),
            "reference_after": section(reference_after),
        },
    )


def parse_bool_flag(raw: Any) -> bool | None:
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().lower()
    if normalized == "true":
        return True
    if normalized == "false":
        return False
    return None


def _outcome(outcomes: Mapping[str, Any], key: str) -> str | None:
    value = outcomes.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def evaluate_reference_ci_state(
    outcomes: Mapping[str, Any], *, ci: Mapping[str, Any] | None = None
) -> ValidationSummary:
    """Overall CI verdict for the reference lifecycle.

    Any ``failure`` outcome fails the run. Otherwise every step must have
    succeeded (promotion may also be ``skipped``) or the state is PARTIAL.
    A missing outcome is an error.
    """
    validation_errors: list[str] = []
    warnings: list[str] = []
    values = {key: _outcome(outcomes, key) for key, _ in REQUIRED_OUTCOMES}
    for key, label in REQUIRED_OUTCOMES:
        if values[key] is None:
            validation_errors.append(f"{label} is required.")

    cache_hit = outcomes.get("cache_hit")
    if not isinstance(cache_hit, bool):
        cache_hit = parse_bool_flag(cache_hit)
    cache_save = _outcome(outcomes, "cache_save")
    if cache_hit is False:
        warnings.append(
            "reference baseline cache miss: fallback to ensure seeding or existing workspace file."
        )
    if values["reference_promote"] == OUTCOME_SKIPPED:
        warnings.append(
            "reference baseline promote skipped: upstream gate or trend condition not met."
        )
    if cache_save == OUTCOME_SKIPPED:
        warnings.append(
            "reference baseline cache save skipped: reference file may not be persisted for next run."
        )

    if any(value == OUTCOME_FAILURE for value in values.values()):
        status = STATUS_FAILED
    elif all(
        value == OUTCOME_SUCCESS or (key == "reference_promote" and value == OUTCOME_SKIPPED)
        for key, value in values.items()
    ):
        status = STATUS_SUCCESS
    else:
        status = STATUS_PARTIAL
        warnings.append(
            "reference baseline CI state is partial: check skipped/cancelled outcomes before promotion."
        )
    if validation_errors:
        status = STATUS_FAILED
    log.debug("reference CI outcomes=%s -> %s", values, status)

    return build_validation_summary(
        inputs={
            **{f"{key}_outcome": value for key, value in values.items()},
            "cache_restore_outcome": _outcome(outcomes, "cache_restore"),
            "cache_save_outcome": cache_save,
            "cache_hit": cache_hit,
        },
        report=None,
        validation_errors=validation_errors,
        warnings=warnings,
        status=status,
        extras={"ci": dict(ci or {})},
    )
