"""Tests for the trend reference lifecycle."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from gate_diagnostics.baseline_reference import (
    build_reference_summary,
    evaluate_reference_ci_state,
    extract_reference_meta,
    plan_reference_action,
    reference_preflight_errors,
)
from gate_diagnostics.io_utils import read_json_report, save_json

ALL_SUCCESS = {
    "execution_baseline_gate": "success",
    "execution_baseline_report_validate": "success",
    "reference_ensure": "success",
    "trend": "success",
    "reference_promote": "success",
}


@pytest.mark.parametrize(
    ("mode", "reference_exists", "action"),
    [
        ("ensure", True, "PRESERVED"),
        ("ensure", False, "SEEDED_FROM_CURRENT"),
        ("promote", True, "PROMOTED_FROM_CURRENT"),
        ("promote", False, "PROMOTED_FROM_CURRENT"),
    ],
)
def test_plan_reference_action(mode: str, reference_exists: bool, action: str) -> None:
    assert plan_reference_action(mode, current_exists=True, reference_exists=reference_exists) == action


def test_plan_without_current_does_nothing() -> None:
    assert plan_reference_action("promote", current_exists=False, reference_exists=True) == "NONE"


def test_invalid_mode_raises() -> None:
    with pytest.raises(ValueError, match="invalid mode: seed"):
        plan_reference_action("seed", current_exists=True, reference_exists=False)


def test_extract_reference_meta() -> None:
    meta = extract_reference_meta(
        {
            "runId": "r1",
            "rates": {"successRate": 0.9, "failedRate": "bad"},
            "latencyMs": {"p95": 1200},
            "totals": {"executions": 40},
        }
    )
    assert meta == {
        "run_id": "r1",
        "finished_at": None,
        "success_rate": 0.9,
        "failed_rate": None,
        "timeout_rate": None,
        "p95_duration_ms": 1200,
        "executions": 40,
    }
    assert extract_reference_meta(None)["run_id"] is None


def test_reference_summary_after_seed(tmp_path: Path) -> None:
    current_path = tmp_path / "current.json"
    reference_path = tmp_path / "reference.json"
    save_json({"runId": "cur"}, current_path)
    current = read_json_report(current_path)
    before = read_json_report(reference_path)
    assert reference_preflight_errors(current, before) == []
    save_json({"runId": "cur"}, reference_path)
    summary = build_reference_summary(
        "ensure", "SEEDED_FROM_CURRENT", current, before, read_json_report(reference_path)
    )
    assert summary.status == "SUCCESS"
    assert summary.extras["reference_before"]["exists"] is False
    assert summary.extras["reference_after"]["run_id"] == "cur"


def test_preflight_requires_current(tmp_path: Path) -> None:
    current = read_json_report(tmp_path / "current.json")
    reference = read_json_report(tmp_path / "reference.json")
    assert reference_preflight_errors(current, reference) == [
        f"current report missing: {current.path}"
    ]


class TestReferenceCiState:
    def test_all_success(self) -> None:
        summary = evaluate_reference_ci_state({**ALL_SUCCESS, "cache_hit": "true"})
        assert summary.status == "SUCCESS"
        assert summary.warnings == ()

    def test_skipped_promote_and_cache_miss_warn(self) -> None:
        summary = evaluate_reference_ci_state(
            {**ALL_SUCCESS, "reference_promote": "skipped", "cache_hit": "false", "cache_save": "skipped"}
        )
        assert summary.status == "SUCCESS"
        assert summary.warnings == (
            "reference baseline cache miss: fallback to ensure seeding or existing workspace file.",
            "reference baseline promote skipped: upstream gate or trend condition not met.",
            "reference baseline cache save skipped: reference file may not be persisted for next run.",
        )

    def test_cancelled_step_is_partial(self) -> None:
        summary = evaluate_reference_ci_state({**ALL_SUCCESS, "trend": "cancelled"})
        assert summary.status == "PARTIAL"
        assert summary.exit_code == 0
        assert summary.warnings[-1].startswith("reference baseline CI state is partial")

    def test_failure_outcome_fails(self) -> None:
        summary = evaluate_reference_ci_state({**ALL_SUCCESS, "reference_ensure": "failure"})
        assert summary.status == "FAILED"
        assert summary.validation_errors == ()

    def test_missing_outcome_is_error(self) -> None:
        outcomes: dict[str, Any] = {**ALL_SUCCESS, "trend": "  "}
        summary = evaluate_reference_ci_state(outcomes)
        assert summary.status == "FAILED"
        assert summary.validation_errors == ("trend outcome is required.",)
