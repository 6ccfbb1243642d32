"""Tests for smoke report validation."""
from __future__ import annotations

from typing import Any

import pytest

from gate_diagnostics.smoke_report import validate_smoke_report


def _step(step_id: str, status: str = "SUCCESS", attempts: int = 1, retry: int | None = None) -> dict[str, Any]:
    return {
        "id": step_id,
        "name": step_id,
        "command": "pnpm",
        "args": ["test"],
        "status": status,
        "retryCount": attempts - 1 if retry is None else retry,
        "attempts": [
            {"attempt": i + 1, "exitCode": 0 if status == "SUCCESS" else 1, "durationMs": 10}
            for i in range(attempts)
        ],
    }


def _report(steps: list[dict[str, Any]], **summary: Any) -> dict[str, Any]:
    computed = {
        "totalSteps": len(steps),
        "successfulSteps": sum(1 for s in steps if s["status"] == "SUCCESS"),
        "failedSteps": sum(1 for s in steps if s["status"] == "FAILED"),
        "totalRetries": sum(s["retryCount"] for s in steps),
        "failedStepName": next((s["name"] for s in steps if s["status"] == "FAILED"), None),
    }
    computed.update(summary)
    return {
        "schemaVersion": "1.0",
        "runId": "smoke-1",
        "mode": "gate",
        "status": "FAILED" if computed["failedSteps"] else "SUCCESS",
        "startedAt": "2026-01-01T00:00:00Z",
        "finishedAt": "2026-01-01T00:01:00Z",
        "durationMs": 60000,
        "steps": steps,
        "summary": computed,
    }


def test_valid_report_projects_summary() -> None:
    result = validate_smoke_report(_report([_step("a"), _step("b", attempts=2)]))
    assert result.ok, result.validation_errors
    assert result.projection["mode"] == "gate"
    assert result.projection["total_retries"] == 1
    assert result.projection["failed_step_name"] is None


def test_non_object_report() -> None:
    result = validate_smoke_report([])
    assert result.validation_errors == ("Smoke report must be an object.",)


def test_total_retries_mismatch() -> None:
    result = validate_smoke_report(_report([_step("a", attempts=3)], totalRetries=1))
    assert result.validation_errors == (
        "Smoke summary totalRetries does not match computed value: expected 2, actual 1.",
    )


def test_retry_count_attempts_disagreement_is_warning() -> None:
    result = validate_smoke_report(_report([_step("a", attempts=2, retry=0)]))
    assert result.ok
    assert len(result.warnings) == 1
    assert "retryCount does not match attempts" in result.warnings[0]


def test_failed_step_name_must_be_first_failed() -> None:
    steps = [_step("a"), _step("b", status="FAILED"), _step("c", status="FAILED")]
    result = validate_smoke_report(_report(steps, failedStepName="c"))
    assert result.validation_errors == (
        "Smoke summary failedStepName does not match first failed step: expected b, actual c.",
    )


def test_invalid_mode_and_empty_steps_accumulate() -> None:
    report = _report([_step("a")])
    report["mode"] = "turbo"
    report["steps"] = []
    result = validate_smoke_report(report)
    assert "Smoke report mode is invalid: turbo" in result.validation_errors
    assert "Smoke report steps must be a non-empty array." in result.validation_errors


def test_schema_version_mismatch_is_error() -> None:
    report = _report([_step("a")])
    report["schemaVersion"] = "99.0"
    result = validate_smoke_report(report)
    assert result.validation_errors == (
        "Smoke report schema version mismatch: expected 1.0, actual 99.0.",
    )
    assert validate_smoke_report(report, expected_schema_version="99.0").ok


@pytest.mark.parametrize("key", ["totalSteps", "successfulSteps", "failedSteps", "totalRetries"])
@pytest.mark.parametrize("value", [None, "2", -1, 1.5])
def test_malformed_summary_counter_is_structural_error(key: str, value: Any) -> None:
    result = validate_smoke_report(_report([_step("a"), _step("b")], **{key: value}))
    assert result.validation_errors == (f"Smoke summary {key} must be a non-negative integer.",)
