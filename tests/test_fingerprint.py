"""Tests for failure fingerprints."""
from __future__ import annotations

import hashlib
from typing import Any

import pytest

from gate_diagnostics.checks import Findings
from gate_diagnostics.fingerprint import (
    build_signature,
    extract_first_output_line,
    fingerprint_first_failure,
    fingerprint_step,
    normalize_output_line,
    verify_recorded_fingerprint,
)


def failed_step(step_id: str = "lint", output: str = "\n  error: bad   thing\nmore") -> dict[str, Any]:
    return {
        "id": step_id,
        "command": "pnpm",
        "args": ["run", step_id],
        "status": "FAILED",
        "exitCode": 2,
        "outputTail": output,
    }


def test_first_output_line_skips_blank_lines() -> None:
    assert extract_first_output_line("\n \n  first  \nsecond") == "first"
    assert extract_first_output_line("") is None
    assert extract_first_output_line(None) is None


def test_normalize_output_line_caps_length() -> None:
    normalized = normalize_output_line("x " * 200, max_chars=20)
    assert normalized is not None
    assert len(normalized) <= 20
    assert normalized.endswith("...")


def test_fingerprint_of_first_failed_step() -> None:
    steps = [{"id": "ok", "status": "SUCCESS"}, failed_step("lint"), failed_step("test")]
    fingerprint = fingerprint_first_failure(steps)
    assert fingerprint is not None
    assert fingerprint.step_id == "lint"
    assert fingerprint.command == "pnpm run lint"
    assert fingerprint.first_output_line == "error: bad   thing"
    assert fingerprint.normalized_output_line == "error: bad thing"
    assert fingerprint.signature == "stepId=lint|exitCode=2|output=error: bad thing"
    assert fingerprint.hash == hashlib.sha256(fingerprint.signature.encode()).hexdigest()


def test_fingerprint_is_deterministic() -> None:
    assert fingerprint_step(failed_step()) == fingerprint_step(failed_step())


@pytest.mark.parametrize(
    "change",
    [
        {"id": "test"},
        {"exitCode": 3},
        {"outputTail": "error: other thing"},
    ],
)
def test_any_signature_component_changes_hash(change: dict[str, Any]) -> None:
    base = fingerprint_step(failed_step())
    changed = fingerprint_step({**failed_step(), **change})
    assert base is not None and changed is not None
    assert changed.hash != base.hash


def test_whitespace_only_output_differences_share_hash() -> None:
    base = fingerprint_step(failed_step(output="error: bad thing"))
    spaced = fingerprint_step(failed_step(output="\n\t error:   bad\tthing  \nother tail"))
    assert base is not None and spaced is not None
    assert spaced.normalized_output_line == "error: bad thing"
    assert spaced.hash == base.hash


def test_fingerprint_falls_back_to_last_attempt() -> None:
    step = {
        "id": "api",
        "command": "pnpm",
        "args": [],
        "status": "FAILED",
        "attempts": [
            {"attempt": 1, "exitCode": 1, "outputTail": "first try"},
            {"attempt": 2, "exitCode": 3, "outputTail": "second try"},
        ],
    }
    fingerprint = fingerprint_step(step)
    assert fingerprint is not None
    assert fingerprint.exit_code == 3
    assert fingerprint.first_output_line == "second try"


def test_no_failed_step_gives_none() -> None:
    assert fingerprint_first_failure([{"id": "ok", "status": "SUCCESS"}]) is None


def test_signature_placeholders() -> None:
    assert build_signature("s", None, None) == "stepId=s|exitCode=N/A|output=N/A"


def _recorded(step: dict[str, Any]) -> dict[str, Any]:
    fingerprint = fingerprint_step(step)
    assert fingerprint is not None
    return {
        "stepId": fingerprint.step_id,
        "command": fingerprint.command,
        "exitCode": fingerprint.exit_code,
        "firstOutputLine": fingerprint.first_output_line,
        "normalizedOutputLine": fingerprint.normalized_output_line,
        "signature": fingerprint.signature,
        "hashAlgorithm": fingerprint.hash_algorithm,
        "hash": fingerprint.hash,
    }


class TestVerifyRecordedFingerprint:
    def test_matching_fingerprint(self) -> None:
        step = failed_step()
        findings = Findings()
        verify_recorded_fingerprint(_recorded(step), {"lint": step}, ["lint"], findings, "Report")
        assert findings.ok, findings.validation_errors

    def test_hash_must_match_signature(self) -> None:
        step = failed_step()
        recorded = _recorded(step)
        recorded["hash"] = "0" * 64
        findings = Findings()
        verify_recorded_fingerprint(recorded, {"lint": step}, ["lint"], findings, "Report")
        assert findings.validation_errors == [
            "Report summary.failureFingerprint.hash does not match signature."
        ]

    def test_step_must_be_failed(self) -> None:
        step = failed_step()
        findings = Findings()
        verify_recorded_fingerprint(_recorded(step), {"lint": step}, [], findings, "Report")
        assert findings.validation_errors == [
            "Report summary.failureFingerprint.stepId must reference a failed step id: lint."
        ]

    def test_command_drift(self) -> None:
        step = failed_step()
        recorded = _recorded(step)
        step["args"] = ["run", "lint", "--fix"]
        findings = Findings()
        verify_recorded_fingerprint(recorded, {"lint": step}, ["lint"], findings, "Report")
        assert findings.validation_errors == [
            "Report summary.failureFingerprint.command mismatch: expected pnpm run lint --fix, "
            "actual pnpm run lint."
        ]

    def test_non_object(self) -> None:
        findings = Findings()
        verify_recorded_fingerprint("x", {}, [], findings, "Report")
        assert findings.validation_errors == [
            "Report summary.failureFingerprint must be an object when provided."
        ]

    def test_unknown_failed_ids_skip_membership_check(self) -> None:
        step = failed_step()
        findings = Findings()
        verify_recorded_fingerprint(_recorded(step), {"lint": step}, None, findings, "Report")
        assert findings.ok, findings.validation_errors
