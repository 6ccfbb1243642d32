"""Deterministic fingerprints for the first failing step of a run.

Two runs that fail on the same step with the same exit code and the same
first output line get the same signature and therefore the same hash, which
lets CI deduplicate repeated failures across runs.
"""
from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from gate_diagnostics.checks import Findings, as_integer, is_non_empty_string, to_single_line

DEFAULT_HASH_ALGORITHM = "sha256"
NORMALIZED_LINE_MAX_CHARS = 240

_HEX_RE = re.compile(r"^[0-9a-f]+$")


@dataclass(frozen=True, slots=True)
class FailureFingerprint:
    step_id: str
    command: str
    exit_code: int | None
    first_output_line: str | None
    normalized_output_line: str | None
    signature: str
    hash_algorithm: str
    hash: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "step_id": self.step_id,
            "command": self.command,
            "exit_code": self.exit_code,
            "first_output_line": self.first_output_line,
            "normalized_output_line": self.normalized_output_line,
            "signature": self.signature,
            "hash_algorithm": self.hash_algorithm,
            "hash": self.hash,
        }


def build_step_command(step: Mapping[str, Any]) -> str:
    command = step.get("command") if isinstance(step.get("command"), str) else ""
    args = step.get("args")
    arg_text = " ".join(str(a) for a in args) if isinstance(args, list) else ""
    return f"{command} {arg_text}".strip()


def extract_first_output_line(output_tail: Any) -> str | None:
    """First non-blank line of captured output, trimmed."""
    if not is_non_empty_string(output_tail):
        return None
    for line in output_tail.split("\n"):
        stripped = line.strip()
        if stripped:
            return stripped
    return None


def normalize_output_line(value: Any, max_chars: int = NORMALIZED_LINE_MAX_CHARS) -> str | None:
    normalized = to_single_line(value)
    if not normalized:
        return None
    if len(normalized) <= max_chars:
        return normalized
    return normalized[: max(0, max_chars - 3)].rstrip() + "..."


def _last_attempt(step: Mapping[str, Any]) -> Mapping[str, Any]:
    attempts = step.get("attempts")
    if isinstance(attempts, list) and attempts and isinstance(attempts[-1], Mapping):
        return attempts[-1]
    return {}


def step_output_tail(step: Mapping[str, Any]) -> Any:
    """Step output, falling back to the last recorded attempt's output."""
    if is_non_empty_string(step.get("outputTail")):
        return step["outputTail"]
    return _last_attempt(step).get("outputTail")


def step_exit_code(step: Mapping[str, Any]) -> int | None:
    code = as_integer(step.get("exitCode"))
    if code is None:
        code = as_integer(_last_attempt(step).get("exitCode"))
    return code


def build_signature(step_id: str, exit_code: int | None, normalized_line: str | None) -> str:
    return "|".join(
        (
            f"stepId={step_id}",
            f"exitCode={'N/A' if exit_code is None else exit_code}",
            f"output={normalized_line or 'N/A'}",
        )
    )


def hash_signature(signature: str, algorithm: str = DEFAULT_HASH_ALGORITHM) -> str:
    """Hex digest of the UTF-8 signature; unknown algorithms raise ValueError."""
    return hashlib.new(algorithm, signature.encode("utf-8")).hexdigest()


def fingerprint_step(
    step: Any, *, hash_algorithm: str = DEFAULT_HASH_ALGORITHM
) -> FailureFingerprint | None:
    if not isinstance(step, Mapping):
        return None
    step_id = step.get("id") if is_non_empty_string(step.get("id")) else None
    command = build_step_command(step)
    if step_id is None or not command:
        return None
    exit_code = step_exit_code(step)
    first_line = extract_first_output_line(step_output_tail(step))
    normalized = normalize_output_line(first_line)
    signature = build_signature(step_id, exit_code, normalized)
    return FailureFingerprint(
        step_id=step_id,
        command=command,
        exit_code=exit_code,
        first_output_line=first_line,
        normalized_output_line=normalized,
        signature=signature,
        hash_algorithm=hash_algorithm,
        hash=hash_signature(signature, hash_algorithm),
    )


def first_failed_step(steps: Iterable[Any]) -> Mapping[str, Any] | None:
    for step in steps:
        if isinstance(step, Mapping) and step.get("status") == "FAILED":
            return step
    return None


def fingerprint_first_failure(
    steps: Iterable[Any], *, hash_algorithm: str = DEFAULT_HASH_ALGORITHM
) -> FailureFingerprint | None:
    """Fingerprint of the first FAILED step in execution order."""
    return fingerprint_step(first_failed_step(steps), hash_algorithm=hash_algorithm)


def verify_recorded_fingerprint(
    raw: Any,
    steps_by_id: Mapping[str, Mapping[str, Any]],
    failed_step_ids: Sequence[str] | None,
    findings: Findings,
    label: str,
) -> None:
    """Check a fingerprint stored in a report against the report's own steps.

    ``failed_step_ids`` is ``None`` when the report's own list was invalid; the
    membership check is skipped then.
    """
    prefix = f"{label} summary.failureFingerprint"
    if not isinstance(raw, Mapping):
        findings.error(f"{prefix} must be an object when provided.")
        return
    step_id = raw.get("stepId")
    for key in ("stepId", "command", "signature", "hashAlgorithm", "hash"):
        if not is_non_empty_string(raw.get(key)):
            findings.error(f"{prefix}.{key} is required.")
    algorithm = raw.get("hashAlgorithm")
    if is_non_empty_string(algorithm) and algorithm != DEFAULT_HASH_ALGORITHM:
        findings.error(
            f"{prefix}.hashAlgorithm must be {DEFAULT_HASH_ALGORITHM}, actual {algorithm}."
        )
    digest = raw.get("hash")
    if is_non_empty_string(digest) and not _HEX_RE.match(digest):
        findings.error(f"{prefix}.hash must be a lowercase hex digest.")
    signature = raw.get("signature")
    if (
        is_non_empty_string(signature)
        and is_non_empty_string(digest)
        and algorithm == DEFAULT_HASH_ALGORITHM
        and hash_signature(signature) != digest
    ):
        findings.error(f"{prefix}.hash does not match signature.")

    if not is_non_empty_string(step_id):
        return
    if failed_step_ids is not None and step_id not in failed_step_ids:
        findings.error(f"{prefix}.stepId must reference a failed step id: {step_id}.")
    step = steps_by_id.get(step_id)
    if step is None:
        findings.error(f"{prefix}.stepId references unknown step: {step_id}.")
        return
    expected = fingerprint_step(step)
    if expected is None:
        return
    if raw.get("command") != expected.command:
        findings.error(
            f"{prefix}.command mismatch: expected {expected.command}, actual {raw.get('command')}."
        )
    if as_integer(raw.get("exitCode")) != expected.exit_code:
        findings.error(
            f"{prefix}.exitCode mismatch: expected {expected.exit_code}, actual {raw.get('exitCode')}."
        )
    if (raw.get("firstOutputLine") or None) != expected.first_output_line:
        findings.error(f"{prefix}.firstOutputLine mismatch with failed step outputTail first line.")
    if (raw.get("normalizedOutputLine") or None) != expected.normalized_output_line:
        findings.error(f"{prefix}.normalizedOutputLine mismatch with normalized first output line.")
    if is_non_empty_string(signature) and signature != expected.signature:
        findings.error(
            f"{prefix}.signature mismatch: expected {expected.signature}, actual {signature}."
        )
