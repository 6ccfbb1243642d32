"""Validation summary records written by every diagnostics command."""
from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

SUMMARY_SCHEMA_VERSION = "1.0"

STATUS_SUCCESS = "SUCCESS"
STATUS_FAILED = "FAILED"
STATUS_SKIPPED = "SKIPPED"
STATUS_PARTIAL = "PARTIAL"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True, slots=True)
class ValidationSummary:
    """Immutable outcome of one validation run.

    ``extras`` carries command-specific sections (guidance, failure index,
    trend deltas, quick-locate resolution) rendered at the top level.
    """

    status: str
    inputs: dict[str, Any]
    report: dict[str, Any] | None
    validation_errors: tuple[str, ...]
    warnings: tuple[str, ...]
    generated_at: str
    schema_version: str = SUMMARY_SCHEMA_VERSION
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.status == STATUS_FAILED

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schema_version": self.schema_version,
            "generated_at": self.generated_at,
            "status": self.status,
            "inputs": dict(self.inputs),
            "report": self.report,
            "warning_count": len(self.warnings),
            "warnings": list(self.warnings),
            "validation_error_count": len(self.validation_errors),
            "validation_errors": list(self.validation_errors),
        }
        for key, value in self.extras.items():
            payload.setdefault(key, value)
        return payload


def build_validation_summary(
    *,
    inputs: Mapping[str, Any],
    report: dict[str, Any] | None,
    validation_errors: Iterable[str],
    warnings: Iterable[str],
    status: str | None = None,
    generated_at: str | None = None,
    extras: Mapping[str, Any] | None = None,
) -> ValidationSummary:
    """Assemble a summary; status defaults to SUCCESS iff there are no errors."""
    errors = tuple(validation_errors)
    if status is None:
        status = STATUS_FAILED if errors else STATUS_SUCCESS
    return ValidationSummary(
        status=status,
        inputs=dict(inputs),
        report=report,
        validation_errors=errors,
        warnings=tuple(warnings),
        generated_at=generated_at or utc_now_iso(),
        extras=dict(extras or {}),
    )
