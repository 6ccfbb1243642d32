"""Shared field readers for report validators.

Every validator walks a decoded JSON record and appends one message per
defect to a ``Findings`` collector. Readers return the validated value or
``None``; a ``None`` return means the field already produced an error and any
cross-field check that depends on it must be skipped.
"""
from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

RATE_TOLERANCE = 1e-6

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(slots=True)
class Findings:
    """Accumulates validation errors and warnings in discovery order."""

    validation_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def error(self, message: str) -> None:
        self.validation_errors.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)

    @property
    def ok(self) -> bool:
        return not self.validation_errors


@dataclass(frozen=True, slots=True)
class ReportValidation:
    """Result of validating a single report record."""

    projection: dict[str, Any]
    validation_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.validation_errors

    @classmethod
    def from_findings(cls, projection: dict[str, Any], findings: Findings) -> ReportValidation:
        return cls(
            projection=projection,
            validation_errors=tuple(findings.validation_errors),
            warnings=tuple(findings.warnings),
        )


def as_record(value: Any) -> Mapping[str, Any] | None:
    return value if isinstance(value, Mapping) else None


def is_number(value: Any) -> bool:
    """True for finite ints and floats; booleans are not numbers here."""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and math.isfinite(value)


def as_integer(value: Any) -> int | None:
    """Return ``value`` as an int when it is integral (``3`` or ``3.0``)."""
    if not is_number(value):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    return int(value)


def is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def format_number(value: Any) -> str:
    """Render numbers for messages: integral floats print without ``.0``."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def read_non_negative_int(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> int | None:
    value = as_integer(container.get(key) if container is not None else None)
    if value is None or value < 0:
        findings.error(f"{label} must be a non-negative integer.")
        return None
    return value


def read_positive_int(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> int | None:
    value = as_integer(container.get(key) if container is not None else None)
    if value is None or value <= 0:
        findings.error(f"{label} must be a positive integer.")
        return None
    return value


def read_non_negative_number(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> float | int | None:
    value = container.get(key) if container is not None else None
    if not is_number(value) or value < 0:
        findings.error(f"{label} must be a non-negative number.")
        return None
    return value


def read_rate(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> float | int | None:
    value = container.get(key) if container is not None else None
    if not is_number(value) or value < 0 or value > 1:
        findings.error(f"{label} must be a number between 0 and 1.")
        return None
    return value


def read_optional_rate(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> float | int | None:
    value = container.get(key) if container is not None else None
    if value is None:
        return None
    if not is_number(value) or value < 0 or value > 1:
        findings.error(f"{label} must be a number between 0 and 1 when provided.")
        return None
    return value


def read_optional_positive_number(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> float | int | None:
    value = container.get(key) if container is not None else None
    if value is None:
        return None
    if not is_number(value) or value <= 0:
        findings.error(f"{label} must be a positive number when provided.")
        return None
    return value


def read_bool(
    container: Mapping[str, Any] | None, key: str, label: str, findings: Findings
) -> bool | None:
    value = container.get(key) if container is not None else None
    if not isinstance(value, bool):
        findings.error(f"{label} must be a boolean.")
        return None
    return value


def read_string_list(value: Any, label: str, findings: Findings) -> list[str]:
    """Validate an array of non-empty strings; defects yield ``[]``."""
    if not isinstance(value, list):
        findings.error(f"{label} must be an array.")
        return []
    items: list[str] = []
    for item in value:
        if not is_non_empty_string(item):
            findings.error(f"{label} must contain non-empty strings.")
            return []
        items.append(item.strip())
    return items


def parse_iso_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string; naive values and a trailing ``Z`` are UTC."""
    if not is_non_empty_string(value):
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def to_rate(value: float | int, denominator: float | int) -> float:
    """Ratio rounded to 6 places; a non-positive denominator gives 0."""
    if not is_number(value) or not is_number(denominator) or denominator <= 0:
        return 0.0
    return round(value / denominator, 6)


def rates_match(actual: float | int, expected: float | int) -> bool:
    return abs(actual - expected) <= RATE_TOLERANCE


def to_single_line(value: Any) -> str:
    """Collapse whitespace runs to single spaces; non-strings become ``""``."""
    if not isinstance(value, str):
        return ""
    return _WHITESPACE_RE.sub(" ", value).strip()
