"""Reason-code classification and remediation guidance for validation failures.

A raw validation error is mapped to a stable reason code by an ordered table
of substring rules; each reason code has a suggested action and a runnable
command. The failure index built from the first error is also serialized into
a bounded single-line snapshot for CI annotations, and a diagnostics block
cross-checks the index bookkeeping.
"""
from __future__ import annotations

from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from gate_diagnostics.checks import to_single_line
from gate_diagnostics.io_utils import dumps_compact

GUIDANCE_VERSION = "1.0"
DEFAULT_REPORT_FILE = "logs/workflow-quality-gate-report.json"
DEFAULT_VALIDATION_SUMMARY_FILE = "logs/workflow-quality-gate-report-validation.json"
DEFAULT_REPORT_SCHEMA_VERSION = "1.0"
DEFAULT_SNAPSHOT_MAX_CHARS = 320

VALIDATE_COMMAND = "python scripts/run_gate_diagnostics.py quality-gate"
REGENERATE_COMMAND = "pnpm workflow:quality:gate --"
REGENERATE_TRAILING_FLAGS = (
    "--require-summary-json-success",
    "--validate-summary-json-schema-version=1.0",
)

SOURCE_NONE = "NONE"
SOURCE_EXPLICIT = "EXPLICIT_FAILURE_REASON_CODE"
SOURCE_CLASSIFIED = "CLASSIFIED_FROM_VALIDATION_ERROR"

NOT_AVAILABLE = "N/A"


@dataclass(frozen=True, slots=True)
class ReasonCodeRule:
    code: str
    needles: tuple[str, ...]

    def matches(self, normalized_message: str) -> bool:
        return any(needle in normalized_message for needle in self.needles)


# First match wins.
REASON_CODE_RULES: tuple[ReasonCodeRule, ...] = (
    ReasonCodeRule("REPORT_SCHEMA_MISMATCH", ("schema version mismatch",)),
    ReasonCodeRule("SUMMARY_JSON_ASSERT_REQUIRED", ("summary.summaryjsonassert is required",)),
    ReasonCodeRule("SUMMARY_JSON_ASSERT_STATUS_MISMATCH", ("summaryjsonassert status mismatch",)),
    ReasonCodeRule(
        "SUMMARY_JSON_ASSERT_REASONCODE_MISMATCH", ("summaryjsonassert reasoncode mismatch",)
    ),
    ReasonCodeRule("REPORT_PATH_MISMATCH", ("report path mismatch",)),
    ReasonCodeRule("ARTIFACT_OPTIONS_PATH_MISMATCH", ("options/artifacts path mismatch",)),
    ReasonCodeRule("FAILED_STEP_IDS_MISMATCH", ("failedstepids",)),
    ReasonCodeRule(
        "SUMMARY_COUNTER_MISMATCH",
        (
            "summary.totalsteps mismatch",
            "summary.successfulsteps mismatch",
            "summary.failedsteps mismatch",
        ),
    ),
    ReasonCodeRule("STATUS_STEP_CONFLICT", ("status success cannot contain failed steps",)),
    ReasonCodeRule("REPORT_READ_ERROR", ("failed to read quality gate report",)),
)
FALLBACK_REASON_CODE = "VALIDATION_ERROR"
REASON_CODES: tuple[str, ...] = tuple(r.code for r in REASON_CODE_RULES) + (FALLBACK_REASON_CODE,)

_REGENERATE_CODES = frozenset(
    {
        "ARTIFACT_OPTIONS_PATH_MISMATCH",
        "SUMMARY_JSON_ASSERT_REQUIRED",
        "SUMMARY_JSON_ASSERT_STATUS_MISMATCH",
        "SUMMARY_JSON_ASSERT_REASONCODE_MISMATCH",
        "SUMMARY_COUNTER_MISMATCH",
        "FAILED_STEP_IDS_MISMATCH",
        "STATUS_STEP_CONFLICT",
    }
)

# Artifact path keys as (flattened projection key, raw artifacts key).
_ARTIFACT_FIELDS = {
    "report": ("artifact_quality_gate_report_file", "qualityGateReportFile"),
    "summary_markdown": ("artifact_summary_markdown_file", "summaryMarkdownFile"),
    "summary_json": ("artifact_summary_json_file", "summaryJsonFile"),
    "smoke_report": ("artifact_smoke_report_file", "smokeReportFile"),
    "perf_report": ("artifact_perf_report_file", "perfReportFile"),
}


@dataclass(frozen=True, slots=True)
class GuidanceRecord:
    reason_code: str | None
    reason_code_source: str
    suggested_action: str
    suggested_command: str
    guidance_version: str = GUIDANCE_VERSION

    def as_dict(self) -> dict[str, Any]:
        return {
            "reason_code": self.reason_code,
            "reason_code_source": self.reason_code_source,
            "guidance_version": self.guidance_version,
            "suggested_action": self.suggested_action,
            "suggested_command": self.suggested_command,
        }


@dataclass(frozen=True, slots=True)
class SnapshotSerialization:
    value: str
    raw_length: int
    truncated: bool
    max_chars: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "raw_length": self.raw_length,
            "truncated": self.truncated,
            "max_chars": self.max_chars,
        }


def classify_validation_error(message: Any) -> str:
    normalized = str(message or "").lower()
    for rule in REASON_CODE_RULES:
        if rule.matches(normalized):
            return rule.code
    return FALLBACK_REASON_CODE


def _non_empty(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def _meaningful(value: Any) -> str | None:
    text = _non_empty(value)
    if text is None or text.upper() == NOT_AVAILABLE:
        return None
    return text


def _input(inputs: Mapping[str, Any] | None, key: str, default: str) -> str:
    return _non_empty((inputs or {}).get(key)) or default


def artifact_path(report_summary: Mapping[str, Any] | None, name: str) -> str | None:
    """Artifact path from the flattened projection field, else ``artifacts``."""
    if not report_summary:
        return None
    flat_key, raw_key = _ARTIFACT_FIELDS[name]
    flattened = _non_empty(report_summary.get(flat_key))
    if flattened:
        return flattened
    artifacts = report_summary.get("artifacts")
    if isinstance(artifacts, Mapping):
        return _non_empty(artifacts.get(raw_key))
    return None


def build_validate_command(
    inputs: Mapping[str, Any] | None = None,
    override: Mapping[str, Any] | None = None,
) -> str:
    report_file = _input(override, "report_file", _input(inputs, "report_file", DEFAULT_REPORT_FILE))
    summary_file = _input(
        override,
        "summary_json_file",
        _input(inputs, "summary_json_file", DEFAULT_VALIDATION_SUMMARY_FILE),
    )
    schema_version = _input(
        override,
        "expected_report_schema_version",
        _input(inputs, "expected_report_schema_version", DEFAULT_REPORT_SCHEMA_VERSION),
    )
    return (
        f"{VALIDATE_COMMAND} --report-file={report_file} --summary-json-file={summary_file} "
        f"--expected-report-schema-version={schema_version} --require-summary-json-assert"
    )


def build_regenerate_command(report_summary: Mapping[str, Any] | None) -> str:
    parts = [REGENERATE_COMMAND]
    for name, flag in (
        ("summary_markdown", "--summary-markdown-file"),
        ("summary_json", "--summary-json-file"),
        ("report", "--report-file"),
        ("smoke_report", "--smoke-report-file"),
        ("perf_report", "--perf-report-file"),
    ):
        path = artifact_path(report_summary, name)
        if path:
            parts.append(f"{flag}={path}")
    parts.extend(REGENERATE_TRAILING_FLAGS)
    return " ".join(parts)


def suggested_action(reason_code: str | None, inputs: Mapping[str, Any] | None = None) -> str:
    report_file = _input(inputs, "report_file", DEFAULT_REPORT_FILE)
    schema_version = _input(inputs, "expected_report_schema_version", DEFAULT_REPORT_SCHEMA_VERSION)
    if reason_code == "REPORT_SCHEMA_MISMATCH":
        return (
            f"align --expected-report-schema-version={schema_version} with quality report schema "
            "and rerun validation"
        )
    if reason_code in (
        "SUMMARY_JSON_ASSERT_REQUIRED",
        "SUMMARY_JSON_ASSERT_STATUS_MISMATCH",
        "SUMMARY_JSON_ASSERT_REASONCODE_MISMATCH",
    ):
        return (
            f"rerun {REGENERATE_COMMAND} --require-summary-json-success, "
            "then rerun report validation"
        )
    if reason_code == "REPORT_PATH_MISMATCH":
        return (
            "rerun the quality gate and validate using the same --report-file as "
            "artifacts.qualityGateReportFile"
        )
    if reason_code == "ARTIFACT_OPTIONS_PATH_MISMATCH":
        return (
            "ensure quality gate report options.* and artifacts.* paths are aligned, "
            "then rerun the quality gate"
        )
    if reason_code in ("FAILED_STEP_IDS_MISMATCH", "SUMMARY_COUNTER_MISMATCH", "STATUS_STEP_CONFLICT"):
        return "fix the quality gate runner report summary contract and rerun the quality gate"
    if reason_code == "REPORT_READ_ERROR":
        return f"verify report file exists/readable: {report_file}"
    return build_validate_command(inputs)


def suggested_command(
    reason_code: str | None,
    inputs: Mapping[str, Any] | None = None,
    report_summary: Mapping[str, Any] | None = None,
) -> str:
    if reason_code == "REPORT_PATH_MISMATCH":
        report_file = artifact_path(report_summary, "report") or (inputs or {}).get("report_file")
        return build_validate_command(inputs, {"report_file": report_file})
    if reason_code in _REGENERATE_CODES:
        return build_regenerate_command(report_summary)
    if reason_code == "REPORT_READ_ERROR":
        return f"ls -l {_input(inputs, 'report_file', DEFAULT_REPORT_FILE)}"
    return build_validate_command(inputs)


def resolve_guidance(
    *,
    failure_reason_code: Any = None,
    first_validation_error: Any = None,
    inputs: Mapping[str, Any] | None = None,
    report_summary: Mapping[str, Any] | None = None,
) -> GuidanceRecord:
    """Explicit reason codes win over classification of the first error."""
    explicit = _meaningful(failure_reason_code)
    first_error = _meaningful(first_validation_error)
    if explicit is None and first_error is None:
        return GuidanceRecord(
            reason_code=None,
            reason_code_source=SOURCE_NONE,
            suggested_action=NOT_AVAILABLE,
            suggested_command=NOT_AVAILABLE,
        )
    if explicit is not None:
        code, source = explicit.upper(), SOURCE_EXPLICIT
    else:
        code, source = classify_validation_error(first_error), SOURCE_CLASSIFIED
    return GuidanceRecord(
        reason_code=code,
        reason_code_source=source,
        suggested_action=suggested_action(code, inputs),
        suggested_command=suggested_command(code, inputs, report_summary),
    )


def build_failure_index(
    validation_errors: Sequence[str],
    inputs: Mapping[str, Any] | None = None,
    report_summary: Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    if not validation_errors:
        return None
    message = str(validation_errors[0] or "").strip()
    guidance = resolve_guidance(
        first_validation_error=message, inputs=inputs, report_summary=report_summary
    )
    return {
        "reason_code": guidance.reason_code,
        "reason_code_source": guidance.reason_code_source,
        "guidance_version": guidance.guidance_version,
        "message": message or None,
        "suggested_action": guidance.suggested_action,
        "suggested_command": guidance.suggested_command,
    }


def _optional_line(value: Any) -> str | None:
    line = to_single_line(value)
    if not line or line.upper() == NOT_AVAILABLE:
        return None
    return line


def build_snapshot_payload(failure_index: Mapping[str, Any] | None) -> dict[str, Any] | None:
    index = failure_index or {}
    payload = {
        "reason_code": _non_empty(index.get("reason_code")),
        "reason_code_source": _non_empty(index.get("reason_code_source")),
        "guidance_version": _non_empty(index.get("guidance_version")),
        "message": _optional_line(index.get("message")),
        "suggested_action": _optional_line(index.get("suggested_action")),
        "suggested_command": _optional_line(index.get("suggested_command")),
    }
    if not any(
        payload[key]
        for key in ("reason_code", "message", "suggested_action", "suggested_command")
    ):
        return None
    return payload


def serialize_snapshot(
    payload: Mapping[str, Any] | None, max_chars: int = DEFAULT_SNAPSHOT_MAX_CHARS
) -> SnapshotSerialization:
    """Compact single-line JSON, backticks replaced, truncated with ``...``."""
    if not isinstance(max_chars, int) or max_chars <= 0:
        max_chars = DEFAULT_SNAPSHOT_MAX_CHARS
    if not payload:
        return SnapshotSerialization(NOT_AVAILABLE, 0, False, max_chars)
    compact = dumps_compact(dict(payload)).replace("`", "'")
    raw_length = len(compact)
    if raw_length <= max_chars:
        return SnapshotSerialization(compact, raw_length, False, max_chars)
    return SnapshotSerialization(
        compact[: max(0, max_chars - 3)] + "...", raw_length, True, max_chars
    )


def reason_code_counts(validation_errors: Iterable[str]) -> dict[str, int]:
    return dict(Counter(classify_validation_error(e) for e in validation_errors))


def format_count_map(counts: Any) -> str:
    """``CODE=n, ...`` ordered by count descending, or ``N/A``."""
    if not isinstance(counts, Mapping):
        return NOT_AVAILABLE
    entries = [
        (key, count)
        for key, count in counts.items()
        if isinstance(count, int | float) and not isinstance(count, bool) and count > 0
    ]
    if not entries:
        return NOT_AVAILABLE
    entries.sort(key=lambda item: item[1], reverse=True)
    return ", ".join(f"{key}={count}" for key, count in entries)


def _sum_counts(counts: Any) -> int:
    if not isinstance(counts, Mapping):
        return 0
    return sum(
        v for v in counts.values() if isinstance(v, int | float) and not isinstance(v, bool)
    )


def check_diagnostics_consistency(
    diagnostics: Mapping[str, Any],
    *,
    validation_errors: Sequence[str],
    failure_index: Mapping[str, Any] | None,
    expected_max_chars: int = DEFAULT_SNAPSHOT_MAX_CHARS,
) -> dict[str, Any]:
    """Cross-check a diagnostics block against the errors it was built from."""
    reasons: list[str] = []
    code_total = diagnostics.get("reason_code_count_total")
    source_total = diagnostics.get("reason_code_source_count_total")
    snapshot_total = diagnostics.get("snapshot_total_count")
    truncated_total = diagnostics.get("snapshot_truncated_count")
    snapshot = diagnostics.get("snapshot") or {}

    expected_code_total = len(validation_errors)
    map_total = _sum_counts(diagnostics.get("reason_code_counts"))
    source_map_total = _sum_counts(diagnostics.get("reason_code_source_counts"))
    expected_snapshot_total = 1 if failure_index else 0
    expected_truncated = 1 if snapshot.get("truncated") else 0

    if code_total != expected_code_total:
        reasons.append(
            f"reason_code_count_total mismatch: expected {expected_code_total}, actual {code_total}."
        )
    if code_total != map_total:
        reasons.append(
            "reason_code_count_total vs reason_code_counts mismatch: "
            f"total={code_total}, map_total={map_total}."
        )
    if source_total != 1:
        reasons.append(f"reason_code_source_count_total mismatch: expected 1, actual {source_total}.")
    if source_total != source_map_total:
        reasons.append(
            "reason_code_source_count_total vs reason_code_source_counts mismatch: "
            f"total={source_total}, map_total={source_map_total}."
        )
    if snapshot_total != expected_snapshot_total:
        reasons.append(
            f"snapshot_total_count mismatch: expected {expected_snapshot_total}, "
            f"actual {snapshot_total}."
        )
    if truncated_total != expected_truncated:
        reasons.append(
            f"snapshot_truncated_count mismatch: expected {expected_truncated}, "
            f"actual {truncated_total}."
        )
    if (
        isinstance(truncated_total, int)
        and isinstance(snapshot_total, int)
        and truncated_total > snapshot_total
    ):
        reasons.append(
            "snapshot_truncated_count cannot be greater than snapshot_total_count: "
            f"truncated={truncated_total}, total={snapshot_total}."
        )
    if snapshot.get("max_chars") != expected_max_chars:
        reasons.append(
            f"snapshot.max_chars mismatch: expected {expected_max_chars}, "
            f"actual {snapshot.get('max_chars')}."
        )
    raw_length = snapshot.get("raw_length")
    if not isinstance(raw_length, int) or isinstance(raw_length, bool) or raw_length < 0:
        reasons.append(f"snapshot.raw_length invalid: {raw_length}.")
    if snapshot_total == 0 and raw_length != 0:
        reasons.append(
            "snapshot.raw_length mismatch when snapshot_total_count=0: "
            f"expected 0, actual {raw_length}."
        )
    if snapshot_total == 0 and snapshot.get("truncated"):
        reasons.append("snapshot.truncated cannot be true when snapshot_total_count=0.")

    return {
        "status": "PASS" if not reasons else "FAILED",
        "mismatch_count": len(reasons),
        "mismatch_reasons": reasons,
    }


def build_failure_index_diagnostics(
    validation_errors: Sequence[str],
    failure_index: Mapping[str, Any] | None,
    *,
    max_chars: int = DEFAULT_SNAPSHOT_MAX_CHARS,
) -> dict[str, Any]:
    source = (failure_index or {}).get("reason_code_source")
    if not isinstance(source, str):
        source = SOURCE_NONE
    payload = build_snapshot_payload(failure_index)
    snapshot = serialize_snapshot(payload, max_chars)
    diagnostics: dict[str, Any] = {
        "reason_code_count_total": len(validation_errors),
        "reason_code_counts": reason_code_counts(validation_errors),
        "reason_code_source_count_total": 1,
        "reason_code_source_counts": {source: 1},
        "snapshot_total_count": 1 if payload else 0,
        "snapshot_truncated_count": 1 if snapshot.truncated else 0,
        "snapshot": {
            "max_chars": snapshot.max_chars,
            "raw_length": snapshot.raw_length,
            "truncated": snapshot.truncated,
        },
    }
    diagnostics["consistency"] = check_diagnostics_consistency(
        diagnostics,
        validation_errors=validation_errors,
        failure_index=failure_index,
        expected_max_chars=max_chars,
    )
    return diagnostics
