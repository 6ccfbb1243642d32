"""Quick-locate resolution: which command should an operator rerun first.

Each report kind declares a priority chain of command sources. Candidates are
scanned in chain order and the first one that supplies both a command and a
first-failed-output line wins; when none does, the resolution falls back to
manual inspection (source ``N/A``).
"""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gate_diagnostics.checks import Findings, is_non_empty_string, to_single_line
from gate_diagnostics.fingerprint import (
    build_step_command,
    extract_first_output_line,
    fingerprint_step,
    first_failed_step,
    step_output_tail,
)

SOURCE_VALIDATION_FAILURE_INDEX = "VALIDATION_FAILURE_INDEX"
SOURCE_FAILURE_FINGERPRINT = "FAILURE_FINGERPRINT"
SOURCE_FAILED_STEP = "FAILED_STEP"
SOURCE_STEP_OVERRIDE = "STEP_OVERRIDE"
SOURCE_NOT_AVAILABLE = "N/A"

FINGERPRINT_FROM_SUMMARY = "SUMMARY"
FINGERPRINT_COMPUTED = "COMPUTED"


@dataclass(frozen=True, slots=True)
class QuickLocateChain:
    name: str
    priority: tuple[str, ...]
    routes: Mapping[str, str]

    def route_for(self, source: str) -> str:
        return self.routes.get(source, self.routes[SOURCE_NOT_AVAILABLE])

    @property
    def known_routes(self) -> frozenset[str]:
        return frozenset(self.routes.values())


QUALITY_GATE_CHAIN = QuickLocateChain(
    name="quality-gate",
    priority=(
        SOURCE_VALIDATION_FAILURE_INDEX,
        SOURCE_FAILURE_FINGERPRINT,
        SOURCE_FAILED_STEP,
        SOURCE_NOT_AVAILABLE,
    ),
    routes={
        SOURCE_VALIDATION_FAILURE_INDEX: "RUN_QUALITY_VALIDATION_SUGGESTED_COMMAND",
        SOURCE_FAILURE_FINGERPRINT: "RUN_QUALITY_FINGERPRINT_COMMAND",
        SOURCE_FAILED_STEP: "RUN_QUALITY_FAILED_STEP_COMMAND",
        SOURCE_NOT_AVAILABLE: "INSPECT_QUALITY_REPORT_STEPS_AND_FAILURE_INDEX",
    },
)

SELF_CHECK_SUITE_CHAIN = QuickLocateChain(
    name="self-check-suite",
    priority=(SOURCE_STEP_OVERRIDE, SOURCE_FAILED_STEP, SOURCE_NOT_AVAILABLE),
    routes={
        SOURCE_STEP_OVERRIDE: "RERUN_QUICK_LOCATE_COMMAND",
        SOURCE_FAILED_STEP: "RERUN_FAILED_STEP_COMMAND",
        SOURCE_NOT_AVAILABLE: "INSPECT_SELF_CHECK_REPORT_STEPS",
    },
)

SELF_CHECK_SUMMARY_CHAIN = QuickLocateChain(
    name="self-check-summary",
    priority=(SOURCE_FAILURE_FINGERPRINT, SOURCE_FAILED_STEP, SOURCE_NOT_AVAILABLE),
    routes={
        SOURCE_FAILURE_FINGERPRINT: "RUN_SELF_CHECK_FINGERPRINT_COMMAND",
        SOURCE_FAILED_STEP: "RUN_SELF_CHECK_FAILED_STEP_COMMAND",
        SOURCE_NOT_AVAILABLE: "INSPECT_SELF_CHECK_REPORT_STEPS",
    },
)


@dataclass(frozen=True, slots=True)
class QuickLocateCandidate:
    source: str
    command: str | None = None
    first_failed_output: str | None = None

    def has_usable_command(self) -> bool:
        return is_non_empty_string(self.command) and is_non_empty_string(self.first_failed_output)


@dataclass(frozen=True, slots=True)
class QuickLocateResolution:
    priority: tuple[str, ...]
    source: str
    first_fix_route: str
    command: str | None
    first_failed_output: str | None
    details: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "priority": list(self.priority),
            "source": self.source,
            "first_fix_route": self.first_fix_route,
            "command": self.command,
            "first_failed_output": self.first_failed_output,
            **self.details,
        }


def resolve_quick_locate(
    chain: QuickLocateChain,
    candidates: Iterable[QuickLocateCandidate],
    *,
    details: Mapping[str, Any] | None = None,
) -> QuickLocateResolution:
    by_source: dict[str, QuickLocateCandidate] = {}
    for candidate in candidates:
        by_source.setdefault(candidate.source, candidate)
    for source in chain.priority:
        candidate = by_source.get(source)
        if source == SOURCE_NOT_AVAILABLE or candidate is None:
            continue
        if candidate.has_usable_command():
            return QuickLocateResolution(
                priority=chain.priority,
                source=source,
                first_fix_route=chain.route_for(source),
                command=to_single_line(candidate.command),
                first_failed_output=to_single_line(candidate.first_failed_output),
                details=dict(details or {}),
            )
    output = next(
        (c.first_failed_output for c in by_source.values() if is_non_empty_string(c.first_failed_output)),
        None,
    )
    return QuickLocateResolution(
        priority=chain.priority,
        source=SOURCE_NOT_AVAILABLE,
        first_fix_route=chain.route_for(SOURCE_NOT_AVAILABLE),
        command=None,
        first_failed_output=to_single_line(output) if output else None,
        details=dict(details or {}),
    )


def _find_step(steps: Sequence[Any], step_id: Any) -> Mapping[str, Any] | None:
    if not is_non_empty_string(step_id):
        return None
    for step in steps:
        if isinstance(step, Mapping) and step.get("id") == step_id:
            return step
    return None


def _first_failed(report: Mapping[str, Any]) -> Mapping[str, Any] | None:
    steps = report.get("steps") if isinstance(report.get("steps"), list) else []
    summary = report.get("summary") if isinstance(report.get("summary"), Mapping) else {}
    failed_ids = summary.get("failedStepIds") if isinstance(summary.get("failedStepIds"), list) else []
    if failed_ids:
        step = _find_step(steps, failed_ids[0])
        if step is not None:
            return step
    return first_failed_step(steps)


def _resolve_fingerprint(
    report: Mapping[str, Any], step: Mapping[str, Any] | None
) -> tuple[dict[str, Any] | None, str]:
    """Fingerprint recorded in the summary, else computed from the failed step."""
    summary = report.get("summary") if isinstance(report.get("summary"), Mapping) else {}
    recorded = summary.get("failureFingerprint")
    if isinstance(recorded, Mapping):
        return {
            "step_id": recorded.get("stepId"),
            "command": recorded.get("command"),
            "first_output_line": recorded.get("firstOutputLine"),
            "normalized_output_line": recorded.get("normalizedOutputLine"),
            "hash": recorded.get("hash"),
        }, FINGERPRINT_FROM_SUMMARY
    computed = fingerprint_step(step)
    if computed is None:
        return None, SOURCE_NOT_AVAILABLE
    return computed.as_dict(), FINGERPRINT_COMPUTED


def _first_output(fingerprint: Mapping[str, Any] | None, step: Mapping[str, Any] | None) -> str | None:
    if fingerprint:
        for key in ("normalized_output_line", "first_output_line"):
            if is_non_empty_string(fingerprint.get(key)):
                return fingerprint[key]
    if step is not None:
        return extract_first_output_line(step_output_tail(step))
    return None


def _fingerprint_details(fingerprint: Mapping[str, Any] | None, source: str) -> dict[str, Any]:
    return {
        "failure_fingerprint_source": source,
        "failure_fingerprint_step": (fingerprint or {}).get("step_id"),
        "failure_fingerprint_hash": (fingerprint or {}).get("hash"),
    }


def resolve_quality_gate_quick_locate(
    report: Any, failure_index: Mapping[str, Any] | None
) -> QuickLocateResolution:
    """VALIDATION_FAILURE_INDEX > FAILURE_FINGERPRINT > FAILED_STEP > N/A."""
    report = report if isinstance(report, Mapping) else {}
    step = _first_failed(report)
    fingerprint, fingerprint_source = _resolve_fingerprint(report, step)
    output = _first_output(fingerprint, step)
    index = failure_index or {}
    index_command = index.get("suggested_command")
    if index_command == "N/A":
        index_command = None
    candidates = [
        QuickLocateCandidate(
            SOURCE_VALIDATION_FAILURE_INDEX, index_command, output or index.get("message")
        ),
        QuickLocateCandidate(SOURCE_FAILURE_FINGERPRINT, (fingerprint or {}).get("command"), output),
        QuickLocateCandidate(
            SOURCE_FAILED_STEP, build_step_command(step) if step is not None else None, output
        ),
    ]
    return resolve_quick_locate(
        QUALITY_GATE_CHAIN, candidates, details=_fingerprint_details(fingerprint, fingerprint_source)
    )


def resolve_self_check_summary_quick_locate(report: Any) -> QuickLocateResolution:
    """FAILURE_FINGERPRINT > FAILED_STEP > N/A over a self-check suite report."""
    report = report if isinstance(report, Mapping) else {}
    step = _first_failed(report)
    fingerprint, fingerprint_source = _resolve_fingerprint(report, step)
    output = _first_output(fingerprint, step)
    candidates = [
        QuickLocateCandidate(SOURCE_FAILURE_FINGERPRINT, (fingerprint or {}).get("command"), output),
        QuickLocateCandidate(
            SOURCE_FAILED_STEP, build_step_command(step) if step is not None else None, output
        ),
    ]
    return resolve_quick_locate(
        SELF_CHECK_SUMMARY_CHAIN,
        candidates,
        details=_fingerprint_details(fingerprint, fingerprint_source),
    )


def resolve_self_check_suite_quick_locate(
    failed_step: Mapping[str, Any] | None,
    step_override_commands: Mapping[str, str],
    *,
    overrides_disabled: bool = False,
) -> QuickLocateResolution:
    """STEP_OVERRIDE > FAILED_STEP > N/A for the first failed suite step."""
    if failed_step is None:
        return resolve_quick_locate(SELF_CHECK_SUITE_CHAIN, [])
    output = extract_first_output_line(step_output_tail(failed_step))
    override = None if overrides_disabled else step_override_commands.get(failed_step.get("id"))
    candidates = [
        QuickLocateCandidate(SOURCE_STEP_OVERRIDE, override, output),
        QuickLocateCandidate(SOURCE_FAILED_STEP, build_step_command(failed_step), output),
    ]
    return resolve_quick_locate(SELF_CHECK_SUITE_CHAIN, candidates)


def check_declared_quick_locate(
    summary: Mapping[str, Any],
    chain: QuickLocateChain,
    computed: QuickLocateResolution,
    findings: Findings,
    label: str,
) -> None:
    """Compare the quick-locate fields a report declares with a fresh resolution."""
    prefix = f"{label} summary"
    declared_priority = summary.get("quickLocateCommandSourcePriority")
    if not isinstance(declared_priority, list) or not declared_priority:
        findings.error(f"{prefix}.quickLocateCommandSourcePriority must be a non-empty array.")
    elif tuple(declared_priority) != chain.priority:
        findings.error(
            f"{prefix}.quickLocateCommandSourcePriority mismatch: expected "
            f"{' > '.join(chain.priority)}, actual {' > '.join(map(str, declared_priority))}."
        )

    source = summary.get("quickLocateCommandSource")
    route = summary.get("quickLocateFirstFixRoute")
    source_known = isinstance(source, str) and source in chain.priority
    route_known = isinstance(route, str) and route in chain.known_routes
    if not source_known:
        findings.error(f"{prefix}.quickLocateCommandSource is invalid: {source}.")
    if not route_known:
        findings.error(f"{prefix}.quickLocateFirstFixRoute is invalid: {route}.")
    if source_known and route_known and route != chain.route_for(source):
        findings.error(
            f"{prefix}.quickLocateFirstFixRoute does not match source {source}: "
            f"expected {chain.route_for(source)}, actual {route}."
        )
    if route_known and route != computed.first_fix_route:
        findings.error(
            f"{prefix}.quickLocateFirstFixRoute mismatch: declared {route}, "
            f"computed {computed.first_fix_route}."
        )
    if source_known and source != computed.source:
        findings.error(
            f"{prefix}.quickLocateCommandSource mismatch: declared {source}, "
            f"computed {computed.source}."
        )

    declared_command = to_single_line(summary.get("quickLocateCommand")) or None
    if declared_command != computed.command:
        findings.error(
            f"{prefix}.quickLocateCommand mismatch: expected {computed.command or 'N/A'}, "
            f"actual {declared_command or 'N/A'}."
        )
    declared_output = to_single_line(summary.get("quickLocateFirstFailedOutput")) or None
    if declared_output != computed.first_failed_output:
        findings.error(
            f"{prefix}.quickLocateFirstFailedOutput mismatch with failed step outputTail first line: "
            f"expected {computed.first_failed_output or 'N/A'}, actual {declared_output or 'N/A'}."
        )


def format_quick_locate_lines(resolution: QuickLocateResolution) -> list[str]:
    """Console lines describing where to start fixing a failed run."""
    lines = [
        f"quick locate: command source priority: {' > '.join(resolution.priority)}",
        f"quick locate: command source: {resolution.source}",
        f"quick locate: first fix route: {resolution.first_fix_route}",
    ]
    if resolution.command:
        lines.append(f"quick locate: rerun {resolution.command}")
    if resolution.first_failed_output:
        lines.append(f"quick locate: first failed output: {resolution.first_failed_output}")
    fingerprint_hash = resolution.details.get("failure_fingerprint_hash")
    if is_non_empty_string(fingerprint_hash):
        lines.append(f"quick locate: failure fingerprint hash: {fingerprint_hash}")
    return lines
