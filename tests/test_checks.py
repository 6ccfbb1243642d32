"""Tests for shared field readers and numeric helpers."""
from __future__ import annotations

from datetime import UTC, datetime

from gate_diagnostics.checks import (
    Findings,
    as_integer,
    format_number,
    is_number,
    parse_iso_timestamp,
    rates_match,
    read_non_negative_int,
    read_optional_rate,
    read_rate,
    read_string_list,
    to_rate,
    to_single_line,
)


def test_is_number_rejects_bool_and_non_finite() -> None:
    assert is_number(3)
    assert is_number(0.5)
    assert not is_number(True)
    assert not is_number(float("nan"))
    assert not is_number(float("inf"))
    assert not is_number("1")


def test_as_integer_accepts_integral_floats_only() -> None:
    assert as_integer(4.0) == 4
    assert as_integer(4.5) is None
    assert as_integer(False) is None


def test_format_number_drops_integral_fraction() -> None:
    assert format_number(3.0) == "3"
    assert format_number(0.25) == "0.25"
    assert format_number(7) == "7"


def test_readers_record_one_error_per_defect() -> None:
    findings = Findings()
    assert read_non_negative_int({"n": -1}, "n", "totals.n", findings) is None
    assert read_rate({"r": 1.5}, "r", "rates.r", findings) is None
    assert read_optional_rate({}, "r", "gate.r", findings) is None
    assert findings.validation_errors == [
        "totals.n must be a non-negative integer.",
        "rates.r must be a number between 0 and 1.",
    ]


def test_readers_tolerate_missing_container() -> None:
    findings = Findings()
    assert read_non_negative_int(None, "n", "totals.n", findings) is None
    assert len(findings.validation_errors) == 1


def test_read_string_list_defects_return_empty() -> None:
    findings = Findings()
    assert read_string_list([" a ", "b"], "gate.violations", findings) == ["a", "b"]
    assert read_string_list("a", "gate.violations", findings) == []
    assert read_string_list(["a", ""], "gate.violations", findings) == []
    assert findings.validation_errors == [
        "gate.violations must be an array.",
        "gate.violations must contain non-empty strings.",
    ]


def test_parse_iso_timestamp_handles_zulu_and_naive() -> None:
    assert parse_iso_timestamp("2026-01-02T03:04:05Z") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_iso_timestamp("2026-01-02T03:04:05") == datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)
    assert parse_iso_timestamp("not a date") is None
    assert parse_iso_timestamp(None) is None


def test_to_rate_rounds_and_guards_zero_denominator() -> None:
    assert to_rate(1, 3) == 0.333333
    assert to_rate(5, 0) == 0.0


def test_rates_match_uses_tolerance() -> None:
    assert rates_match(0.3333333, 0.333333)
    assert not rates_match(0.34, 0.333333)


def test_to_single_line_collapses_whitespace() -> None:
    assert to_single_line("  a\n\tb   c ") == "a b c"
    assert to_single_line(None) == ""
