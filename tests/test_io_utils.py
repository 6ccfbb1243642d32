"""Tests for orjson-backed report I/O."""
from __future__ import annotations

from pathlib import Path

from gate_diagnostics.io_utils import dumps_compact, load_json, read_json_report, save_json


def test_save_json_is_pretty_sorted_and_newline_terminated(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "out.json"
    save_json({"b": 1, "a": [1, 2]}, path)
    text = path.read_text()
    assert text.endswith("\n")
    assert text.index('"a"') < text.index('"b"')
    assert load_json(path) == {"a": [1, 2], "b": 1}


def test_dumps_compact_keeps_insertion_order() -> None:
    assert dumps_compact({"z": 1, "a": "x"}) == '{"z":1,"a":"x"}'


def test_read_json_report_missing_file(tmp_path: Path) -> None:
    loaded = read_json_report(tmp_path / "absent.json")
    assert not loaded.exists
    assert not loaded.ok
    assert loaded.error is not None and loaded.error.startswith("file not found")


def test_read_json_report_invalid_json(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json")
    loaded = read_json_report(path)
    assert loaded.exists
    assert not loaded.ok
    assert loaded.error


def test_read_json_report_ok(tmp_path: Path) -> None:
    path = tmp_path / "report.json"
    save_json({"status": "SUCCESS"}, path)
    loaded = read_json_report(path)
    assert loaded.ok
    assert loaded.data == {"status": "SUCCESS"}
