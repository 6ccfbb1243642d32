"""I/O utilities for JSON report files.

Provides orjson-backed JSON load/save plus a non-raising report reader used by
the hosting script: every report is loaded into a ``LoadedReport`` so that a
missing or unreadable file becomes a recorded outcome instead of an exception.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    opts = orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS if pretty else orjson.OPT_SORT_KEYS
    path.write_bytes(orjson.dumps(obj, option=opts) + b"\n")


def dumps_compact(obj: Any) -> str:
    """Single-line JSON in insertion order."""
    return orjson.dumps(obj).decode("utf-8")


@dataclass(frozen=True, slots=True)
class LoadedReport:
    """Outcome of reading one report file."""

    path: str
    exists: bool
    data: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exists and self.error is None


def read_json_report(path: Path | str) -> LoadedReport:
    """Read a JSON report, recording absence or decode failures."""
    p = Path(path)
    if not p.exists():
        return LoadedReport(path=str(p), exists=False, error=f"file not found: {p}")
    try:
        data = load_json(p)
    except (OSError, orjson.JSONDecodeError) as exc:
        return LoadedReport(path=str(p), exists=True, error=str(exc))
    return LoadedReport(path=str(p), exists=True, data=data)
