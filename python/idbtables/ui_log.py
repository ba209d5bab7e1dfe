"""
ui_log.py - shared logging sink for browser and non-browser runs.

Operations emit structured log entries through this module instead of writing
straight to the console. An application can register custom entry/clear
sinks to render entries itself (e.g. into a page or a test report).
"""

from __future__ import annotations

import datetime
import os
from typing import Any, Callable, Dict, Iterable, Optional

# Browser console bridge when running under Pyodide.
try:
    from js import console
except ImportError:  # pragma: no cover - non-browser usage
    console = None


LogEntry = Dict[str, Any]
EntrySink = Callable[[LogEntry], None]
ClearSink = Callable[[], None]

LEVEL_ENV = "IDBTABLES_LOG_LEVEL"

_LEVELS = {"debug": 0, "info": 1, "success": 1, "warn": 2, "fail": 3}
_DEFAULT_LEVEL = "warn"
_entry_sink: Optional[EntrySink] = None
_clear_sink: Optional[ClearSink] = None


def _now() -> str:
    return datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]


def _normalize_level(level: str) -> str:
    return level if level in _LEVELS else "info"


def _normalize_entry(entry: LogEntry) -> LogEntry:
    return {
        "time": str(entry.get("time") or _now()),
        "level": _normalize_level(str(entry.get("level") or "info")),
        "msg": str(entry.get("msg") or ""),
        "op": entry.get("op"),
    }


def threshold() -> str:
    """Minimum level written by the default sink (from IDBTABLES_LOG_LEVEL)."""
    level = os.environ.get(LEVEL_ENV, _DEFAULT_LEVEL).strip().lower()
    return level if level in _LEVELS else _DEFAULT_LEVEL


def set_sinks(
    entry_sink: Optional[EntrySink] = None, clear_sink: Optional[ClearSink] = None
) -> None:
    """Register sinks for app-level rendering. Sinks receive every level."""
    global _entry_sink, _clear_sink
    _entry_sink = entry_sink
    _clear_sink = clear_sink


def clear_sinks() -> None:
    """Remove registered sinks and fall back to the default output."""
    global _entry_sink, _clear_sink
    _entry_sink = None
    _clear_sink = None


def emit(
    msg: Any,
    level: str = "info",
    *,
    op: Optional[str] = None,
    time: Optional[str] = None,
) -> None:
    entry = _normalize_entry({"time": time, "level": level, "msg": msg, "op": op})
    if _entry_sink is not None:
        _entry_sink(entry)
        return
    _default_emit(entry)


def emit_batch(entries: Iterable[LogEntry]) -> None:
    for entry in entries:
        normalized = _normalize_entry(entry)
        if _entry_sink is not None:
            _entry_sink(normalized)
        else:
            _default_emit(normalized)


def clear() -> None:
    if _clear_sink is not None:
        _clear_sink()


def _default_emit(entry: LogEntry) -> None:
    """Write to the browser console, or stdout outside the browser."""
    if _LEVELS[entry["level"]] < _LEVELS[threshold()]:
        return
    prefix = f"[{entry['time']}]"
    if entry["op"]:
        prefix += f" {entry['op']}:"
    line = f"{prefix} {entry['msg']}"
    if console is None:
        print(line)
        return
    if entry["level"] == "fail":
        console.error(line)
    elif entry["level"] == "warn":
        console.warn(line)
    else:
        console.log(line)
