"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

Every event may carry a "level" (debug/info/warning/error, default info).
Events below the configured minimum level are dropped.
"""

from __future__ import annotations

import json
import sys
from typing import Any, Mapping, Callable


LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
}

DEFAULT_LEVEL = "info"


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = LEVELS["debug"]
_json_lines: bool = True


def configure(*, level: str = "DEBUG", json_lines: bool = True) -> None:
    """
    Set the process-wide minimum level and output format.

    Called once at startup from AppConfig. Unknown level names fall
    back to debug so nothing is silently lost.
    """
    global _min_level, _json_lines  # pylint: disable=global-statement
    _min_level = LEVELS.get(level.lower(), LEVELS["debug"])
    _json_lines = json_lines


def _format_kv(event: Mapping[str, Any]) -> str:
    return " ".join(
        f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
        for key, value in event.items()
    )


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single event line to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, session_id, state, etc.

    This function:
    - Serializes to JSON (or key=value when JSON logs are disabled)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    level = str(event.get("level", DEFAULT_LEVEL)).lower()
    if LEVELS.get(level, LEVELS[DEFAULT_LEVEL]) < _min_level:
        return

    try:
        if _json_lines:
            line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
        else:
            line = _format_kv(event)
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "level": "error",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log_warning(event_type: str, **fields: Any) -> None:
    """Shorthand for warning-level events raised outside the reducer."""
    log_event({"event_type": event_type, "level": "warning", **fields})
