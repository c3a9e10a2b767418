"""
Structured JSONL logging for the server, the console client and the tools.

One JSON object per line on stdout, written immediately. Records get a
ts_ms field when the caller leaves it out. A record that cannot be
serialized is replaced by a LOGGER_SERIALIZATION_ERROR record, so
log_event never raises into the audio or network paths.
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Callable, Mapping


def _write_stdout(line: str) -> None:
    sys.stdout.write(f"{line}\n")
    sys.stdout.flush()


# Sink for finished lines; tests swap it for list.append
_print: Callable[[str], None] = _write_stdout

_enabled: bool = True


def configure(*, enabled: bool) -> None:
    """Switch logging on or off (entry points pass AppConfig.enable_json_logs)."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def _dumps(record: Mapping[str, Any]) -> str:
    return json.dumps(record, ensure_ascii=False, separators=(",", ":"))


def log_event(event: Mapping[str, Any]) -> None:
    """
    Emit one event.

    `event` must carry event_type; the caller's mapping is never mutated.
    """
    if not _enabled:
        return

    record = {**event}
    if "ts_ms" not in record:
        record["ts_ms"] = now_ms()

    try:
        line = _dumps(record)
    except (TypeError, ValueError) as exc:
        line = _dumps({
            "ts_ms": record["ts_ms"],
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(exc),
            "original_event_repr": repr(event),
        })

    _print(line)
