"""
Duration metrics.

A measurement is one METRIC_TIMER log event carrying metric, value_ms
and an outcome ("ok" or "error"). Durations come from the monotonic
clock. Nothing is aggregated in-process.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator

from observability.logger import log_event


@dataclass(frozen=True)
class _RunningTimer:
    metric: str
    started_ns: int


_running: dict[str, _RunningTimer] = {}


def start_timer(name: str) -> str:
    """Start measuring `name`; pair with stop_timer() in a finally block."""
    timer_id = uuid.uuid4().hex[:12]
    _running[timer_id] = _RunningTimer(metric=name, started_ns=time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    session_id: str | None = None,
    phase: str | None = None,
    outcome: str = "ok",
    details: dict[str, Any] | None = None,
) -> int | None:
    """Emit the measurement and return its duration, or None for an unknown id."""
    timer = _running.pop(timer_id, None)
    if timer is None:
        return None

    elapsed_ms = (time.monotonic_ns() - timer.started_ns) // 1_000_000
    log_event({
        "event_type": "METRIC_TIMER",
        "metric": timer.metric,
        "value_ms": elapsed_ms,
        "outcome": outcome,
        "session_id": session_id,
        "phase": phase,
        "details": dict(details or {}),
    })
    return elapsed_ms


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Measure the enclosed block, once, whether it returns or raises.

        with timed("negotiation_attempt", session_id=sid, details={"index": 0}):
            transport = await connector(candidate)
    """
    timer_id = start_timer(name)
    outcome = "error"
    try:
        yield
        outcome = "ok"
    finally:
        stop_timer(timer_id, session_id=session_id, phase=phase, outcome=outcome, details=details)
