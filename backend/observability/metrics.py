"""
Relay metrics.

One metric == one JSONL line through observability.logger. Nothing is
aggregated in-process; dashboards sum the log stream.

Metrics emitted by the relay:
    upstream_connect_latency   ms   start-session -> provider ready
    session_duration           ms   start-session -> purge
    session_chunks_forwarded   count, at session close
    session_estimated_cost     usd, at session close

Durations use monotonic time; ts_ms stays wall-clock for correlation.
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


# timer_id -> (metric_name, start monotonic ns)
_active_timers: dict[str, tuple[str, int]] = {}


def emit_metric(
    name: str,
    value: float,
    *,
    unit: str,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Write a single METRIC event."""
    log_event({
        "ts_ms": int(time.time() * 1000),
        "event_type": "METRIC",
        "metric": name,
        "value": value,
        "unit": unit,
        "session_id": session_id,
        "details": details or {},
    })


# -----------------------------------------------------------------------------
# Timers
# -----------------------------------------------------------------------------

def start_timer(name: str) -> str:
    """
    Start a monotonic timer and return its opaque id.

    Every started timer must end in stop_timer() or discard_timer();
    timed() does this automatically.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a timer and emit its duration in milliseconds.

    Returns the duration, or None for an unknown/already stopped id.
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000
    emit_metric(name, duration_ms, unit="ms", session_id=session_id, details=details)
    return duration_ms


def discard_timer(timer_id: str) -> None:
    """Forget a timer without emitting anything."""
    _active_timers.pop(timer_id, None)


def active_timer_count() -> int:
    return len(_active_timers)


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Time a block; the metric is emitted exactly once, even on error.

        with timed("upstream_connect_latency", session_id=session_id):
            await upstream.connect()
    """
    timer_id = start_timer(name)
    try:
        yield
    finally:
        stop_timer(timer_id, session_id=session_id, details=details)
