"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event


def now_ms() -> int:
    """Wall-clock milliseconds, for event timestamps only."""
    return time.time_ns() // 1_000_000


def monotonic_ns() -> int:
    """Monotonic clock used for every duration in the system."""
    return time.monotonic_ns()


def elapsed_ms(start_ns: int, end_ns: int) -> float:
    """
    Fractional milliseconds between two monotonic_ns() readings.

    Microsecond resolution, never negative.
    """
    return max(0, (end_ns - start_ns) // 1_000) / 1000.0


# -----------------------------------------------------------------------------
# Ack latency
# -----------------------------------------------------------------------------

def emit_ack_latency(
    *,
    msg_id: int,
    latency_ms: float,
    conn_id: str | None = None,
) -> None:
    """Emit one METRIC_ACK_LATENCY event per resolved acknowledgement."""
    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_ACK_LATENCY",
        "metric": "ack_latency",
        "value_ms": latency_ms,
        "msg_id": msg_id,
        "conn_id": conn_id,
    })


# -----------------------------------------------------------------------------
# Safe API: context manager
# -----------------------------------------------------------------------------

@contextmanager
def timed(
    name: str,
    *,
    conn_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("dial", details={"host": host}):
            reader, writer = await asyncio.open_connection(host, port)
    """
    start_ns = monotonic_ns()
    try:
        yield
    finally:
        log_event({
            "ts_ms": now_ms(),
            "event_type": "METRIC_TIMER",
            "metric": name,
            "value_ms": elapsed_ms(start_ns, monotonic_ns()),
            "conn_id": conn_id,
            "details": details or {},
        })
