from __future__ import annotations

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_ms(dt: datetime) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and 'Z' suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Stopwatch:
    """
    Elapsed wall time for log lines.

    Usage:
        sw = Stopwatch()
        # work...
        log.info("done", extra={"extra": {"latency_ms": sw.ms()}})
    """

    def __init__(self) -> None:
        self._t0 = time.perf_counter()

    def ms(self) -> int:
        return int(1000.0 * (time.perf_counter() - self._t0))
