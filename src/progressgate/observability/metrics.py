"""In-process metrics for ProgressGate."""

import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator


@dataclass
class Timing:
    """Running summary of observed durations in milliseconds."""

    count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)

    def snapshot(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "avg_ms": self.total_ms / self.count if self.count else 0.0,
            "max_ms": self.max_ms,
        }


class MetricsRegistry:
    """
    Counters, gauges and timings keyed by dotted name.

    Everything runs on one event loop, so updates need no locking.
    """

    def __init__(self) -> None:
        self.counters: dict[str, float] = {}
        self.gauges: dict[str, float] = {}
        self.timings: dict[str, Timing] = {}

    def inc_counter(self, name: str, amount: float = 1.0) -> None:
        self.counters[name] = self.counters.get(name, 0.0) + amount

    def set_gauge(self, name: str, value: float) -> None:
        self.gauges[name] = value

    def observe(self, name: str, duration_ms: float) -> None:
        self.timings.setdefault(name, Timing()).add(duration_ms)

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        """Record the wall time of the wrapped block under ``name``."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.observe(name, (time.perf_counter() - start) * 1000.0)

    def counter(self, name: str) -> float:
        return self.counters.get(name, 0.0)

    def snapshot(self) -> dict[str, Any]:
        return {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {name: t.snapshot() for name, t in self.timings.items()},
        }

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()


metrics = MetricsRegistry()
