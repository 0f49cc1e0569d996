"""In-process counters and latency percentiles.

One recorder is created per application and handed to the components that
report into it; nothing here is module-global.
"""

import math
from collections import deque
from dataclasses import dataclass, field
from typing import Any

# Samples kept per latency series; older samples are dropped
MAX_SAMPLES = 1000


@dataclass
class LatencySeries:
    """Rolling window of latency samples for one operation."""

    name: str
    samples: deque[float] = field(default_factory=lambda: deque(maxlen=MAX_SAMPLES))

    def add(self, value_ms: float) -> None:
        self.samples.append(value_ms)

    def percentile(self, percentile: float) -> float:
        """Nearest-rank percentile of the window, 0.0 when empty."""
        if not self.samples:
            return 0.0
        ordered = sorted(self.samples)
        index = min(len(ordered) - 1, math.floor(len(ordered) * percentile / 100))
        return ordered[index]

    @property
    def mean(self) -> float:
        if not self.samples:
            return 0.0
        return sum(self.samples) / len(self.samples)

    def summary(self) -> dict[str, float]:
        return {
            "count": len(self.samples),
            "mean": round(self.mean, 3),
            "p50": self.percentile(50),
            "p95": self.percentile(95),
            "p99": self.percentile(99),
        }


class MetricsRecorder:
    """Request and tool-execution counters plus latency distributions."""

    def __init__(self, max_samples: int = MAX_SAMPLES):
        self.max_samples = max_samples
        self._counters: dict[str, int] = {}
        self._latencies: dict[str, LatencySeries] = {}

    def increment(self, name: str, value: int = 1) -> None:
        self._counters[name] = self._counters.get(name, 0) + value

    def record_latency(self, name: str, value_ms: float) -> None:
        series = self._latencies.get(name)
        if series is None:
            series = self._latencies[name] = LatencySeries(
                name, deque(maxlen=self.max_samples)
            )
        series.add(value_ms)

    def counter(self, name: str) -> int:
        return self._counters.get(name, 0)

    def latency(self, name: str) -> LatencySeries | None:
        return self._latencies.get(name)

    def snapshot(self) -> dict[str, Any]:
        """Counters and per-series latency summaries, sorted by name."""
        return {
            "counters": dict(sorted(self._counters.items())),
            "latencies_ms": {
                name: self._latencies[name].summary() for name in sorted(self._latencies)
            },
        }
