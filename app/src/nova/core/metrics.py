"""
Nova Metrics: in-process counters, histograms and gauges.

Usage:
    from nova.core.metrics import metrics

    metrics.inc("turns.accepted", labels={"lane": "chat"})
    metrics.observe("turn.latency_ms", 842.0, labels={"lane": "chat"})
    metrics.gauge_inc("turns.in_flight")

    snapshot = metrics.snapshot()  # -> dict for GET /metrics
"""

from __future__ import annotations

import time
from collections import defaultdict, deque


class MetricsCollector:
    """Process-local metrics. Single event loop, no locking."""

    # Rolling window per histogram key
    HISTOGRAM_MAX_SAMPLES = 1000

    def __init__(self) -> None:
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, deque[float]] = defaultdict(
            lambda: deque(maxlen=self.HISTOGRAM_MAX_SAMPLES)
        )
        self._gauges: dict[str, float] = defaultdict(float)
        self._started_at = time.time()

    # ── Counters ──────────────────────────────────────────────────

    def inc(self, name: str, value: int = 1, labels: dict | None = None) -> None:
        self._counters[self._key(name, labels)] += value

    def counter(self, name: str, labels: dict | None = None) -> int:
        return self._counters.get(self._key(name, labels), 0)

    # ── Histograms ────────────────────────────────────────────────

    def observe(self, name: str, value: float, labels: dict | None = None) -> None:
        self._histograms[self._key(name, labels)].append(value)

    # ── Gauges ────────────────────────────────────────────────────

    def gauge_inc(self, name: str, value: float = 1.0, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] += value

    def gauge_dec(self, name: str, value: float = 1.0, labels: dict | None = None) -> None:
        self._gauges[self._key(name, labels)] -= value

    def gauge(self, name: str, labels: dict | None = None) -> float:
        return self._gauges.get(self._key(name, labels), 0.0)

    # ── Snapshot ──────────────────────────────────────────────────

    def snapshot(self) -> dict:
        """Counters, gauges and p50/p95 summaries of every histogram."""
        histograms: dict[str, dict] = {}
        for key, samples in self._histograms.items():
            if not samples:
                continue
            ordered = sorted(samples)
            n = len(ordered)
            histograms[key] = {
                "count": n,
                "min": ordered[0],
                "max": ordered[-1],
                "p50": ordered[n // 2],
                "p95": ordered[min(int(n * 0.95), n - 1)],
            }
        return {
            "uptime_seconds": round(time.time() - self._started_at, 1),
            "counters": dict(self._counters),
            "gauges": dict(self._gauges),
            "histograms": histograms,
        }

    def reset(self) -> None:
        self._counters.clear()
        self._histograms.clear()
        self._gauges.clear()

    def _key(self, name: str, labels: dict | None) -> str:
        """"turn.latency_ms{lane=chat}" style key."""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Process-wide singleton: import this directly
metrics = MetricsCollector()
