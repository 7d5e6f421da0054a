"""
In-process metrics for the storefront.

Counters, gauges and latency histograms are keyed by name plus a sorted label
tuple. The registry is process-local and is exposed at ``/admin/metrics``.
"""
from __future__ import annotations

import math
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Deque, Dict, Iterator, List, Optional, Tuple

Labels = Tuple[Tuple[str, str], ...]
MetricKey = Tuple[str, Labels]

MAX_EVENTS = 100
LATENCY_WINDOW = 500


def _key(name: str, labels: Optional[Dict[str, str]]) -> MetricKey:
    return name, tuple(sorted((labels or {}).items()))


class LatencyHistogram:
    """Running count/sum/min/max plus a window of recent samples for p95."""

    def __init__(self, window: int = LATENCY_WINDOW) -> None:
        self.count = 0
        self.total = 0.0
        self.lowest: Optional[float] = None
        self.highest: Optional[float] = None
        self.recent: Deque[float] = deque(maxlen=window)

    def observe(self, value: float) -> None:
        self.count += 1
        self.total += value
        self.lowest = value if self.lowest is None else min(self.lowest, value)
        self.highest = value if self.highest is None else max(self.highest, value)
        self.recent.append(value)

    def percentile(self, fraction: float) -> Optional[float]:
        if not self.recent:
            return None
        ordered = sorted(self.recent)
        index = max(0, math.ceil(fraction * len(ordered)) - 1)
        return ordered[index]

    def stats(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "avg": self.total / self.count if self.count else 0.0,
            "min": self.lowest,
            "max": self.highest,
            "p95": self.percentile(0.95),
        }


class MetricsRegistry:
    def __init__(self, max_events: int = MAX_EVENTS) -> None:
        self._lock = threading.Lock()
        self.counters: Dict[MetricKey, float] = defaultdict(float)
        self.gauges: Dict[MetricKey, float] = {}
        self.histograms: Dict[MetricKey, LatencyHistogram] = {}
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    def increment(self, name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self.counters[_key(name, labels)] += amount

    def gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            self.gauges[_key(name, labels)] = value

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        with self._lock:
            key = _key(name, labels)
            if key not in self.histograms:
                self.histograms[key] = LatencyHistogram()
            self.histograms[key].observe(value)

    def event(self, name: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            self.events.append({"name": name, "timestamp": time.time(), "payload": payload})

    def snapshot(self) -> Dict[str, Any]:
        def grouped(items, render) -> Dict[str, List[Dict[str, Any]]]:
            out: Dict[str, List[Dict[str, Any]]] = {}
            for (name, labels), value in items:
                out.setdefault(name, []).append({"labels": dict(labels), **render(value)})
            return out

        with self._lock:
            return {
                "counters": grouped(self.counters.items(), lambda v: {"value": v}),
                "gauges": grouped(self.gauges.items(), lambda v: {"value": v}),
                "histograms": grouped(self.histograms.items(), lambda h: {"stats": h.stats()}),
                "events": list(self.events),
            }

    def clear(self) -> None:
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()
            self.events.clear()


_registry = MetricsRegistry()


def increment_counter(name: str, amount: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.increment(name, amount, labels)


def set_gauge(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.gauge(name, value, labels)


def observe_latency(name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    _registry.observe(name, value, labels)


@contextmanager
def timed(name: str, labels: Optional[Dict[str, str]] = None) -> Iterator[None]:
    """Record the wall time of the wrapped block, in milliseconds."""
    started = time.perf_counter()
    try:
        yield
    finally:
        observe_latency(name, (time.perf_counter() - started) * 1000, labels=labels)


def record_event(name: str, payload: Dict[str, Any]) -> None:
    _registry.event(name, payload)


def get_metrics_snapshot() -> Dict[str, Any]:
    return _registry.snapshot()


def sum_counter(snapshot: Dict[str, Any], name: str) -> float:
    return sum(entry["value"] for entry in snapshot["counters"].get(name, []))


def reset_metrics() -> None:
    """Testing helper."""
    _registry.clear()
