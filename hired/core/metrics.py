"""Lightweight in-memory metrics (Prometheus text format)."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, List, Optional, Tuple


def _sanitize_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\"", "\\\"")


def _format_labels(label_names: List[str], values: Tuple[str, ...]) -> str:
    if not label_names:
        return ""
    parts = [f'{name}="{_sanitize_label_value(val)}"' for name, val in zip(label_names, values)]
    return "{" + ",".join(parts) + "}"


class Counter:
    def __init__(self, name: str, label_names: Optional[Iterable[str]] = None):
        self.name = name
        self.label_names = list(label_names or [])
        self._values: Dict[Tuple[str, ...], float] = {}
        self._lock = threading.Lock()

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0):
        key = self._label_tuple(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + float(amount)

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._label_tuple(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def _label_tuple(self, labels: Optional[Dict[str, str]]) -> Tuple[str, ...]:
        labels = labels or {}
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def export(self) -> List[str]:
        lines = [f"# TYPE {self.name} counter"]
        with self._lock:
            for label_values, value in self._values.items():
                labels = _format_labels(self.label_names, label_values)
                lines.append(f"{self.name}{labels} {value}")
        return lines

    def reset(self):
        with self._lock:
            self._values.clear()


class MetricsRegistry:
    def __init__(self):
        self.counters: Dict[str, Counter] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, label_names: Optional[Iterable[str]] = None) -> Counter:
        with self._lock:
            if name not in self.counters:
                self.counters[name] = Counter(name, label_names)
            return self.counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for metric in list(self.counters.values()):
            lines.extend(metric.export())
        return "\n".join(lines) + "\n"

    def reset(self):
        for metric in self.counters.values():
            metric.reset()


METRICS = MetricsRegistry()

admissions_total = METRICS.counter("admissions_total", ["outcome"])
quota_count_degraded_total = METRICS.counter("quota_count_degraded_total")
attempt_transitions_total = METRICS.counter("attempt_transitions_total", ["status"])
session_events_total = METRICS.counter("session_events_total", ["kind"])
access_decisions_total = METRICS.counter("access_decisions_total", ["gate", "outcome"])
