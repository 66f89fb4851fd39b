"""
Metrics for schemalens
Process-wide counters and duration summaries, keyed by name and labels
"""
from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Optional, Tuple

Labels = Optional[Dict[str, str]]
MetricKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def _key(name: str, labels: Labels) -> MetricKey:
    return name, tuple(sorted((labels or {}).items()))


def _render(key: MetricKey) -> str:
    name, labels = key
    if not labels:
        return name
    return name + "{" + ",".join(f'{k}="{v}"' for k, v in labels) + "}"


@dataclass
class DurationSummary:
    count: int = 0
    total: float = 0.0
    minimum: float = float("inf")
    maximum: float = 0.0

    def add(self, seconds: float) -> None:
        self.count += 1
        self.total += seconds
        self.minimum = min(self.minimum, seconds)
        self.maximum = max(self.maximum, seconds)

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "sum": self.total,
            "min": self.minimum,
            "max": self.maximum,
            "mean": self.total / self.count,
        }


class MetricsCollector:
    """Thread-safe store of counters and timers"""

    def __init__(self):
        self._counters: Dict[MetricKey, float] = {}
        self._timers: Dict[MetricKey, DurationSummary] = {}
        self._lock = threading.Lock()

    def counter(self, name: str, value: float = 1.0, labels: Labels = None) -> None:
        key = _key(name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0.0) + value

    def timer(self, name: str, duration: float, labels: Labels = None) -> None:
        key = _key(name, labels)
        with self._lock:
            self._timers.setdefault(key, DurationSummary()).add(duration)

    @contextmanager
    def time_operation(self, name: str, labels: Labels = None) -> Generator[None, None, None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timer(name, time.perf_counter() - started, labels)

    def get_counter(self, name: str, labels: Labels = None) -> float:
        with self._lock:
            return self._counters.get(_key(name, labels), 0.0)

    def get_metrics(self) -> Dict[str, Any]:
        """Snapshot with Prometheus-style keys, e.g. errors_total{category="sampling"}"""
        with self._lock:
            return {
                "counters": {_render(k): v for k, v in self._counters.items()},
                "timers": {_render(k): s.to_dict() for k, s in self._timers.items()},
            }

    def export_json(self) -> str:
        return json.dumps(self.get_metrics(), indent=2, sort_keys=True)

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timers.clear()


_collector = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    return _collector


def counter(name: str, value: float = 1.0, labels: Labels = None) -> None:
    _collector.counter(name, value, labels)


def timer(name: str, duration: float, labels: Labels = None) -> None:
    _collector.timer(name, duration, labels)


def time_operation(name: str, labels: Labels = None):
    return _collector.time_operation(name, labels)


class PipelineMetrics:
    """Named metrics emitted by the schema intelligence pipeline"""

    @staticmethod
    def record_llm_call(duration: float, model_id: str, input_tokens: int, output_tokens: int) -> None:
        labels = {"model_id": model_id}
        timer("llm_call_duration_seconds", duration, labels)
        counter("llm_call_total", 1.0, labels)
        counter("llm_input_tokens_total", float(input_tokens), labels)
        counter("llm_output_tokens_total", float(output_tokens), labels)

    @staticmethod
    def record_engine_query(duration: float, engine: str, query_kind: str, success: bool) -> None:
        labels = {"engine": engine, "kind": query_kind, "success": str(success).lower()}
        timer("engine_query_duration_seconds", duration, labels)
        counter("engine_query_total", 1.0, labels)

    @staticmethod
    def record_table_analysis(duration: float, status: str) -> None:
        labels = {"status": status}
        timer("table_analysis_duration_seconds", duration, labels)
        counter("table_analysis_total", 1.0, labels)

    @staticmethod
    def record_column_description(outcome: str) -> None:
        """outcome is described, fallback or failed"""
        counter("column_description_total", 1.0, {"outcome": outcome})

    @staticmethod
    def record_relationships(created: int, skipped: int) -> None:
        counter("relationships_created_total", float(created))
        counter("relationships_skipped_total", float(skipped))

    @staticmethod
    def record_error(error_type: str, category: str) -> None:
        counter("errors_total", 1.0, {"error_type": error_type, "category": category})
