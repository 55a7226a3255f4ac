"""
Metrics collection for the launchpad client
Counts RPC calls, retries, cache hits and refresh cycles; times network operations
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple


LabelKey = Tuple[str, Tuple[Tuple[str, str], ...]]


@dataclass
class HistogramStats:
    """Statistical summary of recorded latencies"""
    operation: str
    count: int
    p50: float
    p95: float
    p99: float
    mean: float
    min: float
    max: float

    def to_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "mean": self.mean,
            "min": self.min,
            "max": self.max,
        }


def _label_key(name: str, labels: Optional[Dict[str, str]]) -> LabelKey:
    return (name, tuple(sorted((labels or {}).items())))


class MetricsCollector:
    """Collects counters, gauges and latency samples in memory"""

    def __init__(self, enable_histogram: bool = True, max_samples: int = 5000):
        """
        Initialize metrics collector

        Args:
            enable_histogram: Whether to keep latency samples
            max_samples: Samples retained per operation
        """
        self.enable_histogram = enable_histogram
        self.max_samples = max_samples

        self._latencies: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.max_samples))
        self._counters: Dict[LabelKey, int] = defaultdict(int)
        self._gauges: Dict[LabelKey, float] = {}

    def record_latency(
        self,
        operation: str,
        latency_ms: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Record how long an operation took

        Args:
            operation: Operation name (e.g., "rpc_call", "refresh_cycle")
            latency_ms: Latency in milliseconds
            labels: Optional labels for the count metric
        """
        if self.enable_histogram:
            self._latencies[operation].append(latency_ms)
        self._counters[_label_key(f"{operation}_count", labels)] += 1

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._counters[_label_key(metric_name, labels)] += value

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._gauges[_label_key(metric_name, labels)] = value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        """Get current counter value"""
        return self._counters.get(_label_key(metric_name, labels), 0)

    def get_gauge(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Get current gauge value"""
        return self._gauges.get(_label_key(metric_name, labels), 0.0)

    def get_histogram_stats(self, operation: str) -> Optional[HistogramStats]:
        """
        Summarize latencies recorded for an operation

        Returns:
            HistogramStats or None if nothing was recorded
        """
        samples = sorted(self._latencies.get(operation, ()))
        if not samples:
            return None

        return HistogramStats(
            operation=operation,
            count=len(samples),
            p50=self._percentile(samples, 50),
            p95=self._percentile(samples, 95),
            p99=self._percentile(samples, 99),
            mean=statistics.mean(samples),
            min=samples[0],
            max=samples[-1]
        )

    def export_metrics(self) -> Dict:
        """
        Export all metrics as a JSON-serializable dict

        Labeled series are flattened to "name{key=value,...}".
        """
        def flatten(key: LabelKey) -> str:
            name, labels = key
            if not labels:
                return name
            return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"

        exported = {
            "counters": {flatten(k): v for k, v in self._counters.items()},
            "gauges": {flatten(k): v for k, v in self._gauges.items()},
            "histograms": {},
        }
        for operation in list(self._latencies):
            stats = self.get_histogram_stats(operation)
            if stats:
                exported["histograms"][operation] = stats.to_dict()
        return exported

    def reset(self) -> None:
        """Reset all metrics (useful for testing)"""
        self._latencies.clear()
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        """Linear interpolation between closest ranks"""
        if len(sorted_data) == 1:
            return sorted_data[0]

        position = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(position)
        if lower + 1 >= len(sorted_data):
            return sorted_data[-1]

        fraction = position - lower
        return sorted_data[lower] + (sorted_data[lower + 1] - sorted_data[lower]) * fraction


class LatencyTimer:
    """
    Context manager that records the elapsed time of its block

    A block that raises still records its latency and also bumps
    "<operation>_errors" labeled with the exception type.
    """

    def __init__(self, metrics: MetricsCollector, operation: str, labels: Optional[Dict[str, str]] = None):
        self.metrics = metrics
        self.operation = operation
        self.labels = labels
        self.start_time: Optional[float] = None
        self.latency_ms: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            self.latency_ms = (time.perf_counter() - self.start_time) * 1000
            self.metrics.record_latency(self.operation, self.latency_ms, self.labels)
        if exc_type is not None:
            labels = dict(self.labels or {})
            labels["error"] = exc_type.__name__
            self.metrics.increment_counter(f"{self.operation}_errors", labels=labels)


_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def init_metrics(enable_histogram: bool = True, max_samples: int = 5000) -> MetricsCollector:
    """
    Reconfigure the process-wide collector in place and clear it

    Modules hold the collector they got at import time, so it is never replaced.
    """
    collector = get_metrics()
    collector.enable_histogram = enable_histogram
    collector.max_samples = max_samples
    collector.reset()
    return collector
