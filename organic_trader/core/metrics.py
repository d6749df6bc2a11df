"""
Metrics collection for the organic trader
Tracks delivery latencies, trade counters and pool gauges in process
"""

import statistics
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


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


class MetricsCollector:
    """
    Collects counters, gauges and latency samples

    Labels are folded into the key so "trades{side=buy}" and
    "trades{side=sell}" are tracked separately.
    """

    def __init__(self, max_samples: int = 10_000):
        self.max_samples = max_samples
        self._latencies: Dict[str, deque] = defaultdict(lambda: deque(maxlen=self.max_samples))
        self._counters: Dict[LabelKey, int] = defaultdict(int)
        self._gauges: Dict[LabelKey, float] = {}

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> LabelKey:
        return (name, tuple(sorted((labels or {}).items())))

    def record_latency(
        self,
        operation: str,
        latency_ms: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Record how long an operation took

        Args:
            operation: Operation name (e.g. "tx_delivery")
            latency_ms: Latency in milliseconds
            labels: Optional labels, counted under "<operation>_count"
        """
        self._latencies[operation].append(latency_ms)
        self._counters[self._key(f"{operation}_count", labels)] += 1

    def increment_counter(
        self,
        metric_name: str,
        value: int = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._counters[self._key(metric_name, labels)] += value

    def set_gauge(
        self,
        metric_name: str,
        value: float,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        self._gauges[self._key(metric_name, labels)] = value

    def get_counter(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> int:
        return self._counters.get(self._key(metric_name, labels), 0)

    def get_gauge(self, metric_name: str, labels: Optional[Dict[str, str]] = None) -> float:
        return self._gauges.get(self._key(metric_name, labels), 0.0)

    def get_histogram_stats(self, operation: str) -> Optional[HistogramStats]:
        """
        Summarize recorded latencies for an operation

        Returns:
            HistogramStats or None if nothing was recorded
        """
        samples = sorted(self._latencies.get(operation, []))
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
        """Export everything as a JSON-serializable dict"""
        def flatten(key: LabelKey) -> str:
            name, labels = key
            if not labels:
                return name
            rendered = ",".join(f"{k}={v}" for k, v in labels)
            return f"{name}{{{rendered}}}"

        histograms = {}
        for operation in self._latencies:
            stats = self.get_histogram_stats(operation)
            if stats:
                histograms[operation] = {
                    "count": stats.count,
                    "p50": stats.p50,
                    "p95": stats.p95,
                    "p99": stats.p99,
                    "mean": stats.mean,
                    "min": stats.min,
                    "max": stats.max
                }

        return {
            "counters": {flatten(k): v for k, v in self._counters.items()},
            "gauges": {flatten(k): v for k, v in self._gauges.items()},
            "histograms": histograms
        }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)"""
        self._latencies.clear()
        self._counters.clear()
        self._gauges.clear()

    @staticmethod
    def _percentile(sorted_data: List[float], percentile: float) -> float:
        if len(sorted_data) == 1:
            return sorted_data[0]

        index = (percentile / 100) * (len(sorted_data) - 1)
        lower = int(index)
        upper = min(lower + 1, len(sorted_data) - 1)
        weight = index - lower
        return sorted_data[lower] * (1 - weight) + sorted_data[upper] * weight


class LatencyTimer:
    """Context manager that records elapsed time into a MetricsCollector"""

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


# Process-wide collector
_global_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = MetricsCollector()
    return _global_metrics


def init_metrics(max_samples: int = 10_000) -> MetricsCollector:
    """Resize and clear the global collector (module-level references stay valid)"""
    collector = get_metrics()
    collector.max_samples = max_samples
    collector.reset()
    return collector
