"""
Metrics Collection for Invoice Builds

Collects in-memory metrics for:
- Orders built / failed
- Exploded, inferred and unmatched line counts
- Upstream collaborator failures (by collaborator)
- Processing times (average, p95) per stage
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional, Any


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class OrderMetrics:
    """Counters for invoice builds."""
    built: int = 0
    failed: int = 0
    exploded_lines: int = 0
    inferred_lines: int = 0
    unmatched_sale_lines: int = 0

    # By reconciliation status (PASS / WARN / FAIL)
    by_status: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class UpstreamMetrics:
    """Upstream collaborator calls that degraded to empty data."""
    failures: int = 0
    by_collaborator: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class TimingMetrics:
    """Processing time metrics."""
    # Raw timing samples (keep last N for percentile calculations)
    samples: List[float] = field(default_factory=list)
    max_samples: int = 1000

    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, duration_ms: float, stage: str = None):
        self.samples.append(duration_ms)
        if len(self.samples) > self.max_samples:
            self.samples = self.samples[-self.max_samples:]

        if stage:
            self.by_stage[stage].append(duration_ms)
            if len(self.by_stage[stage]) > self.max_samples:
                self.by_stage[stage] = self.by_stage[stage][-self.max_samples:]

    def get_average(self, stage: str = None) -> float:
        samples = self.by_stage.get(stage, []) if stage else self.samples
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str = None) -> float:
        """Get 95th percentile processing time."""
        samples = self.by_stage.get(stage, []) if stage else self.samples
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class MetricsCollector:
    """
    Thread-safe metrics collector for invoice builds.

    Usage:
        metrics = MetricsCollector.instance()
        metrics.record_order_built("SO1", status="PASS", exploded=3, inferred=0, unmatched=0)
        metrics.record_processing_time("build", 12.5)
    """

    _instance: Optional["MetricsCollector"] = None
    _lock = Lock()

    def __init__(self):
        self.orders = OrderMetrics()
        self.upstream = UpstreamMetrics()
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "MetricsCollector":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    # =========================================================================
    # Order Metrics
    # =========================================================================

    def record_order_built(
        self,
        order_code: str,
        status: str,
        exploded: int = 0,
        inferred: int = 0,
        unmatched: int = 0,
        duration_ms: float = None,
    ):
        with self._lock:
            self.orders.built += 1
            self.orders.by_status[status] += 1
            self.orders.exploded_lines += exploded
            self.orders.inferred_lines += inferred
            self.orders.unmatched_sale_lines += unmatched
            if duration_ms:
                self.timings.add_sample(duration_ms, "build")

    def record_order_failed(self, order_code: str, error: str = None):
        with self._lock:
            self.orders.failed += 1

    # =========================================================================
    # Upstream Metrics
    # =========================================================================

    def record_upstream_failure(self, collaborator: str, error: str = None):
        """Record a collaborator call that failed and degraded to empty data."""
        with self._lock:
            self.upstream.failures += 1
            self.upstream.by_collaborator[collaborator] += 1

    # =========================================================================
    # Timing Metrics
    # =========================================================================

    def record_processing_time(self, stage: str, duration_ms: float):
        with self._lock:
            self.timings.add_sample(duration_ms, stage)

    def get_timing_stats(self, stage: str = None) -> Dict[str, float]:
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, []) if stage else self.timings.samples),
            }

    # =========================================================================
    # Summary
    # =========================================================================

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of all metrics."""
        with self._lock:
            return {
                "orders": {
                    "built": self.orders.built,
                    "failed": self.orders.failed,
                    "exploded_lines": self.orders.exploded_lines,
                    "inferred_lines": self.orders.inferred_lines,
                    "unmatched_sale_lines": self.orders.unmatched_sale_lines,
                    "by_status": dict(self.orders.by_status),
                },
                "upstream": {
                    "failures": self.upstream.failures,
                    "by_collaborator": dict(self.upstream.by_collaborator),
                },
                "timings": {
                    "overall": {
                        "average_ms": self.timings.get_average(),
                        "p95_ms": self.timings.get_p95(),
                    },
                    "by_stage": {
                        stage: {
                            "average_ms": self.timings.get_average(stage),
                            "p95_ms": self.timings.get_p95(stage),
                        }
                        for stage in self.timings.by_stage.keys()
                    },
                },
            }

    def reset(self):
        """Clear all counters (used between test runs)."""
        with self._lock:
            self.orders = OrderMetrics()
            self.upstream = UpstreamMetrics()
            self.timings = TimingMetrics()


# =============================================================================
# Module-level convenience functions
# =============================================================================

def get_metrics() -> MetricsCollector:
    """Get the global metrics collector."""
    return MetricsCollector.instance()


def record_order_built(order_code: str, status: str, exploded: int = 0, inferred: int = 0,
                       unmatched: int = 0, duration_ms: float = None):
    get_metrics().record_order_built(order_code, status, exploded, inferred, unmatched, duration_ms)


def record_order_failed(order_code: str, error: str = None):
    get_metrics().record_order_failed(order_code, error)


def record_upstream_failure(collaborator: str, error: str = None):
    get_metrics().record_upstream_failure(collaborator, error)


def record_processing_time(stage: str, duration_ms: float):
    get_metrics().record_processing_time(stage, duration_ms)
