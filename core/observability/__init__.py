"""
Observability Module for Invoice Builds

Provides:
- Structured logging with correlation IDs
- Metrics collection (orders, exploded lines, upstream failures, timings)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_order_built,
    record_order_failed,
    record_upstream_failure,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_order_built",
    "record_order_failed",
    "record_upstream_failure",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
