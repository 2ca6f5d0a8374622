"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from sqlqueue.observability.logging import get_logger, setup_logging
from sqlqueue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from sqlqueue.observability.tracing import (
    get_tracer,
    setup_tracing,
    shutdown_tracing,
    start_span,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "shutdown_tracing",
    "start_span",
]
