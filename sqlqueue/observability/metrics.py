"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from sqlqueue.constants import (
    METRIC_COUNTERS_AGGREGATED,
    METRIC_EMPTY_POLLS,
    METRIC_ENTRIES_CLAIMED,
    METRIC_ENTRIES_ENQUEUED,
    METRIC_LOCK_TIMEOUTS,
    METRIC_LOCK_WAIT,
    METRIC_MAINTENANCE_ERRORS,
    METRIC_QUEUE_DEPTH,
    METRIC_RECORDS_EXPIRED,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the queue engine.

    Collects metrics for:
    - Queue depth and claim traffic
    - Distributed lock contention
    - Expiration and aggregation throughput
    - Maintenance failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of entries in a queue",
            ["queue"],
            registry=self._registry,
        )

        self.entries_enqueued = Counter(
            METRIC_ENTRIES_ENQUEUED,
            "Total number of queue entries enqueued",
            ["queue"],
            registry=self._registry,
        )

        self.entries_claimed = Counter(
            METRIC_ENTRIES_CLAIMED,
            "Total number of queue entries claimed",
            ["queue"],
            registry=self._registry,
        )

        self.empty_polls = Counter(
            METRIC_EMPTY_POLLS,
            "Total number of claim attempts that found no entry",
            registry=self._registry,
        )

        self.lock_wait = Histogram(
            METRIC_LOCK_WAIT,
            "Time spent waiting for a distributed lock",
            ["resource"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0),
            registry=self._registry,
        )

        self.lock_timeouts = Counter(
            METRIC_LOCK_TIMEOUTS,
            "Total number of distributed lock acquisition timeouts",
            ["resource"],
            registry=self._registry,
        )

        self.records_expired = Counter(
            METRIC_RECORDS_EXPIRED,
            "Total number of expired rows deleted",
            ["table"],
            registry=self._registry,
        )

        self.counters_aggregated = Counter(
            METRIC_COUNTERS_AGGREGATED,
            "Total number of raw counter rows folded into aggregates",
            registry=self._registry,
        )

        self.maintenance_errors = Counter(
            METRIC_MAINTENANCE_ERRORS,
            "Total number of failed maintenance steps",
            ["component"],
            registry=self._registry,
        )

    def record_enqueued(self, queue: str) -> None:
        self.entries_enqueued.labels(queue=queue).inc()

    def record_claimed(self, queue: str) -> None:
        self.entries_claimed.labels(queue=queue).inc()

    def record_empty_poll(self) -> None:
        self.empty_polls.inc()

    def record_lock_wait(self, resource: str, seconds: float) -> None:
        self.lock_wait.labels(resource=resource).observe(seconds)

    def record_lock_timeout(self, resource: str) -> None:
        self.lock_timeouts.labels(resource=resource).inc()

    def record_expired(self, table: str, count: int) -> None:
        self.records_expired.labels(table=table).inc(count)

    def record_aggregated(self, count: int) -> None:
        self.counters_aggregated.inc(count)

    def record_maintenance_error(self, component: str) -> None:
        self.maintenance_errors.labels(component=component).inc()

    def update_queue_depth(self, queue: str, depth: int) -> None:
        """Update the depth gauge for a queue."""
        self.queue_depth.labels(queue=queue).set(depth)

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
