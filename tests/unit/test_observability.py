"""
Unit tests for metrics, tracing and logging helpers.
"""

from prometheus_client import CollectorRegistry

from sqlqueue.observability.logging import store_context_processor
from sqlqueue.observability.metrics import MetricsCollector
from sqlqueue.observability.tracing import get_tracer, start_span


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_records_queue_traffic(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.record_enqueued("default")
        metrics.record_enqueued("default")
        metrics.record_claimed("default")
        metrics.update_queue_depth("default", 1)

        assert registry.get_sample_value(
            "queue_entries_enqueued_total", {"queue": "default"}
        ) == 2
        assert registry.get_sample_value(
            "queue_entries_claimed_total", {"queue": "default"}
        ) == 1
        assert registry.get_sample_value("queue_depth", {"queue": "default"}) == 1

    def test_records_maintenance(self):
        registry = CollectorRegistry()
        metrics = MetricsCollector(registry)

        metrics.record_expired("hf_job", 3)
        metrics.record_aggregated(7)
        metrics.record_maintenance_error("expiration")
        metrics.record_lock_timeout("JobQueue")

        assert registry.get_sample_value("records_expired_total", {"table": "hf_job"}) == 3
        assert registry.get_sample_value("counters_aggregated_total") == 7
        assert registry.get_sample_value(
            "maintenance_errors_total", {"component": "expiration"}
        ) == 1
        assert registry.get_sample_value(
            "distributed_lock_timeouts_total", {"resource": "JobQueue"}
        ) == 1

    def test_exposition(self):
        metrics = MetricsCollector(CollectorRegistry())
        metrics.record_empty_poll()

        assert b"queue_empty_polls_total 1.0" in metrics.get_metrics()
        assert metrics.get_content_type().startswith("text/plain")


class TestTracing:
    """Tests for span helpers without an installed provider."""

    def test_get_tracer_without_setup(self):
        assert get_tracer() is not None

    def test_start_span_accepts_sequences_and_none(self):
        with start_span("dequeue", queues=["default", "critical"], entry_id=None) as span:
            assert span is not None


class TestStoreContext:
    """Tests for the store prefix log processor."""

    def test_adds_prefix(self):
        processor = store_context_processor("hf_")
        assert processor(None, "info", {"event": "x"}) == {"event": "x", "store": "hf_"}

    def test_empty_prefix_adds_nothing(self):
        processor = store_context_processor("")
        assert processor(None, "info", {"event": "x"}) == {"event": "x"}
