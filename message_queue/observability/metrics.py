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

from message_queue.constants import (
    METRIC_ACTIVE_WORKERS,
    METRIC_ITEMS_CLAIMED,
    METRIC_ITEMS_ENQUEUED,
    METRIC_ITEMS_PROCESSED,
    METRIC_POLL_ERRORS,
    METRIC_PROCESSING_DURATION,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the message queue.

    Collects metrics for:
    - Item submissions and claims
    - Processing outcomes and durations
    - Worker concurrency
    - Errors trapped by the polling loop
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.items_enqueued = Counter(
            METRIC_ITEMS_ENQUEUED,
            "Total number of items enqueued",
            ["type", "priority"],
            registry=self._registry,
        )

        self.items_claimed = Counter(
            METRIC_ITEMS_CLAIMED,
            "Total number of items claimed by a poll cycle",
            ["type"],
            registry=self._registry,
        )

        self.items_processed = Counter(
            METRIC_ITEMS_PROCESSED,
            "Total number of items processed, by outcome",
            ["type", "outcome"],
            registry=self._registry,
        )

        self.processing_duration = Histogram(
            METRIC_PROCESSING_DURATION,
            "Worker processing duration in seconds",
            ["type", "outcome"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
            registry=self._registry,
        )

        self.active_workers = Gauge(
            METRIC_ACTIVE_WORKERS,
            "Number of poll cycles currently in flight",
            ["collection"],
            registry=self._registry,
        )

        self.poll_errors = Counter(
            METRIC_POLL_ERRORS,
            "Total number of errors routed to the error handler",
            ["error"],
            registry=self._registry,
        )

    def record_item_enqueued(self, item_type: str, priority: int) -> None:
        """Record an item submission."""
        self.items_enqueued.labels(type=item_type, priority=str(priority)).inc()

    def record_item_claimed(self, item_type: str) -> None:
        """Record a successful claim."""
        self.items_claimed.labels(type=item_type).inc()

    def record_item_processed(
        self,
        item_type: str,
        outcome: str,
        duration_seconds: float,
    ) -> None:
        """Record a processed item and how long its worker ran."""
        self.items_processed.labels(type=item_type, outcome=outcome).inc()
        self.processing_duration.labels(type=item_type, outcome=outcome).observe(
            duration_seconds
        )

    def set_active_workers(self, collection: str, count: int) -> None:
        """Update the in-flight poll cycle count for a queue collection."""
        self.active_workers.labels(collection=collection).set(count)

    def record_poll_error(self, error: BaseException) -> None:
        """Record an error trapped by the polling loop."""
        self.poll_errors.labels(error=type(error).__name__).inc()

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
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
