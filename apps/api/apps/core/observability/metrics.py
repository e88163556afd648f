"""
Metrics instrumentation.

Prometheus counters and histograms for HTTP traffic and offline sync.
"""
import logging

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)


class MetricsRegistry:
    """
    Central metrics registry for the sync server.

    Provides typed access to all application metrics.
    """

    def __init__(self):
        """Initialize metrics registry."""
        self._setup_metrics()

    def _create_counter(self, name, description, labels=None):
        """Create a counter metric."""
        return Counter(name, description, labels or [])

    def _create_histogram(self, name, description, labels=None, buckets=None):
        """Create a histogram metric."""
        if buckets:
            return Histogram(name, description, labels or [], buckets=buckets)
        return Histogram(name, description, labels or [])

    def _setup_metrics(self):
        """Setup all application metrics."""

        # ===================================================================
        # HTTP Metrics
        # ===================================================================
        self.http_requests_total = self._create_counter(
            'http_requests_total',
            'Total HTTP requests',
            ['route', 'method', 'status']
        )

        self.http_request_duration_seconds = self._create_histogram(
            'http_request_duration_seconds',
            'HTTP request duration in seconds',
            ['route', 'method'],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
        )

        # ===================================================================
        # Sync Metrics
        # ===================================================================
        self.sync_batches_total = self._create_counter(
            'sync_batches_total',
            'Offline sync batches processed',
            ['result']  # committed, rolled_back
        )

        self.sync_mutations_total = self._create_counter(
            'sync_mutations_total',
            'Mutations applied by committed sync batches',
            ['model', 'type']
        )

        self.sync_conflicts_total = self._create_counter(
            'sync_conflicts_total',
            'Optimistic concurrency conflicts detected',
            ['model']
        )

        self.sync_batch_size = self._create_histogram(
            'sync_batch_size',
            'Number of mutations per submitted batch',
            buckets=[1, 2, 5, 10, 25, 50, 100, 250, 500]
        )

        self.sync_batch_duration_seconds = self._create_histogram(
            'sync_batch_duration_seconds',
            'Duration of batch application',
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]
        )


# Global metrics instance
metrics = MetricsRegistry()
