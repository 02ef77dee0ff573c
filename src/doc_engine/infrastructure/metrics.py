"""Prometheus metrics for the document engine."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    start_http_server,
    REGISTRY,
    CollectorRegistry,
)


class MetricsRegistry:
    """Registry of all document engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Operation metrics
        self.operations_total = Counter(
            "docdb_operations_total",
            "Total number of store operations",
            ["operation", "status"],  # status: success, error, cancelled
            registry=self._registry,
        )

        self.operation_latency_seconds = Histogram(
            "docdb_operation_latency_seconds",
            "Store operation latency in seconds",
            ["operation"],  # insert, update_one, delete_one, find, aggregate, ...
            buckets=(0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self._registry,
        )

        # Storage metrics
        self.documents = Gauge(
            "docdb_documents",
            "Number of documents currently stored",
            registry=self._registry,
        )

        self.indexes = Gauge(
            "docdb_indexes",
            "Number of secondary indexes",
            registry=self._registry,
        )

        # Access path metrics
        self.documents_examined_total = Counter(
            "docdb_documents_examined_total",
            "Documents fetched and evaluated against a filter",
            ["access_path"],  # IXSCAN, COLLSCAN
            registry=self._registry,
        )

        self.index_scans_total = Counter(
            "docdb_index_scans_total",
            "Total index scan operations",
            ["index_name"],
            registry=self._registry,
        )

        # Aggregation metrics
        self.pipeline_records_dropped_total = Counter(
            "docdb_pipeline_records_dropped_total",
            "Records dropped by a pipeline stage after a type mismatch",
            ["stage"],
            registry=self._registry,
        )

        self.cancellations_total = Counter(
            "docdb_cancellations_total",
            "Operations stopped by a cancellation token",
            ["operation"],
            registry=self._registry,
        )

        # Engine info
        self.info = Info(
            "doc_engine",
            "Document engine information",
            registry=self._registry,
        )


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(port: int = 8001, registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up Prometheus metrics server.

    Args:
        port: Port for the metrics HTTP server
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from doc_engine import __version__
    _metrics.info.info({
        "version": __version__,
    })

    start_http_server(port, registry=registry or REGISTRY)

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
