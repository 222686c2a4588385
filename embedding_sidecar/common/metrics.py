"""Metrics collection for the embedding sidecar.

A thin convenience wrapper around ``prometheus_client`` so the RPC layer can
record request, embedding, and model-load metrics with consistent labels.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (tests inject their own)
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest, start_http_server
import structlog

logger = structlog.get_logger("embedding_sidecar.metrics")


class MetricsCollector:
    """Centralized metrics collection for the sidecar.

    Parameters
    - service_name: Logical name of the process
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.rpc_requests = Counter(
            'rpc_requests_total',
            'Total RPC requests',
            ['method', 'status'],
            registry=self.registry
        )

        self.rpc_duration = Histogram(
            'rpc_request_duration_seconds',
            'RPC request duration',
            ['method'],
            registry=self.registry
        )

        self.embedding_duration = Histogram(
            'ml_embedding_duration_seconds',
            'Single-text embedding duration',
            ['model_name'],
            registry=self.registry
        )

        self.model_loads = Counter(
            'ml_model_loads_total',
            'Model load attempts partitioned by outcome',
            ['status'],
            registry=self.registry
        )

        self.model_loaded = Gauge(
            'ml_model_loaded',
            'Whether an embedding model is currently loaded',
            registry=self.registry
        )

    def record_rpc(self, method: str, status: str, duration: float) -> None:
        """Record an RPC outcome; ``duration`` is in seconds."""
        self.rpc_requests.labels(method=method, status=status).inc()
        self.rpc_duration.labels(method=method).observe(duration)

    def record_embedding(self, model_name: str, duration: float) -> None:
        """Record embedding generation latency."""
        self.embedding_duration.labels(model_name=model_name).observe(duration)

    def record_model_load(self, success: bool) -> None:
        """Record a load attempt and update the loaded gauge on success."""
        self.model_loads.labels(status="success" if success else "failure").inc()
        if success:
            self.model_loaded.set(1)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')

    def start_exporter(self, port: int, addr: str = "::") -> None:
        """Serve this collector's registry over HTTP on ``port``."""
        start_http_server(port, addr=addr, registry=self.registry)
        logger.info("Metrics exporter started", port=port)


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create the process-wide metrics collector."""
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
