"""Metrics collection facade for the sidecar service.

Re-exports the shared metrics utilities so service code can import from a
stable local path (``embedding_sidecar.runtime.metrics``).

Key APIs:
- ``get_metrics_collector(service_name)``: return the process-wide collector.
- ``MetricsCollector``: record RPC, embedding, and model-load metrics.
"""

from embedding_sidecar.common.metrics import MetricsCollector, get_metrics_collector

__all__ = ["MetricsCollector", "get_metrics_collector"]
