"""Infrastructure layer - cross-cutting concerns."""

from doc_engine.infrastructure.config import Config, get_config
from doc_engine.infrastructure.logging import setup_logging, get_logger
from doc_engine.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from doc_engine.infrastructure.tracing import setup_tracing, get_tracer, trace_span

__all__ = [
    "Config",
    "get_config",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "trace_span",
]
