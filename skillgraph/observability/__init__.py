"""Observability: structured logging and Prometheus metrics."""

from skillgraph.observability.logging import get_logger, request_context_scope, setup_logging
from skillgraph.observability.metrics import MetricsManager, get_metrics_manager

__all__ = [
    "MetricsManager",
    "get_logger",
    "get_metrics_manager",
    "request_context_scope",
    "setup_logging",
]
