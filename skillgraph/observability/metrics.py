"""Prometheus metrics for the Skill Graph Engine.

This module provides metrics for community detection runs and search traffic.
"""

import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Default registry
DEFAULT_REGISTRY = CollectorRegistry()

# =============================================================================
# Community Detection Metrics
# =============================================================================

DETECTION_RUNS = Counter(
    'skillgraph_detection_runs_total',
    'Total number of community detection runs by outcome',
    ['outcome'],
    registry=DEFAULT_REGISTRY,
)

DETECTION_DURATION = Histogram(
    'skillgraph_detection_duration_seconds',
    'Time spent in one community detection run',
    buckets=[0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 120],
    registry=DEFAULT_REGISTRY,
)

LOW_QUALITY_PARTITIONS = Counter(
    'skillgraph_low_quality_partitions_total',
    'Partitions persisted with a single community or low modularity',
    registry=DEFAULT_REGISTRY,
)

# =============================================================================
# Search Metrics
# =============================================================================

SEARCH_REQUESTS = Counter(
    'skillgraph_search_requests_total',
    'Total number of searches by mode',
    ['mode'],
    registry=DEFAULT_REGISTRY,
)

SEARCH_DURATION = Histogram(
    'skillgraph_search_duration_seconds',
    'Time spent serving one search',
    ['mode'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5],
    registry=DEFAULT_REGISTRY,
)


class MetricsManager:
    """Manager for engine metrics.

    Example:
        >>> metrics = get_metrics_manager()
        >>> with metrics.time_detection():
        ...     ...
        >>> metrics.record_detection("completed")
    """

    def __init__(self, registry: CollectorRegistry = DEFAULT_REGISTRY):
        self.registry = registry

    def record_detection(self, outcome: str) -> None:
        """Record a detection run outcome (completed, skipped, failed, timeout)."""
        DETECTION_RUNS.labels(outcome=outcome).inc()

    @contextmanager
    def time_detection(self) -> Generator[None, None, None]:
        """Time a detection run."""
        start = time.perf_counter()
        try:
            yield
        finally:
            DETECTION_DURATION.observe(time.perf_counter() - start)

    def record_low_quality_partition(self) -> None:
        LOW_QUALITY_PARTITIONS.inc()

    def record_search(self, mode: str, duration_seconds: float) -> None:
        """Record a served search and its duration."""
        SEARCH_REQUESTS.labels(mode=mode).inc()
        SEARCH_DURATION.labels(mode=mode).observe(duration_seconds)

    def get_metrics(self) -> bytes:
        """Render the registry in Prometheus exposition format."""
        return generate_latest(self.registry)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST


_metrics_manager: MetricsManager | None = None


def get_metrics_manager() -> MetricsManager:
    """Get the global metrics manager."""
    global _metrics_manager
    if _metrics_manager is None:
        _metrics_manager = MetricsManager()
    return _metrics_manager
