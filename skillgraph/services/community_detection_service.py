"""Community detection over a tenant's artifact similarity graph.

One run:

1. builds the thresholded KNN graph of the tenant's published, org-browsable
   artifacts (or returns a :class:`SkipReason`),
2. partitions it with Louvain in a worker thread,
3. flags low-quality partitions, and
4. atomically replaces every community assignment row of the tenant.

Runs are single-flight per tenant within a process and bounded by a
wall-clock budget and an edge-count budget.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from skillgraph.config import GraphConfig
from skillgraph.core.knn_graph import KnnGraph, KnnGraphBuilder
from skillgraph.core.louvain import LouvainResult, louvain
from skillgraph.core.models import CommunityAssignment, DetectionResult, SkipReason
from skillgraph.core.visibility import ORG_FILTER
from skillgraph.observability.logging import get_logger, request_context_scope
from skillgraph.observability.metrics import MetricsManager, get_metrics_manager
from skillgraph.store.base import ArtifactStore, StoreError

logger = get_logger(__name__)


class CommunityDetectionError(Exception):
    """Base exception for community detection errors."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.context = context or {}


class DetectionTimeoutError(CommunityDetectionError):
    """Raised when a run exceeds its wall-clock budget; nothing is persisted."""
    pass


class DetectionBudgetError(CommunityDetectionError):
    """Raised when the KNN graph exceeds the edge budget."""
    pass


class CommunityPersistenceError(CommunityDetectionError):
    """Raised when replacing the assignments fails; previous rows remain."""
    pass


class _WorkerStopped(Exception):
    """Signals the Louvain worker to unwind after the awaiting task was cancelled."""


class CommunityDetectionService:
    """Service detecting topical communities of artifacts.

    Example:
        >>> service = CommunityDetectionService(store)
        >>> result = await service.detect_communities("acme")
        >>> result.to_dict()
        {'communityCount': 3, 'modularity': 0.41, 'nodeCount': 42, 'edgeCount': 180, 'runId': '...'}
    """

    def __init__(
        self,
        store: Optional[ArtifactStore],
        config: GraphConfig | None = None,
        metrics: MetricsManager | None = None,
    ):
        """Initialize the detection service.

        Args:
            store: Backing store, or None when the deployment has no database
            config: Graph and budget configuration
            metrics: Metrics manager (defaults to the global one)
        """
        self.store = store
        self.config = config or GraphConfig()
        self.metrics = metrics or get_metrics_manager()
        self.graph_builder = KnnGraphBuilder(store, self.config) if store is not None else None
        self.logger = logger
        self._inflight: dict[str, asyncio.Task] = {}
        self._waiters: dict[asyncio.Task, int] = {}

    async def detect_communities(self, tenant_id: str) -> DetectionResult:
        """Detect and persist the communities of a tenant.

        A concurrent call for the same tenant awaits the run already in
        flight instead of starting another. Cancelling one caller leaves the
        run going for the others; it stops once every caller is cancelled.

        Args:
            tenant_id: Tenant whose catalog is partitioned

        Returns:
            DetectionResult describing the persisted partition or the skip reason

        Raises:
            DetectionTimeoutError: If the wall-clock budget is exceeded
            DetectionBudgetError: If the graph exceeds the edge budget
            CommunityPersistenceError: If the assignments could not be replaced
            CommunityDetectionError: On any other store failure
        """
        if self.store is None:
            self.logger.warning(
                "community_detection_skipped",
                tenant_id=tenant_id,
                reason=SkipReason.STORE_NOT_CONFIGURED.value,
            )
            self.metrics.record_detection("skipped")
            return DetectionResult.skip(SkipReason.STORE_NOT_CONFIGURED)

        task = self._inflight.get(tenant_id)
        if task is not None:
            self.logger.info("community_detection_joined", tenant_id=tenant_id)
        else:
            task = asyncio.create_task(self._run(tenant_id))
            self._inflight[tenant_id] = task
            task.add_done_callback(lambda t: self._forget(tenant_id, t))
        return await self._wait(task)

    async def _wait(self, task: asyncio.Task) -> DetectionResult:
        """Await a shared run; it is cancelled only when its last waiter is."""
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]
                if not task.done():
                    task.cancel()

    def _forget(self, tenant_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(tenant_id) is task:
            del self._inflight[tenant_id]

    def is_running(self, tenant_id: str) -> bool:
        return tenant_id in self._inflight

    async def _run(self, tenant_id: str) -> DetectionResult:
        run_id = str(uuid4())
        start_time = time.monotonic()
        deadline = start_time + self.config.detection_timeout_seconds

        with request_context_scope(tenant_id=tenant_id, run_id=run_id):
            self.logger.info(
                "community_detection_started",
                knn_k=self.config.knn_k,
                min_similarity=self.config.min_similarity,
                resolution=self.config.resolution,
            )
            try:
                with self.metrics.time_detection():
                    result = await self._detect_within_deadline(
                        tenant_id, run_id, start_time, deadline
                    )
            except DetectionTimeoutError as e:
                self.metrics.record_detection("timeout")
                self.logger.error(
                    "community_detection_timeout",
                    error=str(e),
                    duration_ms=self._elapsed_ms(start_time),
                )
                raise
            except CommunityDetectionError as e:
                self.metrics.record_detection("failed")
                self.logger.error(
                    "community_detection_error",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=self._elapsed_ms(start_time),
                )
                raise
            except StoreError as e:
                self.metrics.record_detection("failed")
                self.logger.error(
                    "community_detection_error",
                    error=str(e),
                    duration_ms=self._elapsed_ms(start_time),
                )
                raise CommunityDetectionError(
                    f"Community detection failed: {e}",
                    context={"tenant_id": tenant_id, "run_id": run_id, **e.context},
                ) from e

        return result

    async def _detect_within_deadline(
        self,
        tenant_id: str,
        run_id: str,
        start_time: float,
        deadline: float,
    ) -> DetectionResult:
        """Bound the whole run, store calls included, by the wall-clock budget.

        Expiry cancels the run; the replace transaction is rolled back unless
        it already committed.
        """
        try:
            return await asyncio.wait_for(
                self._detect(tenant_id, run_id, start_time, deadline),
                timeout=max(deadline - time.monotonic(), 0.0),
            )
        except asyncio.TimeoutError as e:
            raise DetectionTimeoutError(
                f"Community detection exceeded {self.config.detection_timeout_seconds}s",
                context={"timeout_seconds": self.config.detection_timeout_seconds},
            ) from e

    async def _detect(
        self,
        tenant_id: str,
        run_id: str,
        start_time: float,
        deadline: float,
    ) -> DetectionResult:
        graph = await self.graph_builder.build(tenant_id, ORG_FILTER)
        if graph.skipped:
            return self._skipped(graph, start_time)

        if graph.raw_edge_count > self.config.max_edges:
            raise DetectionBudgetError(
                f"KNN graph has {graph.raw_edge_count} edges, budget is {self.config.max_edges}",
                context={"edge_count": graph.raw_edge_count, "max_edges": self.config.max_edges},
            )
        self._check_deadline(deadline)

        partition = await self._partition(graph, deadline)
        community_count = partition.community_count

        if (
            community_count <= 1
            or partition.modularity < self.config.low_quality_modularity
        ):
            self.metrics.record_low_quality_partition()
            self.logger.warning(
                "community_detection_low_quality",
                community_count=community_count,
                modularity=round(partition.modularity, 4),
                threshold=self.config.low_quality_modularity,
            )

        self._check_deadline(deadline)

        detected_at = datetime.now(timezone.utc)
        assignments = [
            CommunityAssignment(
                tenant_id=tenant_id,
                artifact_id=artifact_id,
                community_id=community_id,
                modularity=partition.modularity,
                detected_at=detected_at,
                run_id=run_id,
            )
            for artifact_id, community_id in sorted(partition.partition.items())
        ]

        try:
            await self.store.replace_community_assignments(tenant_id, assignments)
        except StoreError as e:
            raise CommunityPersistenceError(
                f"Failed to persist community assignments: {e}",
                context={"tenant_id": tenant_id, "run_id": run_id, "row_count": len(assignments)},
            ) from e

        result = DetectionResult(
            community_count=community_count,
            modularity=partition.modularity,
            node_count=len(graph.nodes),
            edge_count=len(graph.edges),
            run_id=run_id,
            duration_ms=self._elapsed_ms(start_time),
        )
        self.metrics.record_detection("completed")
        self.logger.info(
            "community_detection_completed",
            community_count=result.community_count,
            modularity=round(result.modularity, 4),
            node_count=result.node_count,
            edge_count=result.edge_count,
            levels=partition.levels,
            duration_ms=result.duration_ms,
        )
        return result

    def _skipped(self, graph: KnnGraph, start_time: float) -> DetectionResult:
        if graph.skip_reason == SkipReason.GRAPH_TOO_SMALL:
            node_count, edge_count = len(graph.nodes), len(graph.edges)
        else:
            node_count, edge_count = graph.eligible_count, 0

        self.metrics.record_detection("skipped")
        self.logger.info(
            "community_detection_skipped",
            reason=graph.skip_reason.value,
            node_count=node_count,
            edge_count=edge_count,
        )
        return DetectionResult.skip(
            graph.skip_reason,
            node_count=node_count,
            edge_count=edge_count,
            duration_ms=self._elapsed_ms(start_time),
        )

    async def _partition(self, graph: KnnGraph, deadline: float) -> LouvainResult:
        """Run Louvain in a worker thread with a cooperative stop signal."""
        stop = threading.Event()

        def check_cancelled() -> None:
            if stop.is_set():
                raise _WorkerStopped()
            self._check_deadline(deadline)

        weighted = graph.to_weighted_graph()
        try:
            return await asyncio.to_thread(
                louvain,
                weighted,
                resolution=self.config.resolution,
                seed=self.config.random_seed,
                check_cancelled=check_cancelled,
            )
        except asyncio.CancelledError:
            stop.set()
            raise

    def _check_deadline(self, deadline: float) -> None:
        if time.monotonic() > deadline:
            raise DetectionTimeoutError(
                f"Community detection exceeded {self.config.detection_timeout_seconds}s",
                context={"timeout_seconds": self.config.detection_timeout_seconds},
            )

    @staticmethod
    def _elapsed_ms(start_time: float) -> float:
        return round((time.monotonic() - start_time) * 1000, 2)
