"""Thresholded k-nearest-neighbour similarity graph for one tenant."""

import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from skillgraph.config import GraphConfig
from skillgraph.core.louvain import WeightedGraph
from skillgraph.core.models import DirectedEdge, SimilarityEdge, SkipReason
from skillgraph.core.visibility import ORG_FILTER, VisibilityFilter
from skillgraph.observability.logging import get_logger

if TYPE_CHECKING:
    from skillgraph.store.base import ArtifactStore

logger = get_logger(__name__)


def deduplicate_edges(raw_edges: Iterable[DirectedEdge]) -> list[SimilarityEdge]:
    """Collapse directed KNN edges into canonical undirected edges.

    Each pair is keyed by its sorted endpoints; when the two directions
    disagree numerically the maximum similarity wins. Self-pairs are dropped.
    Output is sorted by (source, target).
    """
    best: dict[tuple[str, str], float] = {}
    for a, b, similarity in raw_edges:
        if a == b:
            continue
        key = (a, b) if a < b else (b, a)
        previous = best.get(key)
        if previous is None or similarity > previous:
            best[key] = similarity

    return [
        SimilarityEdge(source=source, target=target, similarity=similarity)
        for (source, target), similarity in sorted(best.items())
    ]


@dataclass
class KnnGraph:
    """Similarity graph of one tenant, or the reason it could not be built.

    Attributes:
        tenant_id: Tenant the graph belongs to
        eligible_count: Published, visible artifacts that have an embedding
        raw_edge_count: Directed edges returned by the store before dedup
        edges: Deduplicated edges
        skip_reason: Set when the graph is unusable for partitioning
    """

    tenant_id: str
    eligible_count: int = 0
    raw_edge_count: int = 0
    edges: list[SimilarityEdge] = field(default_factory=list)
    skip_reason: Optional[SkipReason] = None

    @property
    def nodes(self) -> list[str]:
        seen: set[str] = set()
        for edge in self.edges:
            seen.add(edge.source)
            seen.add(edge.target)
        return sorted(seen)

    @property
    def skipped(self) -> bool:
        return self.skip_reason is not None

    def to_weighted_graph(self) -> WeightedGraph:
        return WeightedGraph.from_edges(
            (e.source, e.target, e.similarity) for e in self.edges
        )


class KnnGraphBuilder:
    """Builds the symmetric KNN similarity graph of a tenant.

    For every eligible artifact the store returns its ``knn_k`` nearest other
    eligible artifacts in the same tenant with similarity at or above
    ``min_similarity``; the directed result is deduplicated into undirected
    edges.

    Example:
        >>> builder = KnnGraphBuilder(store)
        >>> graph = await builder.build("tenant-1")
        >>> if not graph.skipped:
        ...     print(len(graph.edges))
    """

    def __init__(self, store: "ArtifactStore", config: GraphConfig | None = None):
        self.store = store
        self.config = config or GraphConfig()
        self.logger = logger

    async def collect_edges(
        self,
        tenant_id: str,
        visibility: VisibilityFilter = ORG_FILTER,
    ) -> tuple[list[SimilarityEdge], int]:
        """Fetch and deduplicate KNN edges without the partitioning gates.

        Returns:
            Tuple of (deduplicated edges, raw directed edge count)
        """
        raw_edges = await self.store.knn_edges(
            tenant_id=tenant_id,
            k=self.config.knn_k,
            min_similarity=self.config.min_similarity,
            visibility=visibility,
        )
        return deduplicate_edges(raw_edges), len(raw_edges)

    async def build(
        self,
        tenant_id: str,
        visibility: VisibilityFilter = ORG_FILTER,
    ) -> KnnGraph:
        """Build the graph and classify it against the partitioning gates."""
        start_time = time.monotonic()

        eligible = await self.store.count_eligible(tenant_id, visibility)
        graph = KnnGraph(tenant_id=tenant_id, eligible_count=eligible)

        if eligible < self.config.min_artifacts:
            graph.skip_reason = SkipReason.TOO_FEW_ARTIFACTS
        else:
            graph.edges, graph.raw_edge_count = await self.collect_edges(tenant_id, visibility)
            if not graph.edges:
                graph.skip_reason = SkipReason.NO_EDGES
            elif len(graph.nodes) < self.config.min_graph_order:
                graph.skip_reason = SkipReason.GRAPH_TOO_SMALL

        self.logger.debug(
            "knn_graph_built",
            tenant_id=tenant_id,
            eligible_count=eligible,
            raw_edge_count=graph.raw_edge_count,
            edge_count=len(graph.edges),
            skip_reason=graph.skip_reason.value if graph.skip_reason else None,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return graph
