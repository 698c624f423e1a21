"""Graph export of a tenant's catalog for visualization."""

import asyncio
import time
from collections import defaultdict
from typing import Optional

from skillgraph.config import GraphConfig
from skillgraph.core.context import AccessContext
from skillgraph.core.knn_graph import KnnGraphBuilder
from skillgraph.core.models import Topology, TopologyCommunity, TopologyNode
from skillgraph.core.visibility import ORG_FILTER
from skillgraph.observability.logging import get_logger
from skillgraph.store.base import ArtifactStore

logger = get_logger(__name__)


def summarize_communities(nodes: list[TopologyNode]) -> list[TopologyCommunity]:
    """Group nodes by community id, largest community first (ties by id).

    Nodes without an assignment are skipped. The label is the first
    non-empty label seen among the members.
    """
    counts: dict[int, int] = defaultdict(int)
    labels: dict[int, Optional[str]] = {}
    for node in nodes:
        if node.community_id is None:
            continue
        counts[node.community_id] += 1
        if not labels.get(node.community_id) and node.community_label:
            labels[node.community_id] = node.community_label

    return sorted(
        (
            TopologyCommunity(community_id=cid, label=labels.get(cid), member_count=count)
            for cid, count in counts.items()
        ),
        key=lambda c: (-c.member_count, c.community_id),
    )


class TopologyService:
    """Service exporting nodes, similarity edges and community summary.

    Nodes and edges are the same for every viewer of the tenant; the
    principal only decorates the ``authored`` and ``used`` flags.
    """

    def __init__(self, store: Optional[ArtifactStore], config: GraphConfig | None = None):
        self.store = store
        self.config = config or GraphConfig()
        self.graph_builder = KnnGraphBuilder(store, self.config) if store is not None else None
        self.logger = logger

    async def get_topology(self, ctx: AccessContext) -> Topology:
        if self.store is None:
            return Topology()

        start_time = time.monotonic()
        nodes, (edges, _) = await asyncio.gather(
            self.store.list_topology_nodes(
                ctx.tenant_id,
                ORG_FILTER,
                principal_id=ctx.principal_id,
            ),
            self.graph_builder.collect_edges(ctx.tenant_id, ORG_FILTER),
        )

        node_ids = {node.id for node in nodes}
        edges = [e for e in edges if e.source in node_ids and e.target in node_ids]

        topology = Topology(
            nodes=nodes,
            edges=edges,
            communities=summarize_communities(nodes),
        )
        self.logger.info(
            "topology_exported",
            tenant_id=ctx.tenant_id,
            node_count=len(topology.nodes),
            edge_count=len(topology.edges),
            community_count=len(topology.communities),
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return topology
