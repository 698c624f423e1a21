"""Louvain community detection over weighted adjacency maps.

A multi-phase algorithm that optimizes modularity through local moves and
community aggregation:

1. Local moving: every node is visited (in shuffled order) and moved to the
   neighbouring community with the largest strictly positive modularity gain,
   until a full sweep moves nothing.
2. Aggregation: each community collapses into one node; intra-community
   weight becomes a self-loop.

Both phases repeat until the local-moving phase leaves every node in place.
The functions here are pure and CPU-bound; callers run them in a worker
thread and pass ``check_cancelled`` to interrupt long runs between sweeps.
"""

import random
from collections import defaultdict
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from typing import Any

# Gains below this are treated as float noise
_GAIN_EPSILON = 1e-12
_MAX_SWEEPS_PER_LEVEL = 1000


class WeightedGraph:
    """Undirected weighted graph stored as an adjacency map.

    ``adjacency[u][v]`` holds the weight of edge ``{u, v}``; a self-loop is
    stored once as ``adjacency[u][u]``.
    """

    def __init__(self) -> None:
        self.adjacency: dict[Hashable, dict[Hashable, float]] = {}

    @classmethod
    def from_edges(
        cls,
        edges: Iterable[tuple[Hashable, Hashable, float]],
        nodes: Iterable[Hashable] = (),
    ) -> "WeightedGraph":
        graph = cls()
        for node in nodes:
            graph.add_node(node)
        for source, target, weight in edges:
            graph.add_edge(source, target, weight)
        return graph

    def add_node(self, node: Hashable) -> None:
        self.adjacency.setdefault(node, {})

    def add_edge(self, u: Hashable, v: Hashable, weight: float = 1.0) -> None:
        """Add ``weight`` to edge ``{u, v}``."""
        if weight < 0:
            raise ValueError(f"Edge weights must be non-negative, got {weight}")
        self.add_node(u)
        self.add_node(v)
        self.adjacency[u][v] = self.adjacency[u].get(v, 0.0) + weight
        if u != v:
            self.adjacency[v][u] = self.adjacency[v].get(u, 0.0) + weight

    @property
    def nodes(self) -> list[Hashable]:
        return list(self.adjacency)

    def __len__(self) -> int:
        return len(self.adjacency)

    def __contains__(self, node: Hashable) -> bool:
        return node in self.adjacency

    def degree(self, node: Hashable) -> float:
        """Weighted degree; a self-loop counts twice."""
        neighbours = self.adjacency[node]
        return sum(neighbours.values()) + neighbours.get(node, 0.0)

    def total_weight(self) -> float:
        """Sum of edge weights (m), each undirected edge counted once."""
        return sum(self.degree(node) for node in self.adjacency) / 2.0

    def edge_count(self) -> int:
        loops = sum(1 for node, nbrs in self.adjacency.items() if node in nbrs)
        pairs = sum(len(nbrs) for nbrs in self.adjacency.values()) - loops
        return pairs // 2 + loops


@dataclass
class LouvainResult:
    """Output of :func:`louvain`.

    Attributes:
        partition: Node to community id, numbered 0..n-1 by descending
            community size (ties broken by smallest member)
        modularity: Modularity of ``partition`` on the input graph
        levels: Number of aggregation levels that moved at least one node
    """

    partition: dict[Hashable, int] = field(default_factory=dict)
    modularity: float = 0.0
    levels: int = 0

    @property
    def community_count(self) -> int:
        return len(set(self.partition.values()))


def modularity(
    graph: WeightedGraph,
    partition: dict[Hashable, Any],
    resolution: float = 1.0,
) -> float:
    """Compute ``Q = sum_c [L_c / m - resolution * (d_c / 2m)^2]``.

    ``L_c`` is the weight of edges inside community ``c`` and ``d_c`` the sum
    of degrees of its nodes. Returns 0.0 for a graph without edges.
    """
    m = graph.total_weight()
    if m == 0:
        return 0.0

    internal: dict[Any, float] = defaultdict(float)
    degrees: dict[Any, float] = defaultdict(float)
    for u, neighbours in graph.adjacency.items():
        cu = partition[u]
        degrees[cu] += graph.degree(u)
        for v, weight in neighbours.items():
            if partition[v] != cu:
                continue
            # Non-loop edges are seen from both endpoints
            internal[cu] += weight if u == v else weight / 2.0

    return sum(
        internal[c] / m - resolution * (degrees[c] / (2.0 * m)) ** 2
        for c in degrees
    )


def _one_level(
    graph: WeightedGraph,
    m: float,
    resolution: float,
    rng: random.Random,
    check_cancelled: Callable[[], None] | None,
) -> tuple[dict[Hashable, int], bool]:
    """Run the local-moving phase on one level.

    Returns the node-to-community map and whether any node moved.
    """
    nodes = graph.nodes
    node2com = {node: i for i, node in enumerate(nodes)}
    degrees = {node: graph.degree(node) for node in nodes}
    totals = {i: degrees[node] for i, node in enumerate(nodes)}

    improved = False
    for _ in range(_MAX_SWEEPS_PER_LEVEL):
        if check_cancelled is not None:
            check_cancelled()

        moved = False
        rng.shuffle(nodes)
        for node in nodes:
            current = node2com[node]
            k = degrees[node]

            links: dict[int, float] = defaultdict(float)
            for neighbour, weight in graph.adjacency[node].items():
                if neighbour != node:
                    links[node2com[neighbour]] += weight

            totals[current] -= k
            best = current
            best_gain = links.get(current, 0.0) - resolution * totals[current] * k / (2.0 * m)
            for community, weight in links.items():
                gain = weight - resolution * totals[community] * k / (2.0 * m)
                if gain > best_gain + _GAIN_EPSILON:
                    best, best_gain = community, gain
            totals[best] += k
            node2com[node] = best

            if best != current:
                moved = True

        if not moved:
            break
        improved = True

    return node2com, improved


def _renumber(node2com: dict[Hashable, int]) -> dict[Hashable, int]:
    mapping: dict[int, int] = {}
    for node, community in node2com.items():
        if community not in mapping:
            mapping[community] = len(mapping)
    return {node: mapping[community] for node, community in node2com.items()}


def _aggregate(graph: WeightedGraph, node2com: dict[Hashable, int]) -> WeightedGraph:
    aggregated = WeightedGraph()
    for community in set(node2com.values()):
        aggregated.add_node(community)

    for u, neighbours in graph.adjacency.items():
        cu = node2com[u]
        for v, weight in neighbours.items():
            cv = node2com[v]
            if u == v:
                aggregated.adjacency[cu][cu] = aggregated.adjacency[cu].get(cu, 0.0) + weight
            elif cu == cv:
                # Visited from both endpoints
                aggregated.adjacency[cu][cu] = aggregated.adjacency[cu].get(cu, 0.0) + weight / 2.0
            else:
                aggregated.adjacency[cu][cv] = aggregated.adjacency[cu].get(cv, 0.0) + weight
    return aggregated


def _order_by_size(membership: dict[Hashable, int]) -> dict[Hashable, int]:
    """Number communities 0..n-1 by descending size, ties by smallest member."""
    members: dict[int, list[Hashable]] = defaultdict(list)
    for node, community in membership.items():
        members[community].append(node)

    ordered = sorted(
        members.values(),
        key=lambda nodes: (-len(nodes), min(str(n) for n in nodes)),
    )
    return {node: index for index, nodes in enumerate(ordered) for node in nodes}


def louvain(
    graph: WeightedGraph,
    resolution: float = 1.0,
    seed: int | None = None,
    check_cancelled: Callable[[], None] | None = None,
) -> LouvainResult:
    """Partition ``graph`` by greedy modularity optimization.

    Args:
        graph: Graph to partition
        resolution: Resolution parameter (higher yields smaller communities)
        seed: Seed for the node visiting order; None is nondeterministic
        check_cancelled: Called between sweeps; raise from it to abort the run

    Returns:
        LouvainResult with the ordered partition and its modularity
    """
    if resolution <= 0:
        raise ValueError(f"resolution must be positive, got {resolution}")

    membership: dict[Hashable, Hashable] = {node: node for node in graph.nodes}
    if not membership:
        return LouvainResult()

    m = graph.total_weight()
    if m == 0:
        return LouvainResult(partition=_order_by_size(_renumber(membership)))

    rng = random.Random(seed)
    current = graph
    levels = 0
    while True:
        node2com, improved = _one_level(current, m, resolution, rng, check_cancelled)
        if not improved:
            break
        levels += 1
        node2com = _renumber(node2com)
        membership = {node: node2com[community] for node, community in membership.items()}
        current = _aggregate(current, node2com)

    partition = _order_by_size(_renumber(membership))
    return LouvainResult(
        partition=partition,
        modularity=modularity(graph, partition, resolution),
        levels=levels,
    )
