"""Engine-facing records.

These dataclasses are what the stores return and the services consume; the
SQLAlchemy tables in :mod:`skillgraph.db.models` are mapped onto them at the
store boundary. ``to_dict`` renders the camelCase wire shape consumed by the
web tier.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SkipReason(str, Enum):
    """Reasons a community detection run was skipped."""

    TOO_FEW_ARTIFACTS = "too few artifacts"
    NO_EDGES = "no edges above threshold"
    GRAPH_TOO_SMALL = "graph too small for partitioning"
    STORE_NOT_CONFIGURED = "store not configured"


@dataclass
class ArtifactRecord:
    """A catalog artifact as read by the engine."""

    id: str
    tenant_id: str
    name: str
    slug: str
    description: str = ""
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    visibility: str = "tenant"
    status: str = "published"
    author_id: Optional[str] = None
    total_uses: int = 0
    average_rating: float = 0.0

    @property
    def is_published(self) -> bool:
        return self.status == "published"


@dataclass
class EmbeddingRecord:
    """Embedding vector of one artifact.

    Attributes:
        artifact_id: Artifact the vector belongs to (at most one per artifact)
        tenant_id: Owning tenant of the artifact
        vector: Embedding values
        model_name: Model that produced the vector
        model_version: Optional model revision
        dimensions: Length of ``vector``
        input_hash: SHA-256 hex digest of the embedded text
        created_at: First insert time
        updated_at: Last overwrite time
    """

    artifact_id: str
    tenant_id: str
    vector: list[float]
    model_name: str
    input_hash: str
    model_version: Optional[str] = None
    dimensions: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.dimensions:
            self.dimensions = len(self.vector)


@dataclass(frozen=True)
class Neighbor:
    """One nearest-neighbour hit."""

    artifact_id: str
    similarity: float

    @property
    def distance(self) -> float:
        return 1.0 - self.similarity


# Raw KNN edge as produced by a store: (query artifact, neighbour, similarity).
# Both directions of a pair may be present.
DirectedEdge = tuple[str, str, float]


@dataclass(frozen=True)
class SimilarityEdge:
    """Undirected similarity edge with ``source < target``."""

    source: str
    target: str
    similarity: float

    def __post_init__(self) -> None:
        if not self.source < self.target:
            raise ValueError(
                f"Edge endpoints must be sorted: {self.source!r} >= {self.target!r}"
            )

    @property
    def key(self) -> tuple[str, str]:
        return (self.source, self.target)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "target": self.target,
            "similarity": self.similarity,
        }


@dataclass
class CommunityAssignment:
    """Persisted community membership of one artifact."""

    tenant_id: str
    artifact_id: str
    community_id: int
    modularity: float
    detected_at: datetime
    run_id: str
    community_label: Optional[str] = None
    community_description: Optional[str] = None


@dataclass
class AssignedArtifact:
    """An artifact joined with its community assignment (and optionally its vector)."""

    artifact: ArtifactRecord
    assignment: CommunityAssignment
    vector: Optional[list[float]] = None


@dataclass
class TopologyNode:
    id: str
    name: str
    slug: str
    category: Optional[str] = None
    tags: list[str] = field(default_factory=list)
    total_uses: int = 0
    average_rating: float = 0.0
    community_id: Optional[int] = None
    community_label: Optional[str] = None
    authored: bool = False
    used: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "category": self.category,
            "tags": list(self.tags),
            "totalUses": self.total_uses,
            "averageRating": self.average_rating,
            "communityId": self.community_id,
            "communityLabel": self.community_label,
            "authored": self.authored,
            "used": self.used,
        }


@dataclass
class TopologyCommunity:
    community_id: int
    label: Optional[str]
    member_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "communityId": self.community_id,
            "label": self.label,
            "memberCount": self.member_count,
        }


@dataclass
class Topology:
    """Graph view of a tenant's catalog for visualization."""

    nodes: list[TopologyNode] = field(default_factory=list)
    edges: list[SimilarityEdge] = field(default_factory=list)
    communities: list[TopologyCommunity] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "nodeCount": len(self.nodes),
            "edgeCount": len(self.edges),
            "communityCount": len(self.communities),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "communities": [c.to_dict() for c in self.communities],
            "stats": self.stats,
        }


@dataclass
class SearchHit:
    """One ranked search result.

    Attributes:
        ft_rank: 1-based position in the lexical list (None if absent)
        sm_rank: 1-based position in the semantic list (None if absent)
        rrf_score: Fused reciprocal-rank score
    """

    id: str
    name: str
    slug: str
    description: str
    category: Optional[str]
    total_uses: int
    average_rating: float
    author_id: Optional[str]
    ft_rank: Optional[int] = None
    sm_rank: Optional[int] = None
    rrf_score: float = 0.0

    @classmethod
    def from_artifact(cls, artifact: ArtifactRecord, **ranks: Any) -> "SearchHit":
        return cls(
            id=artifact.id,
            name=artifact.name,
            slug=artifact.slug,
            description=artifact.description,
            category=artifact.category,
            total_uses=artifact.total_uses,
            average_rating=artifact.average_rating,
            author_id=artifact.author_id,
            **ranks,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "category": self.category,
            "totalUses": self.total_uses,
            "averageRating": self.average_rating,
            "authorId": self.author_id,
            "ftRank": self.ft_rank,
            "smRank": self.sm_rank,
            "rrfScore": self.rrf_score,
        }


@dataclass
class SimilarArtifact:
    """Semantic neighbour of an artifact."""

    id: str
    name: str
    slug: str
    category: Optional[str]
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "category": self.category,
            "similarity": self.similarity,
        }


@dataclass
class CommunityMember:
    id: str
    name: str
    slug: str
    total_uses: int = 0
    similarity_pct: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "totalUses": self.total_uses,
        }
        if self.similarity_pct is not None:
            data["similarityPct"] = self.similarity_pct
        return data


@dataclass
class CommunityOverview:
    community_id: int
    label: Optional[str]
    description: Optional[str]
    member_count: int
    modularity: float
    top_members: list[CommunityMember] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "communityId": self.community_id,
            "label": self.label,
            "description": self.description,
            "memberCount": self.member_count,
            "modularity": self.modularity,
            "topMembers": [m.to_dict() for m in self.top_members],
        }


@dataclass
class CommunityDetail:
    community_id: int
    label: Optional[str]
    description: Optional[str]
    modularity: float
    members: list[CommunityMember] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "communityId": self.community_id,
            "label": self.label,
            "description": self.description,
            "modularity": self.modularity,
            "memberCount": len(self.members),
            "members": [m.to_dict() for m in self.members],
        }


@dataclass
class SearchQueryLog:
    """Analytics row written for every search."""

    tenant_id: str
    query: str
    normalized_query: str
    result_count: int
    search_type: str
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class DetectionResult:
    """Outcome of one community detection run.

    Attributes:
        community_count: Number of communities persisted
        modularity: Modularity of the persisted partition
        node_count: Artifacts in the similarity graph
        edge_count: Deduplicated similarity edges
        skipped: Reason the run was skipped, if it was
        run_id: Identifier stamped on every persisted row
        duration_ms: Wall-clock time of the run
    """

    community_count: int = 0
    modularity: float = 0.0
    node_count: int = 0
    edge_count: int = 0
    skipped: Optional[SkipReason] = None
    run_id: Optional[str] = None
    duration_ms: float = 0.0

    @classmethod
    def skip(cls, reason: SkipReason, **counts: Any) -> "DetectionResult":
        return cls(skipped=reason, **counts)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "communityCount": self.community_count,
            "modularity": self.modularity,
            "nodeCount": self.node_count,
            "edgeCount": self.edge_count,
        }
        if self.skipped is not None:
            data["skipped"] = self.skipped.value
        if self.run_id is not None:
            data["runId"] = self.run_id
        return data
