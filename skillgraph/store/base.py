"""Abstract artifact/embedding store.

Every read of artifact rows takes a :class:`VisibilityFilter`; there is no
method that returns artifacts without one. Two scopes are used:

- graph scope: ``tenant_id == T`` (KNN, detection, topology, communities)
- search scope: ``tenant_id == T OR visibility == global_approved``
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Optional

from skillgraph.core.models import (
    ArtifactRecord,
    AssignedArtifact,
    CommunityAssignment,
    DirectedEdge,
    EmbeddingRecord,
    Neighbor,
    SearchQueryLog,
    TopologyNode,
)
from skillgraph.core.visibility import VisibilityFilter


class StoreError(Exception):
    """Base exception for store errors."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.context = context or {}


class ArtifactNotFoundError(StoreError):
    """Raised when an artifact does not exist within the requested tenant."""
    pass


class ArtifactStore(ABC):
    """Storage interface consumed by the engine services."""

    # Embeddings

    @abstractmethod
    async def upsert_embedding(self, record: EmbeddingRecord) -> EmbeddingRecord:
        """Insert or overwrite the embedding of ``record.artifact_id``.

        Raises:
            ArtifactNotFoundError: If the artifact is absent or owned by
                another tenant than ``record.tenant_id``
        """
        raise NotImplementedError

    @abstractmethod
    async def get_embedding(self, artifact_id: str) -> Optional[EmbeddingRecord]:
        raise NotImplementedError

    @abstractmethod
    async def delete_embedding(self, artifact_id: str) -> bool:
        """Delete an embedding; returns False if none existed."""
        raise NotImplementedError

    # Artifacts

    @abstractmethod
    async def get_artifact(
        self,
        artifact_id: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        include_global: bool = True,
    ) -> Optional[ArtifactRecord]:
        """Fetch one published artifact if it is visible in the given scope."""
        raise NotImplementedError

    @abstractmethod
    async def count_eligible(self, tenant_id: str, visibility: VisibilityFilter) -> int:
        """Count published, visible artifacts of the tenant that have an embedding."""
        raise NotImplementedError

    # Nearest neighbours

    @abstractmethod
    async def query_knn(
        self,
        vector: Sequence[float],
        k: int,
        tenant_id: str,
        visibility: VisibilityFilter,
        exclude_id: Optional[str] = None,
        min_similarity: float = 0.0,
        include_global: bool = False,
    ) -> list[Neighbor]:
        """Return up to ``k`` eligible artifacts closest to ``vector``.

        Results are ordered by descending similarity (ties by id) and
        filtered to ``similarity >= min_similarity``.
        """
        raise NotImplementedError

    @abstractmethod
    async def knn_edges(
        self,
        tenant_id: str,
        k: int,
        min_similarity: float,
        visibility: VisibilityFilter,
    ) -> list[DirectedEdge]:
        """Return directed KNN edges for every eligible artifact of the tenant."""
        raise NotImplementedError

    # Search

    @abstractmethod
    async def lexical_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
        language: str = "english",
    ) -> Optional[list[ArtifactRecord]]:
        """Full-text search in rank order.

        Returns None when the query has no indexable terms, so the caller
        can fall back to substring matching.
        """
        raise NotImplementedError

    @abstractmethod
    async def substring_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[ArtifactRecord]:
        """Case-insensitive substring match weighted name 4, description 3, tags 1."""
        raise NotImplementedError

    @abstractmethod
    async def semantic_search(
        self,
        vector: Sequence[float],
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[tuple[ArtifactRecord, float]]:
        """Artifacts ordered by ascending cosine distance, with their similarity."""
        raise NotImplementedError

    # Topology and communities

    @abstractmethod
    async def list_topology_nodes(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        principal_id: Optional[str] = None,
    ) -> list[TopologyNode]:
        """Every published, visible artifact of the tenant with its assignment."""
        raise NotImplementedError

    @abstractmethod
    async def list_assigned_artifacts(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        community_id: Optional[int] = None,
        with_vectors: bool = False,
    ) -> list[AssignedArtifact]:
        """Published, visible artifacts that carry a community assignment."""
        raise NotImplementedError

    @abstractmethod
    async def get_community_assignments(self, tenant_id: str) -> list[CommunityAssignment]:
        raise NotImplementedError

    @abstractmethod
    async def replace_community_assignments(
        self,
        tenant_id: str,
        assignments: Sequence[CommunityAssignment],
    ) -> int:
        """Atomically replace every assignment row of the tenant.

        Either all old rows are replaced by ``assignments`` or, on failure,
        the previous rows stay untouched and a StoreError is raised.
        """
        raise NotImplementedError

    # Analytics

    @abstractmethod
    async def record_search_query(self, entry: SearchQueryLog) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
