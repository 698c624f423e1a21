"""
In-memory artifact store.

Exact O(n) cosine scans and a small BM25 index rebuilt per query. Suitable for
tests, local development and small catalogs only; production deployments use
:class:`~skillgraph.store.postgres.PostgresArtifactStore` with its HNSW index.
"""

import asyncio
import math
import re
from collections import Counter
from collections.abc import Sequence
from datetime import datetime, timezone
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
from skillgraph.core.vectors import cosine_distance, distance_to_similarity, validate_vector
from skillgraph.core.visibility import Visibility, VisibilityFilter
from skillgraph.observability.logging import get_logger
from skillgraph.store.base import ArtifactNotFoundError, ArtifactStore, StoreError

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

# Subset of the Postgres english stopword list
STOPWORDS = frozenset(
    """
    a an and are as at be but by for from has have how i if in into is it its
    me my no not of on or our so such that the their then there these they this
    to was we were what when where which who why will with you your
    """.split()
)

# BM25 parameters
_BM25_K1 = 1.2
_BM25_B = 0.75

SUBSTRING_WEIGHTS = {"name": 4, "description": 3, "tags": 1}


def tokenize(text: str) -> list[str]:
    """Lowercase alphanumeric tokens without stopwords or single characters."""
    return [
        token for token in _TOKEN_RE.findall(text.lower())
        if len(token) > 1 and token not in STOPWORDS
    ]


def _document_text(artifact: ArtifactRecord) -> str:
    return " ".join([artifact.name, artifact.description, " ".join(artifact.tags)])


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryArtifactStore(ArtifactStore):
    """In-memory store with per-tenant isolation and exact search.

    Example:
        >>> store = InMemoryArtifactStore(dimensions=768)
        >>> store.add_artifact(ArtifactRecord(id="a1", tenant_id="t1", name="Git", slug="git"))
    """

    def __init__(self, dimensions: Optional[int] = None) -> None:
        self.dimensions = dimensions
        self._artifacts: dict[str, ArtifactRecord] = {}
        self._embeddings: dict[str, EmbeddingRecord] = {}
        self._assignments: dict[str, dict[str, CommunityAssignment]] = {}
        self._usage: set[tuple[str, str]] = set()
        self.search_log: list[SearchQueryLog] = []
        self._write_lock = asyncio.Lock()

    # Content side (artifacts and usage are owned outside the engine)

    def add_artifact(self, artifact: ArtifactRecord) -> ArtifactRecord:
        self._artifacts[artifact.id] = artifact
        return artifact

    def remove_artifact(self, artifact_id: str) -> None:
        """Remove an artifact and cascade to its embedding and assignment."""
        artifact = self._artifacts.pop(artifact_id, None)
        self._embeddings.pop(artifact_id, None)
        if artifact is not None:
            self._assignments.get(artifact.tenant_id, {}).pop(artifact_id, None)
        self._usage = {(a, u) for a, u in self._usage if a != artifact_id}

    def record_usage(self, artifact_id: str, user_id: str) -> None:
        self._usage.add((artifact_id, user_id))

    # Eligibility

    def _in_scope(self, artifact: ArtifactRecord, tenant_id: str, include_global: bool) -> bool:
        if artifact.tenant_id == tenant_id:
            return True
        return include_global and artifact.visibility == Visibility.GLOBAL_APPROVED.value

    def _eligible(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        include_global: bool = False,
        require_embedding: bool = False,
    ) -> list[ArtifactRecord]:
        return [
            artifact for artifact in self._artifacts.values()
            if artifact.is_published
            and self._in_scope(artifact, tenant_id, include_global)
            and visibility.matches(artifact.visibility, artifact.author_id)
            and (not require_embedding or artifact.id in self._embeddings)
        ]

    # Embeddings

    async def upsert_embedding(self, record: EmbeddingRecord) -> EmbeddingRecord:
        record.vector = validate_vector(record.vector, self.dimensions)
        record.dimensions = len(record.vector)
        artifact = self._artifacts.get(record.artifact_id)
        if artifact is None or artifact.tenant_id != record.tenant_id:
            raise ArtifactNotFoundError(
                f"Artifact not found: {record.artifact_id}",
                context={"artifact_id": record.artifact_id, "tenant_id": record.tenant_id},
            )

        now = _utcnow()
        existing = self._embeddings.get(record.artifact_id)
        record.created_at = existing.created_at if existing else now
        record.updated_at = now
        self._embeddings[record.artifact_id] = record
        return record

    async def get_embedding(self, artifact_id: str) -> Optional[EmbeddingRecord]:
        return self._embeddings.get(artifact_id)

    async def delete_embedding(self, artifact_id: str) -> bool:
        return self._embeddings.pop(artifact_id, None) is not None

    # Artifacts

    async def get_artifact(
        self,
        artifact_id: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        include_global: bool = True,
    ) -> Optional[ArtifactRecord]:
        artifact = self._artifacts.get(artifact_id)
        if artifact is None or not artifact.is_published:
            return None
        if not self._in_scope(artifact, tenant_id, include_global):
            return None
        if not visibility.matches(artifact.visibility, artifact.author_id):
            return None
        return artifact

    async def count_eligible(self, tenant_id: str, visibility: VisibilityFilter) -> int:
        return len(self._eligible(tenant_id, visibility, require_embedding=True))

    # Nearest neighbours

    def _scan(
        self,
        vector: Sequence[float],
        candidates: list[ArtifactRecord],
        exclude_id: Optional[str] = None,
    ) -> list[tuple[ArtifactRecord, float]]:
        """Exact cosine scan, ordered by ascending distance then id."""
        scored = [
            (artifact, cosine_distance(vector, self._embeddings[artifact.id].vector))
            for artifact in candidates
            if artifact.id != exclude_id
        ]
        scored.sort(key=lambda item: (item[1], item[0].id))
        return scored

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
        candidates = self._eligible(
            tenant_id, visibility, include_global=include_global, require_embedding=True
        )
        neighbours: list[Neighbor] = []
        for artifact, distance in self._scan(vector, candidates, exclude_id)[:k]:
            similarity = distance_to_similarity(distance)
            if similarity >= min_similarity:
                neighbours.append(Neighbor(artifact_id=artifact.id, similarity=similarity))
        return neighbours

    async def knn_edges(
        self,
        tenant_id: str,
        k: int,
        min_similarity: float,
        visibility: VisibilityFilter,
    ) -> list[DirectedEdge]:
        candidates = self._eligible(tenant_id, visibility, require_embedding=True)
        edges: list[DirectedEdge] = []
        for artifact in sorted(candidates, key=lambda a: a.id):
            vector = self._embeddings[artifact.id].vector
            for artifact_b, distance in self._scan(vector, candidates, artifact.id)[:k]:
                similarity = distance_to_similarity(distance)
                if similarity >= min_similarity:
                    edges.append((artifact.id, artifact_b.id, similarity))
        return edges

    # Search

    async def lexical_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
        language: str = "english",
    ) -> Optional[list[ArtifactRecord]]:
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms:
            return None

        corpus = self._eligible(tenant_id, visibility, include_global=True)
        if not corpus:
            return []

        documents = {a.id: Counter(tokenize(_document_text(a))) for a in corpus}
        avg_length = sum(sum(c.values()) for c in documents.values()) / len(documents) or 1.0
        doc_freq = {
            term: sum(1 for counts in documents.values() if term in counts)
            for term in terms
        }

        scored: list[tuple[float, ArtifactRecord]] = []
        for artifact in corpus:
            counts = documents[artifact.id]
            # AND semantics, like websearch_to_tsquery
            if not all(term in counts for term in terms):
                continue
            length = sum(counts.values())
            score = 0.0
            for term in terms:
                idf = math.log(1 + (len(corpus) - doc_freq[term] + 0.5) / (doc_freq[term] + 0.5))
                tf = counts[term]
                score += idf * tf * (_BM25_K1 + 1) / (
                    tf + _BM25_K1 * (1 - _BM25_B + _BM25_B * length / avg_length)
                )
            scored.append((score, artifact))

        scored.sort(key=lambda item: (-item[0], -item[1].total_uses, item[1].id))
        return [artifact for _, artifact in scored[:limit]]

    async def substring_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[ArtifactRecord]:
        needle = query.strip().lower()
        if not needle:
            return []

        scored: list[tuple[int, ArtifactRecord]] = []
        for artifact in self._eligible(tenant_id, visibility, include_global=True):
            score = 0
            if needle in artifact.name.lower():
                score += SUBSTRING_WEIGHTS["name"]
            if needle in artifact.description.lower():
                score += SUBSTRING_WEIGHTS["description"]
            if any(needle in tag.lower() for tag in artifact.tags):
                score += SUBSTRING_WEIGHTS["tags"]
            if score:
                scored.append((score, artifact))

        scored.sort(key=lambda item: (-item[0], -item[1].total_uses, item[1].id))
        return [artifact for _, artifact in scored[:limit]]

    async def semantic_search(
        self,
        vector: Sequence[float],
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[tuple[ArtifactRecord, float]]:
        candidates = self._eligible(
            tenant_id, visibility, include_global=True, require_embedding=True
        )
        return [
            (artifact, distance_to_similarity(distance))
            for artifact, distance in self._scan(vector, candidates)[:limit]
        ]

    # Topology and communities

    async def list_topology_nodes(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        principal_id: Optional[str] = None,
    ) -> list[TopologyNode]:
        assignments = self._assignments.get(tenant_id, {})
        nodes = []
        for artifact in sorted(self._eligible(tenant_id, visibility), key=lambda a: (a.name, a.id)):
            assignment = assignments.get(artifact.id)
            nodes.append(
                TopologyNode(
                    id=artifact.id,
                    name=artifact.name,
                    slug=artifact.slug,
                    category=artifact.category,
                    tags=list(artifact.tags),
                    total_uses=artifact.total_uses,
                    average_rating=artifact.average_rating,
                    community_id=assignment.community_id if assignment else None,
                    community_label=assignment.community_label if assignment else None,
                    authored=bool(principal_id) and artifact.author_id == principal_id,
                    used=bool(principal_id) and (artifact.id, principal_id) in self._usage,
                )
            )
        return nodes

    async def list_assigned_artifacts(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        community_id: Optional[int] = None,
        with_vectors: bool = False,
    ) -> list[AssignedArtifact]:
        assignments = self._assignments.get(tenant_id, {})
        rows = []
        for artifact in self._eligible(tenant_id, visibility):
            assignment = assignments.get(artifact.id)
            if assignment is None:
                continue
            if community_id is not None and assignment.community_id != community_id:
                continue
            vector = None
            if with_vectors and artifact.id in self._embeddings:
                vector = list(self._embeddings[artifact.id].vector)
            rows.append(AssignedArtifact(artifact=artifact, assignment=assignment, vector=vector))
        return rows

    async def get_community_assignments(self, tenant_id: str) -> list[CommunityAssignment]:
        return sorted(
            self._assignments.get(tenant_id, {}).values(),
            key=lambda a: (a.community_id, a.artifact_id),
        )

    def _stage_assignment(
        self,
        staged: dict[str, CommunityAssignment],
        assignment: CommunityAssignment,
    ) -> None:
        if assignment.artifact_id in staged:
            raise StoreError(
                f"Duplicate assignment for artifact {assignment.artifact_id}",
                context={"artifact_id": assignment.artifact_id},
            )
        staged[assignment.artifact_id] = assignment

    async def replace_community_assignments(
        self,
        tenant_id: str,
        assignments: Sequence[CommunityAssignment],
    ) -> int:
        async with self._write_lock:
            staged: dict[str, CommunityAssignment] = {}
            try:
                for assignment in assignments:
                    if assignment.tenant_id != tenant_id:
                        raise StoreError(
                            "Assignment belongs to another tenant",
                            context={
                                "tenant_id": tenant_id,
                                "assignment_tenant_id": assignment.tenant_id,
                            },
                        )
                    self._stage_assignment(staged, assignment)
            except StoreError:
                raise
            except Exception as e:
                raise StoreError(
                    f"Failed to stage community assignments: {e}",
                    context={"tenant_id": tenant_id},
                ) from e

            self._assignments[tenant_id] = staged

        logger.debug(
            "community_assignments_replaced",
            tenant_id=tenant_id,
            row_count=len(staged),
        )
        return len(staged)

    # Analytics

    async def record_search_query(self, entry: SearchQueryLog) -> None:
        if entry.created_at is None:
            entry.created_at = _utcnow()
        self.search_log.append(entry)
