"""Hybrid search combining full-text and semantic rankings with RRF.

Two candidate lists are fetched concurrently for the caller's tenant and
visibility:

- lexical: full-text rank (``websearch_to_tsquery`` on Postgres, BM25 in
  memory), falling back to weighted substring matching when the query has no
  indexable terms
- semantic: ascending cosine distance to the query embedding

and fused with Reciprocal Rank Fusion. Without a usable query embedding the
search degrades to the lexical list alone.
"""

import asyncio
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from skillgraph.config import SearchConfig
from skillgraph.core.context import AccessContext
from skillgraph.core.fusion import reciprocal_rank_fusion
from skillgraph.core.models import ArtifactRecord, SearchHit, SearchQueryLog, SimilarArtifact
from skillgraph.core.vectors import InvalidEmbeddingError, validate_vector
from skillgraph.observability.logging import get_logger
from skillgraph.observability.metrics import MetricsManager, get_metrics_manager
from skillgraph.store.base import ArtifactStore

logger = get_logger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

MAX_SIMILAR_LIMIT = 20


class HybridSearchError(Exception):
    """Base exception for hybrid search errors."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message)
        self.context = context or {}


class SearchMode(str, Enum):
    """How a search was served."""

    HYBRID = "hybrid"
    LEXICAL = "lexical"
    SUBSTRING = "substring"

    @property
    def search_type(self) -> str:
        """Value recorded in the analytics log."""
        return "hybrid" if self is SearchMode.HYBRID else "keyword"


@dataclass
class _Candidates:
    lexical: list[ArtifactRecord]
    semantic: list[ArtifactRecord]
    mode: SearchMode


def normalize_query(query: str) -> str:
    """Lowercase and collapse whitespace."""
    return _WHITESPACE_RE.sub(" ", query).strip().lower()


def _sort_key(hit: SearchHit) -> tuple[Any, ...]:
    return (-hit.rrf_score, -hit.total_uses, -hit.average_rating, hit.id)


class HybridSearchService:
    """Service for tenant-scoped hybrid search.

    Example:
        >>> service = HybridSearchService(store, SearchConfig(), dimensions=768)
        >>> hits = await service.search(
        ...     AccessContext(tenant_id="acme", principal_id="u-1"),
        ...     "review pull requests",
        ...     query_embedding=vector,
        ... )
    """

    def __init__(
        self,
        store: Optional[ArtifactStore],
        config: SearchConfig | None = None,
        dimensions: Optional[int] = None,
        metrics: MetricsManager | None = None,
    ):
        """Initialize the search service.

        Args:
            store: Backing store, or None when the deployment has no database
            config: Search configuration (RRF k, list sizes, limits)
            dimensions: Expected query embedding length (None accepts any)
            metrics: Metrics manager (defaults to the global one)
        """
        self.store = store
        self.config = config or SearchConfig()
        self.dimensions = dimensions
        self.metrics = metrics or get_metrics_manager()
        self.logger = logger
        self._pending: set[asyncio.Task] = set()

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None or limit < 1:
            return self.config.default_limit
        return min(limit, self.config.max_limit)

    def _usable_embedding(self, query_embedding: Optional[list[float]]) -> Optional[list[float]]:
        """Return the validated embedding, or None to degrade to lexical-only."""
        if query_embedding is None:
            return None
        try:
            return validate_vector(query_embedding, self.dimensions)
        except InvalidEmbeddingError as e:
            self.logger.warning(
                "hybrid_search_degraded",
                reason="invalid_query_embedding",
                error=str(e),
                **e.context,
            )
            return None

    async def search(
        self,
        ctx: AccessContext,
        query: str,
        query_embedding: Optional[list[float]] = None,
        limit: Optional[int] = None,
    ) -> list[SearchHit]:
        """Search the artifacts visible to ``ctx``.

        Args:
            ctx: Tenant and principal the search runs for
            query: Free-text query
            query_embedding: Embedding of ``query``; missing or invalid
                vectors degrade the search to lexical-only
            limit: Number of results (default 10, capped at max_limit)

        Returns:
            Hits ordered by descending RRF score, then total uses, average
            rating and id

        Raises:
            HybridSearchError: If a store query fails
        """
        text = (query or "").strip()
        if self.store is None or not text:
            return []

        limit = self._clamp_limit(limit)
        vector = self._usable_embedding(query_embedding)
        start_time = time.monotonic()

        self.logger.info(
            "hybrid_search_started",
            tenant_id=ctx.tenant_id,
            query=text[:100],
            limit=limit,
            has_embedding=vector is not None,
        )

        try:
            candidates = await self._fetch_candidates(ctx, text, vector)
            hits = self._fuse(candidates)[:limit]
        except HybridSearchError:
            raise
        except Exception as e:
            duration_ms = (time.monotonic() - start_time) * 1000
            self.logger.error(
                "hybrid_search_error",
                tenant_id=ctx.tenant_id,
                query=text[:100],
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            raise HybridSearchError(
                f"Hybrid search failed: {e}",
                context={"tenant_id": ctx.tenant_id, "query": text[:100]},
            ) from e

        duration = time.monotonic() - start_time
        self.metrics.record_search(candidates.mode.value, duration)
        self.logger.info(
            "hybrid_search_completed",
            tenant_id=ctx.tenant_id,
            mode=candidates.mode.value,
            lexical_count=len(candidates.lexical),
            semantic_count=len(candidates.semantic),
            result_count=len(hits),
            duration_ms=round(duration * 1000, 2),
        )

        if self.config.record_queries:
            self._schedule_record(ctx, text, len(hits), candidates.mode)
        return hits

    async def _fetch_candidates(
        self,
        ctx: AccessContext,
        text: str,
        vector: Optional[list[float]],
    ) -> _Candidates:
        size = self.config.candidate_limit
        visibility = ctx.visibility

        lexical_call = self.store.lexical_search(
            text, ctx.tenant_id, visibility, size, language=self.config.language
        )
        if vector is not None:
            lexical, semantic_rows = await asyncio.gather(
                lexical_call,
                self.store.semantic_search(vector, ctx.tenant_id, visibility, size),
            )
            semantic = [artifact for artifact, _ in semantic_rows]
            mode = SearchMode.HYBRID
        else:
            lexical = await lexical_call
            semantic = []
            mode = SearchMode.LEXICAL

        if lexical is None:
            # No indexable terms in the query
            lexical = await self.store.substring_search(text, ctx.tenant_id, visibility, size)
            if mode is SearchMode.LEXICAL:
                mode = SearchMode.SUBSTRING

        return _Candidates(lexical=lexical, semantic=semantic, mode=mode)

    def _fuse(self, candidates: _Candidates) -> list[SearchHit]:
        artifacts: dict[str, ArtifactRecord] = {}
        for artifact in candidates.lexical + candidates.semantic:
            artifacts.setdefault(artifact.id, artifact)

        fused = reciprocal_rank_fusion(
            [a.id for a in candidates.lexical],
            [a.id for a in candidates.semantic],
            k=self.config.rrf_k,
        )
        hits = [
            SearchHit.from_artifact(
                artifacts[artifact_id],
                ft_rank=rank.ft_rank,
                sm_rank=rank.sm_rank,
                rrf_score=rank.score,
            )
            for artifact_id, rank in fused.items()
        ]
        hits.sort(key=_sort_key)
        return hits

    def _schedule_record(
        self,
        ctx: AccessContext,
        text: str,
        result_count: int,
        mode: SearchMode,
    ) -> None:
        entry = SearchQueryLog(
            tenant_id=ctx.tenant_id,
            user_id=ctx.principal_id,
            query=text,
            normalized_query=normalize_query(text),
            result_count=result_count,
            search_type=mode.search_type,
        )
        task = asyncio.create_task(self._record_query(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record_query(self, entry: SearchQueryLog) -> None:
        """Write an analytics row; failures are logged and never raised."""
        try:
            await self.store.record_search_query(entry)
        except Exception as e:
            self.logger.warning(
                "search_query_record_failed",
                tenant_id=entry.tenant_id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for pending analytics writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def find_similar(
        self,
        ctx: AccessContext,
        artifact_id: str,
        limit: int = 5,
    ) -> list[SimilarArtifact]:
        """Semantic neighbours of an artifact visible to ``ctx``.

        Returns an empty list when the artifact is not visible or has no
        embedding.
        """
        if self.store is None:
            return []

        limit = max(1, min(limit, MAX_SIMILAR_LIMIT))
        visibility = ctx.visibility

        artifact = await self.store.get_artifact(artifact_id, ctx.tenant_id, visibility)
        if artifact is None:
            return []
        embedding = await self.store.get_embedding(artifact_id)
        if embedding is None:
            return []

        neighbours = await self.store.query_knn(
            embedding.vector,
            limit,
            ctx.tenant_id,
            visibility,
            exclude_id=artifact_id,
            include_global=True,
        )
        records = await asyncio.gather(
            *(self.store.get_artifact(n.artifact_id, ctx.tenant_id, visibility) for n in neighbours)
        )
        return [
            SimilarArtifact(
                id=record.id,
                name=record.name,
                slug=record.slug,
                category=record.category,
                similarity=round(neighbour.similarity, 4),
            )
            for neighbour, record in zip(neighbours, records)
            if record is not None
        ]
