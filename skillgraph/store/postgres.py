"""PostgreSQL + pgvector artifact store.

Nearest-neighbour queries use pgvector's ``<=>`` cosine-distance operator,
served by the HNSW index on ``skill_embeddings.embedding``. Lexical search
uses ``websearch_to_tsquery`` over the generated, GIN-indexed
``search_vector`` column.

One session is opened per call so read paths can run concurrently.
"""

import time
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Float,
    String,
    and_,
    case,
    cast,
    delete,
    exists,
    false,
    func,
    literal,
    literal_column,
    or_,
    select,
    true,
)
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

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
from skillgraph.core.vectors import distance_to_similarity, validate_vector
from skillgraph.core.visibility import Visibility, VisibilityFilter
from skillgraph.db.models import (
    SEARCH_VECTOR_LANGUAGE,
    ArtifactModel,
    CommunityAssignmentModel,
    EmbeddingModel,
    SearchQueryModel,
    UsageEventModel,
    Vector,
    to_vector_literal,
)
from skillgraph.observability.logging import get_logger
from skillgraph.store.base import ArtifactNotFoundError, ArtifactStore, StoreError
from skillgraph.store.memory import SUBSTRING_WEIGHTS

logger = get_logger(__name__)

PUBLISHED = "published"


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_config(language: str) -> Any:
    """Literal regconfig for text search queries.

    Rendered inline rather than bound so the expression matches the one the
    ``search_vector`` column is generated with.
    """
    if language != SEARCH_VECTOR_LANGUAGE:
        raise StoreError(
            f"Unsupported search language: {language}",
            context={"language": language, "indexed_language": SEARCH_VECTOR_LANGUAGE},
        )
    return literal_column(f"'{language}'::regconfig")


def _vector_param(vector: Sequence[float]) -> Any:
    return cast(literal(to_vector_literal(vector), String), Vector(len(vector)))


def _cosine_distance(column: Any, vector: Sequence[float]) -> Any:
    return column.op("<=>", return_type=Float)(_vector_param(vector))


def _to_artifact(model: ArtifactModel) -> ArtifactRecord:
    return ArtifactRecord(
        id=model.id,
        tenant_id=model.tenant_id,
        name=model.name,
        slug=model.slug,
        description=model.description or "",
        category=model.category,
        tags=list(model.tags or []),
        visibility=model.visibility,
        status=model.status,
        author_id=model.author_id,
        total_uses=model.total_uses or 0,
        average_rating=float(model.average_rating or 0.0),
    )


def _to_embedding(model: EmbeddingModel) -> EmbeddingRecord:
    return EmbeddingRecord(
        artifact_id=model.skill_id,
        tenant_id=model.tenant_id,
        vector=list(model.embedding),
        model_name=model.model_name,
        model_version=model.model_version,
        dimensions=model.dimensions,
        input_hash=model.input_hash,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _to_assignment(model: CommunityAssignmentModel) -> CommunityAssignment:
    return CommunityAssignment(
        tenant_id=model.tenant_id,
        artifact_id=model.skill_id,
        community_id=model.community_id,
        modularity=model.modularity,
        detected_at=model.detected_at,
        run_id=model.run_id,
        community_label=model.community_label,
        community_description=model.community_description,
    )


class PostgresArtifactStore(ArtifactStore):
    """Artifact store backed by PostgreSQL with pgvector.

    Example:
        >>> engine = init_engine(settings.database.url)
        >>> store = PostgresArtifactStore(create_session_factory(engine), dimensions=768)
        >>> neighbours = await store.query_knn(vector, 10, "tenant-1", build_filter())
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        dimensions: Optional[int] = None,
        engine: Any = None,
    ):
        """Initialize the store.

        Args:
            session_factory: Factory producing AsyncSession instances
            dimensions: Expected vector length (None accepts any)
            engine: Engine to dispose on close, if owned by the store
        """
        self._session_factory = session_factory
        self.dimensions = dimensions
        self._engine = engine
        self.logger = logger

    @asynccontextmanager
    async def _session(self, operation: str, **context: Any) -> AsyncGenerator[AsyncSession, None]:
        """Open a session and wrap database errors into StoreError."""
        start_time = time.monotonic()
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                duration_ms = (time.monotonic() - start_time) * 1000
                self.logger.error(
                    "store_database_error",
                    operation=operation,
                    error=str(e),
                    duration_ms=round(duration_ms, 2),
                    **context,
                )
                raise StoreError(
                    f"Database operation {operation} failed: {e}",
                    context={"operation": operation, **context},
                ) from e

    # Scopes

    @staticmethod
    def _graph_scope(tenant_id: str, visibility: VisibilityFilter, skills: Any = ArtifactModel) -> Any:
        return and_(
            skills.tenant_id == tenant_id,
            skills.status == PUBLISHED,
            visibility.to_sql(skills.visibility, skills.author_id),
        )

    @staticmethod
    def _search_scope(tenant_id: str, visibility: VisibilityFilter) -> Any:
        return and_(
            or_(
                ArtifactModel.tenant_id == tenant_id,
                ArtifactModel.visibility == Visibility.GLOBAL_APPROVED.value,
            ),
            ArtifactModel.status == PUBLISHED,
            visibility.to_sql(ArtifactModel.visibility, ArtifactModel.author_id),
        )

    def _scope(self, tenant_id: str, visibility: VisibilityFilter, include_global: bool) -> Any:
        if include_global:
            return self._search_scope(tenant_id, visibility)
        return self._graph_scope(tenant_id, visibility)

    # Embeddings

    async def upsert_embedding(self, record: EmbeddingRecord) -> EmbeddingRecord:
        record.vector = validate_vector(record.vector, self.dimensions)
        record.dimensions = len(record.vector)
        now = datetime.now(timezone.utc)

        owner = select(ArtifactModel.id).where(
            ArtifactModel.id == record.artifact_id,
            ArtifactModel.tenant_id == record.tenant_id,
        )
        stmt = insert(EmbeddingModel).values(
            skill_id=record.artifact_id,
            tenant_id=record.tenant_id,
            embedding=record.vector,
            model_name=record.model_name,
            model_version=record.model_version,
            dimensions=record.dimensions,
            input_hash=record.input_hash,
            created_at=now,
            updated_at=now,
        )
        # Rows owned by another tenant are never rewritten
        stmt = stmt.on_conflict_do_update(
            index_elements=[EmbeddingModel.skill_id],
            set_={
                "embedding": stmt.excluded.embedding,
                "model_name": stmt.excluded.model_name,
                "model_version": stmt.excluded.model_version,
                "dimensions": stmt.excluded.dimensions,
                "input_hash": stmt.excluded.input_hash,
                "updated_at": stmt.excluded.updated_at,
            },
            where=EmbeddingModel.tenant_id == stmt.excluded.tenant_id,
        ).returning(EmbeddingModel.created_at, EmbeddingModel.updated_at)

        async with self._session("upsert_embedding", artifact_id=record.artifact_id) as session:
            async with session.begin():
                found = await session.execute(owner)
                row = None
                if found.scalar_one_or_none() is not None:
                    result = await session.execute(stmt)
                    row = result.one_or_none()

        if row is None:
            raise ArtifactNotFoundError(
                f"Artifact not found: {record.artifact_id}",
                context={"artifact_id": record.artifact_id, "tenant_id": record.tenant_id},
            )
        record.created_at, record.updated_at = row[0], row[1]
        return record

    async def get_embedding(self, artifact_id: str) -> Optional[EmbeddingRecord]:
        async with self._session("get_embedding", artifact_id=artifact_id) as session:
            result = await session.execute(
                select(EmbeddingModel).where(EmbeddingModel.skill_id == artifact_id)
            )
            model = result.scalar_one_or_none()
        return _to_embedding(model) if model is not None else None

    async def delete_embedding(self, artifact_id: str) -> bool:
        async with self._session("delete_embedding", artifact_id=artifact_id) as session:
            async with session.begin():
                result = await session.execute(
                    delete(EmbeddingModel).where(EmbeddingModel.skill_id == artifact_id)
                )
        return bool(result.rowcount)

    # Artifacts

    async def get_artifact(
        self,
        artifact_id: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        include_global: bool = True,
    ) -> Optional[ArtifactRecord]:
        stmt = select(ArtifactModel).where(
            ArtifactModel.id == artifact_id,
            self._scope(tenant_id, visibility, include_global),
        )
        async with self._session("get_artifact", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
        return _to_artifact(model) if model is not None else None

    async def count_eligible(self, tenant_id: str, visibility: VisibilityFilter) -> int:
        stmt = (
            select(func.count())
            .select_from(ArtifactModel)
            .join(EmbeddingModel, EmbeddingModel.skill_id == ArtifactModel.id)
            .where(self._graph_scope(tenant_id, visibility))
        )
        async with self._session("count_eligible", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            return int(result.scalar_one() or 0)

    # Nearest neighbours

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
        distance = _cosine_distance(EmbeddingModel.embedding, vector)
        stmt = (
            select(ArtifactModel.id, distance.label("distance"))
            .join(EmbeddingModel, EmbeddingModel.skill_id == ArtifactModel.id)
            .where(self._scope(tenant_id, visibility, include_global))
            .order_by(distance, ArtifactModel.id)
            .limit(k)
        )
        if exclude_id is not None:
            stmt = stmt.where(ArtifactModel.id != exclude_id)

        async with self._session("query_knn", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()

        neighbours = []
        for artifact_id, dist in rows:
            similarity = distance_to_similarity(dist)
            if similarity >= min_similarity:
                neighbours.append(Neighbor(artifact_id=artifact_id, similarity=similarity))
        return neighbours

    async def knn_edges(
        self,
        tenant_id: str,
        k: int,
        min_similarity: float,
        visibility: VisibilityFilter,
    ) -> list[DirectedEdge]:
        """All directed KNN edges of the tenant in one LATERAL join.

        The inner query reads the base tables and orders by distance alone, so
        each per-artifact lookup can be served by the HNSW index.
        """
        source_skill = aliased(ArtifactModel, name="sa")
        source = aliased(EmbeddingModel, name="ea")
        target_skill = aliased(ArtifactModel, name="sb")
        target = aliased(EmbeddingModel, name="eb")

        distance = source.embedding.op("<=>", return_type=Float)(target.embedding)
        neighbours = (
            select(target.skill_id.label("id"), distance.label("distance"))
            .join(target_skill, target_skill.id == target.skill_id)
            .where(
                target.tenant_id == tenant_id,
                target.skill_id != source.skill_id,
                self._graph_scope(tenant_id, visibility, target_skill),
            )
            .order_by(distance)
            .limit(k)
            .lateral("nn")
        )
        stmt = (
            select(source.skill_id, neighbours.c.id, neighbours.c.distance)
            .join(source_skill, source_skill.id == source.skill_id)
            .join(neighbours, true())
            .where(
                source.tenant_id == tenant_id,
                self._graph_scope(tenant_id, visibility, source_skill),
                neighbours.c.distance <= 1.0 - min_similarity,
            )
        )

        start_time = time.monotonic()
        async with self._session("knn_edges", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()

        edges = [
            (source_id, target_id, distance_to_similarity(dist))
            for source_id, target_id, dist in rows
        ]
        self.logger.debug(
            "knn_edges_fetched",
            tenant_id=tenant_id,
            edge_count=len(edges),
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return [edge for edge in edges if edge[2] >= min_similarity]

    # Search

    async def lexical_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
        language: str = "english",
    ) -> Optional[list[ArtifactRecord]]:
        tsquery = func.websearch_to_tsquery(search_config(language), query)
        tsvector = ArtifactModel.search_vector
        rank = func.ts_rank(tsvector, tsquery)
        stmt = (
            select(ArtifactModel, rank.label("rank"))
            .where(self._search_scope(tenant_id, visibility))
            .where(tsvector.op("@@")(tsquery))
            .order_by(rank.desc(), ArtifactModel.total_uses.desc(), ArtifactModel.id)
            .limit(limit)
        )

        async with self._session("lexical_search", tenant_id=tenant_id) as session:
            # A query made only of stopwords/punctuation yields an empty tsquery
            term_count = await session.execute(select(func.numnode(tsquery)))
            if not term_count.scalar_one():
                return None
            result = await session.execute(stmt)
            rows = result.all()

        return [_to_artifact(row[0]) for row in rows]

    async def substring_search(
        self,
        query: str,
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[ArtifactRecord]:
        needle = query.strip()
        if not needle:
            return []

        pattern = f"%{escape_like(needle)}%"
        score = (
            case((ArtifactModel.name.ilike(pattern, escape="\\"), SUBSTRING_WEIGHTS["name"]), else_=0)
            + case(
                (ArtifactModel.description.ilike(pattern, escape="\\"), SUBSTRING_WEIGHTS["description"]),
                else_=0,
            )
            + case(
                (
                    func.array_to_string(ArtifactModel.tags, " ").ilike(pattern, escape="\\"),
                    SUBSTRING_WEIGHTS["tags"],
                ),
                else_=0,
            )
        )
        stmt = (
            select(ArtifactModel, score.label("score"))
            .where(self._search_scope(tenant_id, visibility))
            .where(score > 0)
            .order_by(score.desc(), ArtifactModel.total_uses.desc(), ArtifactModel.id)
            .limit(limit)
        )

        async with self._session("substring_search", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()
        return [_to_artifact(row[0]) for row in rows]

    async def semantic_search(
        self,
        vector: Sequence[float],
        tenant_id: str,
        visibility: VisibilityFilter,
        limit: int,
    ) -> list[tuple[ArtifactRecord, float]]:
        distance = _cosine_distance(EmbeddingModel.embedding, vector)
        stmt = (
            select(ArtifactModel, distance.label("distance"))
            .join(EmbeddingModel, EmbeddingModel.skill_id == ArtifactModel.id)
            .where(self._search_scope(tenant_id, visibility))
            .order_by(distance, ArtifactModel.id)
            .limit(limit)
        )

        async with self._session("semantic_search", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()
        return [(_to_artifact(model), distance_to_similarity(dist)) for model, dist in rows]

    # Topology and communities

    async def list_topology_nodes(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        principal_id: Optional[str] = None,
    ) -> list[TopologyNode]:
        if principal_id:
            used = exists().where(
                UsageEventModel.skill_id == ArtifactModel.id,
                UsageEventModel.user_id == principal_id,
            )
        else:
            used = false()

        stmt = (
            select(
                ArtifactModel,
                CommunityAssignmentModel.community_id,
                CommunityAssignmentModel.community_label,
                used.label("used"),
            )
            .outerjoin(
                CommunityAssignmentModel,
                and_(
                    CommunityAssignmentModel.skill_id == ArtifactModel.id,
                    CommunityAssignmentModel.tenant_id == tenant_id,
                ),
            )
            .where(self._graph_scope(tenant_id, visibility))
            .order_by(ArtifactModel.name, ArtifactModel.id)
        )

        async with self._session("list_topology_nodes", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            TopologyNode(
                id=model.id,
                name=model.name,
                slug=model.slug,
                category=model.category,
                tags=list(model.tags or []),
                total_uses=model.total_uses or 0,
                average_rating=float(model.average_rating or 0.0),
                community_id=community_id,
                community_label=community_label,
                authored=bool(principal_id) and model.author_id == principal_id,
                used=bool(was_used),
            )
            for model, community_id, community_label, was_used in rows
        ]

    async def list_assigned_artifacts(
        self,
        tenant_id: str,
        visibility: VisibilityFilter,
        community_id: Optional[int] = None,
        with_vectors: bool = False,
    ) -> list[AssignedArtifact]:
        columns: list[Any] = [ArtifactModel, CommunityAssignmentModel]
        if with_vectors:
            columns.append(EmbeddingModel.embedding)

        stmt = (
            select(*columns)
            .join(
                CommunityAssignmentModel,
                and_(
                    CommunityAssignmentModel.skill_id == ArtifactModel.id,
                    CommunityAssignmentModel.tenant_id == tenant_id,
                ),
            )
            .where(self._graph_scope(tenant_id, visibility))
            .order_by(CommunityAssignmentModel.community_id, ArtifactModel.id)
        )
        if with_vectors:
            stmt = stmt.outerjoin(EmbeddingModel, EmbeddingModel.skill_id == ArtifactModel.id)
        if community_id is not None:
            stmt = stmt.where(CommunityAssignmentModel.community_id == community_id)

        async with self._session("list_assigned_artifacts", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            rows = result.all()

        return [
            AssignedArtifact(
                artifact=_to_artifact(row[0]),
                assignment=_to_assignment(row[1]),
                vector=list(row[2]) if with_vectors and row[2] is not None else None,
            )
            for row in rows
        ]

    async def get_community_assignments(self, tenant_id: str) -> list[CommunityAssignment]:
        stmt = (
            select(CommunityAssignmentModel)
            .where(CommunityAssignmentModel.tenant_id == tenant_id)
            .order_by(CommunityAssignmentModel.community_id, CommunityAssignmentModel.skill_id)
        )
        async with self._session("get_community_assignments", tenant_id=tenant_id) as session:
            result = await session.execute(stmt)
            return [_to_assignment(model) for model in result.scalars().all()]

    async def replace_community_assignments(
        self,
        tenant_id: str,
        assignments: Sequence[CommunityAssignment],
    ) -> int:
        """Delete-then-insert in one transaction under a per-tenant advisory lock."""
        rows = [
            {
                "tenant_id": a.tenant_id,
                "skill_id": a.artifact_id,
                "community_id": a.community_id,
                "modularity": a.modularity,
                "detected_at": a.detected_at,
                "run_id": a.run_id,
            }
            for a in assignments
        ]
        if any(row["tenant_id"] != tenant_id for row in rows):
            raise StoreError(
                "Assignment belongs to another tenant",
                context={"tenant_id": tenant_id},
            )

        async with self._session(
            "replace_community_assignments", tenant_id=tenant_id, row_count=len(rows)
        ) as session:
            async with session.begin():
                # Serializes concurrent runs for the tenant across processes
                await session.execute(select(func.pg_advisory_xact_lock(func.hashtext(tenant_id))))
                await session.execute(
                    delete(CommunityAssignmentModel).where(
                        CommunityAssignmentModel.tenant_id == tenant_id
                    )
                )
                if rows:
                    await session.execute(insert(CommunityAssignmentModel), rows)

        return len(rows)

    # Analytics

    async def record_search_query(self, entry: SearchQueryLog) -> None:
        async with self._session("record_search_query", tenant_id=entry.tenant_id) as session:
            async with session.begin():
                session.add(
                    SearchQueryModel(
                        tenant_id=entry.tenant_id,
                        user_id=entry.user_id,
                        query=entry.query,
                        normalized_query=entry.normalized_query,
                        result_count=entry.result_count,
                        search_type=entry.search_type,
                        created_at=entry.created_at or datetime.now(timezone.utc),
                    )
                )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
