"""SQLAlchemy models for the skill catalog tables the engine reads and writes."""

from datetime import datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Column,
    Computed,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import ARRAY, TSVECTOR
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import UserDefinedType

# Dimension of the vector column, matching EMBEDDING_DIMENSIONS
EMBEDDING_DIMENSIONS = 768

# Text search configuration baked into the generated search_vector column
SEARCH_VECTOR_LANGUAGE = "english"

# Weighted document: name (A), description (B), tags (C). Every function is
# IMMUTABLE, as generated columns require; skill_tags_text wraps the STABLE
# array_to_string and is created by the initial migration.
SEARCH_VECTOR_EXPRESSION = (
    "setweight(to_tsvector('english'::regconfig, coalesce(name, '')), 'A') || "
    "setweight(to_tsvector('english'::regconfig, coalesce(description, '')), 'B') || "
    "setweight(to_tsvector('english'::regconfig, skill_tags_text(tags)), 'C')"
)


class Vector(UserDefinedType[Any]):
    """SQLAlchemy type for pgvector VECTOR.

    Maps Python lists to PostgreSQL VECTOR columns and parses the textual
    ``[x,y,...]`` representation on the way back.

    Example:
        embedding = Column(Vector(768), nullable=False)
    """

    cache_ok = True

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS) -> None:
        self.dimensions = dimensions

    def get_col_spec(self, **kw: Any) -> str:
        return f"VECTOR({self.dimensions})"

    def bind_processor(self, dialect: Any) -> Any:
        def process(value: Any) -> Any:
            if value is None:
                return None
            if isinstance(value, (list, tuple)):
                return to_vector_literal(value)
            return value
        return process

    def result_processor(self, dialect: Any, coltype: Any) -> Any:
        def process(value: Any) -> Any:
            if value is None:
                return None
            if isinstance(value, str):
                return parse_vector_literal(value)
            return [float(x) for x in value]
        return process


def to_vector_literal(values: Any) -> str:
    """Render a vector as pgvector's ``[x,y,...]`` text form."""
    return f"[{','.join(repr(float(x)) for x in values)}]"


def parse_vector_literal(value: str) -> list[float]:
    value = value.strip().strip("[]")
    if not value:
        return []
    return [float(x) for x in value.split(",")]


Base: Any = declarative_base()


def init_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """Create the async engine.

    Args:
        database_url: Database URL (postgresql+asyncpg://...)
        echo: Whether to echo SQL statements
        pool_size: Connection pool size
        max_overflow: Max overflow connections
        pool_timeout: Seconds to wait for a pooled connection

    Returns:
        AsyncEngine instance
    """
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory used by the Postgres store, one session per call."""
    return async_sessionmaker(engine, expire_on_commit=False)


class ArtifactModel(Base):  # type: ignore[misc]
    """Catalog artifact ("skill").

    Owned by the content-management side; the engine only reads it.
    """

    __tablename__ = "skills"

    __table_args__ = (
        Index("uq_skills_tenant_slug", "tenant_id", "slug", unique=True),
        Index("idx_skills_tenant_status", "tenant_id", "status"),
        Index("idx_skills_visibility", "visibility"),
        Index("idx_skills_search_vector", "search_vector", postgresql_using="gin"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(String(64), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(100), nullable=True)
    tags = Column(ARRAY(String), nullable=False, default=list)
    visibility = Column(String(32), nullable=False, default="tenant")
    status = Column(String(32), nullable=False, default="draft")
    author_id = Column(String(64), nullable=True, index=True)
    total_uses = Column(Integer, nullable=False, default=0)
    average_rating = Column(Float, nullable=False, default=0.0)
    search_vector = Column(TSVECTOR, Computed(SEARCH_VECTOR_EXPRESSION, persisted=True))
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ArtifactModel(id={self.id}, tenant_id={self.tenant_id}, slug={self.slug})>"


class EmbeddingModel(Base):  # type: ignore[misc]
    """Embedding vector of one artifact.

    Attributes:
        skill_id: Artifact the vector belongs to (unique, cascade delete)
        tenant_id: Tenant of the artifact, denormalized for scoping
        embedding: pgvector column served by an HNSW cosine index
        model_name: Model that produced the vector
        model_version: Optional model revision
        dimensions: Vector length
        input_hash: SHA-256 hex digest of the embedded text
    """

    __tablename__ = "skill_embeddings"

    __table_args__ = (
        Index("uq_skill_embeddings_skill", "skill_id", unique=True),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    skill_id = Column(
        String(64),
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id = Column(String(64), nullable=False, index=True)
    embedding: Any = Column(Vector(dimensions=EMBEDDING_DIMENSIONS), nullable=False)
    model_name = Column(String(100), nullable=False)
    model_version = Column(String(50), nullable=True)
    dimensions = Column(Integer, nullable=False)
    input_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<EmbeddingModel(skill_id={self.skill_id}, "
            f"model_name={self.model_name}, dimensions={self.dimensions})>"
        )


class CommunityAssignmentModel(Base):  # type: ignore[misc]
    """Community membership row, replaced wholesale on every detection run."""

    __tablename__ = "skill_communities"

    __table_args__ = (
        Index("uq_skill_communities_tenant_skill", "tenant_id", "skill_id", unique=True),
        Index("idx_skill_communities_tenant_community", "tenant_id", "community_id"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(String(64), nullable=False)
    skill_id = Column(
        String(64),
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
    )
    community_id = Column(Integer, nullable=False)
    modularity = Column(Float, nullable=False)
    run_id = Column(String(64), nullable=False)
    detected_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    # Written only by the labeling collaborator
    community_label = Column(String(255), nullable=True)
    community_description = Column(Text, nullable=True)


class UsageEventModel(Base):  # type: ignore[misc]
    """Artifact usage event (read-only to the engine)."""

    __tablename__ = "usage_events"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    skill_id = Column(
        String(64),
        ForeignKey("skills.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(64), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)


class SearchQueryModel(Base):  # type: ignore[misc]
    """Append-only search analytics log."""

    __tablename__ = "search_queries"

    __table_args__ = (
        Index("idx_search_queries_tenant_created", "tenant_id", "created_at"),
    )

    id = Column(String(64), primary_key=True, default=lambda: str(uuid4()))
    tenant_id = Column(String(64), nullable=False)
    user_id = Column(String(64), nullable=True)
    query = Column(Text, nullable=False)
    normalized_query = Column(Text, nullable=False)
    result_count = Column(Integer, nullable=False, default=0)
    search_type = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
