"""Artifact and embedding storage backends."""

from typing import Optional

from skillgraph.config import Settings
from skillgraph.db.models import create_session_factory, init_engine
from skillgraph.store.base import ArtifactStore, StoreError
from skillgraph.store.memory import InMemoryArtifactStore
from skillgraph.store.postgres import PostgresArtifactStore


def build_store(settings: Settings) -> Optional[ArtifactStore]:
    """Create the configured store, or None when no database URL is set."""
    if not settings.database.url:
        return None

    engine = init_engine(
        settings.database.url,
        echo=settings.database.echo,
        pool_size=settings.database.pool_size,
        max_overflow=settings.database.max_overflow,
        pool_timeout=settings.database.pool_timeout,
    )
    return PostgresArtifactStore(
        create_session_factory(engine),
        dimensions=settings.embedding.dimensions,
        engine=engine,
    )


__all__ = [
    "ArtifactStore",
    "InMemoryArtifactStore",
    "PostgresArtifactStore",
    "StoreError",
    "build_store",
]
