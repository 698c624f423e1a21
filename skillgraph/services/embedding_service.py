"""Embedding maintenance service.

Vectors are produced elsewhere and handed over as float lists; this service
validates and stores them, and tells callers when a stored vector no longer
matches the artifact text it was computed from.
"""

import hashlib
import time
from dataclasses import dataclass
from typing import Optional

from skillgraph.core.models import EmbeddingRecord
from skillgraph.core.vectors import EmbeddingError, InvalidEmbeddingError, validate_vector
from skillgraph.observability.logging import get_logger
from skillgraph.store.base import ArtifactNotFoundError, ArtifactStore, StoreError

logger = get_logger(__name__)

__all__ = [
    "EmbeddingConfig",
    "EmbeddingError",
    "EmbeddingNotConfiguredError",
    "EmbeddingService",
    "InvalidEmbeddingError",
    "UnknownArtifactError",
    "compute_input_hash",
]


class EmbeddingNotConfiguredError(EmbeddingError):
    """Raised when a write is attempted without a backing store."""
    pass


class UnknownArtifactError(EmbeddingError):
    """Raised when the artifact does not exist in the caller's tenant."""
    pass


@dataclass
class EmbeddingConfig:
    """Configuration for embedding maintenance.

    Attributes:
        dimensions: Expected vector length
        default_model_name: Model name recorded when the caller omits one
    """

    dimensions: int = 768
    default_model_name: str = "nomic-embed-text"


def compute_input_hash(text: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoded embedding input."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingService:
    """Service for storing artifact embeddings.

    Example:
        >>> service = EmbeddingService(store, EmbeddingConfig(dimensions=768))
        >>> await service.upsert_embedding(
        ...     tenant_id="acme",
        ...     artifact_id="skill-1",
        ...     vector=vector,
        ...     input_hash=compute_input_hash(text),
        ... )
    """

    def __init__(
        self,
        store: Optional[ArtifactStore],
        config: EmbeddingConfig | None = None,
    ):
        self.store = store
        self.config = config or EmbeddingConfig()
        self.logger = logger

    @staticmethod
    def compute_input_hash(text: str) -> str:
        return compute_input_hash(text)

    def _require_store(self) -> ArtifactStore:
        if self.store is None:
            raise EmbeddingNotConfiguredError("Embedding store is not configured")
        return self.store

    async def upsert_embedding(
        self,
        tenant_id: str,
        artifact_id: str,
        vector: list[float],
        input_hash: str,
        model_name: Optional[str] = None,
        model_version: Optional[str] = None,
    ) -> EmbeddingRecord:
        """Validate and store the embedding of an artifact, replacing any previous one.

        Args:
            tenant_id: Tenant owning the artifact
            artifact_id: Artifact the vector belongs to
            vector: Embedding values
            input_hash: SHA-256 hex digest of the embedded text
            model_name: Model that produced the vector
            model_version: Optional model revision

        Returns:
            The stored EmbeddingRecord

        Raises:
            InvalidEmbeddingError: If the vector is empty, non-finite or mis-sized
            UnknownArtifactError: If the artifact is not owned by ``tenant_id``
            EmbeddingError: If the store rejects the write
        """
        start_time = time.monotonic()
        values = validate_vector(vector, self.config.dimensions)
        store = self._require_store()

        record = EmbeddingRecord(
            artifact_id=artifact_id,
            tenant_id=tenant_id,
            vector=values,
            model_name=model_name or self.config.default_model_name,
            model_version=model_version,
            input_hash=input_hash,
        )

        try:
            stored = await store.upsert_embedding(record)
        except InvalidEmbeddingError:
            raise
        except ArtifactNotFoundError as e:
            self.logger.warning(
                "embedding_artifact_not_found",
                tenant_id=tenant_id,
                artifact_id=artifact_id,
            )
            raise UnknownArtifactError(str(e), context=e.context) from e
        except StoreError as e:
            self.logger.error(
                "embedding_upsert_error",
                tenant_id=tenant_id,
                artifact_id=artifact_id,
                error=str(e),
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
            )
            raise EmbeddingError(
                f"Failed to store embedding: {e}",
                context={"artifact_id": artifact_id, **e.context},
            ) from e

        self.logger.info(
            "embedding_upserted",
            tenant_id=tenant_id,
            artifact_id=artifact_id,
            dimensions=stored.dimensions,
            model_name=stored.model_name,
            duration_ms=round((time.monotonic() - start_time) * 1000, 2),
        )
        return stored

    async def get_embedding(self, artifact_id: str) -> Optional[EmbeddingRecord]:
        if self.store is None:
            return None
        return await self.store.get_embedding(artifact_id)

    async def delete_embedding(self, artifact_id: str) -> bool:
        store = self._require_store()
        deleted = await store.delete_embedding(artifact_id)
        self.logger.info("embedding_deleted", artifact_id=artifact_id, deleted=deleted)
        return deleted

    async def is_stale(self, artifact_id: str, text: str) -> bool:
        """Return True when the artifact needs re-embedding for ``text``."""
        existing = await self.get_embedding(artifact_id)
        if existing is None:
            return True
        return existing.input_hash != compute_input_hash(text)
