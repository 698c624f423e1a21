"""Embedding maintenance routes, called by the embedding producer."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from skillgraph.api.dependencies import EngineServices, get_access_context, get_services
from skillgraph.api.models import EmbeddingUpsertRequest
from skillgraph.core.context import AccessContext
from skillgraph.observability.logging import get_logger
from skillgraph.services.embedding_service import (
    EmbeddingError,
    EmbeddingNotConfiguredError,
    InvalidEmbeddingError,
    UnknownArtifactError,
)

router = APIRouter(prefix="/embeddings", tags=["Embeddings"])
logger = get_logger(__name__)


@router.put("/{artifact_id}")
async def upsert_embedding(
    artifact_id: str,
    body: EmbeddingUpsertRequest,
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Store or replace the embedding of an artifact."""
    try:
        record = await services.embeddings.upsert_embedding(
            tenant_id=ctx.tenant_id,
            artifact_id=artifact_id,
            vector=body.vector,
            input_hash=body.input_hash,
            model_name=body.model_name,
            model_version=body.model_version,
        )
    except InvalidEmbeddingError as e:
        logger.warning("embedding_rejected", artifact_id=artifact_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid embedding vector: {e}",
        ) from e
    except UnknownArtifactError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Artifact {artifact_id} not found",
        ) from e
    except EmbeddingNotConfiguredError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding store is not configured",
        ) from e
    except EmbeddingError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to store embedding",
        ) from e

    return {
        "artifactId": record.artifact_id,
        "dimensions": record.dimensions,
        "modelName": record.model_name,
        "modelVersion": record.model_version,
        "inputHash": record.input_hash,
        "updatedAt": record.updated_at.isoformat() if record.updated_at else None,
    }
