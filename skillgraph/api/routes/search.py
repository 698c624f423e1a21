"""Search API routes: hybrid search and similar artifacts."""

import uuid
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from skillgraph.api.dependencies import EngineServices, get_access_context, get_services
from skillgraph.api.models import SearchRequest
from skillgraph.core.context import AccessContext
from skillgraph.observability.logging import get_logger
from skillgraph.services.hybrid_search_service import HybridSearchError

router = APIRouter(tags=["Search"])
logger = get_logger(__name__)


@router.post("/search")
async def search(
    request: Request,
    body: SearchRequest,
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Hybrid lexical + semantic search over the artifacts visible to the caller."""
    request_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    try:
        hits = await services.search.search(
            ctx,
            body.query,
            query_embedding=body.query_embedding,
            limit=body.limit,
        )
    except HybridSearchError as e:
        logger.error("search_request_failed", request_id=request_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Search failed",
        ) from e

    return {
        "results": [hit.to_dict() for hit in hits],
        "count": len(hits),
        "query": body.query,
    }


@router.get("/artifacts/{artifact_id}/similar")
async def similar_artifacts(
    artifact_id: str,
    limit: int = Query(default=5, ge=1, le=20),
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Semantic neighbours of an artifact."""
    similar = await services.search.find_similar(ctx, artifact_id, limit=limit)
    return {
        "artifactId": artifact_id,
        "similar": [s.to_dict() for s in similar],
    }
