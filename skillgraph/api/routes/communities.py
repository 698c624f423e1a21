"""Community API routes.

Detection is triggered by a scheduler calling ``POST /communities/detect``
with the configured cron secret as a bearer token; browsing uses the tenant
headers.
"""

import hmac
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Path, Query, status

from skillgraph.api.dependencies import EngineServices, get_access_context, get_services
from skillgraph.api.models import DetectionSkippedResponse
from skillgraph.core.context import AccessContext
from skillgraph.observability.logging import get_logger
from skillgraph.services.community_detection_service import (
    CommunityDetectionError,
    DetectionTimeoutError,
)

router = APIRouter(prefix="/communities", tags=["Communities"])
logger = get_logger(__name__)


def _authorized(authorization: Optional[str], secret: str) -> bool:
    expected = f"Bearer {secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


@router.post("/detect")
async def detect_communities(
    tenant_id: str = Query(..., min_length=1, description="Tenant to partition"),
    authorization: Optional[str] = Header(default=None),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Run community detection for a tenant (scheduled job)."""
    secret = services.settings.security.cron_secret
    if not secret:
        logger.warning("community_detection_cron_unconfigured", tenant_id=tenant_id)
        return DetectionSkippedResponse(reason="cron secret not configured").model_dump()

    if not _authorized(authorization, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    try:
        result = await services.detection.detect_communities(tenant_id)
    except DetectionTimeoutError as e:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Community detection timed out",
        ) from e
    except CommunityDetectionError as e:
        logger.error("community_detection_request_failed", tenant_id=tenant_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from e

    return result.to_dict()


@router.get("")
async def list_communities(
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """List the tenant's communities, largest first."""
    communities = await services.communities.get_communities(ctx)
    return {
        "communities": [c.to_dict() for c in communities],
        "count": len(communities),
    }


@router.get("/{community_id}")
async def get_community(
    community_id: int = Path(..., ge=0),
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Members of one community, most central first."""
    detail = await services.communities.get_community_detail(ctx, community_id)
    if detail is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Community {community_id} not found",
        )
    return detail.to_dict()
