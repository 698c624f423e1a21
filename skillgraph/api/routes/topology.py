"""Topology API route."""

from typing import Any

from fastapi import APIRouter, Depends

from skillgraph.api.dependencies import EngineServices, get_access_context, get_services
from skillgraph.core.context import AccessContext

router = APIRouter(prefix="/topology", tags=["Topology"])


@router.get("")
async def get_topology(
    ctx: AccessContext = Depends(get_access_context),
    services: EngineServices = Depends(get_services),
) -> dict[str, Any]:
    """Nodes, similarity edges and community summary of the tenant's catalog."""
    topology = await services.topology.get_topology(ctx)
    return topology.to_dict()
