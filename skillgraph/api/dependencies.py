"""FastAPI dependencies for the API layer.

Tenant and principal come from the ``X-Tenant-ID`` / ``X-Principal-ID``
headers set by the upstream authentication proxy.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from skillgraph.config import Settings, load_graph_config
from skillgraph.core.context import AccessContext
from skillgraph.services.community_detection_service import CommunityDetectionService
from skillgraph.services.community_query_service import CommunityQueryService
from skillgraph.services.embedding_service import EmbeddingConfig, EmbeddingService
from skillgraph.services.hybrid_search_service import HybridSearchService
from skillgraph.services.topology_service import TopologyService
from skillgraph.store.base import ArtifactStore


@dataclass
class EngineServices:
    """Services shared by every request, built once at startup."""

    settings: Settings
    store: Optional[ArtifactStore]
    embeddings: EmbeddingService
    detection: CommunityDetectionService
    topology: TopologyService
    communities: CommunityQueryService
    search: HybridSearchService

    @classmethod
    def build(cls, settings: Settings, store: Optional[ArtifactStore]) -> "EngineServices":
        graph_config, search_config = load_graph_config(settings=settings)
        return cls(
            settings=settings,
            store=store,
            embeddings=EmbeddingService(
                store,
                EmbeddingConfig(
                    dimensions=settings.embedding.dimensions,
                    default_model_name=settings.embedding.model_name,
                ),
            ),
            detection=CommunityDetectionService(store, graph_config),
            topology=TopologyService(store, graph_config),
            communities=CommunityQueryService(store),
            search=HybridSearchService(
                store,
                search_config,
                dimensions=settings.embedding.dimensions,
            ),
        )


def get_services(request: Request) -> EngineServices:
    """Get the services built by the application lifespan."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


async def get_access_context(
    x_tenant_id: Optional[str] = Header(default=None, alias="X-Tenant-ID"),
    x_principal_id: Optional[str] = Header(default=None, alias="X-Principal-ID"),
) -> AccessContext:
    """Build the access context from the trusted proxy headers.

    Raises:
        HTTPException: 400 if the tenant header is missing or blank
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Tenant-ID header",
        )
    principal = x_principal_id.strip() if x_principal_id else None
    return AccessContext(tenant_id=x_tenant_id.strip(), principal_id=principal or None)
