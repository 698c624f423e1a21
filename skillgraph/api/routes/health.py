"""Health and metrics routes."""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from skillgraph.api.dependencies import EngineServices, get_services
from skillgraph.api.models import HealthResponse
from skillgraph.observability.metrics import get_metrics_manager

router = APIRouter(tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def get_health(services: EngineServices = Depends(get_services)) -> HealthResponse:
    """Liveness check; reports whether a backing store is configured."""
    return HealthResponse(
        status="healthy",
        version=services.settings.app_version,
        environment=services.settings.env,
        store_configured=services.store is not None,
    )


@router.get("/metrics")
async def get_metrics(services: EngineServices = Depends(get_services)) -> Response:
    """Prometheus metrics endpoint."""
    if not services.settings.observability.prometheus_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics are disabled")
    metrics = get_metrics_manager()
    return Response(content=metrics.get_metrics(), media_type=metrics.content_type)
