"""
Health API Endpoint

- GET /health - Service liveness and option store reachability
"""

import logging

from fastapi import APIRouter, Depends

from ...cache_control.execution import CacheServices
from ...shared.config import ConfigError, Settings
from ...shared.schemas import ComponentHealth, HealthResponse, HealthStatus
from ..dependencies import get_app_settings, get_cache_services

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(
    services: CacheServices = Depends(get_cache_services),
    settings: Settings = Depends(get_app_settings)
) -> HealthResponse:
    """Health check endpoint."""
    components = {}

    database_ok = await services.db.health_check()
    components["database"] = ComponentHealth(
        status=HealthStatus.HEALTHY if database_ok else HealthStatus.UNHEALTHY
    )

    try:
        services.site_config.require("site_uid")
        components["site_config"] = ComponentHealth(status=HealthStatus.HEALTHY)
    except ConfigError as e:
        components["site_config"] = ComponentHealth(status=HealthStatus.UNHEALTHY, detail=str(e))

    healthy = all(c.status == HealthStatus.HEALTHY for c in components.values())

    return HealthResponse(
        status=HealthStatus.HEALTHY if healthy else HealthStatus.DEGRADED,
        version=settings.app_version,
        components=components
    )
