"""
Dependencies for the system API

Provides dependency injection functions for FastAPI endpoints.
"""
from fastapi import Depends, HTTPException, Request

from ..cache_control.execution import CacheExecution, CacheServices
from ..shared.config import Settings, get_settings
from .auth import TokenValidator


def get_app_settings(request: Request) -> Settings:
    """Settings the application was created with."""
    return getattr(request.app.state, "settings", None) or get_settings()


def get_cache_services(request: Request) -> CacheServices:
    return request.app.state.cache_services


def get_cache_execution(request: Request) -> CacheExecution:
    """The cache execution opened for this request."""
    execution = getattr(request.state, "cache", None)
    if execution is None:
        raise HTTPException(status_code=503, detail="Cache control is not configured")
    return execution


def get_token_validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


async def require_rest_token(
    request: Request,
    site_uid: str,
    services: CacheServices = Depends(get_cache_services),
    validator: TokenValidator = Depends(get_token_validator)
) -> None:
    """
    Gate for the internal REST namespace.

    A wrong namespace or a rejected token answers exactly like an unknown
    route.
    """
    if site_uid != str(services.site_config.get("site_uid", "")):
        raise HTTPException(status_code=404, detail="Not Found")

    if not await validator.authenticate(request):
        raise HTTPException(status_code=404, detail="Not Found")
