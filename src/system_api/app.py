"""
Main FastAPI Application for the hosting system service

Serves the site's private cache REST namespace, the nonce-protected web
flush trigger and HTTP cache headers for the pages passing through it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..cache_control.execution import CacheServices
from ..shared.config import Settings, get_settings
from ..shared.logging_config import LoggingConfig, configure_structlog, log_format_for
from ..shared.schemas import ErrorDetail, ErrorResponse
from .auth import NonceManager, SSOVerifier, TokenValidator
from .middleware import (
    CacheExecutionMiddleware,
    CacheFlushRequestMiddleware,
    CacheHeadersMiddleware,
    GrowlMiddleware,
    LoggingMiddleware,
    UserLoader,
    default_user_loader
)
from .routers import cache, health

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[CacheServices] = None,
    sso: Optional[SSOVerifier] = None,
    user_loader: UserLoader = default_user_loader
) -> FastAPI:
    """Build the application and its middleware stack."""
    configure_structlog()

    settings = settings or get_settings()
    services = services or CacheServices.create(settings)
    sso = sso or SSOVerifier(services.site_config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        logger.info(f"Starting {settings.app_name} {settings.app_version}")
        logger.info(f"Environment: {settings.environment.value}")
        await services.initialize()

        yield

        logger.info(f"Shutting down {settings.app_name}")
        await sso.aclose()
        await services.aclose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.cache_services = services
    app.state.token_validator = TokenValidator(services.site_config, sso)
    app.state.nonce_manager = NonceManager(
        settings.security.secret_key,
        lifetime=settings.security.nonce_lifetime
    )

    # Added innermost first
    app.add_middleware(
        CacheHeadersMiddleware,
        max_age=settings.cache.headers_max_age,
        enabled=settings.cache.headers_enabled
    )
    app.add_middleware(
        CacheFlushRequestMiddleware,
        nonces=app.state.nonce_manager,
        user_loader=user_loader
    )
    app.add_middleware(GrowlMiddleware, max_messages=settings.cache.growl_max_messages)
    app.add_middleware(CacheExecutionMiddleware)
    app.add_middleware(LoggingMiddleware)

    def error_response(
        request: Request,
        status_code: int,
        error_type: str,
        message: str,
        headers=None
    ) -> JSONResponse:
        body = ErrorResponse(error=ErrorDetail(
            type=error_type,
            message=message,
            request_id=getattr(request.state, "request_id", None)
        ))
        return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions with consistent error format."""
        return error_response(
            request,
            exc.status_code,
            "http_error",
            str(exc.detail),
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions with consistent error format."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return error_response(request, 500, "internal_error", "An internal server error occurred")

    app.include_router(health.router)
    app.include_router(cache.router, prefix=settings.site.rest_prefix)

    return app


def run_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Run the service with uvicorn."""
    settings = get_settings()
    uvicorn.run(
        "src.system_api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_config=LoggingConfig.get_config_dict(
            level=settings.monitoring.log_level.value,
            format_type=log_format_for(settings),
            log_file=settings.monitoring.log_file
        )
    )


if __name__ == "__main__":
    run_server()
