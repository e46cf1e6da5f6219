"""
Cache API Endpoints - Internal Cache Control

Hidden routes in the site's private REST namespace:
- FLUSH /{site_uid}/v1/cache?types=object,http - Flush cache tiers
- PURGE /{site_uid}/v1/cache?urls=https://... - Purge URLs from the HTTP cache

Both require the site token or a single-sign-on token. Requests without a
valid token are answered like an unknown route.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from ...cache_control.execution import CacheExecution
from ...cache_control.types import CacheType, split_csv
from ...shared.config import Settings
from ..dependencies import get_app_settings, get_cache_execution, require_rest_token
from ..middleware import NOCACHE_HEADERS

logger = logging.getLogger(__name__)
router = APIRouter()

CACHE_ROUTE = "/{site_uid}/v1/cache"
FLUSH_ERRORS_HEADER = "X-Cache-Flush-Errors"


def rest_headers(settings: Settings) -> Dict[str, str]:
    """Headers sent with every response of the private namespace."""
    return {
        "X-MWP2-System-Plugin": settings.app_version,
        "X-MWP2-Version-ID": str(settings.site.version_id),
        **NOCACHE_HEADERS,
    }


@router.api_route(
    CACHE_ROUTE,
    methods=["FLUSH"],
    include_in_schema=False,
    dependencies=[Depends(require_rest_token)]
)
async def flush_cache(
    types: Optional[str] = Query(None, description="Comma-separated cache types"),
    execution: CacheExecution = Depends(get_cache_execution),
    settings: Settings = Depends(get_app_settings)
):
    """Flush the requested cache tiers. Defaults to the object cache."""
    results = await execution.control.flush(split_csv(types) or [CacheType.OBJECT])

    headers = rest_headers(settings)
    if execution.control.errors:
        headers[FLUSH_ERRORS_HEADER] = "; ".join(
            f"{cache_type.value}: {error.message}"
            for cache_type, error in execution.control.errors.items()
        )

    logger.info(f"REST flush: {sorted(t.value for t in results)}")

    return JSONResponse(
        content={cache_type.value: outcome for cache_type, outcome in results.items()},
        headers=headers
    )


@router.api_route(
    CACHE_ROUTE,
    methods=["PURGE"],
    include_in_schema=False,
    dependencies=[Depends(require_rest_token)]
)
async def purge_cache(
    urls: Optional[str] = Query(None, description="Comma-separated URLs"),
    execution: CacheExecution = Depends(get_cache_execution),
    settings: Settings = Depends(get_app_settings)
):
    """Purge URLs from the HTTP cache. Defaults to the home URL."""
    requested = split_csv(urls) or [execution.triggers.content.home_url()]

    purged = await execution.control.purge(requested)

    logger.info(f"REST purge: {len(purged)} URL(s)")

    return JSONResponse(content=purged, headers=rest_headers(settings))
