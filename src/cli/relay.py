"""
CLI - REST Flush Relay

A command line process cannot reach the in-process caches of the web
workers. When it flushes the object or opcode tier, the same flush is sent to
the site's private REST route so a web worker flushes its own copy.
"""
from typing import Dict, Optional

import httpx
import structlog

from ..cache_control.types import CacheType, FlushOutcome
from ..shared.config import Settings, SiteConfig

logger = structlog.get_logger(__name__)

RELAYED_TYPES = (CacheType.OBJECT, CacheType.OPCODE)


class RestFlushRelay:
    """Observer for the flush action that repeats local flushes over REST."""

    def __init__(self, site_config: SiteConfig, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.site_config = site_config
        self.settings = settings
        self._client = client
        self.responses: Dict[CacheType, Optional[dict]] = {}

    def get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            # Internal request to the site itself
            self._client = httpx.AsyncClient(
                verify=False,
                timeout=httpx.Timeout(self.settings.site.cli_rest_timeout)
            )
        return self._client

    def endpoint(self) -> Optional[str]:
        site_url = self.site_config.get("default_site_url")
        site_uid = self.site_config.get("site_uid")
        if not site_url or not site_uid:
            return None
        return f"{str(site_url).rstrip('/')}{self.settings.site.rest_prefix}/{site_uid}/v1/cache"

    async def __call__(self, results: Dict[CacheType, FlushOutcome]) -> None:
        for cache_type in RELAYED_TYPES:
            if cache_type in results:
                self.responses[cache_type] = await self.request(cache_type)

    async def request(self, cache_type: CacheType) -> Optional[dict]:
        """Send one FLUSH to the REST route. Returns its JSON body on success."""
        url = self.endpoint()
        if url is None:
            logger.warning("Cannot relay flush, site URL unknown", cache_type=cache_type.value)
            return None

        token = self.site_config.get("site_token", "")
        try:
            response = await self.get_client().request(
                "FLUSH",
                url,
                params={"types": cache_type.value},
                headers={"Authorization": f"Token {token}"}
            )
        except httpx.HTTPError as e:
            logger.warning("Flush relay failed", cache_type=cache_type.value, error=str(e))
            return None

        if response.status_code != 200:
            logger.warning("Flush relay rejected", cache_type=cache_type.value, status_code=response.status_code)
            return None

        try:
            return response.json()
        except ValueError:
            return None

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
