"""
Cache Control - External Cache-Tier Client

Encodes flush and purge requests for the platform's HTTP cache nodes.

Every call is fire-and-forget: the request is handed to a detached task with
a hard timeout and the caller returns immediately. Remote failures are logged
and never reported back, since a flushed local tier is already authoritative
and the edge purge is advisory.
"""
import asyncio
import re
from typing import Iterable, List, Optional, Set

import httpx
import structlog

from ..shared.config import SiteConfig
from .urls import url_path

logger = structlog.get_logger(__name__)


class EdgeCacheClient:
    """Client for the account's cache-tier host."""

    PURGE_HEADER = "X-Cache-Purge"
    DELETE_REGEX_PATH = "/_cache/delete_regex"

    def __init__(
        self,
        site_uid: str,
        account_uid: str,
        site_token: str,
        timeout: float = 1.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.site_uid = site_uid
        self.account_uid = account_uid
        self.site_token = site_token or ""
        self.timeout = timeout

        self._client = client
        self._owns_client = client is None
        self._pending: Set[asyncio.Task] = set()

        self.stats = {
            'flushes': 0,
            'purges': 0,
            'errors': 0
        }

    @classmethod
    def from_site_config(cls, config: SiteConfig, timeout: float = 1.0, **kwargs) -> "EdgeCacheClient":
        """Create a client from the site document."""
        return cls(
            site_uid=config.require("site_uid"),
            account_uid=config.require("account_uid"),
            site_token=config.get("site_token", ""),
            timeout=timeout,
            **kwargs
        )

    @property
    def cache_host(self) -> str:
        """Base URL of the cache node."""
        return f"http://wp-cache-{self.site_uid}.wp-{self.account_uid}"

    @property
    def web_host_pattern(self) -> str:
        """Regex matching the origin URLs the cache node stores."""
        return rf"^https?://wp-web-{self.site_uid}\.wp-{self.account_uid}"

    def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout))
            self._owns_client = True
        return self._client

    def purge_pattern(self, urls: Iterable[str]) -> str:
        """Regex alternation of the escaped URL paths, anchored at the path end."""
        paths = list(dict.fromkeys(re.escape(url_path(url)) for url in urls))
        return f"{self.web_host_pattern}({'|'.join(paths)})$"

    def build_flush_request(self) -> httpx.Request:
        """Request that flushes the whole HTTP cache."""
        return self.get_client().build_request(
            "PURGE",
            self.cache_host,
            headers={self.PURGE_HEADER: self.site_token}
        )

    def build_purge_request(self, urls: Iterable[str]) -> httpx.Request:
        """Request that evicts specific URLs from the HTTP cache."""
        return self.get_client().build_request(
            "GET",
            f"{self.cache_host}{self.DELETE_REGEX_PATH}",
            params={"url": self.purge_pattern(urls)}
        )

    def flush(self) -> None:
        """Dispatch a full flush. Does not wait for the cache node."""
        self.stats['flushes'] += 1
        self._dispatch(self.build_flush_request(), "flush")

    def purge(self, urls: Iterable[str]) -> None:
        """Dispatch a purge for specific URLs. Does not wait for the cache node."""
        urls: List[str] = list(urls)
        if not urls:
            return

        self.stats['purges'] += 1
        self._dispatch(self.build_purge_request(urls), "purge", url_count=len(urls))

    def _dispatch(self, request: httpx.Request, operation: str, **context) -> None:
        task = asyncio.get_running_loop().create_task(self._send(request, operation, context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, request: httpx.Request, operation: str, context: dict) -> None:
        try:
            response = await asyncio.wait_for(self.get_client().send(request), timeout=self.timeout)
            logger.debug(
                "Cache tier request sent",
                operation=operation,
                status_code=response.status_code,
                **context
            )
        except (httpx.HTTPError, asyncio.TimeoutError) as e:
            self.stats['errors'] += 1
            logger.warning(
                "Cache tier request failed",
                operation=operation,
                error=str(e) or type(e).__name__,
                **context
            )

    @property
    def pending(self) -> int:
        """Number of dispatches still in flight."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for in-flight dispatches, bounded by twice the request timeout."""
        if not self._pending:
            return

        done, not_done = await asyncio.wait(set(self._pending), timeout=self.timeout * 2)
        for task in not_done:
            task.cancel()

    async def aclose(self) -> None:
        """Drain pending dispatches and close the HTTP client."""
        await self.drain()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
