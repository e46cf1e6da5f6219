"""
Cache Control - Execution Wiring

CacheServices holds the process-wide collaborators (database, object caches,
HTTP client, content source). Each web request, REST call or CLI invocation
asks it for a CacheExecution, which owns a fresh registry, its hooks and the
trigger bindings, and runs the deferred flushes when it closes.
"""
from typing import Callable, Optional
from uuid import uuid4

import httpx
import structlog

from ..shared.config import Settings, SiteConfig, get_settings, get_site_config
from ..shared.logging_config import get_execution_id
from .content_urls import ContentSource, InMemoryContentSource
from .drivers import build_drivers
from .edge_client import EdgeCacheClient
from .hooks import HookRegistry
from .object_cache import ObjectCache, RedisUserCache
from .registry import CacheControl
from .storage import DatabaseManager, OptionStore, SystemOptions, TransientStore
from .triggers import TriggerMap

logger = structlog.get_logger(__name__)


class CacheExecution:
    """Cache engine state for one execution."""

    def __init__(
        self,
        control: CacheControl,
        triggers: TriggerMap,
        edge_client: EdgeCacheClient,
        execution_id: Optional[str] = None
    ):
        self.id = execution_id or get_execution_id() or uuid4().hex[:12]
        self.control = control
        self.hooks = control.hooks
        self.triggers = triggers
        self.edge_client = edge_client
        self.closed = False

    async def close(self) -> None:
        """Run deferred flushes and wait for cache-tier dispatches."""
        if self.closed:
            return
        self.closed = True

        await self.control.shutdown()
        await self.edge_client.drain()
        logger.debug(
            "Cache execution closed",
            execution_id=self.id,
            flushed=sorted(t.value for t in self.control.flushed)
        )

    async def __aenter__(self) -> "CacheExecution":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class CacheServices:
    """Process-wide collaborators of the cache engine."""

    def __init__(
        self,
        settings: Settings,
        site_config: SiteConfig,
        content: ContentSource,
        db: DatabaseManager,
        object_cache: ObjectCache,
        user_cache: Optional[RedisUserCache] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        opcode_reset: Optional[Callable[[], None]] = None
    ):
        self.settings = settings
        self.site_config = site_config
        self.content = content
        self.db = db
        self.options = OptionStore(db)
        self.system_options = SystemOptions(self.options)
        self.transients = TransientStore(self.options)
        self.object_cache = object_cache
        self.user_cache = user_cache
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.cache.edge_timeout)
        )
        self.opcode_reset = opcode_reset

    @classmethod
    def create(
        cls,
        settings: Optional[Settings] = None,
        site_config: Optional[SiteConfig] = None,
        content: Optional[ContentSource] = None,
        **kwargs
    ) -> "CacheServices":
        """Build the services from settings and the site document."""
        settings = settings or get_settings()
        site_config = site_config or get_site_config()

        if content is None:
            content = InMemoryContentSource(site_config.get("default_site_url", "http://localhost"))

        if "user_cache" not in kwargs and settings.redis.redis_url:
            kwargs["user_cache"] = RedisUserCache(settings.redis.redis_url, timeout=settings.redis.redis_timeout)

        return cls(
            settings=settings,
            site_config=site_config,
            content=content,
            db=kwargs.pop("db", None) or DatabaseManager.from_settings(settings.database),
            object_cache=kwargs.pop("object_cache", None) or ObjectCache(
                max_size=settings.cache.object_cache_max_size,
                default_ttl=settings.cache.object_cache_ttl
            ),
            **kwargs
        )

    async def initialize(self) -> None:
        await self.db.initialize()
        logger.info("Cache services initialized")

    def execution(self) -> CacheExecution:
        """Start a new execution with fresh ledgers."""
        edge_client = EdgeCacheClient.from_site_config(
            self.site_config,
            timeout=self.settings.cache.edge_timeout,
            client=self.http_client
        )
        drivers = build_drivers(
            edge_client,
            self.object_cache,
            self.transients,
            options=self.system_options,
            user_cache=self.user_cache,
            opcode_reset=self.opcode_reset
        )

        control = CacheControl(drivers, HookRegistry())
        triggers = TriggerMap(control, self.content)
        triggers.register(control.hooks)

        return CacheExecution(control, triggers, edge_client)

    async def aclose(self) -> None:
        if self.user_cache is not None:
            await self.user_cache.disconnect()
        await self.http_client.aclose()
        await self.db.close()
        logger.info("Cache services closed")
