"""
Cache Control - Cache Type Drivers

One driver per cache tier. Drivers do the actual flushing; the registry
decides when they run.
"""
import importlib
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional

import structlog
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from .edge_client import EdgeCacheClient
from .object_cache import ObjectCache, RedisUserCache
from .storage import SystemOptions, TransientStore
from .types import CacheFlushError, CacheType, FlushOutcome

logger = structlog.get_logger(__name__)

LAST_OBJECT_CACHE_FLUSH = "last_object_cache_flush"


class CacheDriver(ABC):
    """Base class for cache tier drivers."""

    cache_type: CacheType

    @abstractmethod
    async def flush(self) -> FlushOutcome:
        """Flush the tier. Raises CacheFlushError on failure."""
        pass

    def __repr__(self):
        return f"<{self.__class__.__name__}(cache_type='{self.cache_type.value}')>"


class HTTPCacheDriver(CacheDriver):
    """Edge HTTP cache, reached through the cache-tier client."""

    cache_type = CacheType.HTTP

    def __init__(self, edge_client: EdgeCacheClient):
        self.edge_client = edge_client

    async def flush(self) -> FlushOutcome:
        # The cache node's answer is never awaited
        self.edge_client.flush()
        return True

    async def purge(self, urls: Iterable[str]) -> bool:
        urls = list(urls)
        if urls:
            self.edge_client.purge(urls)
        return bool(urls)


class ObjectCacheDriver(CacheDriver):
    """In-process object cache plus the optional Redis user cache."""

    cache_type = CacheType.OBJECT

    def __init__(
        self,
        object_cache: ObjectCache,
        options: Optional[SystemOptions] = None,
        user_cache: Optional[RedisUserCache] = None
    ):
        self.object_cache = object_cache
        self.options = options
        self.user_cache = user_cache

    async def flush(self) -> FlushOutcome:
        removed = self.object_cache.flush()

        if self.user_cache is not None:
            try:
                await self.user_cache.flush()
            except RedisError as e:
                logger.warning("User cache flush failed", error=str(e))

        if self.options is not None:
            try:
                await self.options.update(LAST_OBJECT_CACHE_FLUSH, int(time.time()))
            except SQLAlchemyError as e:
                logger.warning("Could not record object cache flush", error=str(e))

        logger.debug("Object cache flushed", entries=removed)
        return True


class OpcodeCacheDriver(CacheDriver):
    """Compiled-code cache of the runtime."""

    cache_type = CacheType.OPCODE

    def __init__(self, reset: Optional[Callable[[], None]] = None):
        self.reset = reset if reset is not None else importlib.invalidate_caches

    async def flush(self) -> FlushOutcome:
        if self.reset is not None:
            self.reset()
        return True


class TransientCacheDriver(CacheDriver):
    """Transient rows in the options table."""

    cache_type = CacheType.TRANSIENT

    ERROR_MESSAGE = "The transient cache could not be flushed."

    def __init__(self, store: TransientStore):
        self.store = store

    async def flush(self) -> FlushOutcome:
        try:
            return await self.store.delete_all()
        except SQLAlchemyError as e:
            logger.error("Transient delete failed", error=str(e))
            raise CacheFlushError(self.cache_type, self.ERROR_MESSAGE) from e


def build_drivers(
    edge_client: EdgeCacheClient,
    object_cache: ObjectCache,
    transients: TransientStore,
    options: Optional[SystemOptions] = None,
    user_cache: Optional[RedisUserCache] = None,
    opcode_reset: Optional[Callable[[], None]] = None
) -> Dict[CacheType, CacheDriver]:
    """Wire the four tier drivers, keyed and ordered by cache type."""
    drivers: List[CacheDriver] = [
        HTTPCacheDriver(edge_client),
        ObjectCacheDriver(object_cache, options=options, user_cache=user_cache),
        OpcodeCacheDriver(reset=opcode_reset),
        TransientCacheDriver(transients),
    ]
    return {driver.cache_type: driver for driver in drivers}
