"""
Cache Control - Registry

CacheControl orchestrates flushes and purges for one execution (a web
request, a REST call or a CLI invocation). It keeps the ledgers that make
every tier and every URL dispatch at most once, and the deferred queue that
repeats each successful flush once more when the execution ends.
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Set, Union

import structlog

from .drivers import CacheDriver, HTTPCacheDriver
from .hooks import HookRegistry
from .types import (
    ALL_CACHE_TYPES,
    CacheFlushError,
    CacheType,
    FlushOutcome,
    is_flush_success,
    normalize_cache_types,
)
from .urls import normalize_urls

logger = structlog.get_logger(__name__)


@dataclass
class DeferredFlush:
    """A flush to repeat at the end of the execution."""
    cache_type: CacheType
    driver: CacheDriver

    async def run(self) -> FlushOutcome:
        return await self.driver.flush()


class CacheControl:
    """Per-execution flush and purge orchestration."""

    FLUSH_ACTION = "mwp_system_cache_flush"
    PURGE_ACTION = "mwp_system_http_cache_purge"
    VIEW_CAPABILITY = "install_plugins"

    def __init__(self, drivers: Mapping[CacheType, CacheDriver], hooks: Optional[HookRegistry] = None):
        self.drivers: Dict[CacheType, CacheDriver] = {
            t: drivers[t] for t in ALL_CACHE_TYPES if t in drivers
        }
        self.hooks = hooks if hooks is not None else HookRegistry()

        self.flushed: Set[CacheType] = set()
        self.purged: Set[str] = set()
        self.deferred: List[DeferredFlush] = []
        self.errors: Dict[CacheType, CacheFlushError] = {}
        self._shut_down = False

    async def flush(self, types: Optional[Iterable[Union[str, CacheType]]] = None) -> Dict[CacheType, FlushOutcome]:
        """
        Flush cache tiers.

        Args:
            types: Cache type names. None or empty selects every tier.

        Returns:
            Map of flushed tier to its outcome. Tiers already flushed in this
            execution are skipped. Failures are left out of the map and kept
            in ``self.errors``.
        """
        self.errors = {}
        pending = [t for t in normalize_cache_types(types) if t not in self.flushed and t in self.drivers]

        results: Dict[CacheType, FlushOutcome] = {}
        for cache_type in pending:
            driver = self.drivers[cache_type]
            try:
                outcome = await driver.flush()
            except CacheFlushError as e:
                self.errors[cache_type] = e
                logger.error("Cache flush failed", cache_type=cache_type.value, error=e.message)
                continue

            if not is_flush_success(outcome):
                self.errors[cache_type] = CacheFlushError(cache_type, f"Unable to flush the {cache_type.label} cache.")
                logger.error("Cache flush returned no result", cache_type=cache_type.value)
                continue

            results[cache_type] = outcome
            if self._shut_down:
                logger.debug("Cache flushed after shutdown, not deferred", cache_type=cache_type.value)
            else:
                self.deferred.append(DeferredFlush(cache_type, driver))

        self.flushed.update(results)

        if results:
            logger.info("Cache flushed", types=[t.value for t in results])
            await self.hooks.do_action(self.FLUSH_ACTION, results)

        return results

    async def purge(self, urls: Iterable[str]) -> List[str]:
        """
        Purge URLs from the HTTP cache in one batch.

        Returns the URLs dispatched, after normalization and removal of any
        URL already purged in this execution.
        """
        pending = [url for url in normalize_urls(urls) if url not in self.purged]

        driver = self.drivers.get(CacheType.HTTP)
        if not pending or not isinstance(driver, HTTPCacheDriver):
            return []

        await driver.purge(pending)
        self.purged.update(pending)

        logger.info("HTTP cache purged", url_count=len(pending))
        await self.hooks.do_action(self.PURGE_ACTION, pending)

        return pending

    async def shutdown(self) -> None:
        """Run each deferred flush once, in the order it was queued."""
        if self._shut_down:
            return
        self._shut_down = True

        deferred, self.deferred = self.deferred, []
        for task in deferred:
            try:
                await task.run()
            except CacheFlushError as e:
                logger.warning("Deferred cache flush failed", cache_type=task.cache_type.value, error=e.message)

        if deferred:
            logger.debug("Deferred flushes complete", count=len(deferred))

    @classmethod
    def is_viewable(cls, user) -> bool:
        """Check whether a user may see and use the cache controls."""
        if user is None:
            return False
        return user.has_cap(cls.VIEW_CAPABILITY)
