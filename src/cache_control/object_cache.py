"""
Object cache backends flushed by the object cache tier.

Provides the in-process LRU object cache and the optional Redis-backed user
cache shared by the workers of one site.
"""
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import redis.asyncio as redis
import structlog
from redis.asyncio import Redis

logger = structlog.get_logger(__name__)


@dataclass
class CacheEntry:
    """Object cache entry with expiry."""
    value: Any
    expires_at: Optional[datetime]

    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) > self.expires_at


class ObjectCache:
    """Thread-safe in-process LRU cache keyed by (group, key)."""

    def __init__(self, max_size: int = 1000, default_ttl: Optional[int] = None):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cache: "OrderedDict[Tuple[str, str], CacheEntry]" = OrderedDict()
        self.lock = threading.RLock()
        self.stats = {
            'hits': 0,
            'misses': 0,
            'evictions': 0,
            'flushes': 0
        }

    def get(self, key: str, group: str = "default") -> Optional[Any]:
        """Get value from cache."""
        with self.lock:
            entry = self.cache.get((group, key))
            if entry is None or entry.is_expired():
                if entry is not None:
                    del self.cache[(group, key)]
                self.stats['misses'] += 1
                return None

            self.cache.move_to_end((group, key))
            self.stats['hits'] += 1
            return entry.value

    def set(self, key: str, value: Any, group: str = "default", ttl: Optional[int] = None) -> None:
        """Set value in cache."""
        ttl = ttl if ttl is not None else self.default_ttl
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl) if ttl else None

        with self.lock:
            self.cache[(group, key)] = CacheEntry(value=value, expires_at=expires_at)
            self.cache.move_to_end((group, key))

            while len(self.cache) > self.max_size:
                self.cache.popitem(last=False)
                self.stats['evictions'] += 1

    def delete(self, key: str, group: str = "default") -> bool:
        """Delete key from cache."""
        with self.lock:
            return self.cache.pop((group, key), None) is not None

    def flush(self) -> int:
        """Clear every entry. Returns the number of entries removed."""
        with self.lock:
            count = len(self.cache)
            self.cache.clear()
            self.stats['flushes'] += 1
            return count

    def __len__(self) -> int:
        with self.lock:
            return len(self.cache)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self.lock:
            total_requests = self.stats['hits'] + self.stats['misses']
            return {
                **self.stats,
                'size': len(self.cache),
                'hit_rate': self.stats['hits'] / total_requests if total_requests > 0 else 0
            }


class RedisUserCache:
    """Redis-backed user cache shared by the site's workers."""

    def __init__(self, redis_url: str, timeout: int = 5, client: Optional[Redis] = None):
        self.redis_url = redis_url
        self.timeout = timeout
        self.redis_client: Optional[Redis] = client

    async def connect(self) -> Redis:
        """Connect to Redis."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                socket_timeout=self.timeout,
                decode_responses=True
            )
            logger.info("Connected to Redis user cache", url=self.redis_url)
        return self.redis_client

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("Disconnected from Redis user cache")

    async def flush(self) -> bool:
        """Flush the user cache database."""
        client = await self.connect()
        return bool(await client.flushdb())
