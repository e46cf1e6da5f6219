"""
Cache Control - Flush and purge orchestration for the hosted site's cache tiers.

Four tiers are managed:
- HTTP edge cache on the account's cache nodes
- In-process object cache (plus the optional Redis user cache)
- Compiled-code (opcode) cache of the runtime
- Transients persisted in the options table
"""

from .content_urls import Comment, ContentSource, InMemoryContentSource, Post, Term, urls_for_post
from .drivers import (
    CacheDriver,
    HTTPCacheDriver,
    ObjectCacheDriver,
    OpcodeCacheDriver,
    TransientCacheDriver,
    build_drivers
)
from .edge_client import EdgeCacheClient
from .execution import CacheExecution, CacheServices
from .hooks import HookRegistry
from .object_cache import ObjectCache, RedisUserCache
from .registry import CacheControl, DeferredFlush
from .storage import DatabaseManager, OptionStore, SystemOptions, TransientStore
from .triggers import FLUSH_HOOKS, FLUSH_OPTION_PREFIXES, FLUSH_OPTIONS, TriggerMap
from .types import (
    ALL_CACHE_TYPES,
    CacheControlError,
    CacheFlushError,
    CacheType,
    TaxonomyError,
    normalize_cache_types
)

__all__ = [
    # Types and errors
    'CacheType',
    'ALL_CACHE_TYPES',
    'CacheControlError',
    'CacheFlushError',
    'TaxonomyError',
    'normalize_cache_types',

    # Engine
    'CacheControl',
    'DeferredFlush',
    'HookRegistry',
    'TriggerMap',
    'FLUSH_HOOKS',
    'FLUSH_OPTIONS',
    'FLUSH_OPTION_PREFIXES',
    'CacheExecution',
    'CacheServices',

    # Drivers and backends
    'CacheDriver',
    'HTTPCacheDriver',
    'ObjectCacheDriver',
    'OpcodeCacheDriver',
    'TransientCacheDriver',
    'build_drivers',
    'EdgeCacheClient',
    'ObjectCache',
    'RedisUserCache',
    'DatabaseManager',
    'OptionStore',
    'SystemOptions',
    'TransientStore',

    # Content
    'Post',
    'Comment',
    'Term',
    'ContentSource',
    'InMemoryContentSource',
    'urls_for_post'
]
