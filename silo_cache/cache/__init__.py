"""
Two-tier caching with LRU eviction, request coalescing, stale-while-revalidate
and invalidation listeners.
"""
from .core import (
    CacheConfig,
    CacheEntry,
    CacheError,
    SerializationError,
    deserialize_entry,
    serialize_entry,
)
from .ttl_policies import (
    CacheTTL,
    DataCategory,
    TTL_CONFIG,
    get_category_for_key,
    get_ttl_for_category,
    get_ttl_for_key,
)
from .lru import LRUNode, MemoryCache
from .coalescer import RequestCoalescer
from .invalidation import InvalidationBus
from .storage import DurableStore, MemoryStore, SqlStore
from .manager import CacheManager, get_cache_manager
from . import keys

__all__ = [
    # Core types
    "CacheConfig",
    "CacheEntry",
    "CacheError",
    "SerializationError",
    "deserialize_entry",
    "serialize_entry",
    # TTL policies
    "CacheTTL",
    "DataCategory",
    "TTL_CONFIG",
    "get_category_for_key",
    "get_ttl_for_category",
    "get_ttl_for_key",
    # Memory tier
    "LRUNode",
    "MemoryCache",
    # Coordination
    "RequestCoalescer",
    "InvalidationBus",
    # Durable tier
    "DurableStore",
    "MemoryStore",
    "SqlStore",
    # Manager
    "CacheManager",
    "get_cache_manager",
    "keys",
]
