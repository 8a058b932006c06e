"""
Caching Service.

Provides the key-value cache capability used by the preference layer, with
an in-memory backend and a Redis backend. Services receive a backend by
injection; get_cache_service() supplies the process-wide default.
"""
import pickle
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from ddsportal.config import get_settings
from ddsportal.exceptions import CacheError

logger = structlog.get_logger(__name__)


class CacheBackendType(str, Enum):
    """Cache backend types."""
    MEMORY = "memory"
    REDIS = "redis"


@dataclass
class CacheEntry:
    """Cache entry with metadata."""
    value: Any
    created_at: float
    expires_at: Optional[float] = None
    hits: int = 0

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and time.time() > self.expires_at


class CacheBackend(ABC):
    """Key-value cache interface."""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None on miss."""

    @abstractmethod
    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a value; ttl_seconds=None means no expiry."""

    @abstractmethod
    def forget(self, key: str) -> bool:
        """
        Remove a key. Returns True if something was removed.

        Raises:
            CacheError: The key could not be removed
        """

    @abstractmethod
    def clear(self) -> None:
        """Remove every key."""

    def has(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryCache(CacheBackend):
    """Thread-safe LRU cache. max_size=None disables eviction."""

    def __init__(self, max_size: Optional[int] = None):
        self._cache: OrderedDict = OrderedDict()
        self._lock = threading.RLock()
        self.max_size = max_size
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> Optional[Any]:
        """Get value and move entry to end (most recently used)."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                self._misses += 1
                return None

            if entry.is_expired:
                del self._cache[key]
                self._misses += 1
                return None

            self._cache.move_to_end(key)
            entry.hits += 1
            self._hits += 1
            return entry.value

    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._cache.pop(key, None)

            # Evict least recently used entries
            if self.max_size is not None:
                while self._cache and len(self._cache) >= self.max_size:
                    self._cache.popitem(last=False)

            now = time.time()
            self._cache[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=now + ttl_seconds if ttl_seconds else None,
            )

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._cache.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._cache.get(key)
            return entry is not None and not entry.is_expired

    @property
    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0,
            }


class RedisCache(CacheBackend):
    """Redis cache backend."""

    def __init__(self, url: str = None, key_prefix: str = "ddsportal:"):
        self.url = url or get_settings().redis_url
        self.key_prefix = key_prefix
        self._client = None

    @property
    def client(self):
        """Lazy initialize Redis client."""
        if self._client is None and self.url:
            try:
                import redis
                self._client = redis.from_url(self.url)
                self._client.ping()
            except Exception as e:
                logger.warning("redis_connection_failed", error=str(e))
                self._client = None
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        if not self.client:
            return None

        try:
            data = self.client.get(self._key(key))
            if data:
                return pickle.loads(data)
        except Exception as e:
            logger.error("redis_get_error", key=key, error=str(e))
        return None

    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if not self.client:
            return

        try:
            data = pickle.dumps(value)
            if ttl_seconds:
                self.client.setex(self._key(key), ttl_seconds, data)
            else:
                self.client.set(self._key(key), data)
        except Exception as e:
            logger.error("redis_set_error", key=key, error=str(e))

    def forget(self, key: str) -> bool:
        # A failed delete would leave a stale entry behind, so it is not silent
        client = self.client
        if not client:
            raise CacheError("Cache unavailable", details={"key": key})

        try:
            return client.delete(self._key(key)) > 0
        except Exception as e:
            logger.error("redis_delete_error", key=key, error=str(e))
            raise CacheError(f"Failed to invalidate cache: {e}", details={"key": key}) from e

    def clear(self) -> None:
        if not self.client:
            return

        try:
            keys = self.client.keys(f"{self.key_prefix}*")
            if keys:
                self.client.delete(*keys)
        except Exception as e:
            logger.error("redis_clear_error", error=str(e))


# Global cache instance
_cache_service: Optional[CacheBackend] = None


def create_cache_backend(backend: str = None) -> CacheBackend:
    """Build a cache backend from settings."""
    settings = get_settings()
    backend = CacheBackendType(backend or settings.cache_backend)
    if backend == CacheBackendType.REDIS:
        return RedisCache(settings.redis_url)
    return MemoryCache(max_size=settings.cache_max_size)


def get_cache_service() -> CacheBackend:
    """Get global cache backend instance."""
    global _cache_service
    if _cache_service is None:
        _cache_service = create_cache_backend()
    return _cache_service
