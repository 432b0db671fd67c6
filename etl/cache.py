"""
Analytics cache with glob-pattern invalidation

The dashboards read report payloads from a shared Redis store under
"<prefix>:<type>:..." keys; a successful load drops the namespaces the
pipeline feeds. InMemoryAnalyticsCache serves single-process runs without
REDIS_URL.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from fnmatch import fnmatchcase
from pydantic_core import from_json, to_json
from redis.asyncio import Redis
from core.config import settings
import logging

logger = logging.getLogger(__name__)


class AnalyticsCache(ABC):
    """Cache collaborator the aggregator invalidates after a successful load"""

    @abstractmethod
    async def invalidate_pattern(self, pattern: str) -> int:
        """Remove every key matching a glob pattern; returns the number removed"""
        pass

    async def close(self):
        """Release connections held by the cache"""
        pass


class InMemoryAnalyticsCache(AnalyticsCache):
    """
    Process-local cache keyed under a namespace prefix.

    Keys are stored as "<prefix>:<key>" and patterns are matched against
    the same prefixed form, so "dashboard:*" only ever touches this
    cache's namespace.
    """

    def __init__(self, prefix: Optional[str] = None):
        self.prefix = prefix if prefix is not None else settings.CACHE_PREFIX
        self._store: Dict[str, Any] = {}

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    async def get(self, key: str, default: Any = None) -> Any:
        return self._store.get(self._key(key), default)

    async def put(self, key: str, value: Any):
        self._store[self._key(key)] = value

    async def invalidate_pattern(self, pattern: str) -> int:
        full_pattern = self._key(pattern)
        matched = [k for k in self._store if fnmatchcase(k, full_pattern)]
        for key in matched:
            del self._store[key]
        return len(matched)

    def __len__(self) -> int:
        return len(self._store)


class RedisAnalyticsCache(AnalyticsCache):
    """
    Analytics cache in the Redis store shared with the reporting services.

    Invalidation walks the keyspace with SCAN (never KEYS) and deletes the
    matches in groups of scan_count.
    """

    def __init__(
        self,
        client: Redis,
        prefix: Optional[str] = None,
        ttl: Optional[int] = None,
        scan_count: int = 1000
    ):
        self.client = client
        self.prefix = prefix if prefix is not None else settings.CACHE_PREFIX
        self.ttl = ttl if ttl is not None else settings.CACHE_DEFAULT_TTL
        self.scan_count = scan_count

    @classmethod
    def from_url(cls, url: str, **kwargs) -> "RedisAnalyticsCache":
        return cls(Redis.from_url(url), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}" if self.prefix else key

    async def get(self, key: str, default: Any = None) -> Any:
        value = await self.client.get(self._key(key))
        return default if value is None else from_json(value)

    async def put(self, key: str, value: Any, ttl: Optional[int] = None):
        await self.client.set(self._key(key), to_json(value), ex=ttl or self.ttl)

    async def invalidate_pattern(self, pattern: str) -> int:
        removed = 0
        pending: List[Any] = []

        async for key in self.client.scan_iter(match=self._key(pattern), count=self.scan_count):
            pending.append(key)
            if len(pending) >= self.scan_count:
                removed += await self.client.delete(*pending)
                pending = []
        if pending:
            removed += await self.client.delete(*pending)

        logger.debug(f"Invalidated {removed} cache keys matching {self._key(pattern)}")
        return removed

    async def close(self):
        await self.client.aclose()


def build_analytics_cache(redis_url: Optional[str] = None) -> AnalyticsCache:
    """Redis-backed cache when a URL is configured, else a process-local one"""
    url = redis_url or settings.REDIS_URL
    if url:
        return RedisAnalyticsCache.from_url(url)

    logger.warning("REDIS_URL not set, cache invalidation only affects this process")
    return InMemoryAnalyticsCache()
