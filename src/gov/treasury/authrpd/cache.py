"""Redis-backed cache-aside helper.

The cache is an optimisation and never a source of truth: any failure talking
to Redis, or a corrupt entry, is logged and the loader is called instead.
Entries are JSON documents written whole with ``SET ... EX``, so a miss race at
worst computes the same value twice.
"""

import functools
import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheAside:
    """Read-through JSON cache with TTL and explicit invalidation."""

    def __init__(self, redis_client: redis.Redis, scan_count: int = 500) -> None:
        self.redis_client = redis_client
        self.scan_count = scan_count

    async def get(self, key: str) -> Optional[Any]:
        try:
            cached = await self.redis_client.get(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache read failed for key %s: %s", key, e)
            return None
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning("Discarding corrupt cache entry for key %s", key)
            return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            await self.redis_client.set(key, json.dumps(value), ex=ttl)
        except (RedisError, OSError) as e:
            logger.warning("Cache write failed for key %s: %s", key, e)

    async def fetch(
        self, key: str, loader: Callable[[], Awaitable[T]], ttl: int
    ) -> T:
        """
        Return the cached value for ``key`` or compute it with ``loader``.

        Exceptions raised by ``loader`` propagate and nothing is cached. ``None``
        results are returned but not cached.
        """
        cached = await self.get(key)
        if cached is not None:
            return cached

        result = await loader()
        if result is not None:
            await self.set(key, result, ttl)
        return result

    async def invalidate(self, key: str) -> None:
        try:
            await self.redis_client.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache invalidation failed for key %s: %s", key, e)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob ``pattern``. Returns the number removed."""
        removed = 0
        try:
            async for key in self.redis_client.scan_iter(
                match=pattern, count=self.scan_count
            ):
                removed += await self.redis_client.delete(key)
        except (RedisError, OSError) as e:
            logger.warning("Cache pattern invalidation failed for %s: %s", pattern, e)
        return removed


def cached(key_fn: Callable[..., str], ttl_attr: str = "cache_ttl"):
    """
    Memoize an async method through the instance's ``cache`` attribute.

    ``key_fn`` receives the same arguments as the wrapped method (without
    ``self``) and returns the cache key. The TTL in seconds is read from the
    instance attribute named by ``ttl_attr``. When the instance has no cache the
    method is called directly.

    Usage:
        ```python
        class Lookup:
            def __init__(self, cache: CacheAside):
                self.cache = cache
                self.cache_ttl = 60

            @cached(lambda code: f"lookup:{code}")
            async def load(self, code: str) -> str:
                ...
        ```
    """

    def decorator(method):
        @functools.wraps(method)
        async def wrapper(self, *args, **kwargs):
            cache: Optional[CacheAside] = getattr(self, "cache", None)
            if cache is None:
                return await method(self, *args, **kwargs)
            return await cache.fetch(
                key_fn(*args, **kwargs),
                lambda: method(self, *args, **kwargs),
                getattr(self, ttl_attr),
            )

        return wrapper

    return decorator
