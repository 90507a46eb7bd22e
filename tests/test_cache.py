"""
Unit tests for the cache-aside helper.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from gov.treasury.authrpd.cache import CacheAside, cached


class Counter:
    def __init__(self, value):
        self.value = value
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return self.value


class BrokenRedis:
    async def get(self, key):
        raise RedisConnectionError("down")

    async def set(self, key, value, ex=None):
        raise RedisConnectionError("down")

    async def delete(self, key):
        raise RedisConnectionError("down")


async def test_fetch_caches_loader_result(cache):
    loader = Counter({"top": "AHAL"})

    assert await cache.fetch("k", loader, 60) == {"top": "AHAL"}
    assert await cache.fetch("k", loader, 60) == {"top": "AHAL"}
    assert loader.calls == 1


async def test_none_is_not_cached(cache, fake_redis_client):
    loader = Counter(None)

    assert await cache.fetch("k", loader, 60) is None
    assert await cache.fetch("k", loader, 60) is None
    assert loader.calls == 2
    assert await fake_redis_client.exists("k") == 0


async def test_loader_errors_propagate(cache, fake_redis_client):
    async def failing():
        raise LookupError("boom")

    with pytest.raises(LookupError):
        await cache.fetch("k", failing, 60)
    assert await fake_redis_client.exists("k") == 0


async def test_corrupt_entry_falls_through(cache, fake_redis_client):
    await fake_redis_client.set("k", b"{not json")
    loader = Counter(["rpd:ahal"])

    assert await cache.fetch("k", loader, 60) == ["rpd:ahal"]
    assert loader.calls == 1


async def test_redis_failure_falls_through():
    cache = CacheAside(BrokenRedis())
    loader = Counter("AHAL")

    assert await cache.fetch("k", loader, 60) == "AHAL"
    await cache.invalidate("k")


async def test_invalidate_pattern(cache, fake_redis_client):
    await cache.set("region:top:A", "A", 60)
    await cache.set("region:top:B", "A", 60)
    await cache.set("rpd:audiences:A", ["rpd:a"], 60)

    assert await cache.invalidate_pattern("region:top:*") == 2
    assert await fake_redis_client.exists("region:top:A", "region:top:B") == 0
    assert await cache.get("rpd:audiences:A") == ["rpd:a"]


class Lookup:
    def __init__(self, cache):
        self.cache = cache
        self.cache_ttl = 30
        self.calls = 0

    @cached(lambda code: f"lookup:{code}")
    async def load(self, code):
        self.calls += 1
        return code.lower()


async def test_cached_decorator(cache, fake_redis_client):
    lookup = Lookup(cache)

    assert await lookup.load("AHAL") == "ahal"
    assert await lookup.load("AHAL") == "ahal"
    assert lookup.calls == 1
    assert 0 < await fake_redis_client.ttl("lookup:AHAL") <= 30


async def test_cached_decorator_without_cache():
    lookup = Lookup(None)

    assert await lookup.load("AHAL") == "ahal"
    assert await lookup.load("AHAL") == "ahal"
    assert lookup.calls == 2
