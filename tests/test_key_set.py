"""
Unit tests for the published JSON Web Key Set.
"""

import json

import pytest
from jwcrypto import jwk

from gov.treasury.authrpd.errors import KeyNotFound
from gov.treasury.authrpd.keys.key_set import KeySetBuilder


def kids(key_set):
    return [entry["kid"] for entry in key_set["keys"]]


async def test_key_set_covers_current_and_two_previous(key_store, clock):
    for period in ("2025-01", "2025-02", "2025-03", "2025-04", "2025-05"):
        await key_store.ensure_period_key(period)

    builder = KeySetBuilder(key_store, clock=clock)
    key_set = await builder.build_key_set()

    assert kids(key_set) == ["2025-05", "2025-04", "2025-03"]
    for entry in key_set["keys"]:
        assert set(entry.keys()) == {"kty", "use", "kid", "crv", "x", "y", "alg"}


async def test_missing_periods_are_skipped(key_store, clock):
    await key_store.ensure_period_key("2025-05")
    await key_store.ensure_period_key("2025-03")

    key_set = await KeySetBuilder(key_store, clock=clock).build_key_set()
    assert kids(key_set) == ["2025-05", "2025-03"]


async def test_key_set_is_cached(key_store, clock, cache, fake_redis_client):
    await key_store.ensure_period_key("2025-05")
    builder = KeySetBuilder(key_store, cache=cache, clock=clock, cache_ttl=3600)

    first = await builder.build_key_set()
    await key_store.ensure_period_key("2025-04")
    second = await builder.build_key_set()

    assert second == first
    assert kids(second) == ["2025-05"]

    cached = await fake_redis_client.get("jwks:json:2025-05")
    assert json.loads(cached) == first
    assert 0 < await fake_redis_client.ttl("jwks:json:2025-05") <= 3600


async def test_month_rollover_does_not_reuse_previous_set(key_store, clock, cache):
    await key_store.ensure_period_key("2025-05")
    builder = KeySetBuilder(key_store, cache=cache, clock=clock)
    assert kids(await builder.build_key_set()) == ["2025-05"]

    clock.advance(days=20)
    await key_store.ensure_period_key("2025-06")
    assert kids(await builder.build_key_set()) == ["2025-06", "2025-05"]


async def test_find_key_returns_public_key(key_store, clock):
    handle = await key_store.ensure_period_key("2025-05")
    key = await KeySetBuilder(key_store, clock=clock).find_key("2025-05")

    assert isinstance(key, jwk.JWK)
    assert not key.has_private
    assert key.thumbprint() == handle.key.thumbprint()


async def test_find_key_outside_window(key_store, clock):
    await key_store.ensure_period_key("2025-02")
    builder = KeySetBuilder(key_store, clock=clock)

    with pytest.raises(KeyNotFound):
        await builder.find_key("2025-02")
    with pytest.raises(KeyNotFound):
        await builder.find_key(None)
    with pytest.raises(KeyNotFound):
        await builder.find_key("2025-06")


async def test_find_key_refreshes_stale_cached_set(key_store, clock, cache):
    await key_store.ensure_period_key("2025-04")
    builder = KeySetBuilder(key_store, cache=cache, clock=clock)
    assert kids(await builder.build_key_set()) == ["2025-04"]

    # Key created after the set was cached, e.g. by another replica.
    await key_store.ensure_period_key("2025-05")
    key = await builder.find_key("2025-05")

    assert key.export_public(as_dict=True)["kid"] == "2025-05"
    assert kids(await builder.build_key_set()) == ["2025-05", "2025-04"]
