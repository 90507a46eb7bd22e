"""
Tests for tenant (RPD instance) audience resolution.
"""

import pytest

from gov.treasury.authrpd.errors import RegionNotFound, TenantNotConfigured
from gov.treasury.authrpd.resolve.region import RegionHierarchyResolver
from gov.treasury.authrpd.resolve.tenant import TenantAudienceResolver
from tests.test_helpers import seed_ahal, seed_instance, seed_regions


@pytest.fixture
def tenant_resolver(database_session_maker):
    return TenantAudienceResolver(
        database_session_maker, RegionHierarchyResolver(database_session_maker)
    )


async def test_sub_region_inherits_top_region_audiences(
    database_session_maker, tenant_resolver
):
    await seed_ahal(database_session_maker)

    tenant = await tenant_resolver.resolve_audiences("DISTRICT_1")

    assert tenant.top_region_code == "AHAL"
    assert tenant.original_region_code == "DISTRICT_1"
    assert tenant.audiences == ["rpd:ahal"]


async def test_top_region_has_no_original_region(database_session_maker, tenant_resolver):
    await seed_ahal(database_session_maker)

    tenant = await tenant_resolver.resolve_audiences("AHAL")

    assert tenant.top_region_code == "AHAL"
    assert tenant.original_region_code is None


async def test_audiences_ordered_by_instance_code(database_session_maker, tenant_resolver):
    await seed_regions(database_session_maker, [("BALKAN", None), ("BALKANABAT", "BALKAN")])
    await seed_instance(database_session_maker, "RPD_BALKAN_B", "BALKAN", "rpd:balkan:b")
    await seed_instance(database_session_maker, "RPD_BALKAN_A", "BALKAN", "rpd:balkan:a")
    await seed_instance(
        database_session_maker, "RPD_BALKAN_C", "BALKAN", "rpd:balkan:c", active=False
    )

    tenant = await tenant_resolver.resolve_audiences("BALKANABAT")

    assert tenant.audiences == ["rpd:balkan:a", "rpd:balkan:b"]


async def test_region_without_instances(database_session_maker, tenant_resolver):
    await seed_regions(database_session_maker, [("DASHOGUZ", None), ("GOROGLY", "DASHOGUZ")])

    with pytest.raises(TenantNotConfigured) as exc_info:
        await tenant_resolver.resolve_audiences("GOROGLY")

    assert exc_info.value.top_region_code == "DASHOGUZ"
    assert exc_info.value.region_code == "GOROGLY"


async def test_only_inactive_instances(database_session_maker, tenant_resolver):
    await seed_regions(database_session_maker, [("LEBAP", None)])
    await seed_instance(database_session_maker, "RPD_LEBAP", "LEBAP", "rpd:lebap", active=False)

    with pytest.raises(TenantNotConfigured):
        await tenant_resolver.resolve_audiences("LEBAP")


async def test_region_errors_propagate(tenant_resolver):
    with pytest.raises(RegionNotFound):
        await tenant_resolver.resolve_audiences("NOWHERE")


async def test_audiences_cached_until_invalidated(
    database_session_maker, cache, fake_redis_client
):
    await seed_ahal(database_session_maker)
    tenant_resolver = TenantAudienceResolver(
        database_session_maker,
        RegionHierarchyResolver(database_session_maker, cache=cache),
        cache=cache,
        cache_ttl=1800,
    )

    assert (await tenant_resolver.resolve_audiences("DISTRICT_1")).audiences == ["rpd:ahal"]
    assert 0 < await fake_redis_client.ttl("rpd:audiences:AHAL") <= 1800

    await seed_instance(database_session_maker, "RPD_AHAL_2", "AHAL", "rpd:ahal:2")
    assert (await tenant_resolver.resolve_audiences("DISTRICT_1")).audiences == ["rpd:ahal"]

    await tenant_resolver.invalidate("AHAL")
    assert (await tenant_resolver.resolve_audiences("DISTRICT_1")).audiences == [
        "rpd:ahal",
        "rpd:ahal:2",
    ]


async def test_unconfigured_tenant_is_not_cached(
    database_session_maker, cache, fake_redis_client
):
    await seed_regions(database_session_maker, [("MARY", None)])
    tenant_resolver = TenantAudienceResolver(
        database_session_maker,
        RegionHierarchyResolver(database_session_maker, cache=cache),
        cache=cache,
    )

    with pytest.raises(TenantNotConfigured):
        await tenant_resolver.resolve_audiences("MARY")
    assert await fake_redis_client.exists("rpd:audiences:MARY") == 0

    await seed_instance(database_session_maker, "RPD_MARY", "MARY", "rpd:mary")
    assert (await tenant_resolver.resolve_audiences("MARY")).audiences == ["rpd:mary"]


async def test_instance_lookups(database_session_maker, tenant_resolver):
    await seed_ahal(database_session_maker)
    await seed_regions(database_session_maker, [("MARY", None)])
    await seed_instance(database_session_maker, "RPD_MARY", "MARY", "rpd:mary")
    await seed_instance(database_session_maker, "RPD_OLD", "MARY", "rpd:old", active=False)

    instance = await tenant_resolver.instance_by_code("RPD_MARY")
    assert instance.audience == "rpd:mary"
    assert instance.top_region_code == "MARY"

    assert await tenant_resolver.instance_by_code("RPD_OLD") is None
    assert await tenant_resolver.instance_by_code("RPD_NOWHERE") is None
    assert await tenant_resolver.instance_by_code("") is None

    assert [i.code for i in await tenant_resolver.active_instances()] == [
        "RPD_AHAL",
        "RPD_MARY",
    ]


async def test_instance_lookups_cached_until_invalidated(
    database_session_maker, cache, fake_redis_client
):
    await seed_ahal(database_session_maker)
    tenant_resolver = TenantAudienceResolver(
        database_session_maker,
        RegionHierarchyResolver(database_session_maker),
        cache=cache,
    )

    assert (await tenant_resolver.instance_by_code("RPD_AHAL")).audience == "rpd:ahal"
    assert len(await tenant_resolver.active_instances()) == 1
    assert await fake_redis_client.exists("rpd:instance:RPD_AHAL") == 1

    await seed_instance(database_session_maker, "RPD_AHAL_2", "AHAL", "rpd:ahal:2")
    assert len(await tenant_resolver.active_instances()) == 1
    # Unknown codes are not cached, so a new instance is found at once.
    assert (await tenant_resolver.instance_by_code("RPD_AHAL_2")).audience == "rpd:ahal:2"

    await tenant_resolver.invalidate("AHAL")
    assert await fake_redis_client.exists("rpd:instance:RPD_AHAL") == 0
    assert len(await tenant_resolver.active_instances()) == 2
