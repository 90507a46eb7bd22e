"""Tenant (RPD instance) audience resolution.

Maps any region to the audiences of every active RPD instance attached to its
top region. Audiences are always returned as a list, even for a single
instance, so verifiers have exactly one code path.

Also serves cached lookups of the active instances themselves, which lets an
RPD deployment check the audience it was configured with.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gov.treasury.authrpd.cache import CacheAside, cached
from gov.treasury.authrpd.errors import TenantNotConfigured
from gov.treasury.authrpd.model.region import TenantInstance
from gov.treasury.authrpd.resolve.region import RegionHierarchyResolver

logger = logging.getLogger(__name__)

AUDIENCES_CACHE_PREFIX = "rpd:audiences:"
INSTANCE_CACHE_PREFIX = "rpd:instance:"
ACTIVE_INSTANCES_CACHE_KEY = "rpd:instances:all:active"


class TenantAudiences(BaseModel):
    """Audiences for a region.

    ``original_region_code`` is set only when the requested region is a
    sub-region of ``top_region_code``.
    """

    top_region_code: str
    original_region_code: Optional[str] = None
    audiences: List[str]


class TenantInstanceInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    top_region_code: str
    audience: str


class TenantAudienceResolver:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        region_resolver: RegionHierarchyResolver,
        cache: Optional[CacheAside] = None,
        cache_ttl: int = 1800,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.region_resolver = region_resolver
        self.cache = cache
        self.cache_ttl = cache_ttl

    async def resolve_audiences(self, region_code: str) -> TenantAudiences:
        """
        Resolve ``region_code`` to its top region and that region's audiences.

        Raises:
            RegionNotFound, HierarchyCycle: propagated from the region resolver
            TenantNotConfigured: the top region has no active RPD instance
        """
        top_region_code = await self.region_resolver.resolve_top_region(region_code)

        audiences = await self.audiences_for_top_region(top_region_code)
        if not audiences:
            logger.error(
                "No RPD instances found for top region %s (original region %s)",
                top_region_code,
                region_code,
            )
            raise TenantNotConfigured(region_code, top_region_code)

        return TenantAudiences(
            top_region_code=top_region_code,
            original_region_code=(
                region_code if region_code != top_region_code else None
            ),
            audiences=audiences,
        )

    @cached(lambda top_region_code: f"{AUDIENCES_CACHE_PREFIX}{top_region_code}")
    async def audiences_for_top_region(self, top_region_code: str) -> Optional[List[str]]:
        """Active audiences of ``top_region_code`` ordered by instance code, or None."""
        stmt = (
            select(TenantInstance.audience)
            .where(
                TenantInstance.top_region_code == top_region_code,
                TenantInstance.active.is_(True),
            )
            .order_by(TenantInstance.code)
        )
        async with self.database_session_maker() as database_session:
            audiences = list((await database_session.scalars(stmt)).all())

        # None is never cached, so a newly configured instance is picked up at once.
        return audiences or None

    async def instance_by_code(self, code: str) -> Optional[TenantInstanceInfo]:
        """Return the active RPD instance registered as ``code``, or None."""
        if not code:
            return None
        record = await self._instance_record(code)
        if record is None:
            return None
        return TenantInstanceInfo.model_validate(record)

    @cached(lambda code: f"{INSTANCE_CACHE_PREFIX}{code}")
    async def _instance_record(self, code: str) -> Optional[Dict[str, Any]]:
        stmt = select(TenantInstance).where(
            TenantInstance.code == code, TenantInstance.active.is_(True)
        )
        async with self.database_session_maker() as database_session:
            instance = (await database_session.scalars(stmt)).first()
        if instance is None:
            return None
        return TenantInstanceInfo.model_validate(instance).model_dump()

    async def active_instances(self) -> List[TenantInstanceInfo]:
        """Every active RPD instance, ordered by code."""
        records = await self._active_instance_records()
        return [TenantInstanceInfo.model_validate(record) for record in records or []]

    @cached(lambda: ACTIVE_INSTANCES_CACHE_KEY)
    async def _active_instance_records(self) -> Optional[List[Dict[str, Any]]]:
        stmt = (
            select(TenantInstance)
            .where(TenantInstance.active.is_(True))
            .order_by(TenantInstance.code)
        )
        async with self.database_session_maker() as database_session:
            instances = (await database_session.scalars(stmt)).all()
        return [
            TenantInstanceInfo.model_validate(instance).model_dump()
            for instance in instances
        ] or None

    async def invalidate(self, top_region_code: Optional[str] = None) -> None:
        """
        Drop cached audiences and instance lookups after RPD instance changes.

        Audiences are cleared for ``top_region_code`` only when it is given.
        Instance lookups are always cleared.
        """
        if self.cache is None:
            return
        if top_region_code is None:
            await self.cache.invalidate_pattern(f"{AUDIENCES_CACHE_PREFIX}*")
        else:
            await self.cache.invalidate(f"{AUDIENCES_CACHE_PREFIX}{top_region_code}")
        await self.cache.invalidate_pattern(f"{INSTANCE_CACHE_PREFIX}*")
        await self.cache.invalidate(ACTIVE_INSTANCES_CACHE_KEY)
