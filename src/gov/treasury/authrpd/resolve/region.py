"""Region hierarchy resolution.

Walks a region's parent chain up to its top region (the ancestor whose
``parent_code`` is NULL). A region code appearing twice in one walk is a data
fault and raises ``HierarchyCycle`` instead of looping.

Two strategies produce identical results:
- ``walk``: one indexed lookup per level, visited-set cycle detection
- ``recursive``: a single recursive CTE bounded to ``max_depth`` levels, post-
  processed with the same checks
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import Integer, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gov.treasury.authrpd.cache import CacheAside, cached
from gov.treasury.authrpd.errors import HierarchyCycle, RegionNotFound
from gov.treasury.authrpd.model.region import Region

logger = logging.getLogger(__name__)

STRATEGY_WALK = "walk"
STRATEGY_RECURSIVE = "recursive"

TOP_REGION_CACHE_PREFIX = "region:top:"


class RegionHierarchyResolver:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        cache: Optional[CacheAside] = None,
        cache_ttl: int = 3600,
        strategy: str = STRATEGY_WALK,
        max_depth: int = 20,
    ) -> None:
        if strategy not in (STRATEGY_WALK, STRATEGY_RECURSIVE):
            raise ValueError(f"Unknown region resolution strategy: {strategy}")
        self.database_session_maker = database_session_maker
        self.cache = cache
        self.cache_ttl = cache_ttl
        self.strategy = strategy
        self.max_depth = max_depth

    @cached(lambda region_code: f"{TOP_REGION_CACHE_PREFIX}{region_code}")
    async def resolve_top_region(self, region_code: str) -> str:
        """
        Return the top region code reachable from ``region_code``.

        A top region resolves to itself. Results are cached per region code.

        Raises:
            RegionNotFound: the region or one of its ancestors is missing or inactive
            HierarchyCycle: the parent chain loops
        """
        if not region_code:
            raise RegionNotFound(str(region_code))
        if self.strategy == STRATEGY_RECURSIVE:
            return await self.resolve_top_region_recursive(region_code)
        return await self.walk_top_region(region_code)

    async def walk_top_region(self, region_code: str) -> str:
        visited: List[str] = []
        current = region_code

        async with self.database_session_maker() as database_session:
            while True:
                if current in visited:
                    chain = visited + [current]
                    logger.error("Region hierarchy loop detected: %s", " -> ".join(chain))
                    raise HierarchyCycle(region_code, chain)
                visited.append(current)

                stmt = select(Region.code, Region.parent_code).where(
                    Region.code == current, Region.active.is_(True)
                )
                row = (await database_session.execute(stmt)).first()
                if row is None:
                    logger.error(
                        "Region not found: %s (resolving %s)", current, region_code
                    )
                    raise RegionNotFound(current)

                if not row.parent_code:
                    return row.code

                current = row.parent_code

    async def resolve_top_region_recursive(self, region_code: str) -> str:
        regions = Region.__table__
        parent = regions.alias("parent")

        hierarchy = (
            select(
                regions.c.code,
                regions.c.parent_code,
                literal_column("0", Integer).label("depth"),
            )
            .where(regions.c.code == region_code, regions.c.active.is_(True))
            .cte("region_hierarchy", recursive=True)
        )
        previous = hierarchy.alias("previous")
        hierarchy = hierarchy.union_all(
            select(
                parent.c.code,
                parent.c.parent_code,
                (previous.c.depth + 1).label("depth"),
            )
            .select_from(parent.join(previous, parent.c.code == previous.c.parent_code))
            .where(parent.c.active.is_(True), previous.c.depth < self.max_depth)
        )
        stmt = select(
            hierarchy.c.code, hierarchy.c.parent_code, hierarchy.c.depth
        ).order_by(hierarchy.c.depth)

        async with self.database_session_maker() as database_session:
            rows = (await database_session.execute(stmt)).all()

        return self._top_region_from_chain(region_code, rows)

    def _top_region_from_chain(self, region_code: str, rows: Sequence) -> str:
        if len(rows) == 0:
            logger.error("Region not found: %s", region_code)
            raise RegionNotFound(region_code)

        visited: List[str] = []
        for row in rows:
            if row.code in visited:
                chain = visited + [row.code]
                logger.error("Region hierarchy loop detected: %s", " -> ".join(chain))
                raise HierarchyCycle(region_code, chain)
            visited.append(row.code)
            if not row.parent_code:
                return row.code

        last = rows[-1]
        if last.depth >= self.max_depth:
            logger.error(
                "Region hierarchy for %s exceeds %d levels", region_code, self.max_depth
            )
            raise HierarchyCycle(region_code, visited)

        logger.error("Region not found: %s (resolving %s)", last.parent_code, region_code)
        raise RegionNotFound(last.parent_code)

    async def invalidate(self, region_code: Optional[str] = None) -> None:
        """
        Drop cached resolutions.

        Re-parenting a region changes the answer for every descendant, so
        hierarchy edits should call this without ``region_code`` to clear all
        entries. Passing a code clears just that region's entry.
        """
        if self.cache is None:
            return
        if region_code is None:
            await self.cache.invalidate_pattern(f"{TOP_REGION_CACHE_PREFIX}*")
        else:
            await self.cache.invalidate(f"{TOP_REGION_CACHE_PREFIX}{region_code}")
