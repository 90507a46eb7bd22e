from typing import List
import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gov.treasury.authrpd.errors import IssuanceException
from gov.treasury.authrpd.resolve.region import RegionHierarchyResolver
from gov.treasury.authrpd.resolve.tenant import TenantAudienceResolver

logger = logging.getLogger(__name__)


async def realMain() -> None:
    parser = argparse.ArgumentParser(
        prog="authrpd-resolve",
        description="Resolve region codes to their top region and RPD audiences",
    )
    parser.add_argument("region", nargs="+", help="The region code(s) to resolve.")
    parser.add_argument(
        "--database-url",
        default="postgresql+asyncpg://postgres:password@db/authrpd",
        help="SQLAlchemy async database URL.",
    )
    parser.add_argument(
        "--strategy",
        choices=["walk", "recursive"],
        default="walk",
        help="Region hierarchy resolution strategy.",
    )

    args = vars(parser.parse_args())

    regions: List[str] = args.get("region", [])

    engine = create_async_engine(args.get("database_url"))
    database_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    region_resolver = RegionHierarchyResolver(
        database_session_maker, strategy=args.get("strategy")
    )
    tenant_resolver = TenantAudienceResolver(database_session_maker, region_resolver)

    try:
        for region in regions:
            try:
                tenant = await tenant_resolver.resolve_audiences(region)
                print(f"resolved_region {region} {tenant.model_dump_json()}")
            except IssuanceException:
                logging.exception("Exception resolving region %s", region)
    finally:
        await engine.dispose()


def main() -> None:
    asyncio.run(realMain())


if __name__ == "__main__":
    main()
