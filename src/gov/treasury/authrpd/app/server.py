import asyncio
import contextlib
import logging
from time import time
from typing import Optional

import redis.asyncio as redis
import sentry_sdk
from aio_statsd import TelegrafStatsdClient
from aiohttp import web
from argon2 import PasswordHasher, Type
from sentry_sdk.integrations.aiohttp import AioHttpIntegration
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gov.treasury.authrpd.app.config import (
    AccessTokenIssuerAppKey,
    AccessTokenVerifierAppKey,
    ActorLoaderAppKey,
    CredentialServiceAppKey,
    DatabaseAppKey,
    DatabaseSessionMakerAppKey,
    HealthGaugeAppKey,
    KeyRotationTaskAppKey,
    KeySetBuilderAppKey,
    KeyStoreAppKey,
    RedisClientAppKey,
    RedisPoolAppKey,
    RefreshTokenStoreAppKey,
    RegionResolverAppKey,
    Settings,
    SettingsAppKey,
    TelegrafStatsdClientAppKey,
    TenantResolverAppKey,
    TickHealthTaskAppKey,
    create_key_store,
)
from gov.treasury.authrpd.app.handlers.internal import (
    handle_internal_alive,
    handle_internal_ready,
)
from gov.treasury.authrpd.app.handlers.jwks import handle_jwks
from gov.treasury.authrpd.app.tasks import (
    ensure_current_key,
    key_rotation_task,
    tick_health_task,
)
from gov.treasury.authrpd.cache import CacheAside
from gov.treasury.authrpd.keys.key_set import KeySetBuilder
from gov.treasury.authrpd.model.health import HealthGauge
from gov.treasury.authrpd.resolve.region import RegionHierarchyResolver
from gov.treasury.authrpd.resolve.tenant import TenantAudienceResolver
from gov.treasury.authrpd.tokens.access import AccessTokenIssuer, AccessTokenVerifier
from gov.treasury.authrpd.tokens.refresh import RefreshTokenStore
from gov.treasury.authrpd.tokens.service import ActorLoader, CredentialService

logger = logging.getLogger(__name__)


def setup_credentials(app: web.Application, cache: Optional[CacheAside]) -> None:
    """
    Build the credential components from the resources already on ``app``.

    Requires the settings, database session maker, key store and health gauge.
    The credential service is only created when the embedding application
    registered an actor loader.
    """
    settings = app[SettingsAppKey]
    database_session_maker = app[DatabaseSessionMakerAppKey]
    key_store = app[KeyStoreAppKey]

    key_set_builder = KeySetBuilder(
        key_store,
        cache=cache,
        window_periods=settings.key_window_periods,
        cache_ttl=settings.key_set_cache_ttl,
    )
    region_resolver = RegionHierarchyResolver(
        database_session_maker,
        cache=cache,
        cache_ttl=settings.region_cache_ttl,
        strategy=settings.region_resolution_strategy,
    )
    tenant_resolver = TenantAudienceResolver(
        database_session_maker,
        region_resolver,
        cache=cache,
        cache_ttl=settings.tenant_cache_ttl,
    )
    access_token_issuer = AccessTokenIssuer(
        key_store,
        tenant_resolver,
        issuer=settings.issuer,
        expires_in=settings.access_token_expiry,
    )
    refresh_token_store = RefreshTokenStore(
        expires_in=settings.refresh_token_expiry,
        candidate_window=settings.refresh_candidate_window,
        password_hasher=PasswordHasher(
            time_cost=settings.refresh_hash_time_cost,
            memory_cost=settings.refresh_hash_memory_cost,
            parallelism=settings.refresh_hash_parallelism,
            type=Type.ID,
        ),
    )

    app[KeySetBuilderAppKey] = key_set_builder
    app[RegionResolverAppKey] = region_resolver
    app[TenantResolverAppKey] = tenant_resolver
    app[AccessTokenIssuerAppKey] = access_token_issuer
    app[AccessTokenVerifierAppKey] = AccessTokenVerifier(
        key_set_builder, issuer=settings.issuer
    )
    app[RefreshTokenStoreAppKey] = refresh_token_store

    actor_loader = app.get(ActorLoaderAppKey)
    if actor_loader is not None:
        app[CredentialServiceAppKey] = CredentialService(
            database_session_maker,
            access_token_issuer,
            refresh_token_store,
            actor_loader,
            health_gauge=app[HealthGaugeAppKey],
            statsd_client=app.get(TelegrafStatsdClientAppKey),
        )


async def background_tasks(app):
    logger.info("Starting up")
    settings: Settings = app[SettingsAppKey]

    engine = create_async_engine(str(settings.pg_dsn))
    app[DatabaseAppKey] = engine
    database_session = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )
    app[DatabaseSessionMakerAppKey] = database_session

    app[RedisPoolAppKey] = redis.ConnectionPool.from_url(str(settings.redis_dsn))
    app[RedisClientAppKey] = redis.Redis(connection_pool=app[RedisPoolAppKey])

    statsd_client = TelegrafStatsdClient(
        host=settings.statsd_host, port=settings.statsd_port, debug=settings.debug
    )
    await statsd_client.connect()
    app[TelegrafStatsdClientAppKey] = statsd_client

    app[KeyStoreAppKey] = create_key_store(settings)
    current_period = await ensure_current_key(app[KeyStoreAppKey])
    logger.info("Signing key for %s is ready", current_period)

    setup_credentials(app, CacheAside(app[RedisClientAppKey]))

    logger.info("Startup complete")

    app[TickHealthTaskAppKey] = asyncio.create_task(tick_health_task(app))
    app[KeyRotationTaskAppKey] = asyncio.create_task(key_rotation_task(app))

    yield

    logger.info("Shutting down background tasks")

    app[TickHealthTaskAppKey].cancel()
    app[KeyRotationTaskAppKey].cancel()

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[TickHealthTaskAppKey]

    with contextlib.suppress(asyncio.exceptions.CancelledError):
        await app[KeyRotationTaskAppKey]

    await app[KeyStoreAppKey].close()
    await app[DatabaseAppKey].dispose()
    await app[RedisPoolAppKey].aclose()
    await app[TelegrafStatsdClientAppKey].close()


@web.middleware
async def sentry_middleware(request: web.Request, handler):
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        sentry_sdk.capture_exception(e)
        await request.app[HealthGaugeAppKey].womp()
        raise e


@web.middleware
async def statsd_middleware(request: web.Request, handler):
    statsd_client = request.app[TelegrafStatsdClientAppKey]
    request_method: str = request.method
    request_path = request.path

    start_time: float = time()
    response_status_code = 0

    try:
        response = await handler(request)
        response_status_code = response.status
        return response
    except Exception as e:
        statsd_client.increment(
            "authrpd.server.request.exception",
            1,
            tag_dict={
                "exception": type(e).__name__,
                "path": request_path,
                "method": request_method,
            },
        )
        raise e
    finally:
        statsd_client.timer(
            "authrpd.server.request.time",
            time() - start_time,
            tag_dict={"path": request_path, "method": request_method},
        )
        statsd_client.increment(
            "authrpd.server.request.count",
            1,
            tag_dict={
                "path": request_path,
                "method": request_method,
                "status": response_status_code,
            },
        )


def add_routes(app: web.Application) -> None:
    app.add_routes([web.get("/.well-known/jwks.json", handle_jwks)])
    app.add_routes(
        [
            web.get("/internal/alive", handle_internal_alive),
            web.get("/internal/ready", handle_internal_ready),
        ]
    )


async def start_web_server(
    settings: Optional[Settings] = None,
    actor_loader: Optional[ActorLoader] = None,
):
    """
    Build the application.

    ``actor_loader`` is the actor directory lookup used when refreshing
    tokens. Without it the server still publishes keys and answers probes, but
    no CredentialService is available to embedding code.
    """
    if settings is None:
        settings = Settings()  # type: ignore
    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            send_default_pii=True,
            integrations=[AioHttpIntegration()],
        )
    app = web.Application(middlewares=[statsd_middleware, sentry_middleware])

    app[SettingsAppKey] = settings
    app[HealthGaugeAppKey] = HealthGauge()
    if actor_loader is not None:
        app[ActorLoaderAppKey] = actor_loader

    add_routes(app)

    app.cleanup_ctx.append(background_tasks)

    return app
