"""
Configuration Module for the AuthRPD Credential Service

Settings are loaded from environment variables through pydantic-settings, with
defaults suitable for development. Shared resources created at startup are
exposed to handlers and background tasks through typed ``web.AppKey``s.

Key configuration areas:
- Service identification and networking
- Database and cache connections
- Token lifetimes and refresh token hashing cost
- Signing key storage and rotation
- Cache lifetimes for the key set and region/tenant resolution
- Monitoring and observability
"""

import asyncio
import logging
from typing import Final, Literal, Optional

from aio_statsd import TelegrafStatsdClient
from aiohttp import web
from pydantic import AliasChoices, Field, PostgresDsn, RedisDsn, field_validator
from pydantic_settings import BaseSettings
from redis import asyncio as redis
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gov.treasury.authrpd.keys.key_set import KeySetBuilder
from gov.treasury.authrpd.keys.store import FileSystemKeyStore, KeyStore, MemoryKeyStore
from gov.treasury.authrpd.model.health import HealthGauge
from gov.treasury.authrpd.resolve.region import RegionHierarchyResolver
from gov.treasury.authrpd.resolve.tenant import TenantAudienceResolver
from gov.treasury.authrpd.tokens.access import AccessTokenIssuer, AccessTokenVerifier
from gov.treasury.authrpd.tokens.refresh import RefreshTokenStore
from gov.treasury.authrpd.tokens.service import ActorLoader, CredentialService

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the credential service.

    Environment variables map onto fields by name. Aliases are provided where
    the deployment platform uses a different conventional name, e.g. the
    database can be set with either PG_DSN or DATABASE_URL.
    """

    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    http_port: int = Field(alias="port", default=5100)
    """
    HTTP port for the service to listen on.
    Set with PORT environment variable.
    """

    issuer: str = "AUTHRPD"
    """
    Value of the ``iss`` claim written into, and required of, access tokens.
    Set with ISSUER environment variable.
    """

    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    redis_dsn: RedisDsn = Field(
        "redis://valkey:6379/1?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for the resolution and key set caches.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    pg_dsn: PostgresDsn = Field(
        "postgresql+asyncpg://postgres:password@db/authrpd",
        validation_alias=AliasChoices("pg_dsn", "database_url"),
    )  # type: ignore
    """
    PostgreSQL connection string for regions, RPD instances, refresh tokens
    and the audit log.
    Set with PG_DSN or DATABASE_URL environment variables.
    """

    # Token lifetimes
    access_token_expiry: int = 1200  # 20 minutes
    """
    Lifetime in seconds of access tokens.
    Set with ACCESS_TOKEN_EXPIRY environment variable.
    """

    refresh_token_expiry: int = 5184000  # 60 days
    """
    Lifetime in seconds of refresh tokens.
    Set with REFRESH_TOKEN_EXPIRY environment variable.
    """

    refresh_candidate_window: int = 10
    """
    Number of an actor's most recent active refresh tokens compared against a
    presented token. Older active tokens can no longer be used.
    Set with REFRESH_CANDIDATE_WINDOW environment variable.
    """

    refresh_hash_time_cost: int = 2
    refresh_hash_memory_cost: int = 19456
    refresh_hash_parallelism: int = 1
    """argon2id parameters for refresh token hashes (memory cost in KiB)."""

    # Signing keys
    key_store: Literal["filesystem", "memory"] = "filesystem"
    """
    Where monthly signing keys live. ``memory`` keys vanish on restart and are
    only suitable for tests and single-replica throwaway deployments.
    Set with KEY_STORE environment variable.
    """

    keys_dir: str = "keys"
    """
    Directory holding one ``YYYY-MM`` subdirectory per signing period.
    Set with KEYS_DIR environment variable.
    """

    key_window_periods: int = 2
    """
    Number of periods before the current one whose public keys stay published.
    Set with KEY_WINDOW_PERIODS environment variable.
    """

    key_rotation_interval: int = 86400
    """
    Seconds between runs of the background task that ensures the current
    period's key exists.
    Set with KEY_ROTATION_INTERVAL environment variable.
    """

    # Cache lifetimes
    key_set_cache_ttl: int = 3600
    region_cache_ttl: int = 3600
    tenant_cache_ttl: int = 1800

    region_resolution_strategy: Literal["walk", "recursive"] = "walk"
    """
    ``walk`` issues one query per hierarchy level; ``recursive`` uses a single
    recursive CTE. Both return identical results.
    Set with REGION_RESOLUTION_STRATEGY environment variable.
    """

    # Monitoring and observability settings
    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)

    @field_validator("refresh_candidate_window", "access_token_expiry", "refresh_token_expiry")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("key_window_periods")
    @classmethod
    def must_not_be_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v


def create_key_store(settings: Settings) -> KeyStore:
    if settings.key_store == "memory":
        logger.warning("Using in-memory signing keys; they are lost on restart")
        return MemoryKeyStore()
    return FileSystemKeyStore(settings.keys_dir)


# Application context keys for dependency injection
SettingsAppKey: Final = web.AppKey("settings", Settings)
"""AppKey for accessing the application settings"""

DatabaseAppKey: Final = web.AppKey("database", AsyncEngine)
"""AppKey for accessing the SQLAlchemy async database engine"""

DatabaseSessionMakerAppKey: Final = web.AppKey(
    "database_session_maker", async_sessionmaker[AsyncSession]
)
"""AppKey for accessing the SQLAlchemy async session factory"""

RedisPoolAppKey: Final = web.AppKey("redis_pool", redis.ConnectionPool)
"""AppKey for accessing the Redis connection pool"""

RedisClientAppKey: Final = web.AppKey("redis_client", redis.Redis)
"""AppKey for accessing the Redis client"""

HealthGaugeAppKey: Final = web.AppKey("health_gauge", HealthGauge)
"""AppKey for accessing the health monitoring gauge"""

KeyStoreAppKey: Final = web.AppKey("key_store", KeyStore)
"""AppKey for the signing key store"""

KeySetBuilderAppKey: Final = web.AppKey("key_set_builder", KeySetBuilder)
"""AppKey for the public key set builder behind /.well-known/jwks.json"""

RegionResolverAppKey: Final = web.AppKey("region_resolver", RegionHierarchyResolver)
"""AppKey for the region hierarchy resolver"""

TenantResolverAppKey: Final = web.AppKey("tenant_resolver", TenantAudienceResolver)
"""AppKey for the tenant audience resolver"""

AccessTokenIssuerAppKey: Final = web.AppKey("access_token_issuer", AccessTokenIssuer)
"""AppKey for the access token issuer"""

AccessTokenVerifierAppKey: Final = web.AppKey("access_token_verifier", AccessTokenVerifier)
"""AppKey for the access token verifier"""

RefreshTokenStoreAppKey: Final = web.AppKey("refresh_token_store", RefreshTokenStore)
"""AppKey for the refresh token store"""

CredentialServiceAppKey: Final = web.AppKey("credential_service", CredentialService)
"""AppKey for the credential service, present only when an actor loader was supplied"""

ActorLoaderAppKey: Final[web.AppKey[ActorLoader]] = web.AppKey("actor_loader")
"""AppKey for the actor directory callable supplied by the embedding application"""

KeyRotationTaskAppKey: Final = web.AppKey("key_rotation_task", asyncio.Task[None])
"""AppKey for the background task that ensures the current period's signing key"""

TickHealthTaskAppKey: Final = web.AppKey("tick_health_task", asyncio.Task[None])
"""AppKey for the background task that decays the health gauge"""

TelegrafStatsdClientAppKey: Final = web.AppKey(
    "telegraf_statsd_client", TelegrafStatsdClient
)
"""AppKey for the Telegraf/StatsD metrics client"""
