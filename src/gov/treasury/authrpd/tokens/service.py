"""
Credential Service

Composes the access token issuer and the refresh token store into the login,
refresh, logout and forced-logout flows, and records an audit event for each.

Refresh reloads the actor from the actor directory and resolves its audiences
first. The rest is a single database transaction: the presented token is
consumed, a new access token is signed and the successor refresh token is
inserted. Any failure rolls all of it back, so the presented token stays
usable and no successor exists.

Administrative data defects found during issuance (hierarchy cycles, regions
without an RPD instance) are reported to Sentry and counted against the
health gauge. They are not the caller's fault and should page someone.
"""

import logging
from typing import Awaitable, Callable, Optional, Union

import sentry_sdk
from aio_statsd import TelegrafStatsdClient
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gov.treasury.authrpd.audit import AuditAction, log_event
from gov.treasury.authrpd.errors import (
    HierarchyCycle,
    IssuanceException,
    RefreshTokenInvalid,
    TenantNotConfigured,
)
from gov.treasury.authrpd.model.health import HealthGauge
from gov.treasury.authrpd.tokens.access import AccessTokenIssuer
from gov.treasury.authrpd.tokens.actors import (
    ActorType,
    ClientActor,
    MemberActor,
    actor_type_value,
)
from gov.treasury.authrpd.tokens.refresh import RefreshMetadata, RefreshTokenStore

logger = logging.getLogger(__name__)

ActorLoader = Callable[[ActorType, str], Awaitable[Optional[Union[MemberActor, ClientActor]]]]
"""Loads the current actor record by type and id; returns None when the actor no longer exists."""


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_expires_in: int


class CredentialService:
    def __init__(
        self,
        database_session_maker: async_sessionmaker[AsyncSession],
        access_token_issuer: AccessTokenIssuer,
        refresh_token_store: RefreshTokenStore,
        actor_loader: ActorLoader,
        health_gauge: Optional[HealthGauge] = None,
        statsd_client: Optional[TelegrafStatsdClient] = None,
    ) -> None:
        self.database_session_maker = database_session_maker
        self.access_token_issuer = access_token_issuer
        self.refresh_token_store = refresh_token_store
        self.actor_loader = actor_loader
        self.health_gauge = health_gauge
        self.statsd_client = statsd_client

    def _token_pair(self, access_token: str, refresh_token: str) -> TokenPair:
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_token_issuer.expires_in,
            refresh_expires_in=self.refresh_token_store.expires_in,
        )

    def _increment(self, metric: str, **tags) -> None:
        if self.statsd_client is not None:
            self.statsd_client.increment(metric, 1, tag_dict=tags)

    async def _report_issuance_failure(self, e: IssuanceException) -> None:
        if isinstance(e, (HierarchyCycle, TenantNotConfigured)):
            logger.error("Administrative data defect during issuance: %s", e)
            sentry_sdk.capture_exception(e)
            if self.health_gauge is not None:
                await self.health_gauge.womp()
        else:
            logger.warning("Access token issuance rejected: %s", e)
        self._increment("authrpd.issuance.failure", exception=type(e).__name__)

    async def login(
        self,
        actor: Union[MemberActor, ClientActor],
        metadata: Optional[RefreshMetadata] = None,
    ) -> TokenPair:
        """
        Issue an access and refresh token pair for an authenticated actor.

        Credential checks happen before this is called.
        """
        metadata = metadata or RefreshMetadata()
        try:
            access_token = await self.access_token_issuer.issue_access_token(actor)
        except IssuanceException as e:
            await self._report_issuance_failure(e)
            await log_event(
                self.database_session_maker,
                AuditAction.LOGIN_FAIL,
                actor.actor_type,
                actor.id,
                meta={"reason": type(e).__name__},
                ip=metadata.ip,
                user_agent=metadata.user_agent,
            )
            raise

        async with self.database_session_maker() as database_session:
            async with database_session.begin():
                refresh_token = await self.refresh_token_store.issue(
                    database_session, actor.actor_type, actor.id, metadata
                )

        await log_event(
            self.database_session_maker,
            AuditAction.LOGIN_SUCCESS,
            actor.actor_type,
            actor.id,
            ip=metadata.ip,
            user_agent=metadata.user_agent,
        )
        self._increment("authrpd.login.success", actor_type=actor.actor_type)
        return self._token_pair(access_token, refresh_token)

    async def refresh(
        self,
        refresh_token: str,
        actor_type: Union[ActorType, str],
        actor_id: str,
        metadata: Optional[RefreshMetadata] = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair. The presented token is spent.

        Raises:
            RefreshTokenInvalid: for every failure, whatever the cause
        """
        metadata = metadata or RefreshMetadata()
        actor_type = actor_type_value(actor_type)
        actor_id = str(actor_id)

        try:
            actor = await self.actor_loader(ActorType(actor_type), actor_id)
            if actor is None or actor.id != actor_id:
                logger.info("Refresh for unknown actor %s:%s", actor_type, actor_id)
                raise RefreshTokenInvalid()

            # Resolution opens its own sessions; keep it out of the transaction
            # so a refresh holds at most one pooled connection.
            tenant = await self.access_token_issuer.resolve_tenant(actor)

            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    await self.refresh_token_store.verify_and_consume(
                        database_session, refresh_token, actor_type, actor_id
                    )

                    access_token = await self.access_token_issuer.issue_access_token(
                        actor, tenant
                    )

                    successor = await self.refresh_token_store.issue(
                        database_session, actor_type, actor_id, metadata
                    )
        except (RefreshTokenInvalid, IssuanceException, ValueError) as e:
            if isinstance(e, IssuanceException):
                await self._report_issuance_failure(e)
            await log_event(
                self.database_session_maker,
                AuditAction.REFRESH_FAIL,
                actor_type,
                actor_id,
                meta={"reason": type(e).__name__},
                ip=metadata.ip,
                user_agent=metadata.user_agent,
            )
            self._increment("authrpd.refresh.failure", reason=type(e).__name__)
            if isinstance(e, RefreshTokenInvalid):
                raise
            raise RefreshTokenInvalid() from e

        await log_event(
            self.database_session_maker,
            AuditAction.REFRESH_SUCCESS,
            actor_type,
            actor_id,
            ip=metadata.ip,
            user_agent=metadata.user_agent,
        )
        self._increment("authrpd.refresh.success", actor_type=actor_type)
        return self._token_pair(access_token, successor)

    async def logout(
        self,
        refresh_token: str,
        actor_type: Union[ActorType, str],
        actor_id: str,
        metadata: Optional[RefreshMetadata] = None,
    ) -> bool:
        """
        Revoke the presented refresh token if it is still active.

        Never raises; returns whether a token was revoked.
        """
        metadata = metadata or RefreshMetadata()
        revoked = False
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    revoked = await self.refresh_token_store.revoke_presented(
                        database_session, refresh_token, actor_type, actor_id
                    )
        except (SQLAlchemyError, OSError):
            logger.exception(
                "Failed to revoke refresh token on logout for %s:%s", actor_type, actor_id
            )

        await log_event(
            self.database_session_maker,
            AuditAction.LOGOUT,
            actor_type,
            actor_id,
            meta={"revoked": revoked},
            ip=metadata.ip,
            user_agent=metadata.user_agent,
        )
        return revoked

    async def revoke_all(self, actor_type: Union[ActorType, str], actor_id: str) -> int:
        """
        Revoke every refresh token of an actor, e.g. after a suspected compromise.

        Never raises; returns the number of tokens revoked, 0 when the store failed.
        """
        meta = {}
        try:
            async with self.database_session_maker() as database_session:
                async with database_session.begin():
                    revoked = await self.refresh_token_store.revoke_all(
                        database_session, actor_type, actor_id
                    )
            logger.info("Revoked %d refresh tokens for %s:%s", revoked, actor_type, actor_id)
        except (SQLAlchemyError, OSError) as e:
            logger.exception(
                "Failed to revoke refresh tokens for %s:%s", actor_type, actor_id
            )
            sentry_sdk.capture_exception(e)
            revoked = 0
            meta["error"] = type(e).__name__

        meta["count"] = revoked
        await log_event(
            self.database_session_maker,
            AuditAction.TOKENS_REVOKED,
            actor_type,
            actor_id,
            meta=meta,
        )
        return revoked
