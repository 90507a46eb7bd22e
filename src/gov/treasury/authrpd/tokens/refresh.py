"""
Refresh Token Store

Refresh tokens are opaque 256-bit random strings handed to the client once.
Only an argon2id hash is persisted, so a stored hash can only be matched by
hashing the presented value against each candidate row. Candidates are
bounded to the actor's most recent ``candidate_window`` active rows.

Tokens rotate on use: a successful ``verify_and_consume`` revokes the matched
row with a conditional update on ``revoked_at IS NULL``. When two requests
present the same token concurrently only one update affects a row; the other
caller gets ``RefreshTokenInvalid`` and no successor.

Methods take the caller's ``database_session`` and never commit, so a consume
and the insert of its successor can share one transaction.
"""

import asyncio
import logging
import secrets
from datetime import timedelta
from typing import List, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from gov.treasury.authrpd.errors import RefreshTokenInvalid
from gov.treasury.authrpd.keys.periods import Clock, utcnow
from gov.treasury.authrpd.model.refresh_token import RefreshToken
from gov.treasury.authrpd.tokens.actors import actor_type_value

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32


class RefreshMetadata(BaseModel):
    """Client details recorded alongside a refresh token."""

    device_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None


class RefreshTokenStore:
    def __init__(
        self,
        expires_in: int = 5184000,
        candidate_window: int = 10,
        password_hasher: Optional[PasswordHasher] = None,
        clock: Clock = utcnow,
    ) -> None:
        self.expires_in = expires_in
        self.candidate_window = candidate_window
        self.password_hasher = password_hasher or PasswordHasher(type=Type.ID)
        self.clock = clock

    def _matches(self, token_hash: str, plaintext: str) -> bool:
        try:
            return self.password_hasher.verify(token_hash, plaintext)
        except (VerificationError, InvalidHashError):
            return False

    async def issue(
        self,
        database_session: AsyncSession,
        actor_type: str,
        actor_id: str,
        metadata: Optional[RefreshMetadata] = None,
    ) -> str:
        """Create a refresh token for the actor and return its plaintext."""
        metadata = metadata or RefreshMetadata()
        plaintext = secrets.token_urlsafe(TOKEN_BYTES)
        token_hash = await asyncio.to_thread(self.password_hasher.hash, plaintext)

        now = self.clock()
        database_session.add(
            RefreshToken(
                actor_type=actor_type_value(actor_type),
                actor_id=str(actor_id),
                token_hash=token_hash,
                device_id=metadata.device_id,
                ip=metadata.ip,
                user_agent=metadata.user_agent,
                expires_at=now + timedelta(seconds=self.expires_in),
                revoked_at=None,
                created_at=now,
            )
        )
        await database_session.flush()
        return plaintext

    async def _candidates(
        self, database_session: AsyncSession, actor_type: str, actor_id: str
    ) -> List[RefreshToken]:
        stmt = (
            select(RefreshToken)
            .where(
                RefreshToken.actor_type == actor_type_value(actor_type),
                RefreshToken.actor_id == str(actor_id),
                RefreshToken.revoked_at.is_(None),
                RefreshToken.expires_at > self.clock(),
            )
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .limit(self.candidate_window)
        )
        return list((await database_session.scalars(stmt)).all())

    async def find_match(
        self,
        database_session: AsyncSession,
        plaintext: str,
        actor_type: str,
        actor_id: str,
    ) -> Optional[RefreshToken]:
        """Return the active row whose hash matches ``plaintext``, if any."""
        if not plaintext:
            return None
        candidates = await self._candidates(database_session, actor_type, actor_id)

        def scan() -> Optional[RefreshToken]:
            for candidate in candidates:
                if self._matches(candidate.token_hash, plaintext):
                    return candidate
            return None

        return await asyncio.to_thread(scan)

    async def verify_and_consume(
        self,
        database_session: AsyncSession,
        plaintext: str,
        actor_type: str,
        actor_id: str,
    ) -> RefreshToken:
        """
        Match ``plaintext`` and revoke it in one step.

        Raises:
            RefreshTokenInvalid: no active match, or another request consumed
                the same token first
        """
        match = await self.find_match(database_session, plaintext, actor_type, actor_id)
        if match is None:
            logger.info("No active refresh token matched for %s:%s", actor_type, actor_id)
            raise RefreshTokenInvalid()

        if not await self._revoke_active(database_session, match):
            logger.warning(
                "Refresh token %d for %s:%s was consumed concurrently",
                match.id,
                actor_type,
                actor_id,
            )
            raise RefreshTokenInvalid()

        return match

    async def _revoke_active(
        self, database_session: AsyncSession, refresh_token: RefreshToken
    ) -> bool:
        revoked_at = self.clock()
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == refresh_token.id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=revoked_at)
            .execution_options(synchronize_session=False)
        )
        result = await database_session.execute(stmt)
        if result.rowcount != 1:
            return False
        set_committed_value(refresh_token, "revoked_at", revoked_at)
        return True

    async def revoke(self, database_session: AsyncSession, refresh_token_id: int) -> bool:
        """Revoke one token by id. Returns False when it was already revoked or absent."""
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.id == refresh_token_id,
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await database_session.execute(stmt)
        return result.rowcount == 1

    async def revoke_presented(
        self,
        database_session: AsyncSession,
        plaintext: str,
        actor_type: str,
        actor_id: str,
    ) -> bool:
        """Revoke the active token matching ``plaintext``. Returns False when none matched."""
        match = await self.find_match(database_session, plaintext, actor_type, actor_id)
        if match is None:
            return False
        return await self._revoke_active(database_session, match)

    async def revoke_all(
        self, database_session: AsyncSession, actor_type: str, actor_id: str
    ) -> int:
        """Revoke every active token of an actor. Returns the number revoked."""
        stmt = (
            update(RefreshToken)
            .where(
                RefreshToken.actor_type == actor_type_value(actor_type),
                RefreshToken.actor_id == str(actor_id),
                RefreshToken.revoked_at.is_(None),
            )
            .values(revoked_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        result = await database_session.execute(stmt)
        return result.rowcount
