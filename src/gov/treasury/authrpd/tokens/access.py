"""
Access Token Issuance and Verification

Access tokens are compact JWS (ES256) JWTs signed with the current monthly
period key. The header carries the period id as ``kid`` so verifiers can pick
the matching public key from the published key set without trial and error.

Claims:
    iss   configured issuer
    sub   "{actor_type}:{actor_id}"
    aud   list of RPD audiences for the actor's top region
    iat   issue time (seconds)
    exp   iat + access token lifetime
    jti   unique token id (ULID)
    name  optional display name
    data  {actor_id, actor_type, role, region_id, organization_id, sub_region_id}

``data.region_id`` is always the resolved top region; ``data.sub_region_id``
is present only when the actor belongs to a sub-region.

Verifiers accept ``aud`` either as a list or as a single string, since tokens
minted before audiences became lists carry a plain string.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from jwcrypto import jws, jwt
from jwcrypto.common import JWException
from pydantic import BaseModel, ValidationError, field_validator
from ulid import ULID

from gov.treasury.authrpd.errors import (
    ActorIncomplete,
    AudienceMismatch,
    IssuerMismatch,
    SignatureInvalid,
    TokenExpired,
)
from gov.treasury.authrpd.keys.key_set import KeySetBuilder
from gov.treasury.authrpd.keys.periods import Clock, period_id, utcnow
from gov.treasury.authrpd.keys.store import SIGNING_ALGORITHM, KeyStore
from gov.treasury.authrpd.resolve.tenant import TenantAudienceResolver, TenantAudiences
from gov.treasury.authrpd.tokens.actors import ActorType, ClientActor, MemberActor

logger = logging.getLogger(__name__)


class TokenData(BaseModel):
    actor_id: str
    actor_type: ActorType
    role: Optional[str] = None
    region_id: str
    organization_id: Optional[str] = None
    sub_region_id: Optional[str] = None


class AccessTokenClaims(BaseModel):
    iss: str
    sub: str
    aud: List[str]
    iat: int
    exp: int
    jti: str
    name: Optional[str] = None
    data: TokenData

    @field_validator("aud", mode="before")
    @classmethod
    def normalize_audience(cls, v):
        if isinstance(v, str):
            return [v]
        return v

    @property
    def region_code(self) -> str:
        """The top region the token was issued for."""
        return self.data.region_id

    def to_jwt_claims(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def build_claims(
    actor: Union[MemberActor, ClientActor],
    tenant: TenantAudiences,
    issuer: str,
    issued_at: int,
    expires_in: int,
) -> AccessTokenClaims:
    return AccessTokenClaims(
        iss=issuer,
        sub=actor.subject,
        aud=list(tenant.audiences),
        iat=issued_at,
        exp=issued_at + expires_in,
        jti=str(ULID()),
        name=actor.display_name,
        data=TokenData(
            actor_id=actor.id,
            actor_type=ActorType(actor.actor_type),
            role=actor.role,
            region_id=tenant.top_region_code,
            organization_id=actor.organization_code,
            sub_region_id=tenant.original_region_code,
        ),
    )


class AccessTokenIssuer:
    def __init__(
        self,
        key_store: KeyStore,
        audience_resolver: TenantAudienceResolver,
        issuer: str = "AUTHRPD",
        expires_in: int = 1200,
        clock: Clock = utcnow,
    ) -> None:
        self.key_store = key_store
        self.audience_resolver = audience_resolver
        self.issuer = issuer
        self.expires_in = expires_in
        self.clock = clock

    async def resolve_tenant(self, actor: Union[MemberActor, ClientActor]) -> TenantAudiences:
        """
        Resolve the top region and audiences ``actor`` is issued for.

        Raises:
            ActorIncomplete: the actor has no region
            RegionNotFound, HierarchyCycle, TenantNotConfigured: propagated
                from audience resolution
        """
        if not actor.region_code:
            raise ActorIncomplete("region_code")
        return await self.audience_resolver.resolve_audiences(actor.region_code)

    async def issue_access_token(
        self,
        actor: Union[MemberActor, ClientActor],
        tenant: Optional[TenantAudiences] = None,
    ) -> str:
        """
        Sign an access token for ``actor``.

        ``tenant`` is resolved with ``resolve_tenant`` when not given. Callers
        holding a database transaction resolve it beforehand, since resolution
        checks out its own connections on a cache miss.

        Raises:
            ActorIncomplete, RegionNotFound, HierarchyCycle, TenantNotConfigured:
                see ``resolve_tenant``
        """
        if tenant is None:
            tenant = await self.resolve_tenant(actor)

        now = self.clock()
        signing_key = await self.key_store.ensure_period_key(period_id(now))

        claims = build_claims(
            actor, tenant, self.issuer, int(now.timestamp()), self.expires_in
        )
        header = {"alg": signing_key.algorithm, "typ": "JWT", "kid": signing_key.kid}

        access_token = jwt.JWT(header=header, claims=claims.to_jwt_claims())
        access_token.make_signed_token(signing_key.key)

        logger.debug(
            "Issued access token %s for %s (kid=%s, aud=%s)",
            claims.jti,
            claims.sub,
            signing_key.kid,
            claims.aud,
        )
        return access_token.serialize()


def read_key_id(serialized_token: str) -> Optional[str]:
    """Return the ``kid`` header of a compact token without verifying it."""
    envelope = jws.JWS()
    try:
        envelope.deserialize(serialized_token)
        header = envelope.jose_header
    except (JWException, ValueError) as e:
        raise SignatureInvalid("malformed token") from e
    kid = header.get("kid")
    return kid if isinstance(kid, str) else None


class AccessTokenVerifier:
    def __init__(
        self,
        key_set: KeySetBuilder,
        issuer: str = "AUTHRPD",
        clock: Clock = utcnow,
    ) -> None:
        self.key_set = key_set
        self.issuer = issuer
        self.clock = clock

    async def verify_access_token(
        self, serialized_token: str, expected_audience: str
    ) -> AccessTokenClaims:
        """
        Validate ``serialized_token`` for an RPD instance known as ``expected_audience``.

        Checks run in order: key id, signature, expiry, issuer, audience
        membership. The first failing check determines the error.

        Raises:
            SignatureInvalid, KeyNotFound, TokenExpired, IssuerMismatch,
            AudienceMismatch
        """
        kid = read_key_id(serialized_token)
        key = await self.key_set.find_key(kid)

        try:
            validated_token = jwt.JWT(
                jwt=serialized_token,
                key=key,
                algs=[SIGNING_ALGORITHM],
                check_claims=False,
            )
            claims = AccessTokenClaims.model_validate(json.loads(validated_token.claims))
        except (JWException, ValidationError, ValueError) as e:
            logger.info("Rejected token with kid=%s: %s", kid, e)
            raise SignatureInvalid() from e

        if int(self.clock().timestamp()) >= claims.exp:
            logger.debug("Rejected expired token %s", claims.jti)
            raise TokenExpired()

        if claims.iss != self.issuer:
            logger.info("Rejected token %s from issuer %s", claims.jti, claims.iss)
            raise IssuerMismatch(claims.iss)

        if expected_audience not in claims.aud:
            logger.debug(
                "Rejected token %s: audience %s not in %s",
                claims.jti,
                expected_audience,
                claims.aud,
            )
            raise AudienceMismatch(expected_audience)

        return claims
