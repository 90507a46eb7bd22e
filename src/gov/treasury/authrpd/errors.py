"""Credential subsystem exception taxonomy.

Issuance-time failures (``IssuanceException``) are caller-correctable or point at
administrative data defects. Verification-time failures
(``VerificationException``) are always surfaced as an authentication rejection
and never retried. ``RefreshTokenInvalid`` is a single error for every cause, so a
caller cannot learn why a refresh was rejected.

Messages carry a stable ``error-<area>-<nnnn>`` prefix for log searches.
"""

from typing import Optional


class CredentialException(Exception):
    """Base class for every error raised by the credential subsystem."""


class IssuanceException(CredentialException):
    """Raised while building an access token."""


class VerificationException(CredentialException):
    """Raised while validating a presented access token."""


class RegionNotFound(IssuanceException):
    def __init__(self, region_code: str) -> None:
        super().__init__(f"error-region-1000 Region not found: {region_code}")
        self.region_code = region_code


class HierarchyCycle(IssuanceException):
    """The region parent chain loops back on itself.

    This is a data-integrity fault, not a normal state.
    """

    def __init__(self, region_code: str, chain: Optional[list] = None) -> None:
        chain = chain or []
        path = " -> ".join(chain)
        super().__init__(
            f"error-region-1001 Region hierarchy loop detected for {region_code}: {path}"
        )
        self.region_code = region_code
        self.chain = chain


class TenantNotConfigured(IssuanceException):
    def __init__(self, region_code: str, top_region_code: str) -> None:
        super().__init__(
            f"error-tenant-1000 No active RPD instances for region {region_code} "
            f"(top region {top_region_code})"
        )
        self.region_code = region_code
        self.top_region_code = top_region_code


class ActorIncomplete(IssuanceException):
    def __init__(self, field: str) -> None:
        super().__init__(f"error-token-1000 Actor is missing required field: {field}")
        self.field = field


class KeyNotFound(VerificationException):
    def __init__(self, kid: Optional[str]) -> None:
        super().__init__(f"error-key-1000 Signing key not found for kid={kid}")
        self.kid = kid


class SignatureInvalid(VerificationException):
    def __init__(self, reason: str = "") -> None:
        super().__init__(f"error-token-1001 Invalid token signature {reason}".rstrip())


class TokenExpired(VerificationException):
    def __init__(self) -> None:
        super().__init__("error-token-1002 Token has expired")


class IssuerMismatch(VerificationException):
    def __init__(self, issuer: Optional[str]) -> None:
        super().__init__(f"error-token-1003 Unexpected token issuer: {issuer}")
        self.issuer = issuer


class AudienceMismatch(VerificationException):
    def __init__(self, expected_audience: str) -> None:
        super().__init__(
            f"error-token-1004 Token is not valid for audience {expected_audience}"
        )
        self.expected_audience = expected_audience


class RefreshTokenInvalid(CredentialException):
    def __init__(self) -> None:
        super().__init__("error-refresh-1000 Invalid refresh token")
