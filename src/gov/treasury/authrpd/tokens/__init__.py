"""
Tokens

Access token issuance/verification and refresh token rotation.

Key Components:
- actors.py: MEMBER / CLIENT actor variants presented for issuance
- access.py: AccessTokenIssuer and AccessTokenVerifier (ES256 JWTs)
- refresh.py: RefreshTokenStore, hashed single-use refresh credentials
- service.py: CredentialService, the login / refresh / logout flows
"""
