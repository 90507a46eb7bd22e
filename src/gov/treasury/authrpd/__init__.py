"""
AuthRPD - Credential Issuance and Verification

Issues and verifies short-lived signed credentials for the two actor classes of
the treasury platform (members and machine clients) and routes each credential
to the regional RPD deployments that must accept it through the JWT ``aud``
claim.

Key Components:
- keys: Monthly ES256 signing keys and the published JSON Web Key Set
- resolve: Region hierarchy and tenant (RPD instance) audience resolution
- tokens: Access token issuance/verification and refresh token rotation
- model: Database models for regions, RPD instances, refresh tokens and audit
- app: aiohttp server, configuration, background tasks and CLIs
- cache.py: Redis cache-aside helper shared by the resolvers and key set
- audit.py: Authentication audit events
- errors.py: Exception taxonomy

Architecture Overview:
1. Issuance:
   - The actor's region is walked up to its top region
   - The top region's active RPD instances supply the audiences
   - Claims are signed with the current month's key, whose id is the ``kid``

2. Verification:
   - The ``kid`` header selects a public key from the rotation window
   - Signature, expiry, issuer and audience membership are checked in order

3. Refresh:
   - Refresh tokens are stored hashed and rotate on every use
   - Consuming a token and minting its successor is one transaction
"""
