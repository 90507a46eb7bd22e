"""
Signing Keys

Monthly ES256 signing keys and their publication as a JSON Web Key Set.

Key Components:
- periods.py: ``YYYY-MM`` period ids and the rolling verification window
- store.py: KeyStore interface with filesystem and in-memory implementations
- key_set.py: KeySetBuilder producing the cached ``/.well-known/jwks.json`` document

Rotation model:
1. The key for the current month is created lazily (at startup, by the
   rotation task, or on first issuance)
2. Tokens carry the period id as their ``kid`` header
3. Verifiers accept the current period and the two before it; older keys stay
   on disk but are no longer published
"""
