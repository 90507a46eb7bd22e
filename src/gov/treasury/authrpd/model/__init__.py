"""
Database Models

This package defines the persistent data structures of the credential service
using SQLAlchemy ORM.

Key Models:
- base.py: Declarative base with shared column type annotations
- region.py: Region hierarchy (``regions``) and RPD tenant instances (``rpd_instances``)
- refresh_token.py: Hashed, soft-revocable refresh credentials (``refresh_tokens``)
- audit.py: Authentication audit trail (``auth_audit_log``)
- health.py: In-process health gauge (not persisted)

Relationships:
- Region.parent_code points at another Region.code (NULL for top regions)
- TenantInstance.top_region_code points at a top Region.code
- RefreshToken rows belong to an actor identified by (actor_type, actor_id)

Regions and tenant instances are administered elsewhere; the credential
service only reads them. Refresh tokens and audit rows are written here.
"""
