"""init

Revision ID: 5c2e8d1f4a90
Revises:
Create Date: 2026-10-19 09:12:41.508213

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "5c2e8d1f4a90"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "regions",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column("parent_code", sa.String(64), nullable=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_regions_parent_code", "regions", ["parent_code"])

    # Only regions with parent_code IS NULL own instances.
    op.create_table(
        "rpd_instances",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(64), nullable=False),
        sa.Column("top_region_code", sa.String(64), nullable=False),
        sa.Column("audience", sa.String(255), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_rpd_instances_code", "rpd_instances", ["code"], unique=True)
    op.create_index(
        "idx_rpd_instances_audience", "rpd_instances", ["audience"], unique=True
    )
    op.create_index(
        "idx_rpd_instances_top_region", "rpd_instances", ["top_region_code", "active"]
    )

    op.create_table(
        "refresh_tokens",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_type", sa.String(16), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=False),
        sa.Column("token_hash", sa.String(255), nullable=False),
        sa.Column("device_id", sa.String(255), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_refresh_tokens_actor",
        "refresh_tokens",
        ["actor_type", "actor_id", "created_at"],
    )
    op.create_index("idx_refresh_tokens_expires", "refresh_tokens", ["expires_at"])

    op.create_table(
        "auth_audit_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_type", sa.String(16), nullable=True),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("meta", sa.JSON, nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_auth_audit_log_actor", "auth_audit_log", ["actor_type", "actor_id"]
    )


def downgrade() -> None:
    op.drop_table("regions")
    op.drop_table("rpd_instances")
    op.drop_table("refresh_tokens")
    op.drop_table("auth_audit_log")
