"""Region hierarchy and tenant instance models.

Regions form a forest: rows with ``parent_code IS NULL`` are top regions and
every other region hangs below one of them, arbitrarily deep. Only top regions
own RPD instances; sub-regions inherit every instance of their top region.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from gov.treasury.authrpd.model.base import Base, codepk, str64, str255


class Region(Base):
    """Administrative region node. ``parent_code`` is NULL for top regions."""

    __tablename__ = "regions"

    code: Mapped[codepk]
    parent_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (Index("idx_regions_parent_code", "parent_code"),)


class TenantInstance(Base):
    """A downstream RPD deployment addressed by a unique audience string.

    ``top_region_code`` must reference a region whose ``parent_code`` is NULL.
    """

    __tablename__ = "rpd_instances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str64]
    top_region_code: Mapped[str64]
    audience: Mapped[str255]
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_rpd_instances_code", "code", unique=True),
        Index("idx_rpd_instances_audience", "audience", unique=True),
        Index("idx_rpd_instances_top_region", "top_region_code", "active"),
    )
