"""Feature flag definitions and per-organization overrides."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class FeatureFlag(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "feature_flags"

    key: str = Field(unique=True, nullable=False, index=True)
    name: str = Field(nullable=False)
    description: Optional[str] = None
    default_enabled: bool = Field(default=False, nullable=False)


class OrgFeatureFlag(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organization_feature_flags"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "feature_flag_id", name="uq_org_feature_flag"),
    )

    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    feature_flag_id: int = Field(foreign_key="feature_flags.id", nullable=False, index=True)
    platform_enabled: bool = Field(default=False, nullable=False)
    org_enabled: bool = Field(default=True, nullable=False)
