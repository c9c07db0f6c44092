"""User-Organization membership. One role per (user, organization)."""

from datetime import datetime

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, UTCDateTime, utcnow


class Membership(IDMixin, SQLModel, table=True):
    __tablename__ = "organization_users"
    __table_args__ = (
        sa.UniqueConstraint("user_id", "organization_id", name="uq_membership_user_org"),
    )

    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    role_id: int = Field(foreign_key="roles.id", nullable=False)
    is_active: bool = Field(default=True, nullable=False)
    joined_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=UTCDateTime,
    )
