"""Invitation model. Status only ever moves out of PENDING."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UTCDateTime, UUIDMixin


class Invitation(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "invitations"
    __table_args__ = (
        # At most one live invitation per address and organization.
        sa.Index(
            "uq_invitations_pending_email_org",
            "email",
            "organization_id",
            unique=True,
            postgresql_where=sa.text("status = 'PENDING'"),
            sqlite_where=sa.text("status = 'PENDING'"),
        ),
    )

    email: str = Field(nullable=False, index=True)
    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    role_id: int = Field(foreign_key="roles.id", nullable=False)
    token: str = Field(unique=True, nullable=False, index=True)
    status: str = Field(default="PENDING", nullable=False)  # PENDING | ACCEPTED | EXPIRED | CANCELLED
    expires_at: datetime = Field(nullable=False, sa_type=UTCDateTime)
    accepted_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    invited_by_id: int = Field(foreign_key="users.id", nullable=False)
