"""Persisted refresh credential. Deleting the row revokes the refresh token."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, UTCDateTime, new_uuid, utcnow


class RefreshSession(IDMixin, SQLModel, table=True):
    __tablename__ = "refresh_sessions"

    session_id: str = Field(default_factory=new_uuid, unique=True, nullable=False)
    token: str = Field(unique=True, nullable=False, index=True)
    user_id: int = Field(foreign_key="users.id", nullable=False, index=True)
    expires_at: datetime = Field(nullable=False, sa_type=UTCDateTime)
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=UTCDateTime,
    )
