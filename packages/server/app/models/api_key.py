"""Organization-scoped API key. Only the bcrypt hash of the secret is stored."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import UTCDateTime, new_uuid, utcnow


class ApiKey(SQLModel, table=True):
    __tablename__ = "api_keys"

    id: str = Field(default_factory=new_uuid, primary_key=True)
    organization_id: int = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    key_hash: str = Field(nullable=False)
    key_prefix: str = Field(nullable=False, index=True)  # display prefix, not unique
    created_by_id: int = Field(foreign_key="users.id", nullable=False)
    expires_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    is_active: bool = Field(default=True, nullable=False)
    revoked_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    last_used_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_column_kwargs={"server_default": sa.func.now()},
        sa_type=UTCDateTime,
    )
