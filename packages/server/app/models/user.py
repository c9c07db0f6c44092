"""User model."""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UTCDateTime, UUIDMixin


class User(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)  # stored lower-case
    password_hash: str = Field(nullable=False)
    first_name: str = Field(nullable=False)
    last_name: str = Field(nullable=False)
    email_verified: bool = Field(default=False, nullable=False)
    email_verified_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    email_verification_token: Optional[str] = Field(default=None, index=True)
    email_verification_expires: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    password_reset_token: Optional[str] = Field(default=None, index=True)
    password_reset_expires: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
    is_active: bool = Field(default=True, nullable=False)
    last_login_at: Optional[datetime] = Field(default=None, sa_type=UTCDateTime)
