"""Platform-wide key/value settings (e.g. invitation_enabled)."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


class PlatformSetting(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "platform_settings"

    key: str = Field(unique=True, nullable=False, index=True)
    value: str = Field(nullable=False)
    type: str = Field(default="STRING", nullable=False)  # STRING | NUMBER | BOOLEAN | JSON
    description: Optional[str] = None
    category: str = Field(default="general", nullable=False)
