"""Organization model."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, JSONType, TimestampMixin, UUIDMixin


class Organization(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False, index=True)
    slug: str = Field(unique=True, nullable=False, index=True)
    description: Optional[str] = None
    is_platform: bool = Field(default=False, nullable=False)
    is_active: bool = Field(default=True, nullable=False)
    config: dict = Field(default_factory=dict, sa_type=JSONType, nullable=False)
