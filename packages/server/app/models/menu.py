"""Menu model: an addressable surface that permissions are granted against."""

from typing import Optional

from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin


class Menu(IDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "menus"

    name: str = Field(nullable=False)
    slug: str = Field(unique=True, nullable=False, index=True)
    description: Optional[str] = None
    path: str = Field(nullable=False)
    icon: Optional[str] = None
    section: str = Field(default="MAIN", nullable=False)  # MAIN | ADMIN | PLATFORM_ADMIN
    sort_order: int = Field(default=0, nullable=False)
    parent_id: Optional[int] = Field(default=None, foreign_key="menus.id")
    is_active: bool = Field(default=True, nullable=False)
