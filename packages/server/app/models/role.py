"""Role and per-menu permission models."""

from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IDMixin, TimestampMixin, UUIDMixin


class Role(IDMixin, UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        sa.UniqueConstraint("slug", "organization_id", name="uq_role_slug_org"),
    )

    name: str = Field(nullable=False)
    slug: str = Field(nullable=False, index=True)
    description: Optional[str] = None
    level: int = Field(default=10, nullable=False)
    is_system: bool = Field(default=False, nullable=False)
    scope: str = Field(default="ORGANIZATION", nullable=False)  # PLATFORM | ORGANIZATION
    organization_id: Optional[int] = Field(default=None, foreign_key="organizations.id", index=True)
    base_role_id: Optional[int] = Field(default=None, foreign_key="roles.id")


class RolePermission(IDMixin, SQLModel, table=True):
    """Absence of a row means no access for any action."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        sa.UniqueConstraint("role_id", "menu_id", name="uq_role_permission_role_menu"),
    )

    role_id: int = Field(foreign_key="roles.id", nullable=False, index=True)
    menu_id: int = Field(foreign_key="menus.id", nullable=False, index=True)
    can_create: bool = Field(default=False, nullable=False)
    can_read: bool = Field(default=False, nullable=False)
    can_update: bool = Field(default=False, nullable=False)
    can_delete: bool = Field(default=False, nullable=False)
