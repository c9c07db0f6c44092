"""Role, menu and permission schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .common import MenuSection, RoleScope


class PermissionInput(BaseModel):
    menu_id: int = Field(gt=0)
    can_create: bool = False
    can_read: bool = False
    can_update: bool = False
    can_delete: bool = False


class RoleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9_]+$")
    description: Optional[str] = Field(default=None, max_length=500)
    level: Optional[int] = Field(default=None, ge=0)
    base_role_id: Optional[int] = Field(default=None, gt=0)
    scope: RoleScope = RoleScope.ORGANIZATION
    organization_id: Optional[int] = Field(default=None, gt=0)
    permissions: Optional[list[PermissionInput]] = None


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)


class PermissionsReplaceRequest(BaseModel):
    """The complete matrix for a role. Menus left out lose all access."""
    permissions: list[PermissionInput]


class PermissionSet(BaseModel):
    can_create: bool = False
    can_read: bool = False
    can_update: bool = False
    can_delete: bool = False


class RolePermissionResponse(PermissionSet):
    menu_id: int
    menu_slug: str
    menu_name: str
    menu_path: str
    menu_section: MenuSection


class BaseRoleSummary(BaseModel):
    id: int
    name: str
    slug: str


class RoleResponse(BaseModel):
    id: int
    uuid: str
    name: str
    slug: str
    description: Optional[str] = None
    level: int
    is_system: bool
    scope: RoleScope
    organization_id: Optional[int] = None
    base_role: Optional[BaseRoleSummary] = None
    member_count: int = 0
    permissions: list[RolePermissionResponse] = []
    created_at: datetime


class MenuResponse(BaseModel):
    id: int
    name: str
    slug: str
    path: str
    icon: Optional[str] = None
    section: MenuSection
    sort_order: int
    parent_id: Optional[int] = None


class UserMenuResponse(MenuResponse):
    permissions: PermissionSet
