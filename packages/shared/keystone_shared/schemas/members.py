"""Organization member management schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .auth import RoleSummary


class MemberRoleUpdate(BaseModel):
    role_id: int = Field(gt=0)


class MemberResponse(BaseModel):
    id: int
    uuid: str
    email: str
    first_name: str
    last_name: str
    role: RoleSummary
    is_active: bool
    joined_at: datetime
    last_login_at: Optional[datetime] = None


class MemberListResponse(BaseModel):
    users: list[MemberResponse]
    total: int
    page: int
    limit: int
