"""
Organization member endpoints. The organization comes from the credential.

GET    /api/users                  — List members (org admin)
GET    /api/users/{user_id}        — One member (org admin)
PATCH  /api/users/{user_id}/role   — Change a member's role (org admin)
DELETE /api/users/{user_id}        — Deactivate a membership (org admin)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, require_org_admin
from app.core.database import get_session
from app.core.responses import success
from app.services import members as member_service

from keystone_shared.schemas.members import MemberListResponse, MemberRoleUpdate

router = APIRouter()


@router.get("")
async def list_members(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, max_length=255),
    role_id: Optional[int] = Query(default=None, gt=0),
    is_active: Optional[bool] = Query(default=None),
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    users, total = await member_service.list_members(
        session,
        ctx.organization.id,
        page=page,
        limit=limit,
        search=search,
        role_id=role_id,
        is_active=is_active,
    )
    return success(MemberListResponse(users=users, total=total, page=page, limit=limit))


@router.get("/{user_id}")
async def get_member(
    user_id: int,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    return success(await member_service.get_member(session, ctx.organization.id, user_id))


@router.patch("/{user_id}/role")
async def update_member_role(
    user_id: int,
    body: MemberRoleUpdate,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    member = await member_service.update_member_role(
        session, ctx.organization.id, user_id, body.role_id, ctx.level
    )
    return success(member)


@router.delete("/{user_id}")
async def remove_member(
    user_id: int,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    await member_service.remove_member(session, ctx.organization.id, user_id, ctx.user.id, ctx.level)
    return success({"message": "User removed from organization"})
