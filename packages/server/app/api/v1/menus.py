"""
Menu endpoints.

GET /api/menus       — All active menus in navigation order
GET /api/menus/user  — Menus the caller can read in the current organization
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, get_auth_context
from app.core.database import get_session
from app.core.responses import success
from app.services import rbac

from keystone_shared.schemas.roles import MenuResponse, UserMenuResponse

router = APIRouter()


@router.get("")
async def list_menus(
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    menus = await rbac.list_menus(session)
    return success([MenuResponse.model_validate(m, from_attributes=True) for m in menus])


@router.get("/user")
async def user_menus(
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    menus = await rbac.user_menus(session, ctx.user.id, ctx.organization.id)
    return success([UserMenuResponse.model_validate(m) for m in menus])
