"""
Role endpoints.

GET    /api/roles                        — Platform roles plus the organization's own
GET    /api/roles/{role_id}              — Role with its permission matrix
POST   /api/roles                        — Create a role (org admin)
PATCH  /api/roles/{role_id}              — Rename/describe a role (org admin)
DELETE /api/roles/{role_id}              — Delete an unused role (org admin)
GET    /api/roles/{role_id}/permissions  — Permission matrix
PUT    /api/roles/{role_id}/permissions  — Replace the whole matrix (org admin)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, get_auth_context, require_org_admin
from app.core.database import get_session
from app.core.errors import AuthorizationFailure
from app.core.responses import success
from app.services import rbac

from keystone_shared.schemas.common import RoleScope
from keystone_shared.schemas.roles import (
    PermissionsReplaceRequest,
    RoleCreateRequest,
    RoleResponse,
    RoleUpdateRequest,
)

router = APIRouter()


async def _editable(session: AsyncSession, role_id: int, ctx: AuthContext):
    role = await rbac.get_role_model(session, role_id)
    rbac.ensure_role_editable(role, ctx.organization.id, ctx.level)
    return role


@router.get("")
async def list_roles(
    scope: Optional[RoleScope] = None,
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    roles = await rbac.list_roles(session, ctx.organization.id, scope)
    return success([RoleResponse.model_validate(r) for r in roles])


@router.get("/{role_id}")
async def get_role(
    role_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    role = await rbac.get_role_model(session, role_id)
    rbac.ensure_role_visible(role, ctx.organization.id, ctx.level)
    return success(RoleResponse.model_validate(await rbac.get_role(session, role_id)))


@router.post("", status_code=201)
async def create_role(
    body: RoleCreateRequest,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    if body.scope == RoleScope.ORGANIZATION:
        if body.organization_id is None:
            body = body.model_copy(update={"organization_id": ctx.organization.id})
        elif body.organization_id != ctx.organization.id and not ctx.is_platform_admin:
            raise AuthorizationFailure("Cannot create roles for another organization")
    role = await rbac.create_role(session, body, ctx.level)
    return success(RoleResponse.model_validate(role), status_code=201)


@router.patch("/{role_id}")
async def update_role(
    role_id: int,
    body: RoleUpdateRequest,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    await _editable(session, role_id, ctx)
    return success(RoleResponse.model_validate(await rbac.update_role(session, role_id, body)))


@router.delete("/{role_id}")
async def delete_role(
    role_id: int,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    await _editable(session, role_id, ctx)
    await rbac.delete_role(session, role_id)
    return success({"message": "Role deleted successfully"})


@router.get("/{role_id}/permissions")
async def get_role_permissions(
    role_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    role = await rbac.get_role_model(session, role_id)
    rbac.ensure_role_visible(role, ctx.organization.id, ctx.level)
    return success((await rbac.get_role(session, role_id))["permissions"])


@router.put("/{role_id}/permissions")
async def replace_role_permissions(
    role_id: int,
    body: PermissionsReplaceRequest,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    await _editable(session, role_id, ctx)
    role = await rbac.replace_role_permissions(session, role_id, body.permissions)
    return success(RoleResponse.model_validate(role))
