"""
Feature flag endpoints.

GET   /api/feature-flags                                  — Flag definitions (platform admin)
PUT   /api/feature-flags/{flag_id}                        — Change a platform default (platform admin)
GET   /api/feature-flags/enabled/{key}                    — Effective value for the current organization
GET   /api/organizations/{org_id}/feature-flags           — Both layers and effective value per flag
PATCH /api/organizations/{org_id}/feature-flags/{flag_id} — Change an override (org admin)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import (
    AuthContext,
    ensure_org_access,
    get_auth_context,
    require_org_admin,
    require_platform_admin,
)
from app.core.database import get_session
from app.core.responses import success
from app.services import feature_flags as flag_service

from keystone_shared.schemas.feature_flags import (
    FeatureFlagDefaultUpdate,
    FeatureFlagResponse,
    OrgFeatureFlagResponse,
    OrgFeatureFlagUpdate,
)

router = APIRouter()
org_router = APIRouter()


@router.get("")
async def list_feature_flags(
    ctx: AuthContext = Depends(require_platform_admin),
    session: AsyncSession = Depends(get_session),
):
    flags = await flag_service.list_flags(session)
    return success([FeatureFlagResponse.model_validate(f, from_attributes=True) for f in flags])


@router.put("/{flag_id}")
async def update_feature_flag_default(
    flag_id: int,
    body: FeatureFlagDefaultUpdate,
    ctx: AuthContext = Depends(require_platform_admin),
    session: AsyncSession = Depends(get_session),
):
    flag = await flag_service.set_default(session, flag_id, body.default_enabled)
    return success(FeatureFlagResponse.model_validate(flag, from_attributes=True))


@router.get("/enabled/{key}")
async def check_feature_flag(
    key: str,
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    enabled = await flag_service.is_enabled(session, ctx.organization.id, key)
    return success({"key": key, "enabled": enabled})


@org_router.get("/{org_id}/feature-flags")
async def list_org_feature_flags(
    org_id: int,
    ctx: AuthContext = Depends(get_auth_context),
    session: AsyncSession = Depends(get_session),
):
    ensure_org_access(ctx, org_id)
    flags = await flag_service.effective_org_flags(session, org_id)
    return success([OrgFeatureFlagResponse.model_validate(f) for f in flags])


@org_router.patch("/{org_id}/feature-flags/{flag_id}")
async def update_org_feature_flag(
    org_id: int,
    flag_id: int,
    body: OrgFeatureFlagUpdate,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    ensure_org_access(ctx, org_id)
    flag = await flag_service.update_org_flag(
        session, org_id, flag_id, body, is_platform_admin=ctx.is_platform_admin
    )
    return success(OrgFeatureFlagResponse.model_validate(flag))
