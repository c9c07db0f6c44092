"""
Platform settings endpoints (platform admin).

GET /api/platform/settings        — All settings
GET /api/platform/settings/{key}  — One setting
PUT /api/platform/settings/{key}  — Update a setting's value
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, require_platform_admin
from app.core.database import get_session
from app.core.errors import NotFound
from app.core.responses import success
from app.models.platform_setting import PlatformSetting
from app.services import platform_settings as settings_service

from keystone_shared.schemas.platform_settings import (
    PlatformSettingResponse,
    PlatformSettingUpdate,
)

router = APIRouter()


def _view(setting: PlatformSetting) -> PlatformSettingResponse:
    return PlatformSettingResponse(
        key=setting.key,
        value=settings_service.parse_value(setting),
        type=setting.type,
        description=setting.description,
        category=setting.category,
    )


@router.get("")
async def list_settings(
    category: Optional[str] = None,
    ctx: AuthContext = Depends(require_platform_admin),
    session: AsyncSession = Depends(get_session),
):
    settings = await settings_service.list_settings(session, category)
    return success([_view(s) for s in settings])


@router.get("/{key}")
async def get_setting(
    key: str,
    ctx: AuthContext = Depends(require_platform_admin),
    session: AsyncSession = Depends(get_session),
):
    setting = await settings_service.get_setting(session, key)
    if setting is None:
        raise NotFound("Setting not found")
    return success(_view(setting))


@router.put("/{key}")
async def update_setting(
    key: str,
    body: PlatformSettingUpdate,
    ctx: AuthContext = Depends(require_platform_admin),
    session: AsyncSession = Depends(get_session),
):
    setting = await settings_service.set_value(session, key, body.value)
    return success(_view(setting))
