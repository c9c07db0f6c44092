"""
Platform-wide settings stored as typed key/value rows.
"""

from __future__ import annotations

import json
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound, ValidationFailed
from app.models.platform_setting import PlatformSetting

from keystone_shared.schemas.common import SettingType

log = structlog.get_logger()

INVITATION_ENABLED = "invitation_enabled"
INVITATION_EXPIRY_HOURS = "invitation_expiry_hours"

# Seeded by app/scripts/seed.py.
DEFAULT_SETTINGS: list[dict] = [
    {
        "key": INVITATION_ENABLED,
        "value": "true",
        "type": SettingType.BOOLEAN.value,
        "category": "invitations",
        "description": "Allow organization admins to invite users",
    },
    {
        "key": INVITATION_EXPIRY_HOURS,
        "value": "72",
        "type": SettingType.NUMBER.value,
        "category": "invitations",
        "description": "Hours before an invitation expires",
    },
]


def parse_value(setting: PlatformSetting) -> Any:
    if setting.type == SettingType.BOOLEAN.value:
        return setting.value.strip().lower() == "true"
    if setting.type == SettingType.NUMBER.value:
        try:
            number = float(setting.value)
        except ValueError:
            return None
        return int(number) if number.is_integer() else number
    if setting.type == SettingType.JSON.value:
        try:
            return json.loads(setting.value)
        except json.JSONDecodeError:
            return None
    return setting.value


async def get_setting(session: AsyncSession, key: str) -> Optional[PlatformSetting]:
    result = await session.execute(select(PlatformSetting).where(PlatformSetting.key == key))
    return result.scalar_one_or_none()


async def get_value(session: AsyncSession, key: str, default: Any = None) -> Any:
    """Parsed value of a setting, or ``default`` when the row is missing or unparsable."""
    setting = await get_setting(session, key)
    if setting is None:
        return default
    value = parse_value(setting)
    return default if value is None else value


async def list_settings(session: AsyncSession, category: Optional[str] = None) -> list[PlatformSetting]:
    query = select(PlatformSetting).order_by(PlatformSetting.category, PlatformSetting.key)
    if category:
        query = query.where(PlatformSetting.category == category)
    result = await session.execute(query)
    return list(result.scalars().all())


async def set_value(session: AsyncSession, key: str, value: Any) -> PlatformSetting:
    """Update an existing setting, serialising ``value`` according to its type."""
    setting = await get_setting(session, key)
    if setting is None:
        raise NotFound("Setting not found")

    if setting.type == SettingType.BOOLEAN.value:
        if not isinstance(value, bool):
            raise ValidationFailed(f"Setting '{key}' expects a boolean")
        setting.value = "true" if value else "false"
    elif setting.type == SettingType.NUMBER.value:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationFailed(f"Setting '{key}' expects a number")
        setting.value = str(value)
    elif setting.type == SettingType.JSON.value:
        setting.value = json.dumps(value)
    else:
        setting.value = str(value)

    session.add(setting)
    await session.flush()
    log.info("platform_setting.updated", key=key)
    return setting
