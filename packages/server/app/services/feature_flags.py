"""
Feature flag resolver.

Two layers decide whether a flag is on for an organization:
  platform_enabled  set by platform admins (the ceiling)
  org_enabled       set by the organization itself
effective = platform_enabled AND org_enabled. Without an override row the
layers default to (flag.default_enabled, True).
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AuthorizationFailure, NotFound
from app.models.feature_flag import FeatureFlag, OrgFeatureFlag
from app.models.organization import Organization

from keystone_shared.schemas.feature_flags import OrgFeatureFlagUpdate

log = structlog.get_logger()


def _layers(flag: FeatureFlag, override: Optional[OrgFeatureFlag]) -> tuple[bool, bool]:
    if override is None:
        return flag.default_enabled, True
    return override.platform_enabled, override.org_enabled


def _flag_state(flag: FeatureFlag, override: Optional[OrgFeatureFlag]) -> dict:
    platform_enabled, org_enabled = _layers(flag, override)
    return {
        "feature_flag_id": flag.id,
        "key": flag.key,
        "name": flag.name,
        "description": flag.description,
        "default_enabled": flag.default_enabled,
        "overridden": override is not None,
        "platform_enabled": platform_enabled,
        "org_enabled": org_enabled,
        "effective_enabled": platform_enabled and org_enabled,
    }


async def list_flags(session: AsyncSession) -> list[FeatureFlag]:
    result = await session.execute(select(FeatureFlag).order_by(FeatureFlag.name))
    return list(result.scalars().all())


async def _get_flag(session: AsyncSession, flag_id: int) -> FeatureFlag:
    flag = await session.get(FeatureFlag, flag_id)
    if flag is None:
        raise NotFound("Feature flag not found")
    return flag


async def _get_override(
    session: AsyncSession, org_id: int, flag_id: int, *, for_update: bool = False
) -> Optional[OrgFeatureFlag]:
    query = select(OrgFeatureFlag).where(
        OrgFeatureFlag.organization_id == org_id,
        OrgFeatureFlag.feature_flag_id == flag_id,
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def effective_org_flags(session: AsyncSession, org_id: int) -> list[dict]:
    """Every defined flag with both raw layers and the effective value."""
    if await session.get(Organization, org_id) is None:
        raise NotFound("Organization not found")

    flags = await list_flags(session)
    result = await session.execute(
        select(OrgFeatureFlag).where(OrgFeatureFlag.organization_id == org_id)
    )
    overrides = {row.feature_flag_id: row for row in result.scalars().all()}
    return [_flag_state(flag, overrides.get(flag.id)) for flag in flags]


async def update_org_flag(
    session: AsyncSession,
    org_id: int,
    flag_id: int,
    update: OrgFeatureFlagUpdate,
    is_platform_admin: bool,
) -> dict:
    """Apply an override change for one organization.

    The escalation check runs once against the combined post-update state,
    so a platform admin can raise both layers in a single call while an org
    can never enable a flag above a disabled platform layer.
    """
    flag = await _get_flag(session, flag_id)
    if await session.get(Organization, org_id) is None:
        raise NotFound("Organization not found")

    if update.platform_enabled is not None and not is_platform_admin:
        raise AuthorizationFailure("Only platform admins can change the platform setting")

    override = await _get_override(session, org_id, flag_id, for_update=True)
    current_platform, current_org = _layers(flag, override)
    next_platform = current_platform if update.platform_enabled is None else update.platform_enabled
    next_org = current_org if update.org_enabled is None else update.org_enabled

    if update.org_enabled and not next_platform:
        raise AuthorizationFailure("Cannot enable feature that is disabled at platform level")

    if override is None:
        override = OrgFeatureFlag(organization_id=org_id, feature_flag_id=flag_id)
    override.platform_enabled = next_platform
    override.org_enabled = next_org
    session.add(override)
    await session.flush()

    log.info(
        "feature_flag.org_updated",
        org_id=org_id,
        flag=flag.key,
        platform_enabled=next_platform,
        org_enabled=next_org,
    )
    return _flag_state(flag, override)


async def is_enabled(session: AsyncSession, org_id: int, key: str) -> bool:
    """Effective value of one flag by key. Unknown keys are off."""
    result = await session.execute(select(FeatureFlag).where(FeatureFlag.key == key))
    flag = result.scalar_one_or_none()
    if flag is None:
        return False
    platform_enabled, org_enabled = _layers(flag, await _get_override(session, org_id, flag.id))
    return platform_enabled and org_enabled


async def set_default(session: AsyncSession, flag_id: int, default_enabled: bool) -> FeatureFlag:
    """Change the platform default. Existing overrides keep their values."""
    flag = await _get_flag(session, flag_id)
    flag.default_enabled = default_enabled
    session.add(flag)
    await session.flush()
    log.info("feature_flag.default_updated", flag=flag.key, default_enabled=default_enabled)
    return flag


async def seed_org_flags(session: AsyncSession, org_id: int) -> None:
    """Create override rows from current defaults for a new organization."""
    for flag in await list_flags(session):
        session.add(OrgFeatureFlag(
            organization_id=org_id,
            feature_flag_id=flag.id,
            platform_enabled=flag.default_enabled,
            org_enabled=True,
        ))
    await session.flush()
