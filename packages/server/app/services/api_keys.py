"""
API key service: organization-scoped machine credentials.

Keys look like ``ks_<32 url-safe chars>``. Only a bcrypt hash and a display
prefix (first 12 characters) are stored; the plaintext is returned exactly
once, from ``create_key``.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import database
from app.core.config import get_settings
from app.core.errors import NotFound
from app.core.security import hash_secret, verify_secret
from app.models.api_key import ApiKey
from app.models.organization import Organization
from app.models.user import User

log = structlog.get_logger()
settings = get_settings()

KEY_PREFIX = "ks_"
DISPLAY_PREFIX_LENGTH = 12

# Strong references to in-flight last-used updates so they are not collected early.
_background_tasks: set[asyncio.Task] = set()


@dataclass
class CreatedApiKey:
    api_key: ApiKey
    plaintext: str


@dataclass
class ApiKeyMatch:
    api_key: ApiKey
    organization: Organization
    user: User


def generate_key() -> str:
    return f"{KEY_PREFIX}{secrets.token_urlsafe(24)}"


def display_prefix(key: str) -> str:
    return f"{key[:DISPLAY_PREFIX_LENGTH]}..."


async def create_key(
    session: AsyncSession,
    org_id: int,
    creator_id: int,
    name: str,
    expires_at: Optional[datetime] = None,
) -> CreatedApiKey:
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    plaintext = generate_key()
    api_key = ApiKey(
        organization_id=org_id,
        name=name,
        key_hash=hash_secret(plaintext, settings.api_key_bcrypt_rounds),
        key_prefix=display_prefix(plaintext),
        created_by_id=creator_id,
        expires_at=expires_at,
    )
    session.add(api_key)
    await session.flush()
    log.info("api_key.created", api_key_id=api_key.id, org_id=org_id, created_by=creator_id)
    return CreatedApiKey(api_key=api_key, plaintext=plaintext)


async def list_keys(session: AsyncSession, org_id: int) -> list[tuple[ApiKey, Optional[User]]]:
    """Active keys for an organization, newest first, with their creators."""
    result = await session.execute(
        select(ApiKey, User)
        .join(User, User.id == ApiKey.created_by_id, isouter=True)
        .where(ApiKey.organization_id == org_id, ApiKey.is_active == True)  # noqa: E712
        .order_by(ApiKey.created_at.desc())
    )
    return list(result.all())


async def get_key(session: AsyncSession, org_id: int, key_id: str) -> tuple[ApiKey, Optional[User]]:
    result = await session.execute(
        select(ApiKey, User)
        .join(User, User.id == ApiKey.created_by_id, isouter=True)
        .where(ApiKey.id == key_id, ApiKey.organization_id == org_id)
    )
    row = result.first()
    if row is None:
        raise NotFound("API key not found")
    return row[0], row[1]


async def revoke_key(session: AsyncSession, org_id: int, key_id: str) -> ApiKey:
    result = await session.execute(
        select(ApiKey).where(
            ApiKey.id == key_id,
            ApiKey.organization_id == org_id,
            ApiKey.is_active == True,  # noqa: E712
        )
    )
    api_key = result.scalar_one_or_none()
    if api_key is None:
        raise NotFound("API key not found")

    api_key.is_active = False
    api_key.revoked_at = datetime.now(timezone.utc)
    session.add(api_key)
    await session.flush()
    log.info("api_key.revoked", api_key_id=key_id, org_id=org_id)
    return api_key


async def validate_key(
    session: AsyncSession, candidate: str, *, touch: bool = True
) -> Optional[ApiKeyMatch]:
    """Resolve a presented key to its organization and creator.

    Every failure (bad format, no hash match, expired, inactive org or
    creator) returns None so callers cannot distinguish the cause.
    """
    if not candidate or not candidate.startswith(KEY_PREFIX):
        return None

    result = await session.execute(
        select(ApiKey).where(
            ApiKey.key_prefix == display_prefix(candidate),
            ApiKey.is_active == True,  # noqa: E712
        )
    )
    api_key = next(
        (row for row in result.scalars().all() if verify_secret(candidate, row.key_hash)),
        None,
    )
    if api_key is None:
        return None

    if api_key.expires_at is not None and api_key.expires_at <= datetime.now(timezone.utc):
        return None

    organization = await session.get(Organization, api_key.organization_id)
    if organization is None or not organization.is_active:
        return None
    user = await session.get(User, api_key.created_by_id)
    if user is None or not user.is_active:
        return None

    if touch:
        schedule_touch(api_key.id)
    return ApiKeyMatch(api_key=api_key, organization=organization, user=user)


async def touch_last_used(key_id: str) -> None:
    """Record last use on a session of its own. Never raises."""
    try:
        async with database.get_session_context() as session:
            await session.execute(
                update(ApiKey)
                .where(ApiKey.id == key_id)
                .values(last_used_at=datetime.now(timezone.utc))
            )
    except Exception as exc:
        log.warning("api_key.touch_failed", api_key_id=key_id, error=str(exc))


def schedule_touch(key_id: str) -> asyncio.Task:
    task = asyncio.create_task(touch_last_used(key_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


async def drain_background_tasks() -> None:
    """Wait for pending last-used updates (shutdown, tests)."""
    if _background_tasks:
        await asyncio.gather(*list(_background_tasks), return_exceptions=True)
