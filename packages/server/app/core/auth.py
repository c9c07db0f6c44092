"""
Request authentication and authorization for Keystone.

Two credential kinds resolve into the same AuthContext:
- X-API-Key header: organization comes from the key, identity is its creator
- Authorization: Bearer <access token>: organization comes from the
  X-Organization-Id header or the organization_id query parameter

Downstream code only ever inspects the AuthContext, never the raw request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

import structlog
from fastapi import Depends, Header, Query, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import get_session
from app.core.errors import AuthenticationFailure, AuthorizationFailure, ValidationFailed
from app.core.levels import ORG_ADMIN_LEVEL, PLATFORM_ADMIN_LEVEL, is_platform_admin
from app.core.tokens import verify_access_token
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.services import api_keys as api_key_service
from app.services import rbac

from keystone_shared.schemas.common import CrudAction
from keystone_shared.schemas.roles import PermissionSet

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    """Authenticated identity plus its organization, role and permission map."""
    method: Literal["token", "api_key"]
    user: User
    organization: Organization
    role: Role
    permissions: dict[str, PermissionSet] = field(default_factory=dict)
    api_key_id: Optional[str] = None

    @property
    def level(self) -> int:
        return self.role.level

    @property
    def is_platform_admin(self) -> bool:
        return is_platform_admin(self.role.level)

    def can(self, menu_slug: str, action: CrudAction | str) -> bool:
        permission = self.permissions.get(menu_slug)
        if permission is None:
            return False
        return bool(getattr(permission, f"can_{CrudAction(action).value}"))


# ---------------------------------------------------------------------------
# Credential resolution
# ---------------------------------------------------------------------------

async def _user_from_bearer(
    credentials: Optional[HTTPAuthorizationCredentials], session: AsyncSession
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationFailure("No token provided")
    claims = verify_access_token(credentials.credentials)

    result = await session.execute(select(User).where(User.uuid == claims["sub"]))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        raise AuthenticationFailure("User not found or deactivated")
    return user


def _parse_org_id(raw: Optional[str]) -> int:
    if raw is None or raw == "":
        raise ValidationFailed("Organization ID required")
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailed("Invalid organization ID")


async def _api_key_context(key: str, session: AsyncSession) -> AuthContext:
    match = await api_key_service.validate_key(session, key)
    if match is None:
        raise AuthenticationFailure("Invalid or expired API key")

    resolved = await rbac.resolve_membership(session, match.user.id, match.organization.id)
    if resolved is None:
        # Creator has left the organization; the key no longer speaks for anyone.
        raise AuthenticationFailure("Invalid or expired API key")
    _, organization, role = resolved

    return AuthContext(
        method="api_key",
        user=match.user,
        organization=organization,
        role=role,
        permissions=await rbac.permission_map(session, role.id),
        api_key_id=match.api_key.id,
    )


async def _token_context(
    credentials: Optional[HTTPAuthorizationCredentials],
    raw_org_id: Optional[str],
    session: AsyncSession,
) -> AuthContext:
    user = await _user_from_bearer(credentials, session)
    org_id = _parse_org_id(raw_org_id)

    resolved = await rbac.resolve_membership(session, user.id, org_id)
    if resolved is None:
        raise AuthorizationFailure("You do not have access to this organization")
    _, organization, role = resolved

    return AuthContext(
        method="token",
        user=user,
        organization=organization,
        role=role,
        permissions=await rbac.permission_map(session, role.id),
    )


# ---------------------------------------------------------------------------
# Authentication dependencies
# ---------------------------------------------------------------------------

async def get_auth_context(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_organization_id: Optional[str] = Header(default=None),
    organization_id: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> AuthContext:
    """Main dependency. An API key takes precedence over a bearer token."""
    if api_key:
        ctx = await _api_key_context(api_key, session)
    else:
        ctx = await _token_context(credentials, x_organization_id or organization_id, session)
    request.state.auth = ctx
    return ctx


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Bearer-only identity with no organization context (profile, password change)."""
    return await _user_from_bearer(credentials, session)


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------

def require_permission(menu_slug: str, action: CrudAction | str):
    action = CrudAction(action)

    async def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if menu_slug not in ctx.permissions:
            raise AuthorizationFailure("You do not have access to this resource")
        if not ctx.can(menu_slug, action):
            raise AuthorizationFailure(f"You do not have permission to {action.value} this resource")
        return ctx

    return dependency


def require_level(min_level: int):
    async def dependency(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if ctx.level < min_level:
            raise AuthorizationFailure("Insufficient permissions")
        return ctx

    return dependency


require_org_admin = require_level(ORG_ADMIN_LEVEL)
require_platform_admin = require_level(PLATFORM_ADMIN_LEVEL)


def reject_api_key(dependency=get_auth_context):
    """Wrap a context dependency so API keys are refused (key management, org settings)."""
    async def guarded(ctx: AuthContext = Depends(dependency)) -> AuthContext:
        if ctx.method == "api_key":
            raise AuthorizationFailure(
                "API keys cannot access this endpoint. Please use token authentication."
            )
        return ctx

    return guarded


def ensure_org_access(ctx: AuthContext, org_id: int) -> None:
    """Acting on another organization is reserved to platform admins."""
    if org_id != ctx.organization.id and not ctx.is_platform_admin:
        raise AuthorizationFailure("You do not have access to this organization")
