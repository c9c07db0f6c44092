"""
Account flows: registration, login, session refresh, password and email
verification lifecycles.
"""

from __future__ import annotations

import re
import secrets
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.email import EmailSender, LoggingEmailSender
from app.core.errors import AppError, AuthenticationFailure, Conflict, ValidationFailed
from app.core.security import hash_password, validate_password_strength, verify_password
from app.core.tokens import (
    TokenPair,
    email_verification_token,
    issue_access_token,
    issue_pair,
    password_reset_token,
    revoke_all_sessions,
    revoke_session,
    verify_session,
)
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.services import feature_flags, invitations

from keystone_shared.schemas.auth import RegisterRequest
from keystone_shared.schemas.common import ErrorCode, RoleScope

log = structlog.get_logger()
settings = get_settings()

ORG_ADMIN_ROLE_SLUG = "org_admin"
INVALID_CREDENTIALS = "Invalid email or password"


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


@lru_cache
def _dummy_hash() -> str:
    # Compared against when the email is unknown so both failure paths cost one bcrypt check.
    return hash_password(secrets.token_hex(16))


def _bad_credentials() -> AuthenticationFailure:
    return AuthenticationFailure(INVALID_CREDENTIALS, code=ErrorCode.INVALID_CREDENTIALS)


def _check_strength(password: str) -> None:
    problems = validate_password_strength(password)
    if problems:
        raise ValidationFailed(
            "Password does not meet requirements",
            details=[{"field": "password", "message": p} for p in problems],
        )


async def get_user_by_email(session: AsyncSession, email: str) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def auth_user_view(session: AsyncSession, user: User) -> dict:
    """The user with every active membership and its role."""
    result = await session.execute(
        select(Organization, Role)
        .join(Membership, Membership.organization_id == Organization.id)
        .join(Role, Role.id == Membership.role_id)
        .where(
            Membership.user_id == user.id,
            Membership.is_active == True,  # noqa: E712
            Organization.is_active == True,  # noqa: E712
        )
        .order_by(Organization.name)
    )
    return {
        "id": user.id,
        "uuid": user.uuid,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email_verified": user.email_verified,
        "created_at": user.created_at,
        "organizations": [
            {
                "id": org.id,
                "uuid": org.uuid,
                "name": org.name,
                "slug": org.slug,
                "role": {"id": role.id, "name": role.name, "slug": role.slug, "level": role.level},
            }
            for org, role in result.all()
        ],
    }


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

async def register(
    session: AsyncSession,
    data: RegisterRequest,
    email_sender: Optional[EmailSender] = None,
) -> dict:
    """Register into a brand-new organization, or into an inviting one when a token is given."""
    sender = email_sender or LoggingEmailSender()
    _check_strength(data.password)

    email = data.email.strip().lower()
    if await get_user_by_email(session, email):
        raise Conflict("A user with this email already exists")

    if data.invitation_token:
        # Checked before the user row exists so a dead token leaves nothing behind.
        await invitations.ensure_acceptable(session, data.invitation_token)
        # Owning the invited mailbox stands in for email verification.
        user = User(
            email=email,
            password_hash=hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
            email_verified=True,
            email_verified_at=datetime.now(timezone.utc),
        )
        session.add(user)
        await session.flush()
        membership = await invitations.accept_invitation(session, data.invitation_token, user)
        log.info("auth.registered", user_id=user.id, org_id=membership.organization_id, via="invitation")
        return {
            "user": await auth_user_view(session, user),
            "message": "Registration successful. You can now log in.",
        }

    if not data.organization_name:
        raise ValidationFailed("Organization name is required for new registration")

    slug = slugify(data.organization_name)
    if not slug:
        raise ValidationFailed("Organization name must contain letters or digits")
    existing = await session.execute(select(Organization).where(Organization.slug == slug))
    if existing.scalar_one_or_none():
        raise Conflict("An organization with this name already exists")

    result = await session.execute(
        select(Role).where(
            Role.slug == ORG_ADMIN_ROLE_SLUG,
            Role.scope == RoleScope.PLATFORM.value,
            Role.organization_id == None,  # noqa: E711
        )
    )
    admin_role = result.scalar_one_or_none()
    if admin_role is None:
        raise AppError("System roles not configured")

    token, expires = email_verification_token()
    user = User(
        email=email,
        password_hash=hash_password(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        email_verification_token=token,
        email_verification_expires=expires,
    )
    org = Organization(name=data.organization_name, slug=slug)
    session.add(user)
    session.add(org)
    await session.flush()

    session.add(Membership(user_id=user.id, organization_id=org.id, role_id=admin_role.id))
    await session.flush()
    await feature_flags.seed_org_flags(session, org.id)

    await sender.send_verification(user.email, user.first_name, token)
    log.info("auth.registered", user_id=user.id, org_id=org.id, via="signup")
    return {
        "user": await auth_user_view(session, user),
        "message": "Registration successful. Please check your email to verify your account.",
    }


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

async def login(
    session: AsyncSession,
    email: str,
    password: str,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> dict:
    """Every failure looks the same: unknown email, wrong password, disabled account."""
    user = await get_user_by_email(session, email)
    if user is None:
        verify_password(password, _dummy_hash())
        log.info("auth.login_failed")
        raise _bad_credentials()
    if not verify_password(password, user.password_hash) or not user.is_active:
        log.info("auth.login_failed", user_id=user.id)
        raise _bad_credentials()

    pair: TokenPair = await issue_pair(session, user.id, user.uuid, user.email, user_agent, ip_address)
    user.last_login_at = datetime.now(timezone.utc)
    session.add(user)
    await session.flush()

    log.info("auth.login_success", user_id=user.id)
    return {
        "access_token": pair.access_token,
        "refresh_token": pair.refresh_token,
        "expires_in": pair.expires_in,
        "user": await auth_user_view(session, user),
    }


async def refresh(session: AsyncSession, refresh_token: str) -> dict:
    """New access token for a live refresh session. The refresh token itself is not rotated."""
    user_id = await verify_session(session, refresh_token)
    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        raise AuthenticationFailure("User not found or deactivated")

    access_token = issue_access_token(user.uuid, user.email)
    return {"access_token": access_token, "expires_in": settings.access_token_expire_minutes * 60}


async def logout(session: AsyncSession, refresh_token: str) -> None:
    await revoke_session(session, refresh_token)
    log.info("auth.logout")


# ---------------------------------------------------------------------------
# Password & email lifecycles
# ---------------------------------------------------------------------------

async def forgot_password(
    session: AsyncSession, email: str, email_sender: Optional[EmailSender] = None
) -> None:
    """Silent for unknown or disabled accounts."""
    user = await get_user_by_email(session, email)
    if user is None or not user.is_active:
        return

    user.password_reset_token, user.password_reset_expires = password_reset_token()
    session.add(user)
    await session.flush()

    sender = email_sender or LoggingEmailSender()
    await sender.send_password_reset(user.email, user.first_name, user.password_reset_token)
    log.info("auth.password_reset_requested", user_id=user.id)


async def reset_password(session: AsyncSession, token: str, password: str) -> None:
    result = await session.execute(
        select(User).where(
            User.password_reset_token == token,
            User.password_reset_expires > datetime.now(timezone.utc),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise ValidationFailed("Invalid or expired reset token")
    _check_strength(password)

    user.password_hash = hash_password(password)
    user.password_reset_token = None
    user.password_reset_expires = None
    session.add(user)
    await session.flush()

    await revoke_all_sessions(session, user.id)
    log.info("auth.password_reset", user_id=user.id)


async def verify_email(session: AsyncSession, token: str) -> None:
    result = await session.execute(
        select(User).where(
            User.email_verification_token == token,
            User.email_verification_expires > datetime.now(timezone.utc),
        )
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise ValidationFailed("Invalid or expired verification token")

    user.email_verified = True
    user.email_verified_at = datetime.now(timezone.utc)
    user.email_verification_token = None
    user.email_verification_expires = None
    session.add(user)
    await session.flush()
    log.info("auth.email_verified", user_id=user.id)


async def change_password(
    session: AsyncSession, user: User, current_password: str, new_password: str
) -> None:
    """Change the password and sign out every session, including the caller's."""
    if not verify_password(current_password, user.password_hash):
        raise ValidationFailed("Current password is incorrect")
    _check_strength(new_password)

    user.password_hash = hash_password(new_password)
    session.add(user)
    await session.flush()

    await revoke_all_sessions(session, user.id)
    log.info("auth.password_changed", user_id=user.id)
