"""
Session credential issuance and verification.

Access tokens are short-lived stateless HS256 JWTs and cannot be revoked.
Refresh tokens are JWTs backed by a persisted RefreshSession row; deleting the
row revokes the token. Email verification, password reset and invitation
tokens are opaque random strings stored on their owning rows.
"""

from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import database
from app.core.config import INSECURE_SECRET_PLACEHOLDER, Settings, get_settings
from app.core.errors import AuthenticationFailure, ConfigurationError
from app.models.refresh_session import RefreshSession

from keystone_shared.schemas.common import ErrorCode

log = structlog.get_logger()
settings = get_settings()

ACCESS = "access"
REFRESH = "refresh"

EMAIL_VERIFICATION_HOURS = 24
PASSWORD_RESET_HOURS = 1


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime, seconds


def ensure_signing_secret(config: Optional[Settings] = None) -> None:
    """Refuse to run with no signing secret, or with the placeholder outside debug."""
    config = config or settings
    if not config.secret_key:
        raise ConfigurationError("KS_SECRET_KEY must be set")
    if config.secret_key == INSECURE_SECRET_PLACEHOLDER and not config.debug:
        raise ConfigurationError("KS_SECRET_KEY is still the placeholder value")


def _invalid(message: str) -> AuthenticationFailure:
    return AuthenticationFailure(message, code=ErrorCode.TOKEN_INVALID)


def _encode(payload: dict) -> str:
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def _decode(token: str) -> dict:
    return jwt.decode(
        token,
        settings.secret_key,
        algorithms=[settings.jwt_algorithm],
        options={"require": ["exp", "sub", "type"]},
    )


# ---------------------------------------------------------------------------
# Access tokens
# ---------------------------------------------------------------------------

def issue_access_token(subject_id: str, email: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject_id,
        "email": email,
        "type": ACCESS,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return _encode(payload)


def verify_access_token(token: str) -> dict:
    """Return the claims of a valid access token.

    Bad signature, expiry, malformed input and a refresh token presented here
    all fail the same way so callers cannot tell them apart.
    """
    try:
        claims = _decode(token)
    except jwt.PyJWTError:
        raise _invalid("Invalid token")
    if claims.get("type") != ACCESS:
        raise _invalid("Invalid token")
    return claims


# ---------------------------------------------------------------------------
# Refresh sessions
# ---------------------------------------------------------------------------

async def issue_session(
    session: AsyncSession,
    user_id: int,
    subject_id: str,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> str:
    """Create a persisted refresh session and return its signed token."""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(days=settings.refresh_token_expire_days)
    session_id = str(uuid.uuid4())
    token = _encode({
        "sub": subject_id,
        "sid": session_id,
        "type": REFRESH,
        "iat": now,
        "exp": expires_at,
    })
    session.add(RefreshSession(
        session_id=session_id,
        token=token,
        user_id=user_id,
        expires_at=expires_at,
        user_agent=user_agent,
        ip_address=ip_address,
    ))
    await session.flush()
    return token


async def issue_pair(
    session: AsyncSession,
    user_id: int,
    subject_id: str,
    email: str,
    user_agent: Optional[str] = None,
    ip_address: Optional[str] = None,
) -> TokenPair:
    access_token = issue_access_token(subject_id, email)
    refresh_token = await issue_session(session, user_id, subject_id, user_agent, ip_address)
    return TokenPair(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_in=settings.access_token_expire_minutes * 60,
    )


async def _drop_expired(token: str) -> None:
    # Own unit of work: the caller is about to raise and roll back.
    async with database.get_session_context() as cleanup:
        await cleanup.execute(delete(RefreshSession).where(RefreshSession.token == token))


async def verify_session(session: AsyncSession, token: str) -> int:
    """Return the owning user id of a live refresh session."""
    try:
        claims = _decode(token)
    except jwt.ExpiredSignatureError:
        await _drop_expired(token)
        log.info("auth.session_expired")
        raise _invalid("Invalid refresh token")
    except jwt.PyJWTError:
        raise _invalid("Invalid refresh token")

    if claims.get("type") != REFRESH:
        raise _invalid("Invalid refresh token")

    result = await session.execute(
        select(RefreshSession).where(RefreshSession.token == token)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise _invalid("Invalid refresh token")

    if row.expires_at <= datetime.now(timezone.utc):
        await _drop_expired(token)
        log.info("auth.session_expired", user_id=row.user_id)
        raise _invalid("Invalid refresh token")

    return row.user_id


async def revoke_session(session: AsyncSession, token: str) -> None:
    """Delete a refresh session. Unknown tokens are ignored."""
    await session.execute(delete(RefreshSession).where(RefreshSession.token == token))
    await session.flush()


async def revoke_all_sessions(session: AsyncSession, user_id: int) -> None:
    await session.execute(delete(RefreshSession).where(RefreshSession.user_id == user_id))
    await session.flush()
    log.info("auth.sessions_revoked", user_id=user_id)


# ---------------------------------------------------------------------------
# Opaque single-use tokens
# ---------------------------------------------------------------------------

def _opaque(hours: int) -> tuple[str, datetime]:
    return secrets.token_hex(32), datetime.now(timezone.utc) + timedelta(hours=hours)


def email_verification_token() -> tuple[str, datetime]:
    return _opaque(EMAIL_VERIFICATION_HOURS)


def password_reset_token() -> tuple[str, datetime]:
    return _opaque(PASSWORD_RESET_HOURS)


def invitation_token(hours: int = 72) -> tuple[str, datetime]:
    return _opaque(hours)
