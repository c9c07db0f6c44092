"""
Platform SSO bridge.

The external platform signs RS256 tokens and publishes its public keys as a
JWKS document. Verified claims are mapped onto a local user, organization
and membership, and a local token pair is issued exactly as direct login
would. The pair is then parked behind a one-time exchange code.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
import jwt
import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.config import get_settings
from app.core.errors import AuthenticationFailure, NotFound
from app.core.security import unusable_password_hash
from app.core.tokens import issue_pair
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.services.exchange_codes import ExchangeCodeStore

log = structlog.get_logger()
settings = get_settings()

ALGORITHM = "RS256"


@dataclass(frozen=True)
class PlatformClaims:
    sub: str
    email: str
    name: str
    org_id: Optional[str]
    org_name: str
    org_slug: str
    role: Optional[str] = None
    entitlements: list[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "PlatformClaims":
        email = (payload.get("email") or "").strip().lower()
        org_slug = (payload.get("org_slug") or "").strip()
        if not email or not org_slug:
            raise ValueError("Platform token missing email or org_slug")
        entitlements = payload.get("entitlements") or []
        return cls(
            sub=str(payload["sub"]),
            email=email,
            name=(payload.get("name") or email.split("@")[0]).strip(),
            org_id=str(payload["org_id"]) if payload.get("org_id") is not None else None,
            org_name=(payload.get("org_name") or org_slug).strip(),
            org_slug=org_slug,
            role=payload.get("role"),
            entitlements=[str(e) for e in entitlements] if isinstance(entitlements, list) else [],
        )


async def _fetch_jwks(jwks_url: str, timeout: float) -> dict[str, Any]:
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(jwks_url)
    response.raise_for_status()
    return response.json()


class SigningKeyCache:
    """Process-wide cache of the platform's public keys with timed refresh.

    An unknown ``kid`` inside the TTL forces a refetch (the platform may have
    rotated keys), but at most once per ``min_refetch_seconds``; in between
    such tokens are refused without contacting the platform.

    Any fetch or parse failure raises AuthenticationFailure: without a key
    nothing can be verified, so logins are denied.
    """

    def __init__(
        self,
        jwks_url: str,
        ttl_seconds: int = 300,
        timeout_seconds: float = 5.0,
        min_refetch_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jwks_url = jwks_url
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.min_refetch_seconds = min_refetch_seconds
        self._clock = clock
        self._keys: list[tuple[Optional[str], Any]] = []
        self._expires_at = 0.0
        self._fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._keys = []
        self._expires_at = 0.0
        self._fetched_at = None

    def _select(self, kid: Optional[str]) -> Any:
        if kid:
            for key_id, key in self._keys:
                if key_id == kid:
                    return key
            return None
        return self._keys[0][1] if self._keys else None

    async def get_key(self, kid: Optional[str] = None) -> Any:
        async with self._lock:
            now = self._clock()
            if now < self._expires_at:
                key = self._select(kid)
                if key is not None:
                    return key
                if self._fetched_at is not None and now - self._fetched_at < self.min_refetch_seconds:
                    log.info("sso.unknown_kid_throttled", kid=kid)
                    raise AuthenticationFailure("Unable to verify platform token")

            self._fetched_at = now
            try:
                jwks = await _fetch_jwks(self.jwks_url, self.timeout_seconds)
                keys = [
                    (jwk.get("kid"), jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk)))
                    for jwk in jwks.get("keys") or []
                ]
            except (httpx.HTTPError, ValueError, TypeError, jwt.PyJWTError) as exc:
                log.warning("sso.jwks_fetch_failed", url=self.jwks_url, error=str(exc))
                raise AuthenticationFailure("Unable to verify platform token")
            if not keys:
                log.warning("sso.jwks_empty", url=self.jwks_url)
                raise AuthenticationFailure("Unable to verify platform token")

            self._keys = keys
            self._expires_at = self._clock() + self.ttl_seconds
            key = self._select(kid)
            if key is None:
                raise AuthenticationFailure("Unable to verify platform token")
            return key


class PlatformSSOBridge:
    def __init__(
        self,
        key_cache: SigningKeyCache,
        code_store: ExchangeCodeStore,
        issuer: str = settings.platform_issuer,
        audience: str = settings.platform_audience,
        default_role_slug: str = settings.sso_default_role_slug,
    ):
        self.key_cache = key_cache
        self.code_store = code_store
        self.issuer = issuer
        self.audience = audience
        self.default_role_slug = default_role_slug

    async def verify(self, token: str) -> PlatformClaims:
        """Check signature, algorithm, issuer, audience and expiry. Fails closed."""
        try:
            header = jwt.get_unverified_header(token)
        except jwt.PyJWTError:
            raise AuthenticationFailure("Invalid platform token")
        if header.get("alg") != ALGORITHM:
            raise AuthenticationFailure("Invalid platform token")

        key = await self.key_cache.get_key(header.get("kid"))
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=self.issuer,
                audience=self.audience,
                options={"require": ["exp", "iss", "aud", "sub"]},
            )
            return PlatformClaims.from_payload(payload)
        except (jwt.PyJWTError, ValueError, KeyError) as exc:
            log.info("sso.token_rejected", error=str(exc))
            raise AuthenticationFailure("Invalid platform token")

    async def _find_or_create_user(self, session: AsyncSession, claims: PlatformClaims) -> User:
        result = await session.execute(select(User).where(User.email == claims.email))
        user = result.scalar_one_or_none()
        if user is not None:
            if not user.is_active:
                raise AuthenticationFailure("Account is disabled")
            return user

        first_name, _, last_name = claims.name.partition(" ")
        user = User(
            email=claims.email,
            password_hash=unusable_password_hash(),
            first_name=first_name or claims.name,
            last_name=last_name.strip() or "-",
            # The platform already verified the address.
            email_verified=True,
            email_verified_at=datetime.now(timezone.utc),
        )
        session.add(user)
        await session.flush()
        log.info("sso.user_created", user_id=user.id)
        return user

    async def _find_or_create_org(self, session: AsyncSession, claims: PlatformClaims) -> Organization:
        result = await session.execute(select(Organization).where(Organization.slug == claims.org_slug))
        org = result.scalar_one_or_none()
        if org is not None:
            if not org.is_active:
                raise AuthenticationFailure("Organization is disabled")
            return org

        org = Organization(name=claims.org_name, slug=claims.org_slug)
        session.add(org)
        await session.flush()
        log.info("sso.organization_created", org_id=org.id, slug=org.slug)
        return org

    async def _ensure_membership(self, session: AsyncSession, user: User, org: Organization) -> None:
        result = await session.execute(
            select(Membership).where(
                Membership.user_id == user.id,
                Membership.organization_id == org.id,
            )
        )
        membership = result.scalar_one_or_none()
        if membership is not None:
            if not membership.is_active:
                raise AuthenticationFailure("Membership is disabled")
            return

        result = await session.execute(
            select(Role).where(
                Role.slug == self.default_role_slug,
                Role.is_system == True,  # noqa: E712
                Role.organization_id == None,  # noqa: E711
            )
        )
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFound(f"Default SSO role '{self.default_role_slug}' is not configured")
        session.add(Membership(user_id=user.id, organization_id=org.id, role_id=role.id))
        await session.flush()

    async def login(
        self,
        session: AsyncSession,
        claims: PlatformClaims,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> str:
        """Provision the local identity, issue a token pair and return its exchange code."""
        user = await self._find_or_create_user(session, claims)
        org = await self._find_or_create_org(session, claims)
        await self._ensure_membership(session, user, org)

        pair = await issue_pair(session, user.id, user.uuid, user.email, user_agent, ip_address)
        user.last_login_at = datetime.now(timezone.utc)
        session.add(user)
        await session.flush()

        code = await self.code_store.issue({
            "access_token": pair.access_token,
            "refresh_token": pair.refresh_token,
            "expires_in": pair.expires_in,
            "current_org_id": org.id,
        })
        log.info("sso.login", user_id=user.id, org_id=org.id)
        return code

    async def exchange(self, code: str) -> Optional[dict[str, Any]]:
        return await self.code_store.redeem(code)


def get_sso_bridge(request: Request) -> PlatformSSOBridge:
    """Dependency: the bridge wired up in create_app()."""
    return request.app.state.sso_bridge
