"""
Shared fixtures: a seeded SQLite database per test, an HTTP client bound to
the app, and small factories for users, organizations and memberships.
"""

from __future__ import annotations

import json
import os
import time

# Settings are read once at import time; configure before the app loads.
os.environ.setdefault("KS_SECRET_KEY", "test-signing-secret-0123456789abcdef0123456789")
os.environ.setdefault("KS_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("KS_BCRYPT_ROUNDS", "4")
os.environ.setdefault("KS_API_KEY_BCRYPT_ROUNDS", "4")
os.environ.setdefault("KS_RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("KS_FRONTEND_URL", "http://frontend.test")

from typing import Optional

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel, select

import app.models  # noqa: F401
from app.core import database
from app.core.security import hash_password
from app.core.tokens import issue_access_token
from app.main import app as fastapi_app
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.scripts.seed import seed_database
from app.services import api_keys, platform_sso
from app.services.exchange_codes import InMemoryExchangeCodeStore
from app.services.platform_sso import PlatformSSOBridge, SigningKeyCache

DEFAULT_PASSWORD = "Str0ng!Passw0rd"
PLATFORM_ISSUER = "agenticledger-platform"
PLATFORM_AUDIENCE = "agenticledger-app"
JWKS_URL = "http://platform.test/api/.well-known/jwks.json"
KID = "test-key-1"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine(tmp_path, monkeypatch):
    """File-backed so background work on a second connection sees committed rows."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'keystone.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    factory = sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    monkeypatch.setattr(database, "engine", test_engine)
    monkeypatch.setattr(database, "async_session_factory", factory)

    async with factory() as session:
        await seed_database(session)
        await session.commit()

    yield test_engine

    await api_keys.drain_background_tasks()
    await test_engine.dispose()


@pytest.fixture
async def session(engine):
    async with database.async_session_factory() as s:
        yield s


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

class Factory:
    def __init__(self, session: AsyncSession):
        self.session = session
        self._seq = 0

    def _next(self) -> int:
        self._seq += 1
        return self._seq

    async def role(self, slug: str) -> Role:
        result = await self.session.execute(
            select(Role).where(Role.slug == slug, Role.organization_id == None)  # noqa: E711
        )
        return result.scalar_one()

    async def platform_org(self) -> Organization:
        result = await self.session.execute(select(Organization).where(Organization.slug == "platform"))
        return result.scalar_one()

    async def org(self, name: Optional[str] = None, is_active: bool = True) -> Organization:
        n = self._next()
        org = Organization(name=name or f"Org {n}", slug=f"org-{n}", is_active=is_active)
        self.session.add(org)
        await self.session.flush()
        return org

    async def user(
        self,
        email: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
        is_active: bool = True,
    ) -> User:
        n = self._next()
        user = User(
            email=(email or f"user{n}@example.com").lower(),
            password_hash=hash_password(password),
            first_name="Test",
            last_name=f"User{n}",
            email_verified=True,
            is_active=is_active,
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def member(
        self, user: User, org: Organization, role_slug: str = "standard_user", is_active: bool = True
    ) -> Membership:
        role = await self.role(role_slug)
        membership = Membership(
            user_id=user.id, organization_id=org.id, role_id=role.id, is_active=is_active
        )
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def member_with_role(self, org: Organization, role_slug: str) -> User:
        user = await self.user()
        await self.member(user, org, role_slug)
        return user


@pytest.fixture
def factory(session):
    return Factory(session)


def auth_headers(user: User, org: Optional[Organization] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {issue_access_token(user.uuid, user.email)}"}
    if org is not None:
        headers["X-Organization-Id"] = str(org.id)
    return headers


@pytest.fixture
def headers_for():
    return auth_headers


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

class RecordingEmailSender:
    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []  # (kind, email, token)

    async def send_verification(self, email, first_name, token):
        self.sent.append(("verification", email, token))

    async def send_password_reset(self, email, first_name, token):
        self.sent.append(("password_reset", email, token))

    async def send_invitation(self, email, organization_name, inviter_name, token):
        self.sent.append(("invitation", email, token))

    def last(self, kind: str) -> tuple[str, str, str]:
        return [m for m in self.sent if m[0] == kind][-1]


@pytest.fixture
def outbox(monkeypatch):
    sender = RecordingEmailSender()
    monkeypatch.setattr(fastapi_app.state, "email_sender", sender)
    return sender


@pytest.fixture
async def client(engine):
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Platform SSO
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def platform_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(platform_key, monkeypatch):
    """Serve the test key as the platform's JWKS and count fetches."""
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(platform_key.public_key()))
    jwk.update({"kid": KID, "use": "sig", "alg": "RS256"})
    document = {"keys": [jwk]}
    calls = []

    async def fake_fetch(url, timeout):
        calls.append(url)
        return document

    monkeypatch.setattr(platform_sso, "_fetch_jwks", fake_fetch)
    return calls


@pytest.fixture
def sso_bridge(jwks, monkeypatch):
    bridge = PlatformSSOBridge(
        SigningKeyCache(JWKS_URL, ttl_seconds=300, timeout_seconds=1.0),
        InMemoryExchangeCodeStore(ttl_seconds=60),
        issuer=PLATFORM_ISSUER,
        audience=PLATFORM_AUDIENCE,
        default_role_slug="standard_user",
    )
    monkeypatch.setattr(fastapi_app.state, "sso_bridge", bridge)
    return bridge


@pytest.fixture
def platform_token(platform_key):
    """Build an RS256 platform token; keyword arguments override claims."""
    def make(key=None, kid: str = KID, **overrides) -> str:
        now = int(time.time())
        claims = {
            "sub": "platform-user-1",
            "email": "sso.user@example.com",
            "name": "Sso User",
            "org_id": "p-org-1",
            "org_name": "Platform Customer",
            "org_slug": "platform-customer",
            "role": "member",
            "entitlements": ["reports"],
            "iss": PLATFORM_ISSUER,
            "aud": PLATFORM_AUDIENCE,
            "iat": now,
            "exp": now + 300,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key or platform_key, algorithm="RS256", headers={"kid": kid})

    return make
