"""
Tests for the platform SSO bridge: RS256 verification against the JWKS,
identity provisioning, and the redirect + one-time exchange endpoints.
"""

import time
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlmodel import select

from app.core.errors import AuthenticationFailure
from app.core.security import verify_password
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.user import User
from app.services import platform_sso
from app.services.platform_sso import PlatformClaims, SigningKeyCache

from conftest import DEFAULT_PASSWORD, JWKS_URL, KID


def _claims(**overrides) -> PlatformClaims:
    payload = {
        "sub": "p-1",
        "email": "sso.user@example.com",
        "name": "Sso User",
        "org_id": "p-org-1",
        "org_name": "Platform Customer",
        "org_slug": "platform-customer",
    }
    payload.update(overrides)
    return PlatformClaims.from_payload(payload)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class TestPlatformClaims:
    def test_normalises_fields(self):
        claims = PlatformClaims.from_payload({
            "sub": 42,
            "email": "  Person@Example.COM ",
            "org_id": 7,
            "org_slug": "acme",
            "entitlements": ["a", 1],
        })
        assert claims.sub == "42"
        assert claims.email == "person@example.com"
        assert claims.name == "person"
        assert claims.org_id == "7"
        assert claims.org_name == "acme"
        assert claims.entitlements == ["a", "1"]

    @pytest.mark.parametrize("missing", ["email", "org_slug"])
    def test_required_fields(self, missing):
        payload = {"sub": "1", "email": "a@b.com", "org_slug": "acme"}
        del payload[missing]
        with pytest.raises(ValueError):
            PlatformClaims.from_payload(payload)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class TestVerify:
    @pytest.mark.asyncio
    async def test_valid_token(self, sso_bridge, platform_token):
        claims = await sso_bridge.verify(platform_token())
        assert claims.email == "sso.user@example.com"
        assert claims.org_slug == "platform-customer"
        assert claims.entitlements == ["reports"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"iss": "someone-else"},
            {"aud": "another-app"},
            {"exp": int(time.time()) - 60},
            {"email": None},
            {"org_slug": None},
            {"sub": None},
        ],
        ids=["issuer", "audience", "expired", "no-email", "no-org", "no-sub"],
    )
    async def test_rejected_claims(self, sso_bridge, platform_token, overrides):
        with pytest.raises(AuthenticationFailure):
            await sso_bridge.verify(platform_token(**overrides))

    @pytest.mark.asyncio
    async def test_wrong_signing_key(self, sso_bridge, platform_token):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(AuthenticationFailure):
            await sso_bridge.verify(platform_token(key=other))

    @pytest.mark.asyncio
    async def test_symmetric_algorithm_refused(self, sso_bridge):
        token = jwt.encode(
            {"sub": "x", "email": "a@b.com", "org_slug": "acme"},
            "shared-secret-long-enough-for-hmac-0123456789",
            algorithm="HS256",
            headers={"kid": KID},
        )
        with pytest.raises(AuthenticationFailure):
            await sso_bridge.verify(token)

    @pytest.mark.asyncio
    async def test_garbage_token(self, sso_bridge):
        with pytest.raises(AuthenticationFailure):
            await sso_bridge.verify("not-a-jwt")

    @pytest.mark.asyncio
    async def test_unknown_kid(self, sso_bridge, platform_token):
        with pytest.raises(AuthenticationFailure):
            await sso_bridge.verify(platform_token(kid="rotated-away"))

    @pytest.mark.asyncio
    async def test_unknown_kid_flood_fetches_at_most_once(self, sso_bridge, platform_token, jwks):
        await sso_bridge.verify(platform_token())
        for i in range(10):
            with pytest.raises(AuthenticationFailure):
                await sso_bridge.verify(platform_token(kid=f"bogus-{i}"))
        assert jwks == [JWKS_URL]


# ---------------------------------------------------------------------------
# Signing key cache
# ---------------------------------------------------------------------------

class TestSigningKeyCache:
    @pytest.mark.asyncio
    async def test_cached_until_ttl(self, jwks):
        cache = SigningKeyCache(JWKS_URL, ttl_seconds=300)
        first = await cache.get_key(KID)
        second = await cache.get_key(KID)
        assert first is second
        assert jwks == [JWKS_URL]

    @pytest.mark.asyncio
    async def test_refetch_after_ttl(self, jwks):
        cache = SigningKeyCache(JWKS_URL, ttl_seconds=300)
        await cache.get_key(KID)
        cache._expires_at = 0.0
        await cache.get_key(KID)
        assert len(jwks) == 2

    @pytest.mark.asyncio
    async def test_unknown_kid_refetches_after_interval(self, jwks):
        now = [1000.0]
        cache = SigningKeyCache(JWKS_URL, ttl_seconds=300, min_refetch_seconds=30, clock=lambda: now[0])
        await cache.get_key(KID)
        now[0] += 31
        with pytest.raises(AuthenticationFailure):
            await cache.get_key("new-key")
        assert len(jwks) == 2

    @pytest.mark.asyncio
    async def test_unknown_kid_inside_interval_fails_without_fetch(self, jwks):
        now = [1000.0]
        cache = SigningKeyCache(JWKS_URL, ttl_seconds=300, min_refetch_seconds=30, clock=lambda: now[0])
        await cache.get_key(KID)
        now[0] += 5
        with pytest.raises(AuthenticationFailure):
            await cache.get_key("new-key")
        assert jwks == [JWKS_URL]
        # Known keys keep working while unknown ones are throttled.
        assert await cache.get_key(KID) is not None

    @pytest.mark.asyncio
    async def test_no_kid_uses_first_key(self, jwks):
        cache = SigningKeyCache(JWKS_URL)
        assert await cache.get_key(None) is await cache.get_key(KID)

    @pytest.mark.asyncio
    async def test_fetch_failure_fails_closed(self, monkeypatch):
        async def unreachable(url, timeout):
            raise httpx.ConnectError("connection refused")

        monkeypatch.setattr(platform_sso, "_fetch_jwks", unreachable)
        cache = SigningKeyCache(JWKS_URL)
        with pytest.raises(AuthenticationFailure):
            await cache.get_key(KID)

    @pytest.mark.asyncio
    async def test_empty_document_fails_closed(self, monkeypatch):
        async def empty(url, timeout):
            return {"keys": []}

        monkeypatch.setattr(platform_sso, "_fetch_jwks", empty)
        with pytest.raises(AuthenticationFailure):
            await SigningKeyCache(JWKS_URL).get_key(KID)

    @pytest.mark.asyncio
    async def test_invalidate(self, jwks):
        cache = SigningKeyCache(JWKS_URL)
        await cache.get_key(KID)
        cache.invalidate()
        await cache.get_key(KID)
        assert len(jwks) == 2


# ---------------------------------------------------------------------------
# Provisioning
# ---------------------------------------------------------------------------

class TestLogin:
    @pytest.mark.asyncio
    async def test_first_login_provisions_everything(self, session, factory, sso_bridge):
        code = await sso_bridge.login(session, _claims())

        user = (await session.execute(select(User).where(User.email == "sso.user@example.com"))).scalar_one()
        org = (await session.execute(
            select(Organization).where(Organization.slug == "platform-customer")
        )).scalar_one()
        membership = (await session.execute(
            select(Membership).where(Membership.user_id == user.id, Membership.organization_id == org.id)
        )).scalar_one()

        assert user.email_verified is True
        assert (user.first_name, user.last_name) == ("Sso", "User")
        assert org.name == "Platform Customer"
        assert membership.role_id == (await factory.role("standard_user")).id

        payload = await sso_bridge.exchange(code)
        assert payload["current_org_id"] == org.id
        assert {"access_token", "refresh_token", "expires_in"} <= payload.keys()
        assert await sso_bridge.exchange(code) is None

    @pytest.mark.asyncio
    async def test_existing_user_and_org_reused(self, session, factory, sso_bridge):
        user = await factory.user(email="sso.user@example.com")
        org = Organization(name="Customer", slug="platform-customer")
        session.add(org)
        await session.flush()
        await factory.member(user, org, "advanced_user")

        await sso_bridge.login(session, _claims())

        users = (await session.execute(select(User).where(User.email == "sso.user@example.com"))).scalars().all()
        assert len(users) == 1
        assert verify_password(DEFAULT_PASSWORD, users[0].password_hash)
        memberships = (await session.execute(select(Membership).where(Membership.user_id == user.id))).scalars().all()
        assert [m.role_id for m in memberships] == [(await factory.role("advanced_user")).id]

    @pytest.mark.asyncio
    async def test_single_word_name(self, session, sso_bridge):
        await sso_bridge.login(session, _claims(name="Cher"))
        user = (await session.execute(select(User).where(User.email == "sso.user@example.com"))).scalar_one()
        assert (user.first_name, user.last_name) == ("Cher", "-")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("what", ["user", "org", "membership"])
    async def test_disabled_identity_refused(self, session, factory, sso_bridge, what):
        user = await factory.user(email="sso.user@example.com", is_active=what != "user")
        org = Organization(name="Customer", slug="platform-customer", is_active=what != "org")
        session.add(org)
        await session.flush()
        await factory.member(user, org, is_active=what != "membership")

        with pytest.raises(AuthenticationFailure):
            await sso_bridge.login(session, _claims())


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

def _redirect(response) -> tuple[str, dict]:
    assert response.status_code == 302
    url = urlparse(response.headers["location"])
    return f"{url.scheme}://{url.netloc}{url.path}", {k: v[0] for k, v in parse_qs(url.query).items()}


class TestSsoEndpoints:
    @pytest.mark.asyncio
    async def test_full_round_trip(self, client, sso_bridge, platform_token):
        response = await client.get("/api/auth/platform-login", params={"token": platform_token()})
        target, params = _redirect(response)
        assert target == "http://frontend.test/sso-callback"
        assert "access_token" not in response.headers["location"]

        exchanged = await client.get("/api/auth/sso-exchange", params={"code": params["code"]})
        assert exchanged.status_code == 200
        data = exchanged.json()["data"]

        me = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert me.json()["data"]["email"] == "sso.user@example.com"
        assert me.json()["data"]["organizations"][0]["id"] == data["current_org_id"]

        again = await client.get("/api/auth/sso-exchange", params={"code": params["code"]})
        assert again.status_code == 400
        assert again.json()["error"]["message"] == "Invalid or expired code"

    @pytest.mark.asyncio
    async def test_missing_token(self, client, sso_bridge):
        target, params = _redirect(await client.get("/api/auth/platform-login"))
        assert target == "http://frontend.test/login"
        assert params == {"error": "missing_token"}

    @pytest.mark.asyncio
    async def test_invalid_token(self, client, sso_bridge, platform_token):
        response = await client.get("/api/auth/platform-login", params={"token": platform_token(iss="evil")})
        assert _redirect(response)[1] == {"error": "invalid_token"}

    @pytest.mark.asyncio
    async def test_provisioning_failure(self, client, session, sso_bridge, platform_token):
        session.add(Organization(name="Customer", slug="platform-customer", is_active=False))
        await session.commit()

        response = await client.get("/api/auth/platform-login", params={"token": platform_token()})
        assert _redirect(response)[1] == {"error": "sso_failed"}

    @pytest.mark.asyncio
    async def test_exchange_requires_code(self, client, sso_bridge):
        response = await client.get("/api/auth/sso-exchange")
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Missing code parameter"
