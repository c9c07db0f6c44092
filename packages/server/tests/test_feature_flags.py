"""
Tests for the two-layer feature flag resolver and its endpoints.
"""

from __future__ import annotations

import pytest
from sqlmodel import select

from app.core.errors import AuthorizationFailure, NotFound
from app.models.feature_flag import FeatureFlag, OrgFeatureFlag
from app.services import feature_flags as flag_service

from keystone_shared.schemas.feature_flags import OrgFeatureFlagUpdate


async def _flag(session, key: str) -> FeatureFlag:
    return (await session.execute(select(FeatureFlag).where(FeatureFlag.key == key))).scalar_one()


def _by_key(states: list[dict], key: str) -> dict:
    return next(s for s in states if s["key"] == key)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

class TestResolution:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "platform_enabled, org_enabled, expected",
        [(True, True, True), (True, False, False), (False, True, False), (False, False, False)],
    )
    async def test_effective_is_conjunction(self, session, factory, platform_enabled, org_enabled, expected):
        org = await factory.org()
        flag = await _flag(session, "api_access")
        session.add(OrgFeatureFlag(
            organization_id=org.id,
            feature_flag_id=flag.id,
            platform_enabled=platform_enabled,
            org_enabled=org_enabled,
        ))
        await session.flush()

        state = _by_key(await flag_service.effective_org_flags(session, org.id), "api_access")
        assert state["effective_enabled"] is expected
        assert state["overridden"] is True
        assert await flag_service.is_enabled(session, org.id, "api_access") is expected

    @pytest.mark.asyncio
    async def test_defaults_without_override(self, session, factory):
        org = await factory.org()
        states = await flag_service.effective_org_flags(session, org.id)

        on = _by_key(states, "data_export")
        assert (on["platform_enabled"], on["org_enabled"], on["effective_enabled"]) == (True, True, True)
        off = _by_key(states, "api_access")
        assert (off["platform_enabled"], off["org_enabled"], off["effective_enabled"]) == (False, True, False)
        assert not off["overridden"]

    @pytest.mark.asyncio
    async def test_unknown_org_and_key(self, session, factory):
        with pytest.raises(NotFound):
            await flag_service.effective_org_flags(session, 999_999)
        org = await factory.org()
        assert await flag_service.is_enabled(session, org.id, "no_such_flag") is False

    @pytest.mark.asyncio
    async def test_seed_org_flags_copies_defaults(self, session, factory):
        org = await factory.org()
        await flag_service.seed_org_flags(session, org.id)
        states = await flag_service.effective_org_flags(session, org.id)
        assert all(s["overridden"] for s in states)
        assert _by_key(states, "data_export")["effective_enabled"] is True
        assert _by_key(states, "api_access")["effective_enabled"] is False


# ---------------------------------------------------------------------------
# Updates
# ---------------------------------------------------------------------------

class TestUpdates:
    @pytest.mark.asyncio
    async def test_org_cannot_enable_above_disabled_platform_layer(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "api_access")  # default off
        with pytest.raises(AuthorizationFailure) as exc:
            await flag_service.update_org_flag(
                session, org.id, flag.id, OrgFeatureFlagUpdate(org_enabled=True), is_platform_admin=False
            )
        assert exc.value.message == "Cannot enable feature that is disabled at platform level"

    @pytest.mark.asyncio
    async def test_org_cannot_touch_platform_layer(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "api_access")
        with pytest.raises(AuthorizationFailure):
            await flag_service.update_org_flag(
                session, org.id, flag.id, OrgFeatureFlagUpdate(platform_enabled=True), is_platform_admin=False
            )

    @pytest.mark.asyncio
    async def test_rejected_update_writes_nothing(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "api_access")
        with pytest.raises(AuthorizationFailure):
            await flag_service.update_org_flag(
                session, org.id, flag.id, OrgFeatureFlagUpdate(org_enabled=True), is_platform_admin=False
            )
        rows = await session.execute(select(OrgFeatureFlag).where(OrgFeatureFlag.organization_id == org.id))
        assert rows.scalars().all() == []

    @pytest.mark.asyncio
    async def test_platform_admin_raises_both_layers_at_once(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "api_access")
        state = await flag_service.update_org_flag(
            session,
            org.id,
            flag.id,
            OrgFeatureFlagUpdate(platform_enabled=True, org_enabled=True),
            is_platform_admin=True,
        )
        assert state["effective_enabled"] is True

    @pytest.mark.asyncio
    async def test_org_may_disable_and_reenable_under_enabled_platform(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "data_export")  # default on

        off = await flag_service.update_org_flag(
            session, org.id, flag.id, OrgFeatureFlagUpdate(org_enabled=False), is_platform_admin=False
        )
        assert off["platform_enabled"] is True  # first write seeded from the default
        assert off["effective_enabled"] is False

        on = await flag_service.update_org_flag(
            session, org.id, flag.id, OrgFeatureFlagUpdate(org_enabled=True), is_platform_admin=False
        )
        assert on["effective_enabled"] is True

    @pytest.mark.asyncio
    async def test_platform_disable_overrides_org(self, session, factory):
        org = await factory.org()
        flag = await _flag(session, "data_export")
        state = await flag_service.update_org_flag(
            session, org.id, flag.id, OrgFeatureFlagUpdate(platform_enabled=False), is_platform_admin=True
        )
        assert state["org_enabled"] is True
        assert state["effective_enabled"] is False

    @pytest.mark.asyncio
    async def test_default_change_does_not_touch_overrides(self, session, factory):
        org = await factory.org()
        seeded = await factory.org()
        flag = await _flag(session, "api_access")
        await flag_service.seed_org_flags(session, seeded.id)

        await flag_service.set_default(session, flag.id, True)
        assert await flag_service.is_enabled(session, org.id, "api_access") is True
        assert await flag_service.is_enabled(session, seeded.id, "api_access") is False

    @pytest.mark.asyncio
    async def test_unknown_flag(self, session, factory):
        org = await factory.org()
        with pytest.raises(NotFound):
            await flag_service.update_org_flag(
                session, org.id, 999_999, OrgFeatureFlagUpdate(org_enabled=False), is_platform_admin=True
            )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

class TestFeatureFlagEndpoints:
    @pytest.mark.asyncio
    async def test_member_reads_own_org_flags(self, client, session, factory, headers_for):
        org = await factory.org()
        user = await factory.member_with_role(org, "viewer")
        await session.commit()

        response = await client.get(f"/api/organizations/{org.id}/feature-flags", headers=headers_for(user, org))
        assert response.status_code == 200
        assert {f["key"] for f in response.json()["data"]} >= {"api_access", "data_export"}

        check = await client.get("/api/feature-flags/enabled/data_export", headers=headers_for(user, org))
        assert check.json()["data"] == {"key": "data_export", "enabled": True}

    @pytest.mark.asyncio
    async def test_member_cannot_read_other_org(self, client, session, factory, headers_for):
        org = await factory.org()
        other = await factory.org()
        user = await factory.member_with_role(org, "org_admin")
        await session.commit()

        response = await client.get(f"/api/organizations/{other.id}/feature-flags", headers=headers_for(user, org))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_org_admin_escalation_is_forbidden(self, client, session, factory, headers_for):
        org = await factory.org()
        admin = await factory.member_with_role(org, "org_admin")
        flag = await _flag(session, "api_access")
        await session.commit()

        response = await client.patch(
            f"/api/organizations/{org.id}/feature-flags/{flag.id}",
            json={"org_enabled": True},
            headers=headers_for(admin, org),
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Cannot enable feature that is disabled at platform level"

    @pytest.mark.asyncio
    async def test_platform_admin_manages_any_org(self, client, session, factory, headers_for):
        platform = await factory.platform_org()
        operator = await factory.member_with_role(platform, "platform_admin")
        customer = await factory.org()
        flag = await _flag(session, "api_access")
        await session.commit()

        response = await client.patch(
            f"/api/organizations/{customer.id}/feature-flags/{flag.id}",
            json={"platform_enabled": True, "org_enabled": True},
            headers=headers_for(operator, platform),
        )
        assert response.status_code == 200
        assert response.json()["data"]["effective_enabled"] is True

    @pytest.mark.asyncio
    async def test_platform_flag_administration(self, client, session, factory, headers_for):
        platform = await factory.platform_org()
        operator = await factory.member_with_role(platform, "platform_admin")
        org = await factory.org()
        admin = await factory.member_with_role(org, "org_admin")
        flag = await _flag(session, "advanced_analytics")
        await session.commit()

        denied = await client.get("/api/feature-flags", headers=headers_for(admin, org))
        assert denied.status_code == 403

        listing = await client.get("/api/feature-flags", headers=headers_for(operator, platform))
        assert len(listing.json()["data"]) == 6

        updated = await client.put(
            f"/api/feature-flags/{flag.id}", json={"default_enabled": True}, headers=headers_for(operator, platform)
        )
        assert updated.json()["data"]["default_enabled"] is True
