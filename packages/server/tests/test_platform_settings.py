"""
Tests for typed platform settings and their admin endpoints.
"""

import pytest

from app.core.errors import NotFound, ValidationFailed
from app.models.platform_setting import PlatformSetting
from app.services import platform_settings


@pytest.fixture
async def platform_admin(session, factory):
    platform = await factory.platform_org()
    admin = await factory.user()
    await factory.member(admin, platform, "platform_admin")
    await session.commit()
    return admin, platform


class TestSettingsService:
    @pytest.mark.asyncio
    async def test_seeded_values_are_typed(self, session):
        assert await platform_settings.get_value(session, "invitation_enabled") is True
        assert await platform_settings.get_value(session, "invitation_expiry_hours") == 72

    @pytest.mark.asyncio
    async def test_missing_key_uses_default(self, session):
        assert await platform_settings.get_value(session, "nope", default="fallback") == "fallback"

    @pytest.mark.asyncio
    async def test_unparsable_number_uses_default(self, session):
        setting = await platform_settings.get_setting(session, "invitation_expiry_hours")
        setting.value = "soon"
        session.add(setting)
        await session.flush()
        assert await platform_settings.get_value(session, "invitation_expiry_hours", 48) == 48

    @pytest.mark.asyncio
    async def test_json_setting(self, session):
        session.add(PlatformSetting(key="banner", value="{}", type="JSON", category="ui"))
        await session.flush()
        await platform_settings.set_value(session, "banner", {"text": "Maintenance", "level": 2})
        assert await platform_settings.get_value(session, "banner") == {"text": "Maintenance", "level": 2}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "key, value",
        [("invitation_enabled", "yes"), ("invitation_enabled", 1), ("invitation_expiry_hours", True), ("invitation_expiry_hours", "12")],
    )
    async def test_type_mismatch(self, session, key, value):
        with pytest.raises(ValidationFailed):
            await platform_settings.set_value(session, key, value)

    @pytest.mark.asyncio
    async def test_unknown_key(self, session):
        with pytest.raises(NotFound):
            await platform_settings.set_value(session, "nope", 1)

    @pytest.mark.asyncio
    async def test_list_by_category(self, session):
        session.add(PlatformSetting(key="app_name", value="Keystone", type="STRING", category="general"))
        await session.flush()
        keys = [s.key for s in await platform_settings.list_settings(session, "invitations")]
        assert keys == ["invitation_enabled", "invitation_expiry_hours"]
        assert len(await platform_settings.list_settings(session)) == 3


class TestSettingsEndpoints:
    @pytest.mark.asyncio
    async def test_admin_reads_and_updates(self, client, platform_admin, headers_for):
        headers = headers_for(*platform_admin)

        listing = await client.get("/api/platform/settings", headers=headers)
        assert listing.status_code == 200
        assert {s["key"] for s in listing.json()["data"]} == {"invitation_enabled", "invitation_expiry_hours"}

        updated = await client.put(
            "/api/platform/settings/invitation_expiry_hours", json={"value": 24}, headers=headers
        )
        assert updated.status_code == 200
        assert updated.json()["data"]["value"] == 24

        one = await client.get("/api/platform/settings/invitation_expiry_hours", headers=headers)
        assert one.json()["data"] == {
            "key": "invitation_expiry_hours",
            "value": 24,
            "type": "NUMBER",
            "description": "Hours before an invitation expires",
            "category": "invitations",
        }

    @pytest.mark.asyncio
    async def test_unknown_key_is_404(self, client, platform_admin, headers_for):
        response = await client.get("/api/platform/settings/nope", headers=headers_for(*platform_admin))
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Setting not found"

    @pytest.mark.asyncio
    async def test_wrong_type_is_400(self, client, platform_admin, headers_for):
        response = await client.put(
            "/api/platform/settings/invitation_enabled", json={"value": "off"}, headers=headers_for(*platform_admin)
        )
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_org_admin_forbidden(self, client, session, factory, headers_for):
        org = await factory.org()
        admin = await factory.member_with_role(org, "org_admin")
        await session.commit()
        response = await client.get("/api/platform/settings", headers=headers_for(admin, org))
        assert response.status_code == 403
