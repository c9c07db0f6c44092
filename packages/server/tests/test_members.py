"""
Tests for organization member management: listing, rank-guarded role
changes, removal, and the /api/users endpoints.
"""

from __future__ import annotations

import pytest
from sqlmodel import select

from app.core.errors import AuthorizationFailure, NotFound, ValidationFailed
from app.core.levels import ORG_ADMIN_LEVEL, PLATFORM_ADMIN_LEVEL
from app.models.membership import Membership
from app.models.role import Role
from app.services import members as member_service
from app.services import rbac


@pytest.fixture
async def team(factory):
    org = await factory.org(name="Acme")
    admin = await factory.member_with_role(org, "org_admin")
    staff = await factory.member_with_role(org, "standard_user")
    return org, admin, staff


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

class TestListMembers:
    @pytest.mark.asyncio
    async def test_lists_only_the_organization(self, session, factory, team):
        org, admin, staff = team
        other = await factory.org()
        await factory.member_with_role(other, "viewer")

        users, total = await member_service.list_members(session, org.id)
        assert total == 2
        assert {u.id for u in users} == {admin.id, staff.id}
        by_id = {u.id: u for u in users}
        assert by_id[staff.id].role.slug == "standard_user"
        assert by_id[staff.id].is_active is True

    @pytest.mark.asyncio
    async def test_filters_and_pages(self, session, factory, team):
        org, admin, staff = team
        gone = await factory.user(email="gone.person@example.com")
        await factory.member(gone, org, "viewer", is_active=False)

        inactive, total = await member_service.list_members(session, org.id, is_active=False)
        assert [u.id for u in inactive] == [gone.id] and total == 1

        found, _ = await member_service.list_members(session, org.id, search="GONE.person")
        assert [u.id for u in found] == [gone.id]

        role = await factory.role("standard_user")
        by_role, _ = await member_service.list_members(session, org.id, role_id=role.id)
        assert [u.id for u in by_role] == [staff.id]

        page, total = await member_service.list_members(session, org.id, page=2, limit=2)
        assert total == 3
        assert len(page) == 1

    @pytest.mark.asyncio
    async def test_get_unknown_member(self, session, factory, team):
        org, _, _ = team
        outsider = await factory.user()
        with pytest.raises(NotFound):
            await member_service.get_member(session, org.id, outsider.id)


# ---------------------------------------------------------------------------
# Role changes
# ---------------------------------------------------------------------------

class TestUpdateRole:
    @pytest.mark.asyncio
    async def test_admin_changes_lower_member(self, session, factory, team):
        org, _, staff = team
        advanced = await factory.role("advanced_user")
        member = await member_service.update_member_role(
            session, org.id, staff.id, advanced.id, ORG_ADMIN_LEVEL
        )
        assert member.role.slug == "advanced_user"
        stored = await session.execute(
            select(Membership).where(Membership.user_id == staff.id, Membership.organization_id == org.id)
        )
        assert stored.scalar_one().role_id == advanced.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slug", ["org_admin", "platform_admin"])
    async def test_cannot_assign_equal_or_higher_role(self, session, factory, team, slug):
        org, _, staff = team
        role = await factory.role(slug)
        with pytest.raises(AuthorizationFailure) as exc:
            await member_service.update_member_role(session, org.id, staff.id, role.id, ORG_ADMIN_LEVEL)
        assert exc.value.message == "Cannot assign a role equal to or higher than your own"

    @pytest.mark.asyncio
    async def test_cannot_modify_equal_rank(self, session, factory, team):
        org, _, _ = team
        peer = await factory.member_with_role(org, "org_admin")
        viewer = await factory.role("viewer")
        with pytest.raises(AuthorizationFailure) as exc:
            await member_service.update_member_role(session, org.id, peer.id, viewer.id, ORG_ADMIN_LEVEL)
        assert exc.value.message == "Cannot modify users with equal or higher role"

    @pytest.mark.asyncio
    async def test_cannot_modify_higher_rank(self, session, factory, team):
        org, _, _ = team
        operator = await factory.member_with_role(org, "platform_admin")
        viewer = await factory.role("viewer")
        with pytest.raises(AuthorizationFailure) as exc:
            await member_service.update_member_role(
                session, org.id, operator.id, viewer.id, ORG_ADMIN_LEVEL
            )
        assert exc.value.message == "Cannot modify users with equal or higher role"

    @pytest.mark.asyncio
    async def test_platform_admin_may_promote_to_org_admin(self, session, factory, team):
        org, _, staff = team
        org_admin = await factory.role("org_admin")
        member = await member_service.update_member_role(
            session, org.id, staff.id, org_admin.id, PLATFORM_ADMIN_LEVEL
        )
        assert member.role.level == ORG_ADMIN_LEVEL

    @pytest.mark.asyncio
    async def test_foreign_org_role_not_found(self, session, factory, team):
        org, _, staff = team
        other = await factory.org()
        foreign = Role(name="Theirs", slug="theirs", level=10, organization_id=other.id)
        session.add(foreign)
        await session.flush()
        with pytest.raises(NotFound):
            await member_service.update_member_role(session, org.id, staff.id, foreign.id, ORG_ADMIN_LEVEL)

    @pytest.mark.asyncio
    async def test_unknown_role(self, session, team):
        org, _, staff = team
        with pytest.raises(NotFound):
            await member_service.update_member_role(session, org.id, staff.id, 999999, ORG_ADMIN_LEVEL)


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------

class TestRemove:
    @pytest.mark.asyncio
    async def test_deactivates_membership(self, session, factory, team):
        org, admin, staff = team
        await member_service.remove_member(session, org.id, staff.id, admin.id, ORG_ADMIN_LEVEL)

        assert await rbac.resolve_membership(session, staff.id, org.id) is None
        row = await session.execute(
            select(Membership).where(Membership.user_id == staff.id, Membership.organization_id == org.id)
        )
        assert row.scalar_one().is_active is False

        with pytest.raises(NotFound):
            await member_service.remove_member(session, org.id, staff.id, admin.id, ORG_ADMIN_LEVEL)

    @pytest.mark.asyncio
    async def test_cannot_remove_yourself(self, session, team):
        org, admin, _ = team
        with pytest.raises(ValidationFailed) as exc:
            await member_service.remove_member(session, org.id, admin.id, admin.id, ORG_ADMIN_LEVEL)
        assert exc.value.message == "Cannot remove yourself from organization"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slug", ["org_admin", "platform_admin"])
    async def test_cannot_remove_equal_or_higher_rank(self, session, factory, team, slug):
        org, admin, _ = team
        target = await factory.member_with_role(org, slug)
        with pytest.raises(AuthorizationFailure) as exc:
            await member_service.remove_member(session, org.id, target.id, admin.id, ORG_ADMIN_LEVEL)
        assert exc.value.message == "Cannot remove users with equal or higher role"

    @pytest.mark.asyncio
    async def test_not_a_member(self, session, factory, team):
        org, admin, _ = team
        outsider = await factory.user()
        with pytest.raises(NotFound):
            await member_service.remove_member(session, org.id, outsider.id, admin.id, ORG_ADMIN_LEVEL)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

class TestMemberEndpoints:
    @pytest.mark.asyncio
    async def test_admin_manages_members(self, client, session, factory, headers_for, team):
        org, admin, staff = team
        viewer = await factory.role("viewer")
        await session.commit()
        headers = headers_for(admin, org)

        listed = await client.get("/api/users", params={"limit": 10}, headers=headers)
        assert listed.status_code == 200
        data = listed.json()["data"]
        assert data["total"] == 2 and data["page"] == 1 and data["limit"] == 10
        assert {u["email"] for u in data["users"]} == {admin.email, staff.email}

        one = await client.get(f"/api/users/{staff.id}", headers=headers)
        assert one.json()["data"]["role"]["slug"] == "standard_user"

        changed = await client.patch(
            f"/api/users/{staff.id}/role", json={"role_id": viewer.id}, headers=headers
        )
        assert changed.status_code == 200
        assert changed.json()["data"]["role"]["slug"] == "viewer"

        removed = await client.delete(f"/api/users/{staff.id}", headers=headers)
        assert removed.status_code == 200
        assert removed.json()["data"] == {"message": "User removed from organization"}

        # The removed member loses access to the organization.
        denied = await client.get("/api/menus", headers=headers_for(staff, org))
        assert denied.status_code == 403

    @pytest.mark.asyncio
    async def test_rank_refusals_render_as_forbidden(self, client, session, factory, headers_for, team):
        org, admin, _ = team
        peer = await factory.member_with_role(org, "org_admin")
        await session.commit()

        response = await client.delete(f"/api/users/{peer.id}", headers=headers_for(admin, org))
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Cannot remove users with equal or higher role"

        self_removal = await client.delete(f"/api/users/{admin.id}", headers=headers_for(admin, org))
        assert self_removal.status_code == 400

    @pytest.mark.asyncio
    async def test_non_admin_forbidden(self, client, session, headers_for, team):
        org, _, staff = team
        await session.commit()
        response = await client.get("/api/users", headers=headers_for(staff, org))
        assert response.status_code == 403
