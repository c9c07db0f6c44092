"""
Seed the reference data Keystone needs to run: the platform organization,
system roles, menus, the default permission matrix, feature flags and
platform settings. Optionally creates a platform admin user.

Safe to re-run; existing rows are left alone.

    python -m app.scripts.seed --admin-email admin@example.com --admin-password 'S3cure!pass'
"""

import argparse
import asyncio
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.database import get_session_context
from app.core.levels import (
    ADVANCED_LEVEL,
    ORG_ADMIN_LEVEL,
    PLATFORM_ADMIN_LEVEL,
    STANDARD_LEVEL,
    VIEWER_LEVEL,
)
from app.core.security import hash_password
from app.models.base import utcnow
from app.models.feature_flag import FeatureFlag
from app.models.membership import Membership
from app.models.menu import Menu
from app.models.organization import Organization
from app.models.platform_setting import PlatformSetting
from app.models.role import Role, RolePermission
from app.models.user import User
from app.services.platform_settings import DEFAULT_SETTINGS

log = structlog.get_logger()

PLATFORM_ORG_SLUG = "platform"

SYSTEM_ROLES = [
    {"name": "Viewer", "slug": "viewer", "level": VIEWER_LEVEL, "description": "Read-only access"},
    {"name": "Standard User", "slug": "standard_user", "level": STANDARD_LEVEL, "description": "Day-to-day work"},
    {"name": "Advanced User", "slug": "advanced_user", "level": ADVANCED_LEVEL, "description": "Full content access"},
    {"name": "Organization Admin", "slug": "org_admin", "level": ORG_ADMIN_LEVEL, "description": "Manages an organization"},
    {"name": "Platform Admin", "slug": "platform_admin", "level": PLATFORM_ADMIN_LEVEL, "description": "Operates the platform"},
]

MENUS = [
    # MAIN
    {"name": "Dashboard", "slug": "dashboard", "path": "/dashboard", "icon": "LayoutDashboard", "section": "MAIN", "sort_order": 1},
    {"name": "Plan", "slug": "plan", "path": "/plan", "icon": "ListTree", "section": "MAIN", "sort_order": 2},
    {"name": "Intake", "slug": "intake", "path": "/intake", "icon": "Inbox", "section": "MAIN", "sort_order": 3},
    {"name": "Activity Reporter", "slug": "reports", "path": "/reporter", "icon": "ClipboardList", "section": "MAIN", "sort_order": 4},
    {"name": "Data Export", "slug": "data_export", "path": "/data-export", "icon": "Download", "section": "MAIN", "sort_order": 5},
    {"name": "Settings", "slug": "settings", "path": "/settings", "icon": "Settings", "section": "MAIN", "sort_order": 6},
    {"name": "Audit Log", "slug": "audit_log", "path": "/audit-log", "icon": "History", "section": "MAIN", "sort_order": 7},
    # ADMIN
    {"name": "Organization", "slug": "admin_organization", "path": "/admin/organization", "icon": "Building2", "section": "ADMIN", "sort_order": 1},
    {"name": "Roles", "slug": "admin_roles", "path": "/admin/roles", "icon": "Shield", "section": "ADMIN", "sort_order": 2},
    # PLATFORM_ADMIN
    {"name": "Platform Settings", "slug": "platform_settings", "path": "/platform/settings", "icon": "Sliders", "section": "PLATFORM_ADMIN", "sort_order": 1},
    {"name": "All Organizations", "slug": "platform_organizations", "path": "/platform/organizations", "icon": "Buildings", "section": "PLATFORM_ADMIN", "sort_order": 2},
    {"name": "Platform Roles", "slug": "platform_roles", "path": "/platform/roles", "icon": "ShieldCheck", "section": "PLATFORM_ADMIN", "sort_order": 3},
]

R = "r"
CRU = "cru"
RU = "ru"
CRUD = "crud"

# role slug -> menu slug -> granted actions
PERMISSION_MATRIX: dict[str, dict[str, str]] = {
    "viewer": {"dashboard": R, "plan": R, "intake": R, "reports": R, "settings": R},
    "standard_user": {
        "dashboard": R, "plan": CRU, "intake": CRU, "reports": CRUD,
        "data_export": R, "settings": RU, "audit_log": R,
    },
    "advanced_user": {
        "dashboard": R, "plan": CRUD, "intake": CRUD, "reports": CRUD,
        "data_export": RU, "settings": RU, "audit_log": R,
    },
    "org_admin": {
        "dashboard": R, "plan": CRUD, "intake": CRUD, "reports": CRUD,
        "data_export": CRUD, "settings": CRUD, "audit_log": R,
        "admin_organization": CRUD, "admin_roles": CRUD,
    },
    "platform_admin": {
        "dashboard": R, "plan": CRUD, "intake": CRUD, "reports": CRUD,
        "data_export": CRUD, "settings": CRUD, "audit_log": R,
        "admin_organization": CRUD, "admin_roles": CRUD,
        "platform_settings": CRUD, "platform_organizations": CRUD, "platform_roles": CRUD,
    },
}

FEATURE_FLAGS = [
    {"key": "reporting_portal", "name": "Reporting Portal", "description": "Access to advanced reporting features", "default_enabled": False},
    {"key": "advanced_analytics", "name": "Advanced Analytics", "description": "Analytics dashboard features", "default_enabled": False},
    {"key": "data_export", "name": "Data Export", "description": "Export data to CSV/Excel", "default_enabled": True},
    {"key": "api_access", "name": "API Access", "description": "REST API access", "default_enabled": False},
    {"key": "audit_logging", "name": "Audit Logging", "description": "Detailed audit trail", "default_enabled": True},
    {"key": "custom_roles", "name": "Custom Roles", "description": "Create custom roles", "default_enabled": True},
]


async def _platform_org(session: AsyncSession) -> Organization:
    result = await session.execute(select(Organization).where(Organization.slug == PLATFORM_ORG_SLUG))
    org = result.scalar_one_or_none()
    if org is None:
        org = Organization(
            name="Platform",
            slug=PLATFORM_ORG_SLUG,
            description="Operators of this Keystone installation",
            is_platform=True,
        )
        session.add(org)
        await session.flush()
        log.info("seed.created", kind="organization", slug=org.slug)
    return org


async def _roles(session: AsyncSession) -> dict[str, Role]:
    roles: dict[str, Role] = {}
    for spec in SYSTEM_ROLES:
        result = await session.execute(
            select(Role).where(Role.slug == spec["slug"], Role.organization_id == None)  # noqa: E711
        )
        role = result.scalar_one_or_none()
        if role is None:
            role = Role(**spec, is_system=True, scope="PLATFORM", organization_id=None)
            session.add(role)
            await session.flush()
            log.info("seed.created", kind="role", slug=role.slug)
        roles[role.slug] = role
    return roles


async def _menus(session: AsyncSession) -> dict[str, Menu]:
    menus: dict[str, Menu] = {}
    for spec in MENUS:
        result = await session.execute(select(Menu).where(Menu.slug == spec["slug"]))
        menu = result.scalar_one_or_none()
        if menu is None:
            menu = Menu(**spec)
            session.add(menu)
            await session.flush()
            log.info("seed.created", kind="menu", slug=menu.slug)
        menus[menu.slug] = menu
    return menus


async def _permissions(session: AsyncSession, roles: dict[str, Role], menus: dict[str, Menu]) -> None:
    for role_slug, grants in PERMISSION_MATRIX.items():
        role = roles[role_slug]
        result = await session.execute(select(RolePermission.menu_id).where(RolePermission.role_id == role.id))
        existing = set(result.scalars().all())
        for menu_slug, actions in grants.items():
            menu = menus[menu_slug]
            if menu.id in existing:
                continue
            session.add(
                RolePermission(
                    role_id=role.id,
                    menu_id=menu.id,
                    can_create="c" in actions,
                    can_read="r" in actions,
                    can_update="u" in actions,
                    can_delete="d" in actions,
                )
            )
    await session.flush()


async def _feature_flags(session: AsyncSession) -> None:
    for spec in FEATURE_FLAGS:
        result = await session.execute(select(FeatureFlag).where(FeatureFlag.key == spec["key"]))
        if result.scalar_one_or_none() is None:
            session.add(FeatureFlag(**spec))
            log.info("seed.created", kind="feature_flag", key=spec["key"])
    await session.flush()


async def _settings(session: AsyncSession) -> None:
    for spec in DEFAULT_SETTINGS:
        result = await session.execute(select(PlatformSetting).where(PlatformSetting.key == spec["key"]))
        if result.scalar_one_or_none() is None:
            session.add(PlatformSetting(**spec))
            log.info("seed.created", kind="platform_setting", key=spec["key"])
    await session.flush()


async def _platform_admin(
    session: AsyncSession, org: Organization, role: Role, email: str, password: str
) -> User:
    email = email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        user = User(
            email=email,
            password_hash=hash_password(password),
            first_name="Platform",
            last_name="Admin",
            email_verified=True,
            email_verified_at=utcnow(),
        )
        session.add(user)
        await session.flush()
        log.info("seed.created", kind="user", email=email)

    result = await session.execute(
        select(Membership).where(Membership.user_id == user.id, Membership.organization_id == org.id)
    )
    if result.scalar_one_or_none() is None:
        session.add(Membership(user_id=user.id, organization_id=org.id, role_id=role.id))
        await session.flush()
    return user


async def seed_database(
    session: AsyncSession,
    admin_email: Optional[str] = None,
    admin_password: Optional[str] = None,
) -> None:
    """Insert any missing reference rows. Flushes; the caller commits."""
    org = await _platform_org(session)
    roles = await _roles(session)
    menus = await _menus(session)
    await _permissions(session, roles, menus)
    await _feature_flags(session)
    await _settings(session)
    if admin_email and admin_password:
        await _platform_admin(session, org, roles["platform_admin"], admin_email, admin_password)


async def main(admin_email: Optional[str], admin_password: Optional[str]) -> None:
    async with get_session_context() as session:
        await seed_database(session, admin_email, admin_password)
    log.info("seed.done")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed Keystone reference data.")
    parser.add_argument("--admin-email", help="Email address for the initial platform admin")
    parser.add_argument("--admin-password", help="Password for the initial platform admin")

    args = parser.parse_args()
    if bool(args.admin_email) != bool(args.admin_password):
        parser.error("--admin-email and --admin-password must be given together")

    asyncio.run(main(args.admin_email, args.admin_password))
