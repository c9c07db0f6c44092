"""
RBAC resolver: roles, per-menu CRUD permissions and navigation.

A missing RolePermission row means no access for every action. Role.level is
the privilege order used for grant checks (see app.core.levels).
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import and_, delete, func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AuthorizationFailure, Conflict, NotFound, ValidationFailed
from app.core.levels import VIEWER_LEVEL, can_grant, is_platform_admin
from app.models.invitation import Invitation
from app.models.membership import Membership
from app.models.menu import Menu
from app.models.organization import Organization
from app.models.role import Role, RolePermission

from keystone_shared.schemas.common import (
    CrudAction,
    MENU_SECTION_ORDER,
    MenuSection,
    RoleScope,
)
from keystone_shared.schemas.roles import (
    PermissionInput,
    PermissionSet,
    RoleCreateRequest,
    RoleUpdateRequest,
)

log = structlog.get_logger()


def _section_rank(section: str) -> int:
    try:
        return MENU_SECTION_ORDER[MenuSection(section)]
    except ValueError:
        return 99


def _permission_set(row: RolePermission) -> PermissionSet:
    return PermissionSet(
        can_create=row.can_create,
        can_read=row.can_read,
        can_update=row.can_update,
        can_delete=row.can_delete,
    )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

async def effective_permission(
    session: AsyncSession, role_id: int, menu_id: int, action: CrudAction | str
) -> bool:
    action = CrudAction(action)
    result = await session.execute(
        select(RolePermission).where(
            RolePermission.role_id == role_id,
            RolePermission.menu_id == menu_id,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        return False
    return bool(getattr(row, f"can_{action.value}"))


async def permission_map(session: AsyncSession, role_id: int) -> dict[str, PermissionSet]:
    """Explicit grants keyed by menu slug. Menus absent from the map grant nothing."""
    result = await session.execute(
        select(RolePermission, Menu.slug)
        .join(Menu, Menu.id == RolePermission.menu_id)
        .where(RolePermission.role_id == role_id)
    )
    return {slug: _permission_set(row) for row, slug in result.all()}


async def resolve_membership(
    session: AsyncSession, user_id: int, org_id: int
) -> Optional[tuple[Membership, Organization, Role]]:
    """Active membership of a user in an active organization, with its role."""
    result = await session.execute(
        select(Membership, Organization, Role)
        .join(Organization, Organization.id == Membership.organization_id)
        .join(Role, Role.id == Membership.role_id)
        .where(
            Membership.user_id == user_id,
            Membership.organization_id == org_id,
            Membership.is_active == True,  # noqa: E712
            Organization.is_active == True,  # noqa: E712
        )
    )
    row = result.first()
    if row is None:
        return None
    return row[0], row[1], row[2]


async def user_menus(session: AsyncSession, user_id: int, org_id: int) -> list[dict]:
    """Readable menus for a user in an organization, in navigation order."""
    resolved = await resolve_membership(session, user_id, org_id)
    if resolved is None:
        return []
    _, _, role = resolved

    result = await session.execute(
        select(RolePermission, Menu)
        .join(Menu, Menu.id == RolePermission.menu_id)
        .where(
            RolePermission.role_id == role.id,
            RolePermission.can_read == True,  # noqa: E712
            Menu.is_active == True,  # noqa: E712
        )
    )
    menus = [
        {
            "id": menu.id,
            "name": menu.name,
            "slug": menu.slug,
            "path": menu.path,
            "icon": menu.icon,
            "section": menu.section,
            "sort_order": menu.sort_order,
            "parent_id": menu.parent_id,
            "permissions": _permission_set(row).model_dump(),
        }
        for row, menu in result.all()
    ]
    menus.sort(key=lambda m: (_section_rank(m["section"]), m["sort_order"]))
    return menus


async def list_menus(session: AsyncSession) -> list[Menu]:
    result = await session.execute(select(Menu).where(Menu.is_active == True))  # noqa: E712
    return sorted(result.scalars().all(), key=lambda m: (_section_rank(m.section), m.sort_order))


# ---------------------------------------------------------------------------
# Role reads
# ---------------------------------------------------------------------------

async def get_role_model(session: AsyncSession, role_id: int) -> Role:
    role = await session.get(Role, role_id)
    if role is None:
        raise NotFound("Role not found")
    return role


def ensure_role_visible(role: Role, org_id: Optional[int], actor_level: int) -> None:
    """Org-bound roles are invisible outside their organization, except to platform admins."""
    if is_platform_admin(actor_level):
        return
    if role.organization_id is not None and role.organization_id != org_id:
        raise NotFound("Role not found")


async def _member_count(session: AsyncSession, role_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(Membership).where(Membership.role_id == role_id)
    )
    return result.scalar_one()


async def _role_permissions(session: AsyncSession, role_id: int) -> list[dict]:
    result = await session.execute(
        select(RolePermission, Menu)
        .join(Menu, Menu.id == RolePermission.menu_id)
        .where(RolePermission.role_id == role_id)
        .order_by(Menu.sort_order)
    )
    return [
        {
            "menu_id": menu.id,
            "menu_slug": menu.slug,
            "menu_name": menu.name,
            "menu_path": menu.path,
            "menu_section": menu.section,
            **_permission_set(row).model_dump(),
        }
        for row, menu in result.all()
    ]


async def _role_response(
    session: AsyncSession, role: Role, *, with_permissions: bool = True
) -> dict:
    base_role = None
    if role.base_role_id is not None:
        base = await session.get(Role, role.base_role_id)
        if base is not None:
            base_role = {"id": base.id, "name": base.name, "slug": base.slug}
    return {
        "id": role.id,
        "uuid": role.uuid,
        "name": role.name,
        "slug": role.slug,
        "description": role.description,
        "level": role.level,
        "is_system": role.is_system,
        "scope": role.scope,
        "organization_id": role.organization_id,
        "base_role": base_role,
        "member_count": await _member_count(session, role.id),
        "permissions": await _role_permissions(session, role.id) if with_permissions else [],
        "created_at": role.created_at,
    }


async def list_roles(
    session: AsyncSession,
    org_id: Optional[int] = None,
    scope: Optional[RoleScope] = None,
) -> list[dict]:
    """Platform-wide roles, plus the organization's own roles when ``org_id`` is given."""
    query = select(Role)
    if org_id is not None:
        query = query.where(
            or_(
                and_(Role.organization_id == None, Role.scope == RoleScope.PLATFORM.value),  # noqa: E711
                Role.organization_id == org_id,
            )
        )
    else:
        query = query.where(Role.organization_id == None)  # noqa: E711
    if scope is not None:
        query = query.where(Role.scope == scope.value)
    query = query.order_by(Role.level, Role.name)

    result = await session.execute(query)
    return [
        await _role_response(session, role, with_permissions=False)
        for role in result.scalars().all()
    ]


async def get_role(session: AsyncSession, role_id: int) -> dict:
    role = await get_role_model(session, role_id)
    return await _role_response(session, role)


# ---------------------------------------------------------------------------
# Role writes
# ---------------------------------------------------------------------------

async def _check_menus(session: AsyncSession, matrix: list[PermissionInput]) -> None:
    menu_ids = [p.menu_id for p in matrix]
    if len(set(menu_ids)) != len(menu_ids):
        raise ValidationFailed("Each menu may appear only once in a permission matrix")
    if not menu_ids:
        return
    result = await session.execute(select(Menu.id).where(Menu.id.in_(menu_ids)))
    missing = set(menu_ids) - set(result.scalars().all())
    if missing:
        raise ValidationFailed(
            "Unknown menu",
            details=[{"field": "permissions.menu_id", "message": f"Menu {m} does not exist"} for m in sorted(missing)],
        )


def _rows_for(role_id: int, matrix: list[PermissionInput]) -> list[RolePermission]:
    return [
        RolePermission(
            role_id=role_id,
            menu_id=p.menu_id,
            can_create=p.can_create,
            can_read=p.can_read,
            can_update=p.can_update,
            can_delete=p.can_delete,
        )
        for p in matrix
    ]


async def create_role(
    session: AsyncSession, data: RoleCreateRequest, creator_level: int
) -> dict:
    organization_id = data.organization_id
    if data.scope == RoleScope.PLATFORM:
        if not is_platform_admin(creator_level):
            raise AuthorizationFailure("Only platform admins can create platform roles")
        organization_id = None
    elif organization_id is None:
        raise ValidationFailed("Organization roles must belong to an organization")
    elif await session.get(Organization, organization_id) is None:
        raise NotFound("Organization not found")

    level = VIEWER_LEVEL
    base_role: Optional[Role] = None
    if data.base_role_id is not None:
        base_role = await session.get(Role, data.base_role_id)
        if base_role is None or (
            base_role.organization_id is not None and base_role.organization_id != organization_id
        ):
            raise NotFound("Base role not found")
        if base_role.level >= creator_level:
            raise AuthorizationFailure(
                "Cannot create role based on a role equal to or higher than your own"
            )
        level = base_role.level
    if data.level is not None:
        level = data.level
    if not can_grant(creator_level, level):
        raise AuthorizationFailure("Cannot create a role above your own level")

    existing = await session.execute(
        select(Role).where(Role.slug == data.slug, Role.organization_id == organization_id)
    )
    if existing.scalar_one_or_none():
        raise Conflict("A role with this slug already exists")

    if data.permissions:
        await _check_menus(session, data.permissions)

    role = Role(
        name=data.name,
        slug=data.slug,
        description=data.description,
        level=level,
        is_system=False,
        scope=data.scope.value,
        organization_id=organization_id,
        base_role_id=base_role.id if base_role else None,
    )
    session.add(role)
    await session.flush()

    if data.permissions:
        session.add_all(_rows_for(role.id, data.permissions))
    elif base_role is not None:
        result = await session.execute(
            select(RolePermission).where(RolePermission.role_id == base_role.id)
        )
        session.add_all([
            RolePermission(
                role_id=role.id,
                menu_id=p.menu_id,
                can_create=p.can_create,
                can_read=p.can_read,
                can_update=p.can_update,
                can_delete=p.can_delete,
            )
            for p in result.scalars().all()
        ])
    await session.flush()

    log.info("role.created", role_id=role.id, slug=role.slug, level=level, org_id=organization_id)
    return await _role_response(session, role)


async def update_role(session: AsyncSession, role_id: int, data: RoleUpdateRequest) -> dict:
    role = await get_role_model(session, role_id)
    if role.is_system:
        raise AuthorizationFailure("Cannot modify system roles")

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(role, field, value)
    session.add(role)
    await session.flush()
    log.info("role.updated", role_id=role_id)
    return await _role_response(session, role)


async def replace_role_permissions(
    session: AsyncSession, role_id: int, matrix: list[PermissionInput]
) -> dict:
    """Replace the whole permission matrix. Menus left out lose all access."""
    role = await get_role_model(session, role_id)
    if role.is_system:
        raise AuthorizationFailure("Cannot modify system role permissions")
    await _check_menus(session, matrix)

    await session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    session.add_all(_rows_for(role_id, matrix))
    await session.flush()

    log.info("role.permissions_replaced", role_id=role_id, menus=len(matrix))
    return await _role_response(session, role)


async def delete_role(session: AsyncSession, role_id: int) -> None:
    role = await get_role_model(session, role_id)
    if role.is_system:
        raise AuthorizationFailure("Cannot delete system roles")
    if await _member_count(session, role_id) > 0:
        raise ValidationFailed("Cannot delete role with assigned users")
    invited = await session.execute(
        select(func.count()).select_from(Invitation).where(Invitation.role_id == role_id)
    )
    if invited.scalar_one() > 0:
        raise ValidationFailed("Cannot delete role referenced by invitations")

    await session.execute(
        update(Role).where(Role.base_role_id == role_id).values(base_role_id=None)
    )
    await session.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
    await session.delete(role)
    await session.flush()
    log.info("role.deleted", role_id=role_id)


def ensure_role_editable(role: Role, org_id: Optional[int], actor_level: int) -> None:
    """Org admins may only change their own organization's roles at or below their level."""
    ensure_role_visible(role, org_id, actor_level)
    if is_platform_admin(actor_level):
        return
    if role.organization_id is None:
        raise AuthorizationFailure("Only platform admins can change platform roles")
    if not can_grant(actor_level, role.level):
        raise AuthorizationFailure("Cannot change a role above your own level")
