"""
Organization member management: listing, role changes and removal.

Rank rules: an actor only touches members strictly below its own level and
only hands out roles strictly below it. Removal deactivates the membership;
the row stays so a later invitation can reactivate it.
"""

from __future__ import annotations

from typing import Optional

import structlog
from sqlalchemy import func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import AuthorizationFailure, NotFound, ValidationFailed
from app.models.membership import Membership
from app.models.role import Role
from app.models.user import User
from app.services import rbac

from keystone_shared.schemas.auth import RoleSummary
from keystone_shared.schemas.members import MemberResponse

log = structlog.get_logger()

NOT_A_MEMBER = "User not found in organization"


def _view(user: User, membership: Membership, role: Role) -> MemberResponse:
    return MemberResponse(
        id=user.id,
        uuid=user.uuid,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=RoleSummary(id=role.id, name=role.name, slug=role.slug, level=role.level),
        is_active=membership.is_active,
        joined_at=membership.joined_at,
        last_login_at=user.last_login_at,
    )


async def _membership(
    session: AsyncSession, org_id: int, user_id: int
) -> tuple[User, Membership, Role]:
    result = await session.execute(
        select(User, Membership, Role)
        .join(Membership, Membership.user_id == User.id)
        .join(Role, Role.id == Membership.role_id)
        .where(Membership.organization_id == org_id, Membership.user_id == user_id)
    )
    row = result.first()
    if row is None:
        raise NotFound(NOT_A_MEMBER)
    return row[0], row[1], row[2]


async def list_members(
    session: AsyncSession,
    org_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    role_id: Optional[int] = None,
    is_active: Optional[bool] = None,
) -> tuple[list[MemberResponse], int]:
    """One page of members, newest first, plus the total matching count."""
    conditions = [Membership.organization_id == org_id]
    if role_id is not None:
        conditions.append(Membership.role_id == role_id)
    if is_active is not None:
        conditions.append(Membership.is_active == is_active)
    if search:
        pattern = f"%{search.strip().lower()}%"
        conditions.append(
            or_(
                func.lower(User.email).like(pattern),
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name).like(pattern),
            )
        )

    total = await session.execute(
        select(func.count())
        .select_from(Membership)
        .join(User, User.id == Membership.user_id)
        .where(*conditions)
    )
    result = await session.execute(
        select(User, Membership, Role)
        .join(Membership, Membership.user_id == User.id)
        .join(Role, Role.id == Membership.role_id)
        .where(*conditions)
        .order_by(Membership.joined_at.desc(), Membership.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return [_view(*row) for row in result.all()], total.scalar_one()


async def get_member(session: AsyncSession, org_id: int, user_id: int) -> MemberResponse:
    return _view(*await _membership(session, org_id, user_id))


async def update_member_role(
    session: AsyncSession,
    org_id: int,
    user_id: int,
    role_id: int,
    actor_level: int,
) -> MemberResponse:
    user, membership, current = await _membership(session, org_id, user_id)

    role = await rbac.get_role_model(session, role_id)
    if role.organization_id is not None and role.organization_id != org_id:
        raise NotFound("Role not found")
    if role.level >= actor_level:
        raise AuthorizationFailure("Cannot assign a role equal to or higher than your own")
    if current.level >= actor_level:
        raise AuthorizationFailure("Cannot modify users with equal or higher role")

    membership.role_id = role.id
    session.add(membership)
    await session.flush()
    log.info("member.role_changed", org_id=org_id, user_id=user_id, role_id=role.id, previous=current.id)
    return _view(user, membership, role)


async def remove_member(
    session: AsyncSession,
    org_id: int,
    user_id: int,
    actor_id: int,
    actor_level: int,
) -> None:
    if user_id == actor_id:
        raise ValidationFailed("Cannot remove yourself from organization")

    _, membership, role = await _membership(session, org_id, user_id)
    if not membership.is_active:
        raise NotFound(NOT_A_MEMBER)
    if role.level >= actor_level:
        raise AuthorizationFailure("Cannot remove users with equal or higher role")

    membership.is_active = False
    session.add(membership)
    await session.flush()
    log.info("member.removed", org_id=org_id, user_id=user_id)
