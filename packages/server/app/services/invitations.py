"""
Invitation workflow.

PENDING -> ACCEPTED | EXPIRED | CANCELLED, all terminal. Expiry is detected
lazily from the wall clock whenever an invitation is read; there is no
background sweeper.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import database
from app.core.config import get_settings
from app.core.email import EmailSender, LoggingEmailSender
from app.core.errors import AuthorizationFailure, Conflict, NotFound, ValidationFailed
from app.core.levels import can_grant
from app.core.tokens import invitation_token
from app.models.invitation import Invitation
from app.models.membership import Membership
from app.models.organization import Organization
from app.models.role import Role
from app.models.user import User
from app.services import platform_settings

from keystone_shared.schemas.common import InvitationStatus, INVITATION_TRANSITIONS
from keystone_shared.schemas.invitations import InvitationValidationResponse

log = structlog.get_logger()
settings = get_settings()

INVALID_TOKEN = "Invalid invitation token"
ALREADY_USED = "This invitation has already been used"
CANCELLED = "This invitation has been cancelled"
EXPIRED = "This invitation has expired"

_STATUS_ERRORS = {
    InvitationStatus.ACCEPTED.value: ALREADY_USED,
    InvitationStatus.CANCELLED.value: CANCELLED,
    InvitationStatus.EXPIRED.value: EXPIRED,
}


def _transition(invitation: Invitation, target: InvitationStatus) -> None:
    current = InvitationStatus(invitation.status)
    if target not in INVITATION_TRANSITIONS[current]:
        raise ValidationFailed(f"Cannot move invitation from {current.value} to {target.value}")
    invitation.status = target.value


def _is_past_expiry(invitation: Invitation) -> bool:
    return invitation.expires_at <= datetime.now(timezone.utc)


async def _expiry_hours(session: AsyncSession) -> int:
    hours = await platform_settings.get_value(
        session, platform_settings.INVITATION_EXPIRY_HOURS, settings.invitation_expiry_hours
    )
    try:
        hours = int(hours)
    except (TypeError, ValueError):
        return settings.invitation_expiry_hours
    return hours if hours > 0 else settings.invitation_expiry_hours


async def _expire(session: AsyncSession, invitation: Invitation) -> None:
    _transition(invitation, InvitationStatus.EXPIRED)
    session.add(invitation)
    await session.flush()
    log.info("invitation.expired", invitation_id=invitation.id, org_id=invitation.organization_id)


async def _pending_in_org(session: AsyncSession, invitation_id: int, org_id: int) -> Invitation:
    result = await session.execute(
        select(Invitation).where(
            Invitation.id == invitation_id,
            Invitation.organization_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
    )
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise NotFound("Invitation not found")
    return invitation


async def create_invitation(
    session: AsyncSession,
    email: str,
    org_id: int,
    role_id: int,
    inviter_id: int,
    inviter_level: int,
    email_sender: Optional[EmailSender] = None,
) -> Invitation:
    enabled = await platform_settings.get_value(session, platform_settings.INVITATION_ENABLED, True)
    if enabled is False:
        raise AuthorizationFailure("Email invitations are currently disabled")

    email = email.strip().lower()

    member = await session.execute(
        select(Membership)
        .join(User, User.id == Membership.user_id)
        .where(
            User.email == email,
            Membership.organization_id == org_id,
            Membership.is_active == True,  # noqa: E712
        )
    )
    if member.scalar_one_or_none():
        raise Conflict("User is already a member of this organization")

    existing = await session.execute(
        select(Invitation).where(
            Invitation.email == email,
            Invitation.organization_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
    )
    for pending in existing.scalars().all():
        if not _is_past_expiry(pending):
            raise Conflict("An invitation has already been sent to this email")
        await _expire(session, pending)

    role = await session.get(Role, role_id)
    if role is None:
        raise NotFound("Role not found")
    if role.organization_id is not None and role.organization_id != org_id:
        raise AuthorizationFailure("Role belongs to another organization")
    if not can_grant(inviter_level, role.level):
        raise AuthorizationFailure("Cannot invite a user to a role above your own level")

    organization = await session.get(Organization, org_id)
    if organization is None:
        raise NotFound("Organization not found")
    inviter = await session.get(User, inviter_id)
    if inviter is None:
        raise NotFound("Inviter not found")

    token, expires_at = invitation_token(await _expiry_hours(session))
    invitation = Invitation(
        email=email,
        organization_id=org_id,
        role_id=role_id,
        token=token,
        expires_at=expires_at,
        invited_by_id=inviter_id,
    )
    session.add(invitation)
    await session.flush()

    sender = email_sender or LoggingEmailSender()
    await sender.send_invitation(
        email, organization.name, f"{inviter.first_name} {inviter.last_name}", token
    )
    log.info("invitation.created", invitation_id=invitation.id, org_id=org_id, role_id=role_id)
    return invitation


async def list_invitations(
    session: AsyncSession, org_id: int
) -> list[tuple[Invitation, Optional[User]]]:
    """Outstanding invitations, newest first. Expired rows are swept to EXPIRED and left out."""
    result = await session.execute(
        select(Invitation, User)
        .join(User, User.id == Invitation.invited_by_id, isouter=True)
        .where(
            Invitation.organization_id == org_id,
            Invitation.status == InvitationStatus.PENDING.value,
        )
        .order_by(Invitation.created_at.desc())
    )
    outstanding = []
    for invitation, inviter in result.all():
        if _is_past_expiry(invitation):
            await _expire(session, invitation)
        else:
            outstanding.append((invitation, inviter))
    return outstanding


async def validate_invitation(session: AsyncSession, token: str) -> InvitationValidationResponse:
    """Check a token. Unlike login, failures carry a specific reason."""
    result = await session.execute(select(Invitation).where(Invitation.token == token))
    invitation = result.scalar_one_or_none()
    if invitation is None:
        return InvitationValidationResponse(valid=False, error=INVALID_TOKEN)

    if invitation.status != InvitationStatus.PENDING.value:
        return InvitationValidationResponse(valid=False, error=_STATUS_ERRORS[invitation.status])

    if _is_past_expiry(invitation):
        await _expire(session, invitation)
        return InvitationValidationResponse(valid=False, error=EXPIRED)

    organization = await session.get(Organization, invitation.organization_id)
    role = await session.get(Role, invitation.role_id)
    return InvitationValidationResponse(
        valid=True,
        email=invitation.email,
        organization_name=organization.name if organization else None,
        role_name=role.name if role else "Unknown",
        expires_at=invitation.expires_at,
    )


async def cancel_invitation(session: AsyncSession, invitation_id: int, org_id: int) -> Invitation:
    invitation = await _pending_in_org(session, invitation_id, org_id)
    _transition(invitation, InvitationStatus.CANCELLED)
    session.add(invitation)
    await session.flush()
    log.info("invitation.cancelled", invitation_id=invitation_id, org_id=org_id)
    return invitation


async def resend_invitation(
    session: AsyncSession,
    invitation_id: int,
    org_id: int,
    email_sender: Optional[EmailSender] = None,
) -> Invitation:
    """Issue a fresh token and expiry window. The old token stops validating immediately."""
    invitation = await _pending_in_org(session, invitation_id, org_id)

    invitation.token, invitation.expires_at = invitation_token(await _expiry_hours(session))
    session.add(invitation)
    await session.flush()

    organization = await session.get(Organization, org_id)
    inviter = await session.get(User, invitation.invited_by_id)
    inviter_name = f"{inviter.first_name} {inviter.last_name}" if inviter else ""
    sender = email_sender or LoggingEmailSender()
    await sender.send_invitation(invitation.email, organization.name, inviter_name, invitation.token)
    log.info("invitation.resent", invitation_id=invitation_id, org_id=org_id)
    return invitation


async def _expire_detached(invitation_id: int) -> None:
    # Own unit of work: the caller is about to raise and roll back.
    async with database.get_session_context() as s:
        await s.execute(
            update(Invitation)
            .where(
                Invitation.id == invitation_id,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .values(status=InvitationStatus.EXPIRED.value)
        )
    log.info("invitation.expired", invitation_id=invitation_id)


async def ensure_acceptable(session: AsyncSession, token: str) -> Invitation:
    """Return the PENDING invitation behind a token, or raise with the reason it cannot be used.

    A PENDING invitation found past its expiry is stored as EXPIRED before
    the error is raised.
    """
    result = await session.execute(select(Invitation).where(Invitation.token == token))
    invitation = result.scalar_one_or_none()
    if invitation is None:
        raise ValidationFailed(INVALID_TOKEN)
    if invitation.status != InvitationStatus.PENDING.value:
        raise ValidationFailed(_STATUS_ERRORS[invitation.status])
    if _is_past_expiry(invitation):
        await _expire_detached(invitation.id)
        raise ValidationFailed(EXPIRED)
    return invitation


async def accept_invitation(session: AsyncSession, token: str, user: User) -> Membership:
    """Join the invited organization with the invited role."""
    invitation = await ensure_acceptable(session, token)
    # Lock and re-read: a concurrent accept may have won.
    await session.refresh(invitation, with_for_update=True)
    if invitation.status != InvitationStatus.PENDING.value:
        raise ValidationFailed(_STATUS_ERRORS[invitation.status])
    if invitation.email != user.email.lower():
        raise AuthorizationFailure("This invitation was sent to a different email address")

    existing = await session.execute(
        select(Membership).where(
            Membership.user_id == user.id,
            Membership.organization_id == invitation.organization_id,
        )
    )
    membership = existing.scalar_one_or_none()
    if membership is not None and membership.is_active:
        raise Conflict("User is already a member of this organization")
    if membership is None:
        membership = Membership(
            user_id=user.id,
            organization_id=invitation.organization_id,
            role_id=invitation.role_id,
        )
    else:
        membership.role_id = invitation.role_id
        membership.is_active = True
    session.add(membership)

    _transition(invitation, InvitationStatus.ACCEPTED)
    invitation.accepted_at = datetime.now(timezone.utc)
    session.add(invitation)
    await session.flush()

    log.info(
        "invitation.accepted",
        invitation_id=invitation.id,
        org_id=invitation.organization_id,
        user_id=user.id,
    )
    return membership
