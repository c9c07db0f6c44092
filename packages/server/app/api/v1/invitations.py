"""
Invitation endpoints.

GET    /api/invitations/validate?token=  — Check a token (unauthenticated)
POST   /api/invitations/accept           — Accept as an existing, signed-in user
GET    /api/invitations                  — Outstanding invitations (org admin)
POST   /api/invitations                  — Invite an email to a role (org admin)
DELETE /api/invitations/{id}             — Cancel (org admin)
POST   /api/invitations/{id}/resend      — New token and expiry (org admin)
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, get_current_user, require_org_admin
from app.core.database import get_session
from app.core.email import EmailSender, get_email_sender
from app.core.responses import success
from app.models.invitation import Invitation
from app.models.user import User
from app.services import invitations as invitation_service

from keystone_shared.schemas.invitations import (
    InvitationAcceptRequest,
    InvitationCreateRequest,
    InvitationResponse,
)

router = APIRouter()


def _view(invitation: Invitation, inviter: Optional[User] = None) -> InvitationResponse:
    return InvitationResponse(
        id=invitation.id,
        uuid=invitation.uuid,
        email=invitation.email,
        role_id=invitation.role_id,
        status=invitation.status,
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
        invited_by=(
            {
                "id": inviter.id,
                "email": inviter.email,
                "first_name": inviter.first_name,
                "last_name": inviter.last_name,
            }
            if inviter
            else None
        ),
    )


@router.get("/validate")
async def validate_invitation(
    token: str = Query(min_length=1),
    session: AsyncSession = Depends(get_session),
):
    return success(await invitation_service.validate_invitation(session, token))


@router.post("/accept")
async def accept_invitation(
    body: InvitationAcceptRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    membership = await invitation_service.accept_invitation(session, body.token, user)
    return success({"organization_id": membership.organization_id, "role_id": membership.role_id})


@router.get("")
async def list_invitations(
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    rows = await invitation_service.list_invitations(session, ctx.organization.id)
    return success([_view(invitation, inviter) for invitation, inviter in rows])


@router.post("", status_code=201)
async def create_invitation(
    body: InvitationCreateRequest,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    invitation = await invitation_service.create_invitation(
        session,
        body.email,
        ctx.organization.id,
        body.role_id,
        inviter_id=ctx.user.id,
        inviter_level=ctx.level,
        email_sender=email_sender,
    )
    return success(_view(invitation, ctx.user), status_code=201)


@router.delete("/{invitation_id}")
async def cancel_invitation(
    invitation_id: int,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
):
    await invitation_service.cancel_invitation(session, invitation_id, ctx.organization.id)
    return success({"message": "Invitation cancelled successfully"})


@router.post("/{invitation_id}/resend")
async def resend_invitation(
    invitation_id: int,
    ctx: AuthContext = Depends(require_org_admin),
    session: AsyncSession = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    await invitation_service.resend_invitation(
        session, invitation_id, ctx.organization.id, email_sender
    )
    return success({"message": "Invitation resent successfully"})
