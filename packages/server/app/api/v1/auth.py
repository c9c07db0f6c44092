"""
Authentication endpoints.

POST /api/auth/register         — Register (new organization or via invitation)
POST /api/auth/login            — Email/password login, returns a token pair
POST /api/auth/refresh          — New access token from a refresh token
POST /api/auth/logout           — Revoke a refresh session
POST /api/auth/forgot-password  — Start a password reset (always succeeds)
POST /api/auth/reset-password   — Finish a password reset
POST /api/auth/verify-email     — Confirm an email address
POST /api/auth/change-password  — Change password, revoking every session
GET  /api/auth/me               — Current user with memberships
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import get_current_user
from app.core.database import get_session
from app.core.email import EmailSender, get_email_sender
from app.core.rate_limit import auth_rate_limit, client_ip
from app.core.responses import success
from app.models.user import User
from app.services import accounts

from keystone_shared.schemas.auth import (
    AccessTokenResponse,
    AuthUserResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordRequest,
    VerifyEmailRequest,
)

log = structlog.get_logger()
router = APIRouter()


@router.post("/register", status_code=201, dependencies=[Depends(auth_rate_limit)])
async def register(
    body: RegisterRequest,
    session: AsyncSession = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    result = await accounts.register(session, body, email_sender)
    return success(RegisterResponse.model_validate(result), status_code=201)


@router.post("/login", dependencies=[Depends(auth_rate_limit)])
async def login(
    body: LoginRequest,
    request: Request,
    session: AsyncSession = Depends(get_session),
):
    result = await accounts.login(
        session,
        body.email,
        body.password,
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
    )
    return success(LoginResponse.model_validate(result))


@router.post("/refresh")
async def refresh(body: RefreshRequest, session: AsyncSession = Depends(get_session)):
    result = await accounts.refresh(session, body.refresh_token)
    return success(AccessTokenResponse.model_validate(result))


@router.post("/logout")
async def logout(body: LogoutRequest, session: AsyncSession = Depends(get_session)):
    await accounts.logout(session, body.refresh_token)
    return success({"message": "Logged out successfully"})


@router.post("/forgot-password", dependencies=[Depends(auth_rate_limit)])
async def forgot_password(
    body: ForgotPasswordRequest,
    session: AsyncSession = Depends(get_session),
    email_sender: EmailSender = Depends(get_email_sender),
):
    await accounts.forgot_password(session, body.email, email_sender)
    return success({"message": "If an account exists with this email, a reset link has been sent"})


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, session: AsyncSession = Depends(get_session)):
    await accounts.reset_password(session, body.token, body.password)
    return success({"message": "Password reset successfully"})


@router.post("/verify-email")
async def verify_email(body: VerifyEmailRequest, session: AsyncSession = Depends(get_session)):
    await accounts.verify_email(session, body.token)
    return success({"message": "Email verified successfully"})


@router.post("/change-password")
async def change_password(
    body: ChangePasswordRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    await accounts.change_password(session, user, body.current_password, body.new_password)
    return success({"message": "Password changed successfully. Please log in again."})


@router.get("/me")
async def me(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    return success(AuthUserResponse.model_validate(await accounts.auth_user_view(session, user)))
