"""Authentication request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1, max_length=128)
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    organization_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    invitation_token: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: str


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str
    password: str = Field(min_length=1, max_length=128)


class VerifyEmailRequest(BaseModel):
    token: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int  # access token lifetime in seconds


class AccessTokenResponse(BaseModel):
    access_token: str
    expires_in: int


class RoleSummary(BaseModel):
    id: int
    name: str
    slug: str
    level: int


class OrgMembershipSummary(BaseModel):
    id: int
    uuid: str
    name: str
    slug: str
    role: RoleSummary


class AuthUserResponse(BaseModel):
    id: int
    uuid: str
    email: str
    first_name: str
    last_name: str
    email_verified: bool
    created_at: datetime
    organizations: list[OrgMembershipSummary] = []


class LoginResponse(TokenPairResponse):
    user: AuthUserResponse


class RegisterResponse(BaseModel):
    user: AuthUserResponse
    message: str


class SsoExchangeResponse(TokenPairResponse):
    current_org_id: int
