"""Invitation workflow schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from .common import InvitationStatus


class InvitationCreateRequest(BaseModel):
    email: EmailStr
    role_id: int = Field(gt=0)


class InviterSummary(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str


class InvitationResponse(BaseModel):
    id: int
    uuid: str
    email: str
    role_id: int
    status: InvitationStatus
    expires_at: datetime
    created_at: datetime
    invited_by: Optional[InviterSummary] = None


class InvitationValidationResponse(BaseModel):
    valid: bool
    error: Optional[str] = None
    email: Optional[str] = None
    organization_name: Optional[str] = None
    role_name: Optional[str] = None
    expires_at: Optional[datetime] = None


class InvitationAcceptRequest(BaseModel):
    token: str
