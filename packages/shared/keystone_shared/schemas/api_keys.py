"""API key management schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ApiKeyCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    expires_at: Optional[datetime] = None


class ApiKeyCreator(BaseModel):
    id: int
    email: str
    first_name: str
    last_name: str


class ApiKeyResponse(BaseModel):
    """Listing view. Never carries the secret or its hash."""
    id: str
    name: str
    key_prefix: str
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    revoked_at: Optional[datetime] = None
    created_at: datetime
    created_by: Optional[ApiKeyCreator] = None


class ApiKeyCreatedResponse(BaseModel):
    """Creation view. The only response that ever includes the plaintext key."""
    id: str
    name: str
    key: str
    key_prefix: str
    expires_at: Optional[datetime] = None
    created_at: datetime
    warning: str = "Save this key now. It will not be shown again."
