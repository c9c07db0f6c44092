"""
API key management. Token authentication only: a key can never manage keys.

GET    /api/api-keys       — List active keys for the organization
GET    /api/api-keys/{id}  — Get one key
POST   /api/api-keys       — Create a key (plaintext returned once)
DELETE /api/api-keys/{id}  — Revoke a key
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import AuthContext, reject_api_key
from app.core.database import get_session
from app.core.responses import success
from app.models.api_key import ApiKey
from app.models.user import User
from app.services import api_keys as api_key_service

from keystone_shared.schemas.api_keys import (
    ApiKeyCreateRequest,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
)

router = APIRouter()


def _view(api_key: ApiKey, creator: Optional[User]) -> ApiKeyResponse:
    return ApiKeyResponse(
        id=api_key.id,
        name=api_key.name,
        key_prefix=api_key.key_prefix,
        last_used_at=api_key.last_used_at,
        expires_at=api_key.expires_at,
        is_active=api_key.is_active,
        revoked_at=api_key.revoked_at,
        created_at=api_key.created_at,
        created_by=(
            {
                "id": creator.id,
                "email": creator.email,
                "first_name": creator.first_name,
                "last_name": creator.last_name,
            }
            if creator
            else None
        ),
    )


@router.get("")
async def list_api_keys(
    ctx: AuthContext = Depends(reject_api_key()),
    session: AsyncSession = Depends(get_session),
):
    rows = await api_key_service.list_keys(session, ctx.organization.id)
    return success([_view(key, creator) for key, creator in rows])


@router.get("/{key_id}")
async def get_api_key(
    key_id: str,
    ctx: AuthContext = Depends(reject_api_key()),
    session: AsyncSession = Depends(get_session),
):
    key, creator = await api_key_service.get_key(session, ctx.organization.id, key_id)
    return success(_view(key, creator))


@router.post("", status_code=201)
async def create_api_key(
    body: ApiKeyCreateRequest,
    ctx: AuthContext = Depends(reject_api_key()),
    session: AsyncSession = Depends(get_session),
):
    created = await api_key_service.create_key(
        session, ctx.organization.id, ctx.user.id, body.name, body.expires_at
    )
    key = created.api_key
    return success(
        ApiKeyCreatedResponse(
            id=key.id,
            name=key.name,
            key=created.plaintext,
            key_prefix=key.key_prefix,
            expires_at=key.expires_at,
            created_at=key.created_at,
        ),
        status_code=201,
    )


@router.delete("/{key_id}")
async def revoke_api_key(
    key_id: str,
    ctx: AuthContext = Depends(reject_api_key()),
    session: AsyncSession = Depends(get_session),
):
    await api_key_service.revoke_key(session, ctx.organization.id, key_id)
    return success({"message": "API key revoked successfully"})
