"""
Platform SSO endpoints.

GET /api/auth/platform-login?token=  — Verify a platform token, redirect with a one-time code
GET /api/auth/sso-exchange?code=     — Trade the code for the local token pair (once)

Tokens never travel in a redirect URL; only the short-lived code does.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_session
from app.core.errors import AuthenticationFailure, ValidationFailed
from app.core.rate_limit import client_ip
from app.core.responses import success
from app.services.platform_sso import PlatformSSOBridge, get_sso_bridge

from keystone_shared.schemas.auth import SsoExchangeResponse

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()


def _frontend(path: str, **params: str) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}{path}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


@router.get("/platform-login")
async def platform_login(
    request: Request,
    token: Optional[str] = Query(default=None),
    session: AsyncSession = Depends(get_session),
    bridge: PlatformSSOBridge = Depends(get_sso_bridge),
):
    if not token:
        return _frontend("/login", error="missing_token")

    try:
        claims = await bridge.verify(token)
    except AuthenticationFailure as exc:
        log.info("sso.verify_failed", error=exc.message)
        return _frontend("/login", error="invalid_token")

    try:
        code = await bridge.login(
            session,
            claims,
            user_agent=request.headers.get("user-agent"),
            ip_address=client_ip(request),
        )
        # Persist the session before the browser can come back with the code.
        await session.commit()
    except Exception:
        await session.rollback()
        log.exception("sso.login_failed", org_slug=claims.org_slug)
        return _frontend("/login", error="sso_failed")

    return _frontend("/sso-callback", code=code)


@router.get("/sso-exchange")
async def sso_exchange(
    code: Optional[str] = Query(default=None),
    bridge: PlatformSSOBridge = Depends(get_sso_bridge),
):
    if not code:
        raise ValidationFailed("Missing code parameter")
    payload = await bridge.exchange(code)
    if payload is None:
        raise ValidationFailed("Invalid or expired code")
    return success(SsoExchangeResponse.model_validate(payload))
