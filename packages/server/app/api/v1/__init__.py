"""
API Router

Every endpoint is mounted under /api. Organization context comes from the
credential (API key) or the X-Organization-Id header, not from the path,
except for the explicit /organizations/{org_id} flag routes.
"""

from fastapi import APIRouter
from . import (
    api_keys,
    auth,
    feature_flags,
    invitations,
    members,
    menus,
    platform_auth,
    platform_settings,
    roles,
)

router = APIRouter()

router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
router.include_router(platform_auth.router, prefix="/auth", tags=["Platform SSO"])
router.include_router(api_keys.router, prefix="/api-keys", tags=["API Keys"])
router.include_router(roles.router, prefix="/roles", tags=["Roles"])
router.include_router(menus.router, prefix="/menus", tags=["Menus"])
router.include_router(feature_flags.router, prefix="/feature-flags", tags=["Feature Flags"])
router.include_router(feature_flags.org_router, prefix="/organizations", tags=["Feature Flags"])
router.include_router(invitations.router, prefix="/invitations", tags=["Invitations"])
router.include_router(members.router, prefix="/users", tags=["Members"])
router.include_router(platform_settings.router, prefix="/platform/settings", tags=["Platform"])


@router.get("/", tags=["API"])
async def api_root():
    """API root — returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/auth",
            "/api-keys",
            "/roles",
            "/menus",
            "/feature-flags",
            "/organizations/{org_id}/feature-flags",
            "/invitations",
            "/users",
            "/platform/settings",
        ],
    }
