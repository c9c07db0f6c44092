"""Feature flag schemas.

Org-level reads expose both layers next to the effective value so callers can
see which layer decided the outcome.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class FeatureFlagResponse(BaseModel):
    id: int
    key: str
    name: str
    description: Optional[str] = None
    default_enabled: bool


class FeatureFlagDefaultUpdate(BaseModel):
    default_enabled: bool


class OrgFeatureFlagUpdate(BaseModel):
    platform_enabled: Optional[bool] = None
    org_enabled: Optional[bool] = None


class OrgFeatureFlagResponse(BaseModel):
    feature_flag_id: int
    key: str
    name: str
    description: Optional[str] = None
    default_enabled: bool
    overridden: bool  # False when no override row exists and defaults applied
    platform_enabled: bool
    org_enabled: bool
    effective_enabled: bool
