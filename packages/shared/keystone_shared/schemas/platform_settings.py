"""Platform settings schemas."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from .common import SettingType


class PlatformSettingResponse(BaseModel):
    key: str
    value: Any
    type: SettingType
    description: Optional[str] = None
    category: str


class PlatformSettingUpdate(BaseModel):
    value: Any
