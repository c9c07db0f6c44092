from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class RoleScope(str, Enum):
    PLATFORM = "PLATFORM"
    ORGANIZATION = "ORGANIZATION"


class MenuSection(str, Enum):
    MAIN = "MAIN"
    ADMIN = "ADMIN"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"


# Display precedence for navigation; unknown sections sort last.
MENU_SECTION_ORDER: dict[MenuSection, int] = {
    MenuSection.MAIN: 0,
    MenuSection.ADMIN: 1,
    MenuSection.PLATFORM_ADMIN: 2,
}


class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


# Every non-pending state is terminal.
INVITATION_TRANSITIONS: dict[InvitationStatus, list[InvitationStatus]] = {
    InvitationStatus.PENDING: [
        InvitationStatus.ACCEPTED,
        InvitationStatus.EXPIRED,
        InvitationStatus.CANCELLED,
    ],
    InvitationStatus.ACCEPTED: [],
    InvitationStatus.EXPIRED: [],
    InvitationStatus.CANCELLED: [],
}


class CrudAction(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"


class SettingType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    BOOLEAN = "BOOLEAN"
    JSON = "JSON"


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    TOKEN_INVALID = "TOKEN_INVALID"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorBody(BaseModel):
    code: ErrorCode
    message: str
    details: Optional[list[Any]] = None


class APIResponse(BaseModel):
    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
