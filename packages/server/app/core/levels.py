"""
Role privilege ranks.

Role.level is a total order. Every rank comparison in the codebase goes
through these names.
"""

VIEWER_LEVEL = 10
STANDARD_LEVEL = 20
ADVANCED_LEVEL = 30
ORG_ADMIN_LEVEL = 40
PLATFORM_ADMIN_LEVEL = 100

DEFAULT_ROLE_LEVEL = VIEWER_LEVEL


def is_platform_admin(level: int) -> bool:
    """Platform admins act across tenants."""
    return level >= PLATFORM_ADMIN_LEVEL


def is_org_admin(level: int) -> bool:
    return level >= ORG_ADMIN_LEVEL


def can_grant(actor_level: int, target_level: int) -> bool:
    """An actor may only hand out roles at or below their own rank."""
    return target_level <= actor_level
