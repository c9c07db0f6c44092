# SQLModel definitions — imported here to ensure metadata is populated for Alembic.
from .base import IDMixin, UUIDMixin, TimestampMixin  # noqa: F401
from .organization import Organization  # noqa: F401
from .user import User  # noqa: F401
from .role import Role, RolePermission  # noqa: F401
from .membership import Membership  # noqa: F401
from .menu import Menu  # noqa: F401
from .feature_flag import FeatureFlag, OrgFeatureFlag  # noqa: F401
from .platform_setting import PlatformSetting  # noqa: F401
from .invitation import Invitation  # noqa: F401
from .refresh_session import RefreshSession  # noqa: F401
from .api_key import ApiKey  # noqa: F401
