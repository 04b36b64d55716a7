from .access_control import (
    Permission,
    ROLE_PERMISSIONS,
    ADMIN_ONLY,
    permissions_for,
    roles_with,
    get_current_user,
    require_identity,
    require_role,
    require_permission,
    has_role,
    has_permission,
)

__all__ = [
    "Permission",
    "ROLE_PERMISSIONS",
    "ADMIN_ONLY",
    "permissions_for",
    "roles_with",
    "get_current_user",
    "require_identity",
    "require_role",
    "require_permission",
    "has_role",
    "has_permission",
]
