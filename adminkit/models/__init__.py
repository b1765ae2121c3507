from .base import Base
from .admin_user import AdminUser
from .role import Role
from .permission import Permission
from .role_permission import RolePermission
from .user_role import UserRole

__all__ = [
    "Base",
    "AdminUser",
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
]
