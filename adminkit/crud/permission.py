from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission
from ..models.role import Role
from ..models.role_permission import RolePermission


class PermissionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, code: str, resource: str, action: str, description: str | None = None) -> Permission:
        permission = Permission(code=code, resource=resource, action=action, description=description)
        self.session.add(permission)
        await self.session.flush()
        await self.session.refresh(permission)
        return permission

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(
            select(Permission).order_by(Permission.resource, Permission.action)
        )
        return list(result.scalars().all())

    async def list_grants(self) -> list[tuple[str, str]]:
        """(role name, permission code) for every grant held by an active role."""
        result = await self.session.execute(
            select(Role.name, Permission.code)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .join(Permission, Permission.id == RolePermission.permission_id)
            .where(Role.is_active)
        )
        return [(role_name, code) for role_name, code in result.all()]
