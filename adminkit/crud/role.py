import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.role_permission import RolePermission
from ..models.user_role import UserRole


class RoleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_name(self, name: str) -> Role | None:
        result = await self.session.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def list_all(self, include_inactive: bool = False) -> list[Role]:
        query = select(Role).order_by(Role.name)
        if not include_inactive:
            query = query.where(Role.is_active)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def has_permission(self, role_id: uuid.UUID, permission_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(RolePermission.id).where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def assign_permission(self, role_id: uuid.UUID, permission_id: uuid.UUID) -> RolePermission:
        grant = RolePermission(role_id=role_id, permission_id=permission_id)
        self.session.add(grant)
        await self.session.flush()
        return grant

    async def get_user_role_names(self, user_id: uuid.UUID) -> list[str]:
        """Names of the active roles held by ``user_id``."""
        result = await self.session.execute(
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.id)
            .where(UserRole.user_id == user_id, Role.is_active)
            .order_by(Role.name)
        )
        return list(result.scalars().all())
