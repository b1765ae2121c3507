"""
Registry persistence: build the in-memory PermissionRegistry from the admin
tables at startup, and insert the permissions registered entities need.

Both run once during startup. Anything inconsistent in the stored data
(malformed codes, grants to unknown roles) surfaces as a ConfigurationError
and must abort the boot.
"""
from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from ..admin.capabilities import capabilities_for, describe_capability
from ..admin.entities import EntityRegistration
from ..auth.rbac_contract import validate_permission_code
from ..auth.registry import PermissionRegistry
from ..crud.permission import PermissionRepository
from ..crud.role import RoleRepository
from ..errors import DuplicateCapabilityError, UnknownRoleError
from ..models.permission import Permission

logger = logging.getLogger("adminkit.registry")


class RegistryLoader:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.permission_repo = PermissionRepository(session)
        self.role_repo = RoleRepository(session)

    async def load(
        self,
        registry: PermissionRegistry | None = None,
        *,
        freeze: bool = True,
    ) -> PermissionRegistry:
        """Populate ``registry`` (or a new one) from the database.

        Inactive roles are skipped together with their grants.
        """
        registry = registry if registry is not None else PermissionRegistry()

        roles = await self.role_repo.list_all()
        for role in roles:
            if registry.get_role(role.name) is None:
                registry.define_role(role.name, role.label, role.description)

        for permission in await self.permission_repo.list_all():
            existing = registry.permission_for(permission.resource, permission.action)
            if existing is not None and existing.code == permission.code:
                continue
            registry.register(
                permission.code,
                permission.resource,
                permission.action,
                permission.description or "",
            )

        grants = await self.permission_repo.list_grants()
        for role_name, code in grants:
            registry.grant(role_name, code)

        logger.info(
            "Loaded permission registry roles=%d permissions=%d grants=%d",
            len(roles),
            len(registry),
            len(grants),
        )
        if freeze:
            registry.freeze()
        return registry


class PermissionSyncService:
    """Insert missing permission rows (and declared role grants) for entities."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.permission_repo = PermissionRepository(session)
        self.role_repo = RoleRepository(session)

    async def sync(self, entities: Iterable[EntityRegistration]) -> list[str]:
        """Returns the codes of the permissions created by this call.

        Raises:
            DuplicateCapabilityError: If a stored permission covers a pair
                under a different code.
            UnknownRoleError: If an entity grants a permission to a role that
                does not exist.
        """
        stored = {
            (permission.resource, permission.action): permission
            for permission in await self.permission_repo.list_all()
        }
        created: list[str] = []

        for entity in entities:
            for capability in capabilities_for(entity):
                validate_permission_code(capability.code)
                permission = stored.get((capability.resource, capability.action))
                if permission is None:
                    permission = await self.permission_repo.create(
                        code=capability.code,
                        resource=capability.resource,
                        action=capability.action,
                        description=describe_capability(entity, capability.action),
                    )
                    stored[(capability.resource, capability.action)] = permission
                    created.append(permission.code)
                elif permission.code != capability.code:
                    raise DuplicateCapabilityError(
                        f"{capability} is stored as '{permission.code}'; "
                        f"entity '{entity.entity_type}' expects '{capability.code}'"
                    )

                for role_name in entity.permissions.get(capability.action, ()):
                    await self._grant(role_name, permission)

        await self.session.commit()
        if created:
            logger.info("Synchronized entity permissions created=%d", len(created))
        return created

    async def _grant(self, role_name: str, permission: Permission) -> None:
        role = await self.role_repo.get_by_name(role_name)
        if role is None:
            raise UnknownRoleError(f"Role '{role_name}' does not exist")
        if await self.role_repo.has_permission(role.id, permission.id):
            return
        await self.role_repo.assign_permission(role.id, permission.id)
        logger.debug("Granted permission code=%s role=%s", permission.code, role.name)
