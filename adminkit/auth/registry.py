"""
Permission Registry - the set of known permissions and the roles granting them.

The registry is populated during startup and then frozen. Readers never take a
lock: every write replaces whole immutable values (frozensets, definitions)
under ``_lock``, so a concurrent reader sees either the old or the new value,
never a partially built one.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass

from ..errors import (
    DuplicateCapabilityError,
    DuplicateCodeError,
    DuplicateRoleError,
    RegistryFrozenError,
    UnknownPermissionError,
    UnknownRoleError,
)
from .rbac_contract import Capability, validate_capability_part, validate_permission_code

logger = logging.getLogger("adminkit.registry")


@dataclass(frozen=True)
class PermissionDefinition:
    code: str
    resource: str
    action: str
    description: str = ""

    @property
    def capability(self) -> Capability:
        return Capability(self.resource, self.action)


@dataclass(frozen=True)
class RoleDefinition:
    name: str
    label: str
    description: str | None = None


class PermissionRegistry:
    """Registry of permissions, roles and role grants."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._frozen = False
        self._permissions: dict[str, PermissionDefinition] = {}
        self._codes_by_capability: dict[Capability, str] = {}
        self._roles: dict[str, RoleDefinition] = {}
        # permission code -> role names granting it
        self._grants: dict[str, frozenset[str]] = {}

    # ------------------------------------------------------------------
    # Startup configuration
    # ------------------------------------------------------------------

    def register(
        self,
        code: str,
        resource: str,
        action: str,
        description: str = "",
    ) -> PermissionDefinition:
        """Register a permission.

        Raises:
            DuplicateCodeError: If ``code`` is already registered.
            DuplicateCapabilityError: If another code already covers
                ``(resource, action)``.
            InvalidPermissionError: If the code, resource or action is malformed.
            RegistryFrozenError: If the registry has been frozen.
        """
        validate_permission_code(code)
        validate_capability_part("resource", resource)
        validate_capability_part("action", action)

        capability = Capability(resource, action)
        with self._lock:
            self._ensure_mutable()
            if code in self._permissions:
                raise DuplicateCodeError(f"Permission code '{code}' is already registered")
            existing = self._codes_by_capability.get(capability)
            if existing is not None:
                raise DuplicateCapabilityError(
                    f"({resource}, {action}) is already registered as '{existing}'"
                )
            definition = PermissionDefinition(code, resource, action, description)
            self._permissions[code] = definition
            self._codes_by_capability[capability] = code

        logger.debug("Registered permission code=%s resource=%s action=%s", code, resource, action)
        return definition

    def define_role(
        self,
        name: str,
        label: str | None = None,
        description: str | None = None,
    ) -> RoleDefinition:
        """Define a role that permissions can be granted to.

        Raises:
            DuplicateRoleError: If the role already exists.
        """
        validate_capability_part("role", name)
        with self._lock:
            self._ensure_mutable()
            if name in self._roles:
                raise DuplicateRoleError(f"Role '{name}' is already defined")
            role = RoleDefinition(name=name, label=label or name.replace("_", " ").title(), description=description)
            self._roles[name] = role

        logger.debug("Defined role name=%s", name)
        return role

    def grant(self, role: str, permission_code: str) -> None:
        """Grant a registered permission to a defined role. Idempotent.

        Raises:
            UnknownRoleError: If the role is not defined.
            UnknownPermissionError: If the permission is not registered.
        """
        with self._lock:
            self._ensure_mutable()
            self._ensure_known(role, permission_code)
            current = self._grants.get(permission_code, frozenset())
            self._grants[permission_code] = current | {role}

        logger.debug("Granted permission code=%s role=%s", permission_code, role)

    def revoke(self, role: str, permission_code: str) -> None:
        """Remove a grant. Revoking a grant that does not exist is a no-op."""
        with self._lock:
            self._ensure_mutable()
            self._ensure_known(role, permission_code)
            current = self._grants.get(permission_code, frozenset())
            self._grants[permission_code] = current - {role}

        logger.debug("Revoked permission code=%s role=%s", permission_code, role)

    def freeze(self) -> None:
        """Make the registry read-only for the rest of the process lifetime."""
        with self._lock:
            self._frozen = True
        logger.info(
            "Permission registry frozen permissions=%d roles=%d",
            len(self._permissions),
            len(self._roles),
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    # ------------------------------------------------------------------
    # Request-time reads (lock-free)
    # ------------------------------------------------------------------

    def permission_for(self, resource: str, action: str) -> PermissionDefinition | None:
        code = self._codes_by_capability.get(Capability(resource, action))
        if code is None:
            return None
        return self._permissions.get(code)

    def is_registered(self, resource: str, action: str) -> bool:
        return Capability(resource, action) in self._codes_by_capability

    def roles_granting(self, resource: str, action: str) -> frozenset[str]:
        """Role names granting ``(resource, action)``.

        Returns an empty set when no permission matches the pair; callers that
        must tell "unregistered" apart from "granted to nobody" use
        :meth:`is_registered`.
        """
        code = self._codes_by_capability.get(Capability(resource, action))
        if code is None:
            return frozenset()
        return self._grants.get(code, frozenset())

    def permissions_for_role(self, role: str) -> frozenset[str]:
        return frozenset(
            code for code, roles in tuple(self._grants.items()) if role in roles
        )

    def get_permission(self, code: str) -> PermissionDefinition | None:
        return self._permissions.get(code)

    def get_role(self, name: str) -> RoleDefinition | None:
        return self._roles.get(name)

    @property
    def permissions(self) -> tuple[PermissionDefinition, ...]:
        return tuple(self._permissions.values())

    @property
    def roles(self) -> tuple[RoleDefinition, ...]:
        return tuple(self._roles.values())

    def __contains__(self, code: object) -> bool:
        return code in self._permissions

    def __len__(self) -> int:
        return len(self._permissions)

    # ------------------------------------------------------------------

    def _ensure_mutable(self) -> None:
        if self._frozen:
            raise RegistryFrozenError(
                "Permission registry is frozen; configure roles and permissions at startup"
            )

    def _ensure_known(self, role: str, permission_code: str) -> None:
        if role not in self._roles:
            raise UnknownRoleError(f"Role '{role}' is not defined")
        if permission_code not in self._permissions:
            raise UnknownPermissionError(f"Permission '{permission_code}' is not registered")
