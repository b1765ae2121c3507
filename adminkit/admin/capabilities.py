"""
Entity Capability Mapper.

Derives, for each enabled action of an entity, the (resource, action) pair the
decision engine will look up. This is the single source of truth for which
permissions an entity needs; the route planner and the permission sync both go
through it.
"""
from __future__ import annotations

import logging

from ..auth.rbac_contract import CRUD_ACTION_ORDER, Capability, CrudAction
from ..auth.registry import PermissionDefinition, PermissionRegistry
from ..errors import DuplicateCapabilityError, DuplicateCodeError, UnknownRoleError
from .entities import EntityRegistration

logger = logging.getLogger("adminkit.registry")

ACTION_DESCRIPTIONS: dict[CrudAction, str] = {
    CrudAction.INDEX: "List {title}",
    CrudAction.SHOW: "View {title}",
    CrudAction.NEW: "Open the create form for {title}",
    CrudAction.CREATE: "Create {title}",
    CrudAction.EDIT: "Open the edit form for {title}",
    CrudAction.UPDATE: "Update {title}",
    CrudAction.DELETE: "Delete {title}",
}


def capability_for(entity: EntityRegistration, action: CrudAction) -> Capability:
    return Capability(entity.resource, CrudAction(action).value)


def capabilities_for(entity: EntityRegistration) -> tuple[Capability, ...]:
    """Capabilities of every enabled action, in canonical action order."""
    return tuple(
        capability_for(entity, action)
        for action in CRUD_ACTION_ORDER
        if entity.enables(action)
    )


def describe_capability(entity: EntityRegistration, action: CrudAction) -> str:
    return ACTION_DESCRIPTIONS[CrudAction(action)].format(title=entity.display_title)


def register_entity_permissions(
    registry: PermissionRegistry,
    entity: EntityRegistration,
) -> list[PermissionDefinition]:
    """Register the entity's capabilities and apply its declared role grants.

    Capabilities already covered by a permission with the conventional code are
    left untouched; a pair already registered under a different code is a
    configuration conflict. Roles named in ``entity.permissions`` must already
    be defined in the registry.

    Returns:
        The permissions newly registered by this call.

    Raises:
        DuplicateCapabilityError: If a pair is registered under another code.
        UnknownRoleError: If a declared role is not defined.
    """
    _check_registrable(registry, entity)

    created: list[PermissionDefinition] = []
    for action in CRUD_ACTION_ORDER:
        if not entity.enables(action):
            continue
        capability = capability_for(entity, action)
        existing = registry.permission_for(capability.resource, capability.action)
        if existing is None:
            created.append(
                registry.register(
                    capability.code,
                    capability.resource,
                    capability.action,
                    describe_capability(entity, action),
                )
            )
        for role in entity.permissions.get(action, ()):
            registry.grant(role, capability.code)

    if created:
        logger.info(
            "Registered entity permissions resource=%s count=%d",
            entity.resource,
            len(created),
        )
    return created


def _check_registrable(registry: PermissionRegistry, entity: EntityRegistration) -> None:
    # checked up front: a failed registration leaves the registry unchanged
    for capability in capabilities_for(entity):
        existing = registry.permission_for(capability.resource, capability.action)
        if existing is None and capability.code in registry:
            raise DuplicateCodeError(f"Permission code '{capability.code}' is already registered")
        if existing is not None and existing.code != capability.code:
            raise DuplicateCapabilityError(
                f"{capability} is registered as '{existing.code}'; "
                f"entity '{entity.entity_type}' expects '{capability.code}'"
            )
    for roles in entity.permissions.values():
        for role in roles:
            if registry.get_role(role) is None:
                raise UnknownRoleError(f"Role '{role}' is not defined")
