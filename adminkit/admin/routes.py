"""
Route Registration Planner.

Turns an entity registration into the ordered list of route descriptors the
host router mounts. Each descriptor carries the capability it serves, resolved
here once, so nothing on the request path dispatches on action names.

Emission order is a contract: index, show, new, create, edit, update, delete.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from ..auth.classifier import normalize_prefix
from ..auth.rbac_contract import (
    CRUD_ACTION_ORDER,
    EDIT_SEGMENT,
    NEW_SEGMENT,
    Capability,
    CrudAction,
)
from .capabilities import capability_for
from .entities import EntityRegistration

ID_PARAM = "id"


class CrudOperation(Enum):
    """One variant per CRUD action: (action, HTTP method, takes id, literal suffix)."""

    INDEX = (CrudAction.INDEX, "GET", False, None)
    SHOW = (CrudAction.SHOW, "GET", True, None)
    NEW = (CrudAction.NEW, "GET", False, NEW_SEGMENT)
    CREATE = (CrudAction.CREATE, "POST", False, None)
    EDIT = (CrudAction.EDIT, "GET", True, EDIT_SEGMENT)
    UPDATE = (CrudAction.UPDATE, "POST", True, None)
    DELETE = (CrudAction.DELETE, "DELETE", True, None)

    def __init__(self, action: CrudAction, method: str, takes_id: bool, suffix: str | None) -> None:
        self.action = action
        self.method = method
        self.takes_id = takes_id
        self.suffix = suffix

    @classmethod
    def for_action(cls, action: CrudAction | str) -> "CrudOperation":
        return _OPERATIONS_BY_ACTION[CrudAction(action)]


_OPERATIONS_BY_ACTION: dict[CrudAction, CrudOperation] = {
    operation.action: operation for operation in CrudOperation
}


@dataclass(frozen=True)
class RouteDescriptor:
    method: str
    path_template: str
    operation: CrudOperation
    resource: str
    action: str

    @property
    def capability(self) -> Capability:
        return Capability(self.resource, self.action)

    @property
    def name(self) -> str:
        return f"adminkit.{self.resource}.{self.action}"

    def build_path(self, identifier: str | int | None = None) -> str:
        if not self.operation.takes_id:
            return self.path_template
        if identifier is None:
            raise ValueError(f"{self.name} requires an identifier")
        return self.path_template.replace("{" + ID_PARAM + "}", str(identifier))


def build_path_template(route_prefix: str, resource: str, operation: CrudOperation) -> str:
    parts = [normalize_prefix(route_prefix), resource]
    if operation.takes_id:
        parts.append("{" + ID_PARAM + "}")
    if operation.suffix:
        parts.append(operation.suffix)
    return "/".join(parts) if parts[0] else "/" + "/".join(parts[1:])


def plan_routes(entity: EntityRegistration, route_prefix: str) -> tuple[RouteDescriptor, ...]:
    """Deterministic, order-stable descriptors for every enabled action."""
    descriptors: list[RouteDescriptor] = []
    for action in CRUD_ACTION_ORDER:
        if not entity.enables(action):
            continue
        operation = CrudOperation.for_action(action)
        capability = capability_for(entity, action)
        descriptors.append(
            RouteDescriptor(
                method=operation.method,
                path_template=build_path_template(route_prefix, capability.resource, operation),
                operation=operation,
                resource=capability.resource,
                action=capability.action,
            )
        )
    return tuple(descriptors)


def mount_order(descriptors: tuple[RouteDescriptor, ...] | list[RouteDescriptor]) -> list[RouteDescriptor]:
    """Descriptors reordered so literal paths win over ``{id}`` placeholders.

    Routers that match in registration order would otherwise send
    ``GET /admin/users/new`` to the ``show`` handler.
    """
    return sorted(descriptors, key=lambda descriptor: descriptor.operation is not CrudOperation.NEW)
