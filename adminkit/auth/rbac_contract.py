"""
RBAC Contract - the vocabulary shared by the classifier, the registry and the
route planner.

Every generated admin route maps to exactly one (resource, action) pair built
from the names defined here. The classifier produces these pairs from raw
request paths and the planner produces them from entity registrations; both
MUST draw from this module so the two never drift apart.

SECURITY:
- No wildcard permissions. "users.*" or "*" are rejected at registration.
- The bypass role is an explicit, documented escape hatch.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Final

from ..errors import InvalidPermissionError


# ============================================================================
# CRUD ACTIONS - CANONICAL ORDER
# ============================================================================

class CrudAction(str, Enum):
    """
    Actions an entity can enable.

    NEW and CREATE are distinct (form vs submit), as are EDIT and UPDATE.
    """
    INDEX = "index"
    SHOW = "show"
    NEW = "new"
    CREATE = "create"
    EDIT = "edit"
    UPDATE = "update"
    DELETE = "delete"


# Route emission order. Hosts enumerating routes rely on this being stable.
CRUD_ACTION_ORDER: Final[tuple[CrudAction, ...]] = (
    CrudAction.INDEX,
    CrudAction.SHOW,
    CrudAction.NEW,
    CrudAction.CREATE,
    CrudAction.EDIT,
    CrudAction.UPDATE,
    CrudAction.DELETE,
)

ALL_CRUD_ACTIONS: Final[frozenset[str]] = frozenset(action.value for action in CrudAction)


# ============================================================================
# RESERVED NAMES
# ============================================================================

DASHBOARD_RESOURCE: Final[str] = "dashboard"
DASHBOARD_ACTION: Final[str] = CrudAction.INDEX.value

DEFAULT_BYPASS_ROLE: Final[str] = "super_admin"

# Public endpoints, relative to the route prefix.
LOGIN_SEGMENT: Final[str] = "login"
LOGOUT_SEGMENT: Final[str] = "logout"
ASSETS_SEGMENT: Final[str] = "assets"
PUBLIC_SEGMENTS: Final[tuple[str, ...]] = (LOGIN_SEGMENT, LOGOUT_SEGMENT, ASSETS_SEGMENT)

# Literal path suffixes used by the form routes.
NEW_SEGMENT: Final[str] = "new"
EDIT_SEGMENT: Final[str] = "edit"


# ============================================================================
# CAPABILITY
# ============================================================================

@dataclass(frozen=True)
class Capability:
    """A (resource, action) pair. The unit the decision engine reasons about."""

    resource: str
    action: str

    @property
    def code(self) -> str:
        return permission_code(self.resource, self.action)

    def __str__(self) -> str:
        return self.code


DASHBOARD_CAPABILITY: Final[Capability] = Capability(DASHBOARD_RESOURCE, DASHBOARD_ACTION)


def permission_code(resource: str, action: str) -> str:
    """Conventional permission code for a pair: ``resource.action``."""
    return f"{resource}.{action}"


# ============================================================================
# VALIDATION - FAIL-FAST AT REGISTRATION
# ============================================================================

_NAME_PATTERN = re.compile(r"^[a-z0-9_][a-z0-9_\-.]*$")


def validate_permission_code(code: str) -> None:
    """
    Validate a permission code before it enters the registry.

    HARD INVARIANT: No wildcard permissions. Every permission must be explicit.

    Raises:
        InvalidPermissionError: If the code is empty, contains a wildcard or
            uses characters outside ``[a-z0-9_-.]``.
    """
    if not isinstance(code, str) or not code:
        raise InvalidPermissionError("Permission code must be a non-empty string")

    if "*" in code:
        raise InvalidPermissionError(
            f"SECURITY VIOLATION: Wildcard permission '{code}' is FORBIDDEN. "
            "All permissions must be explicit."
        )

    if not _NAME_PATTERN.match(code):
        raise InvalidPermissionError(f"Invalid permission code '{code}'")


def validate_capability_part(kind: str, value: str) -> None:
    """Validate the resource or action half of a capability."""
    if not isinstance(value, str) or not value:
        raise InvalidPermissionError(f"Permission {kind} must be a non-empty string")
    if "*" in value:
        raise InvalidPermissionError(
            f"SECURITY VIOLATION: Wildcard {kind} '{value}' is FORBIDDEN."
        )
    if "/" in value:
        raise InvalidPermissionError(f"Permission {kind} '{value}' cannot contain '/'")


def is_numeric_segment(segment: str) -> bool:
    """True when every character is an ASCII decimal digit."""
    return bool(segment) and segment.isascii() and segment.isdigit()
