"""
Path Classifier - maps (HTTP method, URL path) to a (resource, action) pair.

Classification is purely shape-based and never consults a registry, so paths
belonging to entities that were never registered (or to host-defined custom
routes) still get a best-effort classification.

Shapes, relative to the route prefix:

    ""                    -> dashboard.index (any method)
    /{resource}           -> index (GET) | create (POST)
    /{resource}/new       -> new
    /{resource}/{id}      -> show (GET) | update (POST)
    /{resource}/{id}/edit -> edit

PUT/PATCH on any resource path classify as ``update`` and DELETE as
``delete``. Anything else is unclassified (``None``).
"""
from __future__ import annotations

import re
from typing import Callable

from .rbac_contract import (
    DASHBOARD_CAPABILITY,
    EDIT_SEGMENT,
    NEW_SEGMENT,
    Capability,
    CrudAction,
    is_numeric_segment,
)

IdentifierMatcher = Callable[[str], bool]

_UUID_PATTERN = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\Z"
)


def normalize_prefix(route_prefix: str) -> str:
    """``"admin/"`` -> ``"/admin"``; ``"/"`` and ``""`` -> ``""``."""
    stripped = (route_prefix or "").strip().strip("/")
    return f"/{stripped}" if stripped else ""


def is_numeric_or_uuid_segment(segment: str) -> bool:
    return is_numeric_segment(segment) or bool(_UUID_PATTERN.match(segment))


def strip_prefix(path: str, route_prefix: str) -> str | None:
    """Remove ``route_prefix`` from ``path`` on a segment boundary.

    Returns ``None`` when ``path`` does not live under the prefix.
    """
    if not route_prefix:
        return path
    if path == route_prefix:
        return ""
    if path.startswith(route_prefix + "/"):
        return path[len(route_prefix):]
    return None


class PathClassifier:
    """Stateless shape classifier bound to a route prefix."""

    def __init__(
        self,
        route_prefix: str = "/admin",
        *,
        identifier_matcher: IdentifierMatcher = is_numeric_segment,
    ) -> None:
        self.route_prefix = normalize_prefix(route_prefix)
        self._is_identifier = identifier_matcher

    def classify(self, method: str, path: str) -> Capability | None:
        if not isinstance(method, str) or not isinstance(path, str):
            return None
        method = method.strip().upper()
        if not method:
            return None

        remainder = strip_prefix(path, self.route_prefix)
        if remainder is None:
            # Outside the prefix: classify the whole path on a best-effort basis.
            remainder = path
        if not remainder:
            return DASHBOARD_CAPABILITY

        segments = [segment for segment in remainder.split("/") if segment]
        if not segments:
            return DASHBOARD_CAPABILITY

        resource = segments[0]
        action = self._action_from_shape(method, segments)

        if method in ("PUT", "PATCH"):
            action = CrudAction.UPDATE
        elif method == "DELETE":
            action = CrudAction.DELETE

        if action is None:
            return None
        return Capability(resource, action.value)

    def _action_from_shape(self, method: str, segments: list[str]) -> CrudAction | None:
        count = len(segments)
        if count == 1:
            return CrudAction.CREATE if method == "POST" else CrudAction.INDEX
        if count == 2:
            if segments[1] == NEW_SEGMENT:
                return CrudAction.NEW
            if self._is_identifier(segments[1]):
                return CrudAction.UPDATE if method == "POST" else CrudAction.SHOW
            return None
        if count == 3 and self._is_identifier(segments[1]) and segments[2] == EDIT_SEGMENT:
            return CrudAction.EDIT
        return None


def classify(method: str, path: str, route_prefix: str = "/admin") -> Capability | None:
    """Classify a request against the default (numeric identifier) shapes."""
    return PathClassifier(route_prefix).classify(method, path)
