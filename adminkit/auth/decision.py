"""
Access Decision Engine - the single authorization checkpoint.

Given the resolved principal and the request line, returns ALLOW or DENY.
Rules are evaluated in order and the first match wins:

    1. public path (login, logout, assets, host extras)   -> ALLOW
    2. no authenticated principal                         -> DENY
    3. principal holds the bypass role                    -> ALLOW
    4. path is unclassified                               -> unclassified_policy
    5. (resource, action) not in the registry             -> unregistered_policy
       otherwise ALLOW iff a principal role grants it, else DENY

Both policies default to ALLOW; hosts that want a closed posture set them to
DENY. An unregistered dashboard stays reachable for any authenticated
principal under either policy.

The engine is pure: no I/O, no logging, no exceptions for expected outcomes.
DENY is a value, never raised. It is safe to call from any number of
concurrent requests once the registry is frozen.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from .classifier import PathClassifier
from .context import Principal
from .rbac_contract import DASHBOARD_CAPABILITY, DEFAULT_BYPASS_ROLE, Capability
from .registry import PermissionRegistry


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class DecisionReason(str, Enum):
    PUBLIC_PATH = "public_path"
    UNAUTHENTICATED = "unauthenticated"
    BYPASS_ROLE = "bypass_role"
    UNCLASSIFIED = "unclassified"
    UNREGISTERED = "unregistered"
    GRANTED = "granted"
    NOT_GRANTED = "not_granted"


@dataclass(frozen=True)
class AccessDecision:
    decision: Decision
    reason: DecisionReason
    capability: Capability | None = None

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


def _normalize_public_path(path: str) -> str:
    return path.rstrip("/") or "/"


class AccessDecisionEngine:
    def __init__(
        self,
        registry: PermissionRegistry,
        classifier: PathClassifier,
        *,
        public_paths: Iterable[str] = (),
        bypass_role: str = DEFAULT_BYPASS_ROLE,
        unclassified_policy: Decision = Decision.ALLOW,
        unregistered_policy: Decision = Decision.ALLOW,
    ) -> None:
        self.registry = registry
        self.classifier = classifier
        self.public_paths = tuple(_normalize_public_path(path) for path in public_paths)
        self.bypass_role = bypass_role
        self.unclassified_policy = Decision(unclassified_policy)
        self.unregistered_policy = Decision(unregistered_policy)

    def is_public_path(self, path: str) -> bool:
        """Prefix match on segment boundaries: ``/admin/login`` covers
        ``/admin/login`` and ``/admin/login/sso`` but not ``/admin/loginx``."""
        if not isinstance(path, str):
            return False
        for public in self.public_paths:
            if public == "/":
                return True
            if path == public or path.startswith(public + "/"):
                return True
        return False

    def evaluate(self, principal: Principal | None, method: str, path: str) -> AccessDecision:
        if self.is_public_path(path):
            return AccessDecision(Decision.ALLOW, DecisionReason.PUBLIC_PATH)

        if principal is None or not principal.is_active:
            return AccessDecision(Decision.DENY, DecisionReason.UNAUTHENTICATED)

        if principal.has_role(self.bypass_role):
            return AccessDecision(Decision.ALLOW, DecisionReason.BYPASS_ROLE)

        capability = self.classifier.classify(method, path)
        if capability is None:
            return AccessDecision(self.unclassified_policy, DecisionReason.UNCLASSIFIED)

        return self._evaluate_capability(principal, capability)

    def decide(self, principal: Principal | None, method: str, path: str) -> Decision:
        return self.evaluate(principal, method, path).decision

    def check(self, principal: Principal | None, capability: Capability) -> AccessDecision:
        """Evaluate an already-known capability (generated routes, custom routes).

        Skips the public-path and classification steps; everything else
        follows the same precedence as :meth:`evaluate`.
        """
        if principal is None or not principal.is_active:
            return AccessDecision(Decision.DENY, DecisionReason.UNAUTHENTICATED, capability)

        if principal.has_role(self.bypass_role):
            return AccessDecision(Decision.ALLOW, DecisionReason.BYPASS_ROLE, capability)

        return self._evaluate_capability(principal, capability)

    def _evaluate_capability(self, principal: Principal, capability: Capability) -> AccessDecision:
        if not self.registry.is_registered(capability.resource, capability.action):
            policy = Decision.ALLOW if capability == DASHBOARD_CAPABILITY else self.unregistered_policy
            return AccessDecision(policy, DecisionReason.UNREGISTERED, capability)

        granting = self.registry.roles_granting(capability.resource, capability.action)
        if not granting.isdisjoint(principal.roles):
            return AccessDecision(Decision.ALLOW, DecisionReason.GRANTED, capability)
        return AccessDecision(Decision.DENY, DecisionReason.NOT_GRANTED, capability)
