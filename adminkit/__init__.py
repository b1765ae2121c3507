from .auth.classifier import PathClassifier, classify
from .auth.context import AuthContext, Principal, TokenAuthenticator
from .auth.decision import AccessDecision, AccessDecisionEngine, Decision, DecisionReason
from .auth.rbac_contract import Capability, CrudAction
from .auth.registry import PermissionRegistry
from .config import Settings, get_settings
from .kit import AdminKit, CrudHandler

__all__ = [
    "AccessDecision",
    "AccessDecisionEngine",
    "AdminKit",
    "AuthContext",
    "Capability",
    "CrudAction",
    "CrudHandler",
    "Decision",
    "DecisionReason",
    "PathClassifier",
    "PermissionRegistry",
    "Principal",
    "Settings",
    "TokenAuthenticator",
    "classify",
    "get_settings",
]
