from __future__ import annotations

from typing import Callable

from fastapi import Depends, Request

from .auth.context import AuthContext, Principal
from .auth.rbac_contract import Capability, validate_capability_part
from .errors import InternalError


def get_admin_kit(request: Request):
    kit = getattr(request.app.state, "adminkit", None)
    if kit is None:
        raise InternalError("AdminKit is not mounted on this application")
    return kit


async def get_auth_context(
    request: Request,
    kit=Depends(get_admin_kit),
) -> AuthContext:
    return await kit.resolve_auth_context(request)


async def get_current_principal(
    context: AuthContext = Depends(get_auth_context),
) -> Principal | None:
    return context.current_principal()


def require_capability(resource: str, action: str) -> Callable:
    """
    Guard a host route with an explicit (resource, action) capability.

    Runs the same precedence as the middleware (bypass role, unregistered
    policy, role grants) and raises 401/403 through the AppError handler.

    Args:
        resource: Resource identifier, e.g. ``"reports"``
        action: Action name, e.g. ``"export"``

    Returns:
        Dependency resolving to the allowed principal (``None`` only when
        authentication is disabled)
    """
    validate_capability_part("resource", resource)
    validate_capability_part("action", action)
    capability = Capability(resource, action)

    async def dependency(
        request: Request,
        kit=Depends(get_admin_kit),
    ) -> Principal | None:
        return await kit.enforce(request, capability)

    return dependency
