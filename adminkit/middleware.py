"""
Access-control middleware for everything under the admin route prefix.

Per request: public paths pass untouched; otherwise the principal is resolved
once, stored on ``request.state.admin_auth``, and the decision engine is
consulted. Requests outside the prefix are never inspected.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .auth.classifier import strip_prefix
from .errors import AuthError, ForbiddenError, error_payload

if TYPE_CHECKING:
    from .kit import AdminKit

logger = logging.getLogger("adminkit.rbac")

AUTH_STATE_ATTR = "admin_auth"


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def unauthenticated_response(request: Request, login_path: str):
    if request.method in ("GET", "HEAD") and wants_html(request):
        return RedirectResponse(login_path, status_code=status.HTTP_302_FOUND)
    return JSONResponse(
        status_code=AuthError.status_code,
        content=error_payload(AuthError.code, AuthError.message),
    )


def forbidden_response() -> JSONResponse:
    # fixed body: never reveals which capability was missing
    return JSONResponse(
        status_code=ForbiddenError.status_code,
        content=error_payload(ForbiddenError.code, ForbiddenError.message),
    )


class AccessControlMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, kit: "AdminKit"):
        super().__init__(app)
        self.kit = kit

    async def dispatch(self, request: Request, call_next):
        settings = self.kit.settings
        path = request.url.path

        if settings.route_prefix and strip_prefix(path, settings.route_prefix) is None:
            return await call_next(request)

        engine = self.kit.engine
        if engine.is_public_path(path):
            return await call_next(request)

        context = await self.kit.authenticator.authenticate(request)
        setattr(request.state, AUTH_STATE_ATTR, context)
        principal = context.current_principal()

        if principal is None and settings.auth_required:
            logger.info("Unauthenticated admin request method=%s path=%s", request.method, path)
            return unauthenticated_response(request, settings.login_path)

        if settings.rbac_enabled:
            decision = engine.evaluate(principal, request.method, path)
            if not decision.allowed:
                await self.kit.report_denial(request, principal, decision)
                return forbidden_response()

        return await call_next(request)
