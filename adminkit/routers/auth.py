from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Response, status
from fastapi.responses import RedirectResponse

from ..application.auth_rate_limit import LOCKOUT_MESSAGE
from ..auth.rbac_contract import LOGIN_SEGMENT, LOGOUT_SEGMENT
from ..errors import AuthError, TooManyAttemptsError
from ..schemas.auth import LoginRequest, PrincipalResponse, SessionResponse
from ..security.token_inspection import issue_session_token

if TYPE_CHECKING:
    from ..kit import AdminKit

logger = logging.getLogger("adminkit.auth")

INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


def build_auth_router(kit: "AdminKit") -> APIRouter:
    settings = kit.settings
    router = APIRouter(prefix=settings.route_prefix, tags=["adminkit-auth"])
    cookie_path = settings.route_prefix or "/"

    @router.post(f"/{LOGIN_SEGMENT}", response_model=SessionResponse)
    async def login(payload: LoginRequest, response: Response) -> SessionResponse:
        verifier = kit.credential_verifier
        if verifier is None:
            raise AuthError("Password login is not enabled")

        email = payload.email.strip().lower()
        throttle = kit.login_throttle
        if await throttle.is_locked(email):
            logger.warning("Login rejected while locked out")
            raise TooManyAttemptsError(LOCKOUT_MESSAGE)

        principal = await verifier.verify_credentials(email, payload.password)
        if principal is None or not principal.is_active:
            await throttle.record_failure(email)
            logger.info("Failed admin login attempt")
            raise AuthError(INVALID_CREDENTIALS_MESSAGE)

        await throttle.reset(email)
        token = issue_session_token(principal.id, settings)
        max_age = settings.session_ttl_minutes * 60
        response.set_cookie(
            settings.session_cookie_name,
            token,
            max_age=max_age,
            httponly=True,
            secure=settings.session_cookie_secure,
            samesite="lax",
            path=cookie_path,
        )
        logger.info("Admin login principal_id=%s", principal.id)
        return SessionResponse(
            access_token=token,
            expires_in=max_age,
            principal=PrincipalResponse(
                id=principal.id,
                name=principal.name,
                email=principal.email,
                roles=sorted(principal.roles),
            ),
        )

    @router.get(f"/{LOGOUT_SEGMENT}")
    async def logout() -> RedirectResponse:
        response = RedirectResponse(settings.login_path, status_code=status.HTTP_303_SEE_OTHER)
        response.delete_cookie(settings.session_cookie_name, path=cookie_path)
        return response

    return router
