"""
Authentication Context - who is making this request.

The context is resolved once per request by an :class:`Authenticator`. That
lookup is the only I/O on the authorization path; everything downstream
(classification, decision) works on the resolved, immutable context.

SECURITY INVARIANTS:
- An inactive principal is indistinguishable from an anonymous request.
- A locked-out principal is never represented as authenticated.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Protocol

from ..security.token_inspection import (
    ExpiredTokenError,
    InvalidTokenError,
    validate_session_token,
)

if TYPE_CHECKING:
    from starlette.requests import Request

    from ..application.auth_rate_limit import LoginThrottle
    from ..config import Settings

logger = logging.getLogger("adminkit.auth")


@dataclass(frozen=True)
class Principal:
    id: str
    name: str
    email: str
    is_active: bool = True
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_role(self, name: str) -> bool:
        return name in self.roles


class AuthContext:
    """Resolved authentication state for one request."""

    def __init__(self, principal: Principal | None = None) -> None:
        if principal is not None and not principal.is_active:
            logger.info("Inactive principal treated as anonymous principal_id=%s", principal.id)
            principal = None
        self._principal = principal

    @classmethod
    def anonymous(cls) -> "AuthContext":
        return cls(None)

    def is_authenticated(self) -> bool:
        return self._principal is not None

    def current_principal(self) -> Principal | None:
        return self._principal

    def has_role(self, name: str) -> bool:
        return self._principal is not None and self._principal.has_role(name)

    def has_any_role(self, names: Iterable[str]) -> bool:
        return any(self.has_role(name) for name in names)

    def has_all_roles(self, names: Iterable[str]) -> bool:
        if self._principal is None:
            return False
        return all(self.has_role(name) for name in names)

    def __repr__(self) -> str:
        principal_id = self._principal.id if self._principal else None
        return f"AuthContext(principal_id={principal_id!r})"


# ============================================================================
# PORTS - supplied by the host
# ============================================================================

class PrincipalLoader(Protocol):
    async def load_principal(self, principal_id: str) -> Principal | None:
        ...


class CredentialVerifier(Protocol):
    async def verify_credentials(self, email: str, password: str) -> Principal | None:
        ...


class Authenticator(Protocol):
    async def authenticate(self, request: "Request") -> AuthContext:
        ...


# ============================================================================
# DEFAULT AUTHENTICATOR - signed session token in cookie or bearer header
# ============================================================================

class TokenAuthenticator:
    """Resolves the principal from an admin session token.

    The token is read from the session cookie first, then from an
    ``Authorization: Bearer`` header. Any token problem resolves to an
    anonymous context; it is never raised to the caller.
    """

    def __init__(
        self,
        settings: "Settings",
        loader: PrincipalLoader,
        *,
        throttle: "LoginThrottle | None" = None,
    ) -> None:
        self.settings = settings
        self.loader = loader
        self.throttle = throttle

    def _extract_token(self, request: "Request") -> str | None:
        token = request.cookies.get(self.settings.session_cookie_name)
        if token:
            return token
        authorization = request.headers.get("authorization", "")
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return None

    async def authenticate(self, request: "Request") -> AuthContext:
        token = self._extract_token(request)
        if token is None:
            return AuthContext.anonymous()

        try:
            principal_id = validate_session_token(token, self.settings)
        except ExpiredTokenError:
            logger.info("Expired admin session token path=%s", request.url.path)
            return AuthContext.anonymous()
        except InvalidTokenError:
            logger.warning("Invalid admin session token path=%s", request.url.path)
            return AuthContext.anonymous()

        principal = await self.loader.load_principal(principal_id)
        if principal is None:
            logger.info("Session principal not found principal_id=%s", principal_id)
            return AuthContext.anonymous()

        if self.throttle is not None and await self.throttle.is_locked(principal.email):
            logger.warning("Locked-out principal treated as anonymous principal_id=%s", principal.id)
            return AuthContext.anonymous()

        return AuthContext(principal)
