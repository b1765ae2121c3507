from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import jwt

from ..config import Settings
from ..errors import ConfigurationError

SESSION_TOKEN_TYPE = "adminkit_session"


class InvalidTokenError(Exception):
    """Raised when a token cannot be parsed or is malformed."""


class ExpiredTokenError(Exception):
    """Raised when a token has expired."""


def _require_secret(settings: Settings) -> str:
    if not settings.secret_key:
        raise ConfigurationError("secret_key must be set to issue or validate admin session tokens")
    return settings.secret_key


def issue_session_token(
    principal_id: str,
    settings: Settings,
    *,
    now: datetime | None = None,
) -> str:
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(principal_id),
        "typ": SESSION_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.session_ttl_minutes),
    }
    return jwt.encode(payload, _require_secret(settings), algorithm=settings.algorithm)


def _parse_token_payload(token: str, settings: Settings) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _require_secret(settings), algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise ExpiredTokenError from exc
    except jwt.InvalidTokenError as exc:
        raise InvalidTokenError from exc


def validate_session_token(token: str, settings: Settings) -> str:
    """Return the principal id carried by a valid session token."""
    if not token or not isinstance(token, str):
        raise InvalidTokenError()

    payload = _parse_token_payload(token, settings)

    if payload.get("typ") != SESSION_TOKEN_TYPE:
        raise InvalidTokenError()

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise InvalidTokenError()

    return subject
