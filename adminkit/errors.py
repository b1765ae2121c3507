from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(AppError):
    code = "AUTH_ERROR"
    message = "Authentication failed"
    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenError(AppError):
    code = "PERMISSION_DENIED"
    message = "Access denied"
    status_code = status.HTTP_403_FORBIDDEN


class TooManyAttemptsError(AppError):
    code = "TOO_MANY_ATTEMPTS"
    message = "Too many attempts, try again later"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


# ============================================================================
# CONFIGURATION ERRORS - STARTUP ONLY
# ============================================================================
# Raised while the host wires entities, roles and permissions together.
# None of these are ever raised on the request path.


class ConfigurationError(Exception):
    """Inconsistent admin configuration. Fatal at startup."""


class DuplicateCodeError(ConfigurationError):
    """A permission code was registered twice."""


class DuplicateCapabilityError(ConfigurationError):
    """Two permission codes were registered for the same (resource, action) pair."""


class DuplicateRoleError(ConfigurationError):
    """A role name was defined twice."""


class UnknownPermissionError(ConfigurationError):
    """A grant referenced a permission code that is not registered."""


class UnknownRoleError(ConfigurationError):
    """A grant referenced a role that is not defined."""


class InvalidPermissionError(ConfigurationError):
    """A permission code, resource or action is malformed or uses a wildcard."""


class RegistryFrozenError(ConfigurationError):
    """The registry was mutated after it was frozen for request handling."""


class EntityConfigurationError(ConfigurationError):
    """An entity registration failed validation."""
