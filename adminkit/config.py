import json
import os
import threading
from typing import Literal
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .auth.rbac_contract import DEFAULT_BYPASS_ROLE, PUBLIC_SEGMENTS


ENV_PREFIX = "ADMINKIT_"

Policy = Literal["allow", "deny"]

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class Settings(BaseModel):
    brand_name: str = Field(default="AdminKit")
    route_prefix: str = Field(default="/admin")
    public_paths: list[str] = Field(default_factory=list)
    bypass_role: str = Field(default=DEFAULT_BYPASS_ROLE)
    pagination_limit: int = Field(default=20, gt=0)
    auth_required: bool = Field(default=True)
    rbac_enabled: bool = Field(default=True)
    unclassified_policy: Policy = Field(default="allow")
    unregistered_policy: Policy = Field(default="allow")
    allow_uuid_identifiers: bool = Field(default=False)
    secret_key: str | None = Field(default=None)
    algorithm: str = Field(default="HS256")
    session_ttl_minutes: int = Field(default=120, gt=0)
    session_cookie_name: str = Field(default="adminkit_session")
    session_cookie_secure: bool = Field(default=True)
    login_max_attempts: int = Field(default=5, gt=0)
    login_lockout_seconds: int = Field(default=900, gt=0)
    database_url: str = Field(default="")
    redis_url: str | None = Field(default=None)
    log_level: str | None = Field(default=None)
    debug: bool = Field(default=False)

    @field_validator("route_prefix")
    @classmethod
    def _normalize_route_prefix(cls, value: str) -> str:
        stripped = value.strip().strip("/")
        if any(part == "" for part in stripped.split("/")) and stripped:
            raise ValueError("route_prefix must not contain empty segments")
        return f"/{stripped}" if stripped else ""

    @field_validator("public_paths")
    @classmethod
    def _normalize_public_paths(cls, value: list[str]) -> list[str]:
        normalized: list[str] = []
        for path in value:
            path = path.strip()
            if not path.startswith("/"):
                raise ValueError(f"public path '{path}' must start with '/'")
            normalized.append(path.rstrip("/") or "/")
        return normalized

    @field_validator("database_url")
    @classmethod
    def _validate_database_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return value
        parsed = urlparse(value)
        if parsed.scheme != "postgresql+asyncpg":
            raise ValueError("database_url must start with 'postgresql+asyncpg://'")
        if not parsed.hostname:
            raise ValueError("database_url must include hostname")
        return value

    @property
    def effective_public_paths(self) -> tuple[str, ...]:
        """Built-in login/logout/assets paths under the prefix, then host extras."""
        builtin = [f"{self.route_prefix}/{segment}" for segment in PUBLIC_SEGMENTS]
        extras = [path for path in self.public_paths if path not in builtin]
        return tuple(builtin + extras)

    @property
    def login_path(self) -> str:
        return f"{self.route_prefix}/login"

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv()
        values: dict[str, object] = {}

        for name in (
            "brand_name",
            "route_prefix",
            "bypass_role",
            "unclassified_policy",
            "unregistered_policy",
            "secret_key",
            "algorithm",
            "session_cookie_name",
            "database_url",
            "redis_url",
            "log_level",
        ):
            raw = _getenv(name)
            if raw is not None:
                values[name] = raw

        for name in (
            "pagination_limit",
            "session_ttl_minutes",
            "login_max_attempts",
            "login_lockout_seconds",
        ):
            raw = _getenv(name)
            if raw is not None:
                values[name] = _parse_int(name, raw)

        for name in (
            "auth_required",
            "rbac_enabled",
            "allow_uuid_identifiers",
            "session_cookie_secure",
            "debug",
        ):
            raw = _getenv(name)
            if raw is not None:
                values[name] = _parse_bool(name, raw)

        raw_public_paths = _getenv("public_paths")
        if raw_public_paths is not None:
            values["public_paths"] = _parse_list("public_paths", raw_public_paths)

        for policy_name in ("unclassified_policy", "unregistered_policy"):
            policy = values.get(policy_name)
            if isinstance(policy, str):
                policy = policy.lower()
                if policy not in {"allow", "deny"}:
                    raise ValueError(f"{_env_name(policy_name)} must be 'allow' or 'deny'")
                values[policy_name] = policy

        return cls(**values)


def _env_name(field_name: str) -> str:
    return f"{ENV_PREFIX}{field_name.upper()}"


def _getenv(field_name: str) -> str | None:
    raw = os.getenv(_env_name(field_name))
    if raw is None:
        return None
    raw = raw.strip()
    return raw or None


def _parse_int(field_name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{_env_name(field_name)} must be an integer") from exc


def _parse_bool(field_name: str, raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{_env_name(field_name)} must be a boolean value")


def _parse_list(field_name: str, raw: str) -> list[str]:
    # Support both CSV format and JSON array format
    if raw.startswith("["):
        try:
            parsed_list = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f"{_env_name(field_name)} JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError(f"{_env_name(field_name)} JSON must be an array")
        return [item.strip() for item in parsed_list if isinstance(item, str) and item.strip()]
    return [item.strip() for item in raw.split(",") if item.strip()]


# Settings are built lazily so importing adminkit never reads the environment.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get the process-wide settings, creating them from the environment once.

    Uses double-checked locking so concurrent startup paths never build two
    instances.

    Raises:
        ValueError: If an ``ADMINKIT_*`` variable is invalid.
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings (tests and hot reload)."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None
