"""Shared test fixtures and configuration."""
import os

import pytest

from adminkit.auth.context import Principal
from adminkit.auth.registry import PermissionRegistry
from adminkit.config import Settings, reset_settings

# Keep host environment variables from leaking into Settings.from_env() tests
for _name in [name for name in os.environ if name.startswith("ADMINKIT_")]:
    del os.environ[_name]

TEST_SECRET = "test-secret-key-with-enough-length"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_cached_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return Settings(secret_key=TEST_SECRET, session_cookie_secure=False)


@pytest.fixture
def registry() -> PermissionRegistry:
    return PermissionRegistry()


def _make_principal(
    principal_id: str = "1",
    *,
    roles=(),
    is_active: bool = True,
    email: str = "editor@example.com",
) -> Principal:
    return Principal(
        id=principal_id,
        name=f"Principal {principal_id}",
        email=email,
        is_active=is_active,
        roles=frozenset(roles),
    )


@pytest.fixture
def make_principal():
    return _make_principal
