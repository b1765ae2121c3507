import logging
import uuid
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..auth.context import Principal
from ..crud.admin_user import AdminUserRepository
from ..crud.role import RoleRepository
from ..models.admin_user import AdminUser

logger = logging.getLogger("adminkit.auth")

# (plain password, stored hash) -> matches; hashing itself is the host's concern
PasswordVerifier = Callable[[str, str], bool]


async def _to_principal(session: AsyncSession, user: AdminUser) -> Principal:
    role_names = await RoleRepository(session).get_user_role_names(user.id)
    return Principal(
        id=str(user.id),
        name=user.name,
        email=user.email,
        is_active=user.is_active,
        roles=frozenset(role_names),
    )


class SqlPrincipalLoader:
    """Loads principals from ``admin_users``; inactive users load as ``None``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_principal(self, principal_id: str) -> Principal | None:
        try:
            user_id = uuid.UUID(principal_id)
        except (TypeError, ValueError):
            return None

        async with self.session_factory() as session:
            user = await AdminUserRepository(session).get_by_id(user_id)
            if user is None:
                return None
            if not user.is_active:
                logger.info("Inactive admin user rejected principal_id=%s", principal_id)
                return None
            return await _to_principal(session, user)


class SqlCredentialVerifier:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        verify_password: PasswordVerifier,
    ):
        self.session_factory = session_factory
        self.verify_password = verify_password

    async def verify_credentials(self, email: str, password: str) -> Principal | None:
        if not email or not password:
            return None

        async with self.session_factory() as session:
            repo = AdminUserRepository(session)
            user = await repo.get_by_email(email)
            if user is None or not self.verify_password(password, user.password_hash):
                return None
            if not user.is_active:
                logger.info("Login attempt for inactive admin user principal_id=%s", user.id)
                return None

            principal = await _to_principal(session, user)
            await repo.touch_last_login(user)
            await session.commit()
            return principal
