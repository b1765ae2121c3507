"""
AdminKit - the facade a host application configures and mounts.

Configuration happens in one phase at startup: register entities, widgets and
custom routes, sync or load permissions, then :meth:`AdminKit.mount`. Mounting
freezes the permission registry and builds the decision engine exactly once;
from then on every request only reads shared state.
"""
from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from fastapi import APIRouter, Depends, FastAPI, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .admin.capabilities import register_entity_permissions
from .admin.dashboard import DashboardWidget, build_widget
from .admin.entities import EntityRegistration, build_entity_registration
from .admin.routes import CrudOperation, RouteDescriptor, mount_order, plan_routes
from .application.auth_rate_limit import InMemoryLoginThrottle, LoginThrottle
from .infra.redis import RedisLoginThrottle, get_async_redis_client
from .auth.classifier import PathClassifier, is_numeric_or_uuid_segment
from .auth.context import (
    AuthContext,
    Authenticator,
    CredentialVerifier,
    Principal,
    PrincipalLoader,
    TokenAuthenticator,
)
from .auth.decision import AccessDecision, AccessDecisionEngine, Decision
from .auth.rbac_contract import (
    DASHBOARD_CAPABILITY,
    DASHBOARD_RESOURCE,
    PUBLIC_SEGMENTS,
    Capability,
    is_numeric_segment,
)
from .auth.registry import PermissionRegistry
from .config import Settings, get_settings
from .errors import AuthError, ConfigurationError, EntityConfigurationError, ForbiddenError
from .handlers import install_exception_handlers
from .middleware import AUTH_STATE_ATTR, AccessControlMiddleware
from .observability import configure_logging
from .routers.auth import build_auth_router
from .schemas.dashboard import DashboardResponse
from .services.registry_loader import PermissionSyncService, RegistryLoader

logger = logging.getLogger("adminkit.kit")
logger_rbac = logging.getLogger("adminkit.rbac")

DeniedHook = Callable[[Request, "Principal | None", AccessDecision], Awaitable[None]]


def build_login_throttle(settings: Settings) -> LoginThrottle:
    """Redis-backed lockout when ``redis_url`` is set, per-process otherwise."""
    if settings.redis_url:
        return RedisLoginThrottle(
            get_async_redis_client(settings.redis_url),
            max_attempts=settings.login_max_attempts,
            lockout_seconds=settings.login_lockout_seconds,
        )
    return InMemoryLoginThrottle(
        max_attempts=settings.login_max_attempts,
        lockout_seconds=settings.login_lockout_seconds,
    )


class CrudHandler(Protocol):
    """Host-side implementation of the generated CRUD endpoints.

    Persistence and rendering live here; adminkit only routes and guards.
    """

    async def index(self, request: Request, entity: EntityRegistration) -> Any:
        ...

    async def show(self, request: Request, entity: EntityRegistration, identifier: str) -> Any:
        ...

    async def new(self, request: Request, entity: EntityRegistration) -> Any:
        ...

    async def create(self, request: Request, entity: EntityRegistration) -> Any:
        ...

    async def edit(self, request: Request, entity: EntityRegistration, identifier: str) -> Any:
        ...

    async def update(self, request: Request, entity: EntityRegistration, identifier: str) -> Any:
        ...

    async def delete(self, request: Request, entity: EntityRegistration, identifier: str) -> Any:
        ...


_HANDLER_RESOLVERS: dict[CrudOperation, Callable[[CrudHandler], Callable[..., Awaitable[Any]]]] = {
    CrudOperation.INDEX: lambda handler: handler.index,
    CrudOperation.SHOW: lambda handler: handler.show,
    CrudOperation.NEW: lambda handler: handler.new,
    CrudOperation.CREATE: lambda handler: handler.create,
    CrudOperation.EDIT: lambda handler: handler.edit,
    CrudOperation.UPDATE: lambda handler: handler.update,
    CrudOperation.DELETE: lambda handler: handler.delete,
}


@dataclass(frozen=True)
class CustomRoute:
    method: str
    path: str
    endpoint: Callable[..., Any]
    name: str | None = None
    capability: Capability | None = None


class AdminKit:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        registry: PermissionRegistry | None = None,
        authenticator: Authenticator | None = None,
        principal_loader: PrincipalLoader | None = None,
        credential_verifier: CredentialVerifier | None = None,
        login_throttle: LoginThrottle | None = None,
        on_denied: DeniedHook | None = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else PermissionRegistry()
        self.credential_verifier = credential_verifier
        self.login_throttle = login_throttle or build_login_throttle(self.settings)
        if authenticator is None and principal_loader is not None:
            authenticator = TokenAuthenticator(
                self.settings, principal_loader, throttle=self.login_throttle
            )
        self._authenticator = authenticator
        self.on_denied = on_denied

        self._entities: dict[str, EntityRegistration] = {}
        self._widgets: dict[str, DashboardWidget] = {}
        self._custom_routes: list[CustomRoute] = []
        self._engine: AccessDecisionEngine | None = None
        self._engine_lock = threading.Lock()
        self._mounted = False

    # ------------------------------------------------------------------
    # Registration (startup only)
    # ------------------------------------------------------------------

    def add_entity(self, entity_type: type | str, **config: Any) -> "AdminKit":
        """Register a managed entity and the permissions its actions need.

        Raises:
            EntityConfigurationError: If the configuration is invalid, the
                resource is already registered, or it would shadow the
                dashboard or a public path.
        """
        self._ensure_configurable()
        config.setdefault("pagination", self.settings.pagination_limit)
        entity = build_entity_registration(entity_type, **config)

        resource = entity.resource
        if resource == DASHBOARD_RESOURCE or resource in PUBLIC_SEGMENTS:
            raise EntityConfigurationError(
                f"Entity '{entity.entity_type}' resolves to reserved resource '{resource}'"
            )
        existing = self._entities.get(resource)
        if existing is not None:
            raise EntityConfigurationError(
                f"Resource '{resource}' is already registered by '{existing.entity_type}'"
            )

        if self.registry.frozen:
            logger.debug("Registry frozen; permissions for resource=%s must already be loaded", resource)
        else:
            register_entity_permissions(self.registry, entity)

        self._entities[resource] = entity
        logger.debug("Registered entity resource=%s actions=%s", resource, [a.value for a in entity.actions])
        return self

    def add_dashboard_widget(self, name: str, **config: Any) -> "AdminKit":
        self._ensure_configurable()
        self._widgets[name] = build_widget(name, **config)
        return self

    def add_custom_route(
        self,
        method: str,
        path: str,
        endpoint: Callable[..., Any],
        *,
        name: str | None = None,
        capability: Capability | None = None,
    ) -> "AdminKit":
        """Mount ``endpoint`` at ``route_prefix + path``.

        Custom routes go through the access-control middleware like generated
        ones; ``capability`` adds an explicit check inside the route as well.
        """
        self._ensure_configurable()
        if not path.startswith("/"):
            raise ConfigurationError(f"Custom route path '{path}' must start with '/'")
        full_path = f"{self.settings.route_prefix}{path}"
        self._custom_routes.append(
            CustomRoute(
                method=method.strip().upper(),
                path=full_path,
                endpoint=endpoint,
                name=name,
                capability=capability,
            )
        )
        return self

    def _ensure_configurable(self) -> None:
        if self._mounted:
            raise ConfigurationError("AdminKit is already mounted; register everything at startup")

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def entities(self) -> tuple[EntityRegistration, ...]:
        return tuple(self._entities.values())

    def get_entity(self, resource: str) -> EntityRegistration | None:
        return self._entities.get(resource)

    @property
    def widgets(self) -> tuple[DashboardWidget, ...]:
        return tuple(self._widgets.values())

    @property
    def custom_routes(self) -> tuple[CustomRoute, ...]:
        return tuple(self._custom_routes)

    @property
    def routes(self) -> tuple[RouteDescriptor, ...]:
        """Descriptors of every registered entity, in registration order."""
        descriptors: list[RouteDescriptor] = []
        for entity in self._entities.values():
            descriptors.extend(plan_routes(entity, self.settings.route_prefix))
        return tuple(descriptors)

    @property
    def authenticator(self) -> Authenticator:
        if self._authenticator is None:
            raise ConfigurationError("AdminKit needs an authenticator or a principal_loader")
        return self._authenticator

    @property
    def classifier(self) -> PathClassifier:
        return self.engine.classifier

    @property
    def engine(self) -> AccessDecisionEngine:
        # built once; the lock keeps concurrent first requests from racing
        if self._engine is not None:
            return self._engine
        with self._engine_lock:
            if self._engine is None:
                self._engine = self._build_engine()
        return self._engine

    def _build_engine(self) -> AccessDecisionEngine:
        settings = self.settings
        matcher = is_numeric_or_uuid_segment if settings.allow_uuid_identifiers else is_numeric_segment
        classifier = PathClassifier(settings.route_prefix, identifier_matcher=matcher)
        return AccessDecisionEngine(
            self.registry,
            classifier,
            public_paths=settings.effective_public_paths,
            bypass_role=settings.bypass_role,
            unclassified_policy=Decision(settings.unclassified_policy),
            unregistered_policy=Decision(settings.unregistered_policy),
        )

    # ------------------------------------------------------------------
    # Permissions persistence
    # ------------------------------------------------------------------

    async def sync_permissions(self, session: AsyncSession) -> list[str]:
        """Insert missing permission rows for every registered entity."""
        return await PermissionSyncService(session).sync(self.entities)

    async def load_permissions(self, session: AsyncSession) -> PermissionRegistry:
        """Merge stored roles, permissions and grants into the registry."""
        return await RegistryLoader(session).load(self.registry, freeze=False)

    def freeze(self) -> None:
        if not self.registry.frozen:
            self.registry.freeze()

    # ------------------------------------------------------------------
    # Request-time checks
    # ------------------------------------------------------------------

    async def resolve_auth_context(self, request: Request) -> AuthContext:
        context = getattr(request.state, AUTH_STATE_ATTR, None)
        if context is None:
            context = await self.authenticator.authenticate(request)
            setattr(request.state, AUTH_STATE_ATTR, context)
        return context

    async def enforce(self, request: Request, capability: Capability) -> Principal | None:
        """Check ``capability`` for the current request.

        Raises:
            AuthError: If authentication is required and missing.
            ForbiddenError: If the decision engine denies the capability.
        """
        context = await self.resolve_auth_context(request)
        principal = context.current_principal()
        if principal is None and self.settings.auth_required:
            raise AuthError()
        if not self.settings.rbac_enabled:
            return principal

        decision = self.engine.check(principal, capability)
        if not decision.allowed:
            await self.report_denial(request, principal, decision)
            raise ForbiddenError()
        return principal

    async def report_denial(
        self,
        request: Request,
        principal: Principal | None,
        decision: AccessDecision,
    ) -> None:
        capability = decision.capability
        logger_rbac.warning(
            "Access denied method=%s path=%s resource=%s action=%s reason=%s principal_id=%s",
            request.method,
            request.url.path,
            capability.resource if capability else None,
            capability.action if capability else None,
            decision.reason.value,
            principal.id if principal else None,
        )
        if self.on_denied is None:
            return
        try:
            await self.on_denied(request, principal, decision)
        except Exception:
            # the hook is best-effort; the 403 stands regardless
            logger_rbac.exception("Denial hook failed path=%s", request.url.path)

    # ------------------------------------------------------------------
    # Mounting
    # ------------------------------------------------------------------

    def build_router(self, handler: CrudHandler | None = None) -> APIRouter:
        router = APIRouter(tags=["adminkit"])
        router.add_api_route(
            self.settings.route_prefix or "/",
            self._dashboard_endpoint(),
            methods=["GET"],
            name="adminkit.dashboard.index",
            response_model=DashboardResponse,
        )

        for route in self._custom_routes:
            dependencies = []
            if route.capability is not None:
                dependencies.append(Depends(self._capability_guard(route.capability)))
            router.add_api_route(
                route.path,
                route.endpoint,
                methods=[route.method],
                name=route.name,
                dependencies=dependencies,
            )

        if handler is not None:
            for entity in self._entities.values():
                descriptors = plan_routes(entity, self.settings.route_prefix)
                for descriptor in mount_order(descriptors):
                    router.add_api_route(
                        descriptor.path_template,
                        self._crud_endpoint(descriptor, entity, handler),
                        methods=[descriptor.method],
                        name=descriptor.name,
                    )
        return router

    def _dashboard_endpoint(self):
        kit = self

        async def dashboard(request: Request) -> DashboardResponse:
            principal = await kit.enforce(request, DASHBOARD_CAPABILITY)
            role_names = principal.roles if principal else frozenset()
            return DashboardResponse(
                brand_name=kit.settings.brand_name,
                widgets=[widget.model_dump() for widget in kit.widgets if widget.visible_to(role_names)],
            )

        return dashboard

    def _capability_guard(self, capability: Capability):
        kit = self

        async def guard(request: Request) -> None:
            await kit.enforce(request, capability)

        return guard

    def _crud_endpoint(
        self,
        descriptor: RouteDescriptor,
        entity: EntityRegistration,
        handler: CrudHandler,
    ):
        kit = self
        capability = descriptor.capability
        target = _HANDLER_RESOLVERS[descriptor.operation](handler)

        if descriptor.operation.takes_id:
            async def endpoint_with_id(request: Request, id: str):
                await kit.enforce(request, capability)
                return await target(request, entity, id)

            return endpoint_with_id

        async def endpoint(request: Request):
            await kit.enforce(request, capability)
            return await target(request, entity)

        return endpoint

    def mount(self, app: FastAPI, handler: CrudHandler | None = None) -> None:
        """Wire routes, middleware and error handlers into ``app``.

        Freezes the registry: call :meth:`sync_permissions` and
        :meth:`load_permissions` before mounting.

        Raises:
            ConfigurationError: If already mounted, no authenticator is
                configured, or session tokens are needed without a
                ``secret_key``.
        """
        if self.settings.log_level:
            configure_logging(self.settings.log_level)
        self._ensure_configurable()
        if self._authenticator is None:
            raise ConfigurationError("AdminKit needs an authenticator or a principal_loader")
        if not self.settings.secret_key and (
            isinstance(self._authenticator, TokenAuthenticator) or self.credential_verifier is not None
        ):
            raise ConfigurationError("secret_key must be set to issue or validate admin session tokens")
        self.freeze()
        engine = self.engine

        app.state.adminkit = self
        app.include_router(build_auth_router(self))
        app.include_router(self.build_router(handler))
        app.add_middleware(AccessControlMiddleware, kit=self)
        install_exception_handlers(app)
        self._close_on_shutdown(app)
        self._mounted = True

        logger.info(
            "AdminKit mounted prefix=%s entities=%d routes=%d widgets=%d public_paths=%s",
            self.settings.route_prefix or "/",
            len(self._entities),
            len(self.routes),
            len(self._widgets),
            list(engine.public_paths),
        )

    def _close_on_shutdown(self, app: FastAPI) -> None:
        host_lifespan = app.router.lifespan_context

        @asynccontextmanager
        async def lifespan(host_app):
            async with host_lifespan(host_app) as state:
                yield state
            await self.aclose()

        app.router.lifespan_context = lifespan

    async def aclose(self) -> None:
        """Release the login throttle's connections (run on app shutdown)."""
        await self.login_throttle.close()
        logger.info("AdminKit shut down")
