import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from adminkit.application.auth_rate_limit import InMemoryLoginThrottle
from adminkit.auth.context import AuthContext
from adminkit.auth.rbac_contract import Capability
from adminkit.auth.registry import PermissionRegistry
from adminkit.errors import ConfigurationError, EntityConfigurationError, NotFoundError, UnknownRoleError
from adminkit.infra.redis import RedisLoginThrottle
from adminkit.kit import AdminKit, build_login_throttle
from adminkit.security.token_inspection import issue_session_token

FORBIDDEN_BODY = {"error": {"code": "PERMISSION_DENIED", "message": "Access denied", "details": None}}


class FakeCrudHandler:
    async def index(self, request, entity):
        return {"action": "index", "resource": entity.resource}

    async def show(self, request, entity, identifier):
        if identifier == "404":
            raise NotFoundError()
        return {"action": "show", "id": identifier}

    async def new(self, request, entity):
        return {"action": "new"}

    async def create(self, request, entity):
        return {"action": "create"}

    async def edit(self, request, entity, identifier):
        return {"action": "edit", "id": identifier}

    async def update(self, request, entity, identifier):
        return {"action": "update", "id": identifier}

    async def delete(self, request, entity, identifier):
        return {"action": "delete", "id": identifier}


class FakePrincipalLoader:
    def __init__(self, principals):
        self.principals = {principal.id: principal for principal in principals}

    async def load_principal(self, principal_id):
        return self.principals.get(principal_id)


@pytest.fixture
def principals(make_principal):
    return {
        "viewer": make_principal("1", roles={"viewer"}, email="viewer@example.com"),
        "editor": make_principal("2", roles={"editor"}, email="editor@example.com"),
        "root": make_principal("3", roles={"super_admin"}, email="root@example.com"),
    }


@pytest.fixture
def admin_registry() -> PermissionRegistry:
    registry = PermissionRegistry()
    registry.define_role("viewer")
    registry.define_role("editor")
    registry.register("reports.export", "reports", "export")
    registry.grant("editor", "reports.export")
    return registry


def build_kit(settings, admin_registry, principals, **kwargs) -> AdminKit:
    kit = AdminKit(
        settings,
        registry=admin_registry,
        principal_loader=FakePrincipalLoader(principals.values()),
        **kwargs,
    )
    kit.add_entity(
        "shop.models.Product",
        permissions={
            "index": ["viewer", "editor"],
            "show": ["viewer", "editor"],
            "new": ["editor"],
            "create": ["editor"],
            "edit": ["editor"],
            "update": ["editor"],
            "delete": ["editor"],
        },
    )
    kit.add_dashboard_widget("sales", value=42, roles=["editor"])
    kit.add_dashboard_widget("visits", value=7)

    async def export_report():
        return {"report": "ok"}

    kit.add_custom_route(
        "GET", "/reports/export", export_report, capability=Capability("reports", "export")
    )
    return kit


def build_client(kit: AdminKit) -> TestClient:
    app = FastAPI()

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    kit.mount(app, FakeCrudHandler())
    return TestClient(app)


def auth_headers(settings, principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_session_token(principal.id, settings)}"}


@pytest.fixture
def kit(settings, admin_registry, principals) -> AdminKit:
    return build_kit(settings, admin_registry, principals)


@pytest.fixture
def client(kit) -> TestClient:
    return build_client(kit)


def test_anonymous_json_request_gets_401(client) -> None:
    response = client.get("/admin/product")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_ERROR"


def test_anonymous_html_request_redirects_to_login(client) -> None:
    response = client.get(
        "/admin/product", headers={"Accept": "text/html"}, follow_redirects=False
    )
    assert response.status_code == 302
    assert response.headers["location"] == "/admin/login"


def test_paths_outside_prefix_are_not_inspected(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_granted_action_reaches_handler(client, settings, principals) -> None:
    response = client.get("/admin/product", headers=auth_headers(settings, principals["viewer"]))
    assert response.status_code == 200
    assert response.json() == {"action": "index", "resource": "product"}


def test_missing_grant_returns_fixed_403(client, settings, principals) -> None:
    response = client.delete("/admin/product/5", headers=auth_headers(settings, principals["viewer"]))
    assert response.status_code == 403
    assert response.json() == FORBIDDEN_BODY


@pytest.mark.parametrize(
    "method,path,expected",
    [
        ("GET", "/admin/product/new", {"action": "new"}),
        ("POST", "/admin/product", {"action": "create"}),
        ("GET", "/admin/product/9", {"action": "show", "id": "9"}),
        ("GET", "/admin/product/9/edit", {"action": "edit", "id": "9"}),
        ("POST", "/admin/product/9", {"action": "update", "id": "9"}),
        ("DELETE", "/admin/product/9", {"action": "delete", "id": "9"}),
    ],
)
def test_every_generated_route_dispatches(client, settings, principals, method, path, expected) -> None:
    response = client.request(method, path, headers=auth_headers(settings, principals["editor"]))
    assert response.status_code == 200
    assert response.json() == expected


def test_bypass_role_allows_everything(client, settings, principals) -> None:
    headers = auth_headers(settings, principals["root"])
    assert client.delete("/admin/product/1", headers=headers).status_code == 200
    assert client.get("/admin/reports/export", headers=headers).status_code == 200


def test_dashboard_filters_widgets_by_role(client, settings, principals) -> None:
    viewer = client.get("/admin", headers=auth_headers(settings, principals["viewer"]))
    editor = client.get("/admin", headers=auth_headers(settings, principals["editor"]))

    assert viewer.status_code == 200
    assert viewer.json()["brand_name"] == "AdminKit"
    assert [widget["name"] for widget in viewer.json()["widgets"]] == ["visits"]
    assert [widget["name"] for widget in editor.json()["widgets"]] == ["sales", "visits"]


def test_custom_route_checks_capability(client, settings, principals) -> None:
    denied = client.get("/admin/reports/export", headers=auth_headers(settings, principals["viewer"]))
    allowed = client.get("/admin/reports/export", headers=auth_headers(settings, principals["editor"]))

    assert denied.status_code == 403
    assert denied.json() == FORBIDDEN_BODY
    assert allowed.json() == {"report": "ok"}


def test_invalid_token_is_anonymous(client) -> None:
    response = client.get("/admin/product", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_denials_are_logged_and_reported(settings, admin_registry, principals, caplog) -> None:
    on_denied = AsyncMock()
    kit = build_kit(settings, admin_registry, principals, on_denied=on_denied)
    client = build_client(kit)

    with caplog.at_level(logging.WARNING, logger="adminkit.rbac"):
        response = client.delete("/admin/product/5", headers=auth_headers(settings, principals["viewer"]))

    assert response.status_code == 403
    assert "Access denied" in caplog.text
    assert "resource=product action=delete" in caplog.text
    on_denied.assert_awaited_once()
    _request, principal, decision = on_denied.await_args.args
    assert principal.id == principals["viewer"].id
    assert decision.capability == Capability("product", "delete")


def test_failing_denial_hook_keeps_403(settings, admin_registry, principals, caplog) -> None:
    on_denied = AsyncMock(side_effect=RuntimeError("audit store down"))
    kit = build_kit(settings, admin_registry, principals, on_denied=on_denied)
    client = build_client(kit)

    with caplog.at_level(logging.ERROR, logger="adminkit.rbac"):
        response = client.delete("/admin/product/5", headers=auth_headers(settings, principals["viewer"]))

    assert response.status_code == 403
    assert response.json() == FORBIDDEN_BODY
    assert "Denial hook failed" in caplog.text


def test_rbac_disabled_only_requires_authentication(settings, admin_registry, principals) -> None:
    settings = settings.model_copy(update={"rbac_enabled": False})
    client = build_client(build_kit(settings, admin_registry, principals))

    assert client.delete("/admin/product/5").status_code == 401
    response = client.delete("/admin/product/5", headers=auth_headers(settings, principals["viewer"]))
    assert response.status_code == 200


def test_open_panel_without_auth_or_rbac(settings, admin_registry, principals) -> None:
    settings = settings.model_copy(update={"rbac_enabled": False, "auth_required": False})
    client = build_client(build_kit(settings, admin_registry, principals))

    assert client.get("/admin/product").status_code == 200
    assert client.get("/admin").json()["widgets"][0]["name"] == "visits"


def test_mount_freezes_registry_and_configuration(kit) -> None:
    build_client(kit)

    assert kit.registry.frozen
    with pytest.raises(ConfigurationError):
        kit.add_entity("shop.models.Order")
    with pytest.raises(ConfigurationError):
        kit.add_dashboard_widget("late")
    with pytest.raises(ConfigurationError):
        kit.mount(FastAPI())


def test_mount_requires_authenticator(settings) -> None:
    kit = AdminKit(settings)
    with pytest.raises(ConfigurationError):
        kit.mount(FastAPI())


@pytest.mark.parametrize("entity_type", ["app.Dashboard", "app.Login", "app.Logout", "app.Assets"])
def test_reserved_resources_are_rejected(settings, entity_type) -> None:
    with pytest.raises(EntityConfigurationError, match="reserved"):
        AdminKit(settings).add_entity(entity_type)


def test_duplicate_resource_is_rejected(settings) -> None:
    kit = AdminKit(settings).add_entity("shop.models.Product")
    with pytest.raises(EntityConfigurationError, match="already registered"):
        kit.add_entity("catalog.Product")


def test_entity_registration_registers_permissions(settings) -> None:
    kit = AdminKit(settings).add_entity("shop.models.Order", actions=["index", "show"])

    assert kit.get_entity("order").pagination == settings.pagination_limit
    assert sorted(p.code for p in kit.registry.permissions) == ["order.index", "order.show"]
    assert [route.path_template for route in kit.routes] == ["/admin/order", "/admin/order/{id}"]


def test_custom_route_path_must_be_absolute(settings) -> None:
    with pytest.raises(ConfigurationError):
        AdminKit(settings).add_custom_route("GET", "reports", lambda: None)


def test_uuid_identifiers_are_opt_in(settings) -> None:
    path = "/admin/product/6f1c2a58-5d0c-4c8e-9a55-0d3c6f2b9a11"
    assert AdminKit(settings).classifier.classify("GET", path) is None

    uuid_settings = settings.model_copy(update={"allow_uuid_identifiers": True})
    assert AdminKit(uuid_settings).classifier.classify("GET", path) == Capability("product", "show")


def test_build_login_throttle(settings) -> None:
    assert isinstance(build_login_throttle(settings), InMemoryLoginThrottle)

    redis_settings = settings.model_copy(update={"redis_url": "redis://localhost:6379/0"})
    assert isinstance(build_login_throttle(redis_settings), RedisLoginThrottle)


def test_handler_errors_use_error_payload(client, settings, principals) -> None:
    response = client.get("/admin/product/404", headers=auth_headers(settings, principals["viewer"]))
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_custom_routes_are_prefixed(kit) -> None:
    route = kit.custom_routes[0]
    assert (route.method, route.path) == ("GET", "/admin/reports/export")
    assert route.capability == Capability("reports", "export")


class StaticAuthenticator:
    async def authenticate(self, request):
        return AuthContext.anonymous()


def test_mount_requires_secret_key_for_session_tokens(settings, principals) -> None:
    settings = settings.model_copy(update={"secret_key": None})
    kit = AdminKit(settings, principal_loader=FakePrincipalLoader(principals.values()))

    with pytest.raises(ConfigurationError, match="secret_key"):
        kit.mount(FastAPI())
    assert not kit.registry.frozen


def test_mount_requires_secret_key_for_password_login(settings, principals) -> None:
    settings = settings.model_copy(update={"secret_key": None})
    kit = AdminKit(
        settings,
        authenticator=StaticAuthenticator(),
        credential_verifier=AsyncMock(),
    )
    with pytest.raises(ConfigurationError, match="secret_key"):
        kit.mount(FastAPI())


def test_custom_authenticator_mounts_without_secret_key(settings) -> None:
    settings = settings.model_copy(update={"secret_key": None})
    kit = AdminKit(settings, authenticator=StaticAuthenticator())
    client = build_client(kit)

    response = client.get("/admin", headers={"Authorization": "Bearer abc"})
    assert response.status_code == 401


def test_failed_add_entity_leaves_kit_unchanged(settings) -> None:
    registry = PermissionRegistry()
    registry.define_role("editor")
    kit = AdminKit(settings, registry=registry)

    with pytest.raises(UnknownRoleError):
        kit.add_entity("shop.models.Product", permissions={"index": ["editor"], "delete": ["ghost"]})

    assert kit.get_entity("product") is None
    assert len(registry) == 0

    registry.define_role("ghost")
    kit.add_entity("shop.models.Product", permissions={"index": ["editor"], "delete": ["ghost"]})
    assert registry.roles_granting("product", "delete") == {"ghost"}


def test_shutdown_closes_login_throttle(settings, principals) -> None:
    throttle = AsyncMock()
    throttle.is_locked.return_value = False
    events: list[str] = []

    @asynccontextmanager
    async def host_lifespan(_app):
        events.append("startup")
        yield
        events.append("shutdown")

    app = FastAPI(lifespan=host_lifespan)
    AdminKit(
        settings,
        principal_loader=FakePrincipalLoader(principals.values()),
        login_throttle=throttle,
    ).mount(app)

    with TestClient(app) as client:
        assert client.get("/admin").status_code == 401
        throttle.close.assert_not_awaited()

    assert events == ["startup", "shutdown"]
    throttle.close.assert_awaited_once()
