"""Tests for request path classification."""
import pytest

from adminkit.auth.classifier import (
    PathClassifier,
    classify,
    is_numeric_or_uuid_segment,
    normalize_prefix,
    strip_prefix,
)
from adminkit.auth.rbac_contract import DASHBOARD_CAPABILITY, Capability


class TestCrudShapes:
    """Each CRUD shape maps to exactly one (resource, action) pair."""

    @pytest.mark.parametrize(
        "method,path,expected",
        [
            ("GET", "/admin/users", Capability("users", "index")),
            ("POST", "/admin/users", Capability("users", "create")),
            ("GET", "/admin/users/42", Capability("users", "show")),
            ("POST", "/admin/users/42", Capability("users", "update")),
            ("GET", "/admin/users/42/edit", Capability("users", "edit")),
            ("DELETE", "/admin/users/42", Capability("users", "delete")),
            ("GET", "/admin/users/new", Capability("users", "new")),
        ],
    )
    def test_documented_examples(self, method, path, expected):
        assert classify(method, path) == expected

    def test_non_numeric_identifier_is_unclassified(self):
        assert classify("GET", "/admin/users/abc") is None

    def test_signed_or_decimal_identifiers_are_not_numeric(self):
        assert classify("GET", "/admin/users/-1") is None
        assert classify("GET", "/admin/users/4.2") is None

    def test_non_ascii_digits_are_not_numeric(self):
        assert classify("GET", "/admin/users/٣") is None

    def test_unknown_three_segment_shape_is_unclassified(self):
        assert classify("GET", "/admin/users/42/history") is None
        assert classify("GET", "/admin/users/abc/edit") is None

    def test_deeper_paths_are_unclassified(self):
        assert classify("GET", "/admin/users/42/edit/extra") is None

    def test_trailing_and_repeated_slashes_are_ignored(self):
        assert classify("GET", "/admin/users/") == Capability("users", "index")
        assert classify("GET", "/admin//users//42") == Capability("users", "show")


class TestDashboard:
    """The prefix itself is the dashboard for every method."""

    @pytest.mark.parametrize("method", ["GET", "POST", "DELETE", "PUT"])
    def test_empty_remainder_is_dashboard(self, method):
        assert classify(method, "/admin") == DASHBOARD_CAPABILITY
        assert classify(method, "/admin/") == DASHBOARD_CAPABILITY

    def test_root_prefix_dashboard(self):
        classifier = PathClassifier("")
        assert classifier.classify("GET", "/") == DASHBOARD_CAPABILITY
        assert classifier.classify("GET", "/posts") == Capability("posts", "index")


class TestMethodOverrides:
    """PUT/PATCH always mean update and DELETE always means delete."""

    @pytest.mark.parametrize("method", ["PUT", "PATCH"])
    def test_put_and_patch_are_update(self, method):
        assert classify(method, "/admin/users/42") == Capability("users", "update")
        assert classify(method, "/admin/users") == Capability("users", "update")

    def test_delete_overrides_unclassified_shape(self):
        assert classify("DELETE", "/admin/users/abc") == Capability("users", "delete")

    def test_methods_are_case_insensitive(self):
        assert classify("post", "/admin/users") == Capability("users", "create")

    def test_empty_method_is_unclassified(self):
        assert classify("", "/admin/users") is None

    def test_non_string_input_is_unclassified(self):
        assert classify(None, "/admin/users") is None
        assert classify("GET", None) is None


class TestPrefixHandling:
    def test_prefix_matches_on_segment_boundary(self):
        assert strip_prefix("/administrator/users", "/admin") is None
        assert strip_prefix("/admin/users", "/admin") == "/users"
        assert strip_prefix("/admin", "/admin") == ""

    def test_paths_outside_prefix_are_classified_best_effort(self):
        assert classify("GET", "/reports/7") == Capability("reports", "show")

    def test_custom_prefix(self):
        classifier = PathClassifier("backoffice/")
        assert classifier.route_prefix == "/backoffice"
        assert classifier.classify("GET", "/backoffice/orders/new") == Capability("orders", "new")

    @pytest.mark.parametrize(
        "raw,expected",
        [("admin", "/admin"), ("/admin/", "/admin"), ("/", ""), ("", "")],
    )
    def test_normalize_prefix(self, raw, expected):
        assert normalize_prefix(raw) == expected


class TestUuidIdentifiers:
    UUID = "3f2b8c9e-1a2b-4c3d-8e9f-0a1b2c3d4e5f"

    def test_uuid_unclassified_by_default(self):
        assert classify("GET", f"/admin/users/{self.UUID}") is None

    def test_uuid_matcher_opt_in(self):
        classifier = PathClassifier("/admin", identifier_matcher=is_numeric_or_uuid_segment)
        assert classifier.classify("GET", f"/admin/users/{self.UUID}") == Capability("users", "show")
        assert classifier.classify("GET", f"/admin/users/{self.UUID}/edit") == Capability("users", "edit")
        assert classifier.classify("GET", "/admin/users/42") == Capability("users", "show")
        assert classifier.classify("GET", "/admin/users/not-a-uuid") is None
