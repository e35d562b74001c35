"""Tests for the role hierarchy and the permission matrix.

Covers:
- satisfies() ordering and unreachable levels
- has_permission() / get_allowed_operations() from project metadata
- field-level inheritance and overrides
- rls_policy() resolution including missing roles
- output and write payload filtering
"""

import logging

import pytest

from fieldward.auth.output import ALWAYS_SENSITIVE, filter_output, filter_write_payload
from fieldward.auth.permissions import PermissionMatrix
from fieldward.auth.roles import ROLE_HIERARCHY, role_level, satisfies
from fieldward.core.errors import PermissionDeniedError
from fieldward.rls.policy import DenyAll, FieldReference, FieldShorthand, NoFilter, ParentDerived


# ── Role hierarchy ───────────────────────────────────────────────────────────


def test_hierarchy_order():
    ordered = sorted(ROLE_HIERARCHY, key=role_level)
    assert ordered == ["customer", "technician", "dispatcher", "manager", "admin"]


@pytest.mark.parametrize(
    "role,required,expected",
    [
        ("admin", "customer", True),
        ("dispatcher", "dispatcher", True),
        ("technician", "dispatcher", False),
        ("customer", "technician", False),
        ("admin", "none", False),
        ("admin", "system", False),
        ("admin", None, False),
        ("superuser", "customer", False),
        (None, "customer", False),
        ("admin", "unknown-level", False),
    ],
)
def test_satisfies(role, required, expected):
    assert satisfies(role, required) is expected


# ── Entity level ─────────────────────────────────────────────────────────────


class TestEntityPermissions:
    def test_customer_can_read_and_create_work_orders(self, matrix):
        assert matrix.has_permission("customer", "work_orders", "read")
        assert matrix.has_permission("customer", "work_orders", "create")
        assert not matrix.has_permission("customer", "work_orders", "update")
        assert not matrix.has_permission("customer", "work_orders", "delete")

    def test_higher_roles_inherit(self, matrix):
        for role in ("technician", "dispatcher", "manager", "admin"):
            assert matrix.has_permission(role, "work_orders", "read")

    def test_unknown_resource_denies(self, matrix):
        assert not matrix.has_permission("admin", "payroll", "read")

    def test_unknown_operation_denies(self, matrix):
        assert not matrix.has_permission("admin", "work_orders", "export")

    def test_system_level_unreachable(self, matrix):
        assert not matrix.has_permission("admin", "notifications", "create")
        assert not matrix.has_permission("admin", "audit_logs", "delete")

    def test_disabled_operation(self, matrix):
        assert not matrix.has_permission("admin", "file_attachments", "update")

    def test_allowed_operations_order(self, matrix):
        assert matrix.get_allowed_operations("admin", "work_orders") == [
            "create",
            "read",
            "update",
            "delete",
        ]
        assert matrix.get_allowed_operations("technician", "work_orders") == [
            "create",
            "read",
            "update",
        ]
        assert matrix.get_allowed_operations("customer", "audit_logs") == []

    def test_require_permission_message(self, matrix):
        with pytest.raises(PermissionDeniedError, match="Manager role or higher required to delete"):
            matrix.require_permission("dispatcher", "work_orders", "delete")

    def test_require_permission_on_unreachable_level(self, matrix):
        with pytest.raises(PermissionDeniedError, match="not permitted"):
            matrix.require_permission("admin", "audit_logs", "update")

    def test_require_permission_passes(self, matrix):
        matrix.require_permission("manager", "work_orders", "delete")

    def test_pure_construction(self):
        matrix = PermissionMatrix({("jobs", "read"): "technician"})
        assert matrix.has_permission("manager", "jobs", "read")
        assert not matrix.has_permission("customer", "jobs", "read")
        assert not matrix.has_permission("manager", "jobs", "update")


# ── Field level ──────────────────────────────────────────────────────────────


class TestFieldPermissions:
    def test_inherits_entity_requirement(self, matrix):
        assert matrix.has_field_permission("customer", "work_orders", "title", "read")
        assert matrix.has_field_permission("customer", "work_orders", "title", "create")
        assert not matrix.has_field_permission("customer", "work_orders", "title", "update")

    def test_explicit_override(self, matrix):
        assert not matrix.has_field_permission("customer", "work_orders", "internal_notes", "read")
        assert matrix.has_field_permission("technician", "work_orders", "internal_notes", "read")
        assert not matrix.has_field_permission("technician", "technicians", "hourly_rate", "read")
        assert matrix.has_field_permission("dispatcher", "technicians", "hourly_rate", "read")

    def test_read_only_fields_not_writable(self, matrix):
        assert matrix.has_field_permission("admin", "work_orders", "id", "read")
        assert not matrix.has_field_permission("admin", "work_orders", "id", "update")
        assert not matrix.has_field_permission("admin", "work_orders", "created_at", "create")

    def test_unknown_field_denies(self, matrix):
        assert not matrix.has_field_permission("admin", "work_orders", "salary", "read")

    def test_readable_fields(self, matrix):
        customer_fields = matrix.readable_fields("customer", "work_orders")
        assert "title" in customer_fields
        assert "internal_notes" not in customer_fields

    def test_writable_fields(self, matrix):
        fields = matrix.writable_fields("customer", "work_orders", "create")
        assert "title" in fields
        assert "status" not in fields
        assert "assigned_technician_id" not in fields


# ── RLS policy resolution ────────────────────────────────────────────────────


class TestRlsPolicy:
    def test_declared_policies(self, matrix):
        assert matrix.rls_policy("customer", "work_orders") == FieldReference(
            "customer_id", "customerProfileId"
        )
        assert matrix.rls_policy("dispatcher", "work_orders") == NoFilter()
        assert matrix.rls_policy("customer", "technicians") == DenyAll()
        assert matrix.rls_policy("technician", "notifications") == FieldShorthand("user_id")
        assert matrix.rls_policy("customer", "file_attachments") == ParentDerived()

    def test_entity_without_policy_is_unfiltered(self, matrix):
        assert matrix.rls_policy("technician", "inventory") == NoFilter()

    def test_unknown_resource_denies(self, matrix):
        assert matrix.rls_policy("admin", "payroll") == DenyAll()

    def test_missing_role_denies_with_warning(self, matrix, caplog):
        with caplog.at_level(logging.WARNING, logger="fieldward.auth.permissions"):
            assert matrix.rls_policy("auditor", "work_orders") == DenyAll()
        assert "No RLS policy" in caplog.text


# ── Output filtering ─────────────────────────────────────────────────────────


class TestOutputFilter:
    def test_strips_sensitive_and_unreadable(self, registry, matrix):
        user = registry.require("user")
        record = {"id": 1, "email": "a@example.com", "auth0_id": "auth0|x", "api_key": "k"}
        assert filter_output(record, user, "admin", matrix) == {"id": 1, "email": "a@example.com"}

    def test_field_read_policy(self, registry, matrix):
        tech = registry.require("technician")
        record = {"id": 1, "license_number": "LIC", "hourly_rate": 50}
        assert "hourly_rate" not in filter_output(record, tech, "technician", matrix)
        assert filter_output(record, tech, "dispatcher", matrix)["hourly_rate"] == 50

    def test_undeclared_columns_are_kept(self, registry, matrix):
        order = registry.require("work_order")
        record = {"id": 1, "customer_company_name": "Cafe", "secret_key": "s"}
        assert filter_output(record, order, "customer", matrix) == {
            "id": 1,
            "customer_company_name": "Cafe",
        }

    def test_always_sensitive_set(self):
        assert {"auth0_id", "refresh_token", "private_key"} <= ALWAYS_SENSITIVE

    def test_write_payload_drops_restricted_fields(self, registry, matrix):
        order = registry.require("work_order")
        data = {"title": "Leak", "status": "completed", "assigned_technician_id": 2}
        assert filter_write_payload(data, order, "customer", matrix, "create") == {"title": "Leak"}
        assert filter_write_payload(data, order, "dispatcher", matrix, "create") == data
