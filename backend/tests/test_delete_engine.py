"""Tests for the audit-cascade delete engine.

A recording client checks statement order and transaction handling; the
sqlite tests check the same flows against real tables.
"""

import logging

import pytest

from fieldward.core.errors import (
    HookAbortError,
    NotFoundError,
    ProtectedResourceError,
    StorageError,
    ValidationError,
)
from fieldward.hooks.types import DeleteOptions
from fieldward.metadata.loader import DependentConfig, PolymorphicType
from fieldward.persistence.client import QueryResult
from fieldward.services.delete_engine import (
    AuditCascadeDeleteEngine,
    DeleteRequest,
    ProtectionCheck,
)


class RecordingClient:
    """Transactional client that records every call and answers SELECTs from a table."""

    def __init__(self, row=None, supports_row_locks=False, fail_on=None, rollback_error=None):
        self.row = row
        self.supports_row_locks = supports_row_locks
        self.fail_on = fail_on
        self.rollback_error = rollback_error
        self.calls = []

    def begin(self):
        self.calls.append("BEGIN")

    def execute(self, sql, params=None):
        self.calls.append((sql, list(params or [])))
        if self.fail_on and sql.startswith(self.fail_on):
            raise StorageError("boom")
        if sql.startswith("SELECT"):
            return QueryResult(rows=[dict(self.row)] if self.row else [], rowcount=0)
        return QueryResult(rows=[], rowcount=1)

    def commit(self):
        self.calls.append("COMMIT")

    def rollback(self):
        self.calls.append("ROLLBACK")
        if self.rollback_error:
            raise self.rollback_error

    def release(self):
        self.calls.append("RELEASE")


class RecordingSource:
    def __init__(self, client):
        self.client = client
        self.acquired = 0

    def acquire(self):
        self.acquired += 1
        return self.client


def make_engine(**client_kwargs):
    client = RecordingClient(**client_kwargs)
    source = RecordingSource(client)
    return AuditCascadeDeleteEngine(source), source, client


def statements(client):
    return [call[0] if isinstance(call, tuple) else call for call in client.calls]


# =============================================================================
# Statement order
# =============================================================================


class TestStatementOrder:
    @pytest.mark.asyncio
    async def test_happy_path(self):
        engine, source, client = make_engine(row={"id": 7, "name": "Widget"})
        record = await engine.delete(DeleteRequest(table_name="inventory", id=7))

        assert record == {"id": 7, "name": "Widget"}
        assert source.acquired == 1
        assert client.calls == [
            "BEGIN",
            ("SELECT * FROM inventory WHERE id = $1", [7]),
            (
                "DELETE FROM audit_logs WHERE resource_type = $1 AND resource_id = $2",
                ["inventory", 7],
            ),
            ("DELETE FROM inventory WHERE id = $1", [7]),
            "COMMIT",
            "RELEASE",
        ]

    @pytest.mark.asyncio
    async def test_row_lock_when_supported(self):
        engine, _, client = make_engine(row={"id": 1}, supports_row_locks=True)
        await engine.delete(DeleteRequest(table_name="invoices", id=1))
        assert client.calls[1][0] == "SELECT * FROM invoices WHERE id = $1 FOR UPDATE"

    @pytest.mark.asyncio
    async def test_dependents_before_audit_and_target(self):
        engine, _, client = make_engine(row={"id": 3})
        request = DeleteRequest(
            table_name="customers",
            id=3,
            dependents=(
                DependentConfig(table="contracts", foreign_key="customer_id"),
                DependentConfig(table="invoices", foreign_key="customer_id"),
            ),
        )
        await engine.delete(request)
        assert statements(client)[2:6] == [
            "DELETE FROM contracts WHERE customer_id = $1",
            "DELETE FROM invoices WHERE customer_id = $1",
            "DELETE FROM audit_logs WHERE resource_type = $1 AND resource_id = $2",
            "DELETE FROM customers WHERE id = $1",
        ]

    @pytest.mark.asyncio
    async def test_declared_polymorphic_audit_replaces_default(self):
        engine, _, client = make_engine(row={"id": 6, "name": "auditor"})
        request = DeleteRequest(
            table_name="roles",
            id=6,
            dependents=(
                DependentConfig(
                    table="audit_logs",
                    foreign_key="resource_id",
                    polymorphic=PolymorphicType(column="resource_type", value="role"),
                ),
            ),
        )
        await engine.delete(request)
        audit_calls = [call for call in client.calls if "audit_logs" in str(call)]
        assert audit_calls == [
            (
                "DELETE FROM audit_logs WHERE resource_type = $1 AND resource_id = $2",
                ["role", 6],
            )
        ]

    @pytest.mark.asyncio
    async def test_custom_audit_table_and_primary_key(self):
        client = RecordingClient(row={"code": 4})
        engine = AuditCascadeDeleteEngine(RecordingSource(client), audit_table="history")
        await engine.delete(DeleteRequest(table_name="regions", id=4, primary_key="code"))
        assert statements(client)[1:4] == [
            "SELECT * FROM regions WHERE code = $1",
            "DELETE FROM history WHERE resource_type = $1 AND resource_id = $2",
            "DELETE FROM regions WHERE code = $1",
        ]


# =============================================================================
# Failure paths
# =============================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_not_found_rolls_back_and_releases(self):
        engine, _, client = make_engine(row=None)
        with pytest.raises(NotFoundError, match="inventory not found"):
            await engine.delete(DeleteRequest(table_name="inventory", id=9))
        assert statements(client) == [
            "BEGIN",
            "SELECT * FROM inventory WHERE id = $1",
            "ROLLBACK",
            "RELEASE",
        ]

    @pytest.mark.asyncio
    async def test_not_found_message_override(self):
        engine, _, _ = make_engine(row=None)
        request = DeleteRequest(table_name="inventory", id=9, not_found_message="Item not found")
        with pytest.raises(NotFoundError, match="Item not found"):
            await engine.delete(request)

    @pytest.mark.asyncio
    async def test_not_found_message_from_registry(self, registry):
        client = RecordingClient(row=None)
        engine = AuditCascadeDeleteEngine(RecordingSource(client), registry)
        with pytest.raises(NotFoundError, match="Work order not found"):
            await engine.delete(DeleteRequest(table_name="work_orders", id=9))

    @pytest.mark.asyncio
    async def test_hook_error_propagates_unchanged(self):
        engine, _, client = make_engine(row={"id": 2})
        error = HookAbortError("Invoice is paid", hook_name="preventPaidDelete")

        async def refuse(record, ctx):
            raise error

        with pytest.raises(HookAbortError) as exc_info:
            await engine.delete(DeleteRequest(table_name="invoices", id=2, before_delete=refuse))
        assert exc_info.value is error
        assert statements(client)[-2:] == ["ROLLBACK", "RELEASE"]
        assert not any(s.startswith("DELETE") for s in statements(client))

    @pytest.mark.asyncio
    async def test_storage_error_rolls_back(self):
        engine, _, client = make_engine(row={"id": 2}, fail_on="DELETE FROM invoices")
        with pytest.raises(StorageError):
            await engine.delete(DeleteRequest(table_name="invoices", id=2))
        assert "COMMIT" not in client.calls
        assert statements(client)[-2:] == ["ROLLBACK", "RELEASE"]

    @pytest.mark.asyncio
    async def test_rollback_failure_does_not_mask_error(self, caplog):
        engine, _, client = make_engine(
            row=None, rollback_error=RuntimeError("connection lost")
        )
        with caplog.at_level(logging.ERROR, logger="fieldward.services.delete_engine"):
            with pytest.raises(NotFoundError):
                await engine.delete(DeleteRequest(table_name="inventory", id=1))
        assert "Rollback failed" in caplog.text
        assert client.calls[-1] == "RELEASE"

    @pytest.mark.asyncio
    async def test_invalid_identifier_rejected_before_acquire(self):
        engine, source, _ = make_engine(row={"id": 1})
        with pytest.raises(ValidationError, match="Invalid SQL identifier"):
            await engine.delete(DeleteRequest(table_name="users; DROP TABLE users", id=1))
        assert source.acquired == 0


# =============================================================================
# System protection
# =============================================================================


PROTECTION = ProtectionCheck(identity_field="name", values=("admin", "customer"))


class TestProtection:
    @pytest.mark.asyncio
    async def test_known_identity_rejected_before_acquire(self, caplog):
        engine, source, _ = make_engine(row={"id": 1, "name": "admin"})
        protection = ProtectionCheck("name", ("admin",), identity_value="admin")
        with caplog.at_level(logging.WARNING, logger="fieldward.security"):
            with pytest.raises(ProtectedResourceError, match="system-protected roles record 'admin'"):
                await engine.delete(DeleteRequest(table_name="roles", id=1, protection=protection))
        assert source.acquired == 0
        assert "PROTECTED_DELETE_BLOCKED" in caplog.text

    @pytest.mark.asyncio
    async def test_identity_checked_after_fetch(self):
        engine, _, client = make_engine(row={"id": 4, "name": "customer"})
        with pytest.raises(ProtectedResourceError):
            await engine.delete(DeleteRequest(table_name="roles", id=4, protection=PROTECTION))
        assert statements(client) == [
            "BEGIN",
            "SELECT * FROM roles WHERE id = $1",
            "ROLLBACK",
            "RELEASE",
        ]

    @pytest.mark.asyncio
    async def test_unprotected_identity_deleted(self):
        engine, _, client = make_engine(row={"id": 6, "name": "auditor"})
        await engine.delete(DeleteRequest(table_name="roles", id=6, protection=PROTECTION))
        assert "COMMIT" in client.calls

    @pytest.mark.asyncio
    async def test_force_overrides(self):
        engine, _, client = make_engine(row={"id": 1, "name": "admin"})
        request = DeleteRequest(
            table_name="roles",
            id=1,
            protection=ProtectionCheck("name", ("admin",), identity_value="admin"),
            options=DeleteOptions(force=True),
        )
        await engine.delete(request)
        assert "COMMIT" in client.calls

    def test_prevent_delete_false_allows(self):
        check = ProtectionCheck("name", ("admin",), prevent_delete=False)
        assert not check.blocks_value("admin")
        assert not PROTECTION.blocks_value(None)


# =============================================================================
# Hooks and request_for
# =============================================================================


class TestHooks:
    @pytest.mark.asyncio
    async def test_hook_receives_context(self):
        engine, _, client = make_engine(row={"id": 5, "status": "draft"})
        seen = {}

        def inspect_hook(record, ctx):
            seen["record"] = record
            seen["ctx"] = ctx
            ctx.client.execute("SELECT 1 AS checked")

        options = DeleteOptions(acting_user_id=2, extra={"reason": "duplicate"})
        await engine.delete(
            DeleteRequest(table_name="invoices", id=5, before_delete=inspect_hook, options=options)
        )
        assert seen["record"] == {"id": 5, "status": "draft"}
        assert seen["ctx"].table_name == "invoices"
        assert seen["ctx"].id == 5
        assert seen["ctx"].options.extra == {"reason": "duplicate"}
        assert statements(client)[2] == "SELECT 1 AS checked"

    def test_request_for_uses_metadata(self, registry, builtin_hooks):
        engine, _, _ = make_engine()
        request = engine.request_for(registry.require("role"), 3, identity_value="dispatcher")
        assert request.table_name == "roles"
        assert request.protection.identity_value == "dispatcher"
        assert request.protection.values[0] == "admin"
        assert request.before_delete is not None
        assert request.not_found_message == "Role not found"
        assert request.dependents == registry.require("role").dependents

    def test_request_for_unregistered_hook(self, registry):
        from fieldward.hooks import HookRegistry

        HookRegistry.clear()
        engine, _, _ = make_engine()
        with pytest.raises(ValueError, match="not registered"):
            engine.request_for(registry.require("user"), 1)

    @pytest.mark.asyncio
    async def test_metadata_hooks_run_before_explicit_hook(self, registry, builtin_hooks):
        engine, _, client = make_engine(row={"id": 2, "email": "carl@example.com"})
        order = []

        async def explicit(record, ctx):
            order.append("explicit")

        request = engine.request_for(
            registry.require("user"),
            2,
            options=DeleteOptions(acting_user_id=2),
            before_delete=explicit,
        )
        with pytest.raises(HookAbortError, match="Cannot delete your own account"):
            await engine.delete(request)
        assert order == []


# =============================================================================
# SQLite integration
# =============================================================================


class TestSqlite:
    @pytest.mark.asyncio
    async def test_cascade_removes_rows(self, registry, seeded_db, builtin_hooks):
        engine = AuditCascadeDeleteEngine(seeded_db, registry)
        record = await engine.delete(engine.request_for(registry.require("work_order"), 1))
        assert record["title"] == "Fix espresso machine"
        remaining = seeded_db.query("SELECT id FROM work_orders ORDER BY id").rows
        assert [row["id"] for row in remaining] == [2, 3, 4]
        assert seeded_db.query("SELECT COUNT(*) AS n FROM file_attachments").rows[0]["n"] == 0
        assert seeded_db.query("SELECT COUNT(*) AS n FROM audit_logs").rows[0]["n"] == 0

    @pytest.mark.asyncio
    async def test_failed_hook_leaves_rows(self, registry, seeded_db):
        engine = AuditCascadeDeleteEngine(seeded_db, registry)

        def refuse(record, ctx):
            ctx.client.execute("DELETE FROM file_attachments WHERE work_order_id = $1", [ctx.id])
            raise HookAbortError("nope")

        with pytest.raises(HookAbortError):
            await engine.delete(DeleteRequest(table_name="work_orders", id=1, before_delete=refuse))
        assert seeded_db.query("SELECT COUNT(*) AS n FROM file_attachments").rows[0]["n"] == 1
        assert seeded_db.query("SELECT COUNT(*) AS n FROM work_orders").rows[0]["n"] == 4

    @pytest.mark.asyncio
    async def test_missing_row(self, registry, seeded_db):
        engine = AuditCascadeDeleteEngine(seeded_db, registry)
        with pytest.raises(NotFoundError, match="Customer not found"):
            await engine.delete(DeleteRequest(table_name="customers", id=42))
