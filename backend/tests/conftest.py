"""Shared fixtures: the project metadata, an in-memory database and seed rows."""

from pathlib import Path

import pytest

from fieldward.auth.permissions import PermissionMatrix
from fieldward.hooks import HookRegistry, register_builtin_hooks
from fieldward.metadata.loader import EntityRegistry
from fieldward.persistence.client import Database
from fieldward.persistence.schema import create_schema
from fieldward.rls.context import SecurityContext

METADATA_PATH = Path(__file__).resolve().parents[2] / "metadata"


@pytest.fixture(scope="session")
def metadata_path() -> Path:
    return METADATA_PATH


@pytest.fixture(scope="session")
def registry() -> EntityRegistry:
    return EntityRegistry(METADATA_PATH).load_all()


@pytest.fixture(scope="session")
def matrix(registry) -> PermissionMatrix:
    return PermissionMatrix.from_registry(registry)


@pytest.fixture
def builtin_hooks():
    """Registry containing only the built-in hooks."""
    HookRegistry.clear()
    register_builtin_hooks()
    yield
    HookRegistry.clear()


@pytest.fixture
def db(registry):
    database = Database.from_url("sqlite:///:memory:")
    create_schema(database.engine, registry)
    yield database
    database.dispose()


@pytest.fixture
def seeded_db(db):
    """Two customers, two technicians and work orders split between them."""
    for name, priority in [
        ("customer", 1),
        ("technician", 2),
        ("dispatcher", 3),
        ("manager", 4),
        ("admin", 5),
        ("auditor", 2),
    ]:
        db.query("INSERT INTO roles (name, priority) VALUES ($1, $2)", [name, priority])

    users = [
        ("alice@example.com", "Alice", "Admin", 5, "auth0|alice"),
        ("carl@example.com", "Carl", "Customer", 1, "auth0|carl"),
        ("cora@example.com", "Cora", "Customer", 1, "auth0|cora"),
        ("tess@example.com", "Tess", "Tech", 2, "auth0|tess"),
        ("tom@example.com", "Tom", "Tech", 2, "auth0|tom"),
    ]
    for email, first, last, role_id, auth0_id in users:
        db.query(
            "INSERT INTO users (email, first_name, last_name, role_id, auth0_id) "
            "VALUES ($1, $2, $3, $4, $5)",
            [email, first, last, role_id, auth0_id],
        )

    db.query(
        "INSERT INTO customers (user_id, company_name, email, internal_notes) "
        "VALUES ($1, $2, $3, $4)",
        [2, "Carl's Cafe", "carl@example.com", "pays late"],
    )
    db.query(
        "INSERT INTO customers (user_id, company_name, email) VALUES ($1, $2, $3)",
        [3, "Cora Corp", "cora@example.com"],
    )
    db.query(
        "INSERT INTO technicians (user_id, license_number, hourly_rate) VALUES ($1, $2, $3)",
        [4, "LIC-100", 55],
    )
    db.query(
        "INSERT INTO technicians (user_id, license_number, hourly_rate) VALUES ($1, $2, $3)",
        [5, "LIC-200", 60],
    )
    for user_id, customer_profile_id in [(2, 1), (3, 2)]:
        db.query(
            "UPDATE users SET customer_profile_id = $1 WHERE id = $2",
            [customer_profile_id, user_id],
        )
    for user_id, technician_profile_id in [(4, 1), (5, 2)]:
        db.query(
            "UPDATE users SET technician_profile_id = $1 WHERE id = $2",
            [technician_profile_id, user_id],
        )

    work_orders = [
        (1, 1, "Fix espresso machine", "pending", "high"),
        (1, 2, "Replace walk-in cooler seal", "assigned", "normal"),
        (2, 1, "Inspect HVAC unit", "in_progress", "emergency"),
        (2, None, "Quarterly maintenance", "pending", "low"),
    ]
    for customer_id, technician_id, title, status, priority in work_orders:
        db.query(
            "INSERT INTO work_orders (customer_id, assigned_technician_id, title, status, priority) "
            "VALUES ($1, $2, $3, $4, $5)",
            [customer_id, technician_id, title, status, priority],
        )

    db.query(
        "INSERT INTO file_attachments (work_order_id, filename) VALUES ($1, $2)",
        [1, "before.jpg"],
    )
    db.query(
        "INSERT INTO audit_logs (user_id, action, resource_type, resource_id) "
        "VALUES ($1, $2, $3, $4)",
        [1, "create", "work_orders", 1],
    )
    return db


def make_context(matrix, role: str, resource: str, **ids) -> SecurityContext:
    """Security context for role on resource with policy from the matrix."""
    return SecurityContext(
        filter_config=matrix.rls_policy(role, resource),
        user_id=ids.get("user_id", 1),
        customer_profile_id=ids.get("customer_profile_id"),
        technician_profile_id=ids.get("technician_profile_id"),
        role=role,
        resource=resource,
    )


@pytest.fixture
def context_for(matrix):
    def _factory(role: str, resource: str, **ids) -> SecurityContext:
        return make_context(matrix, role, resource, **ids)

    return _factory
