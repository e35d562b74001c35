"""Strip unreadable and sensitive fields from records before they leave the core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fieldward.auth.permissions import PermissionMatrix
    from fieldward.metadata.loader import EntityMetadata

# Never returned regardless of role or metadata
ALWAYS_SENSITIVE = frozenset(
    {
        "auth0_id",
        "refresh_token",
        "api_key",
        "api_secret",
        "secret_key",
        "private_key",
    }
)


def filter_output(
    record: dict[str, Any],
    entity: EntityMetadata,
    role: str | None,
    matrix: PermissionMatrix,
) -> dict[str, Any]:
    """Return a copy of record containing only what role may read.

    Columns that are not declared fields (joined or computed columns) are
    kept unless they are sensitive.
    """
    hidden = ALWAYS_SENSITIVE | set(entity.sensitive_fields)
    declared = set(entity.field_names)
    result = {}
    for key, value in record.items():
        if key in hidden:
            continue
        if key in declared and not matrix.has_field_permission(
            role, entity.resource, key, "read"
        ):
            continue
        result[key] = value
    return result


def filter_output_many(
    records: list[dict[str, Any]],
    entity: EntityMetadata,
    role: str | None,
    matrix: PermissionMatrix,
) -> list[dict[str, Any]]:
    return [filter_output(record, entity, role, matrix) for record in records]


def filter_write_payload(
    data: dict[str, Any],
    entity: EntityMetadata,
    role: str | None,
    matrix: PermissionMatrix,
    operation: str,
) -> dict[str, Any]:
    """Drop fields the role may not write for operation.

    Unknown keys are left for the caller's whitelist check.
    """
    declared = set(entity.field_names)
    return {
        key: value
        for key, value in data.items()
        if key not in declared
        or matrix.has_field_permission(role, entity.resource, key, operation)
    }
