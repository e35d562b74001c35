"""Permission checking for entity and field access.

The PermissionMatrix is expanded once from entity metadata so that every
check is a dictionary lookup. Missing entries deny.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fieldward.auth.roles import FIELD_OPERATIONS, OPERATIONS, ROLE_HIERARCHY, satisfies
from fieldward.core.errors import PermissionDeniedError
from fieldward.rls.policy import DenyAll, FilterPolicy, NoFilter

if TYPE_CHECKING:
    from fieldward.metadata.loader import EntityMetadata, EntityRegistry

logger = logging.getLogger(__name__)


class PermissionMatrix:
    """Minimum access levels per (resource, operation) and (resource, field, operation).

    Args:
        entity_requirements: ``{(resource, operation): level}``
        field_requirements: ``{(resource, field, operation): level}``
        entities: Optional ``{resource: EntityMetadata}`` used for RLS policy lookups
    """

    def __init__(
        self,
        entity_requirements: dict[tuple[str, str], str | None],
        field_requirements: dict[tuple[str, str, str], str | None] | None = None,
        entities: dict[str, EntityMetadata] | None = None,
    ):
        self._entity_requirements = dict(entity_requirements)
        self._field_requirements = dict(field_requirements or {})
        self._entities = dict(entities or {})

    @classmethod
    def from_registry(cls, registry: EntityRegistry) -> PermissionMatrix:
        """Expand entity metadata into a flat matrix.

        Fields without an explicit access rule inherit the entity-level
        requirement for the same operation. Read-only fields cannot be
        written by anyone.
        """
        entity_requirements: dict[tuple[str, str], str | None] = {}
        field_requirements: dict[tuple[str, str, str], str | None] = {}
        entities: dict[str, EntityMetadata] = {}

        for entity in registry:
            resource = entity.resource
            entities[resource] = entity
            for operation in OPERATIONS:
                entity_requirements[(resource, operation)] = entity.permissions.for_operation(
                    operation
                )
            for field_def in entity.fields:
                for operation in FIELD_OPERATIONS:
                    if field_def.read_only and operation != "read":
                        level = None
                    else:
                        level = field_def.access.for_operation(operation)
                        if level is None:
                            level = entity.permissions.for_operation(operation)
                    field_requirements[(resource, field_def.name, operation)] = level

        return cls(entity_requirements, field_requirements, entities)

    # ------------------------------------------------------------------
    # Entity level
    # ------------------------------------------------------------------

    def required_level(self, resource: str, operation: str) -> str | None:
        return self._entity_requirements.get((resource, operation))

    def has_permission(self, role: str | None, resource: str, operation: str) -> bool:
        """Check whether role may perform operation on resource."""
        if (resource, operation) not in self._entity_requirements:
            return False
        return satisfies(role, self._entity_requirements[(resource, operation)])

    def get_allowed_operations(self, role: str | None, resource: str) -> list[str]:
        """Operations the role may perform, in create/read/update/delete order."""
        return [op for op in OPERATIONS if self.has_permission(role, resource, op)]

    def require_permission(self, role: str | None, resource: str, operation: str) -> None:
        """Raise PermissionDeniedError unless role may perform operation.

        Raises:
            PermissionDeniedError: If the role does not satisfy the requirement
        """
        if self.has_permission(role, resource, operation):
            return
        required = self.required_level(resource, operation)
        if required in ROLE_HIERARCHY:
            message = f"{required.capitalize()} role or higher required to {operation} {resource}"
        else:
            message = f"Operation '{operation}' is not permitted on {resource}"
        logger.info(
            "Permission denied: role=%s resource=%s operation=%s required=%s",
            role,
            resource,
            operation,
            required,
        )
        raise PermissionDeniedError(message)

    # ------------------------------------------------------------------
    # Field level
    # ------------------------------------------------------------------

    def has_field_permission(
        self, role: str | None, resource: str, field_name: str, operation: str
    ) -> bool:
        key = (resource, field_name, operation)
        if key not in self._field_requirements:
            return False
        return satisfies(role, self._field_requirements[key])

    def readable_fields(self, role: str | None, resource: str) -> list[str]:
        return self._fields_for(role, resource, "read")

    def writable_fields(self, role: str | None, resource: str, operation: str) -> list[str]:
        return self._fields_for(role, resource, operation)

    def _fields_for(self, role: str | None, resource: str, operation: str) -> list[str]:
        return [
            field_name
            for (res, field_name, op), level in self._field_requirements.items()
            if res == resource and op == operation and satisfies(role, level)
        ]

    # ------------------------------------------------------------------
    # Row-level security
    # ------------------------------------------------------------------

    def rls_policy(self, role: str | None, resource: str) -> FilterPolicy:
        """Resolve the filter policy for role on resource.

        Entities without an rlsPolicy block are unfiltered. A declared
        policy that omits the role denies it.
        """
        entity = self._entities.get(resource)
        if entity is None:
            return DenyAll()
        if entity.rls_policy is None:
            return NoFilter()
        policy = entity.rls_policy.get(role or "")
        if policy is None:
            logger.warning(
                "No RLS policy for role '%s' on '%s'; denying all rows", role, resource
            )
            return DenyAll()
        return policy

    def resources(self) -> list[str]:
        return sorted({resource for resource, _ in self._entity_requirements})
