"""Metadata-driven CRUD with permission checks and row-level security.

Every operation follows the same order: resolve the entity, check the
role's permission, build caller conditions, append the compiled RLS
fragment with a parameter offset, execute, then verify that RLS was
applied before anything is returned.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from fieldward.auth.output import filter_output, filter_output_many, filter_write_payload
from fieldward.core.errors import (
    NotFoundError,
    PermissionDeniedError,
    ProtectedResourceError,
    ValidationError,
)
from fieldward.core.security_log import log_security_event
from fieldward.hooks.types import DeleteOptions
from fieldward.rls.compiler import FilterResult, compile_filter, compile_filter_for_find_by_id
from fieldward.rls.enforcement import validate_rls_applied
from fieldward.rls.policy import FieldReference, FieldShorthand, NoFilter, parse_policy
from fieldward.services.query_builder import (
    QueryBuilder,
    QueryOptions,
    coerce_id,
    coerce_value,
    where_sql,
)

if TYPE_CHECKING:
    from fieldward.auth.permissions import PermissionMatrix
    from fieldward.hooks.registry import HookFn
    from fieldward.metadata.loader import EntityMetadata, EntityRegistry
    from fieldward.persistence.client import Database
    from fieldward.rls.context import SecurityContext
    from fieldward.services.delete_engine import AuditCascadeDeleteEngine

logger = logging.getLogger(__name__)


@dataclass
class ListResult:
    data: list[dict[str, Any]]
    pagination: dict[str, int]
    applied_filters: dict[str, Any] = field(default_factory=dict)
    rls_applied: bool = False


@dataclass
class RecordResult:
    data: dict[str, Any]
    rls_applied: bool = False


class GenericEntityService:
    """CRUD for any entity declared in metadata.

    Args:
        registry: Entity metadata
        matrix: Permission matrix built from the same registry
        db: Database used for reads and single-statement writes
        delete_engine: Engine used by ``delete``
        allow_unscoped: Permit calls without a SecurityContext (internal jobs)
    """

    def __init__(
        self,
        registry: EntityRegistry,
        matrix: PermissionMatrix,
        db: Database,
        delete_engine: AuditCascadeDeleteEngine | None = None,
        allow_unscoped: bool = False,
    ):
        self.registry = registry
        self.matrix = matrix
        self.db = db
        self.delete_engine = delete_engine
        self.allow_unscoped = allow_unscoped

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_all(
        self,
        entity_name: str,
        context: SecurityContext | None,
        options: QueryOptions | None = None,
    ) -> ListResult:
        """List records visible to the caller with filters, search, sort and paging."""
        entity, context = self._authorize(entity_name, context, "read")
        options = options or QueryOptions()
        builder = QueryBuilder(entity)
        table = entity.table_name

        where = builder.build_where(options)
        order_by = builder.build_order_by(options)
        limit_sql, page, limit = builder.build_pagination(options)

        rls = compile_filter(context, entity, param_offset=len(where.params))
        conditions = where.conditions + ([rls.clause] if rls.clause else [])
        params = where.params + rls.params
        clause = where_sql(conditions)

        total = self.db.query(f"SELECT COUNT(*) AS total FROM {table}{clause}", params).rows[0][
            "total"
        ]
        rows = self.db.query(f"SELECT * FROM {table}{clause}{order_by}{limit_sql}", params).rows

        result = ListResult(
            data=self._output_many(rows, entity, context),
            pagination={
                "page": page,
                "limit": limit,
                "total": int(total),
                "total_pages": math.ceil(int(total) / limit) if total else 0,
            },
            applied_filters=where.applied_filters,
            rls_applied=rls.applied,
        )
        validate_rls_applied(context, result)
        return result

    def find_by_id(
        self, entity_name: str, record_id: Any, context: SecurityContext | None
    ) -> RecordResult:
        """Fetch one record; rows hidden by RLS raise NotFoundError like missing ones."""
        entity, context = self._authorize(entity_name, context, "read")
        row, rls = self._select_visible(entity, coerce_id(record_id), context)
        result = RecordResult(data=self._output(row, entity, context), rls_applied=rls.applied)
        validate_rls_applied(context, result)
        return result

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self, entity_name: str, data: dict[str, Any], context: SecurityContext | None
    ) -> RecordResult:
        """Insert a record. Field-filtered roles can only create rows they own."""
        entity, context = self._authorize(entity_name, context, "create")
        payload = self._writable_payload(entity, data, context, "create", entity.createable_fields)
        rls_applied = self._enforce_ownership(entity, payload, context, creating=True)

        missing = [
            name for name in entity.required_fields if payload.get(name) in (None, "")
        ]
        if missing:
            raise ValidationError(f"Missing required field(s): {', '.join(missing)}")

        table = entity.table_name
        if payload:
            columns = list(payload)
            placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
            sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES RETURNING *"
        row = self.db.query(sql, list(payload.values())).rows[0]
        logger.info("Created %s %s", table, row.get(entity.primary_key))

        result = RecordResult(data=self._output(row, entity, context), rls_applied=rls_applied)
        validate_rls_applied(context, result)
        return result

    def update(
        self,
        entity_name: str,
        record_id: Any,
        data: dict[str, Any],
        context: SecurityContext | None,
    ) -> RecordResult:
        """Update a visible record. Immutable fields of protected records cannot change."""
        entity, context = self._authorize(entity_name, context, "update")
        record_id = coerce_id(record_id)
        payload = self._writable_payload(entity, data, context, "update", entity.updateable_fields)
        if not payload:
            raise ValidationError("No updatable fields provided")
        self._enforce_ownership(entity, payload, context, creating=False)

        existing, _ = self._select_visible(entity, record_id, context)
        self._check_immutable(entity, existing, payload)

        table = entity.table_name
        assignments = [f"{column} = ${i}" for i, column in enumerate(payload, start=1)]
        if entity.get_field("updated_at") is not None and "updated_at" not in payload:
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        params = [*payload.values(), record_id]
        conditions = [f"{table}.{entity.primary_key} = ${len(params)}"]

        rls = compile_filter(context, entity, param_offset=len(params))
        if rls.clause:
            conditions.append(rls.clause)
            params.extend(rls.params)

        rows = self.db.query(
            f"UPDATE {table} SET {', '.join(assignments)}{where_sql(conditions)} RETURNING *",
            params,
        ).rows
        if not rows:
            raise NotFoundError(self._not_found_message(entity))
        logger.info("Updated %s %s fields=%s", table, record_id, sorted(payload))

        result = RecordResult(data=self._output(rows[0], entity, context), rls_applied=rls.applied)
        validate_rls_applied(context, result)
        return result

    async def delete(
        self,
        entity_name: str,
        record_id: Any,
        context: SecurityContext | None,
        options: DeleteOptions | None = None,
        before_delete: HookFn | None = None,
    ) -> RecordResult:
        """Delete a visible record through the audit-cascade engine."""
        if self.delete_engine is None:
            raise RuntimeError("GenericEntityService was created without a delete engine")
        entity, context = self._authorize(entity_name, context, "delete")
        record_id = coerce_id(record_id)
        existing, rls = self._select_visible(entity, record_id, context)

        if options is None:
            options = DeleteOptions(acting_user_id=context.user_id if context else None)
        identity_value = None
        if entity.system_protected is not None:
            identity_value = existing.get(entity.system_protected.identity_field)

        request = self.delete_engine.request_for(
            entity,
            record_id,
            options=options,
            before_delete=before_delete,
            identity_value=identity_value,
        )
        record = await self.delete_engine.delete(request)

        result = RecordResult(data=self._output(record, entity, context), rls_applied=rls.applied)
        validate_rls_applied(context, result)
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _authorize(
        self, entity_name: str, context: SecurityContext | None, operation: str
    ) -> tuple[EntityMetadata, SecurityContext | None]:
        """Check the role and bind the context to the entity's matrix policy.

        The returned context carries the policy from the permission matrix,
        never the caller's ``filter_config``.
        """
        entity = self.registry.require(entity_name)
        if context is None:
            if not self.allow_unscoped:
                raise PermissionDeniedError("Security context required")
            return entity, None
        if not context.resource:
            log_security_event(
                "UNBOUND_SECURITY_CONTEXT",
                "HIGH",
                resource=entity.resource,
                role=context.role,
                user_id=context.user_id,
            )
            raise PermissionDeniedError(
                f"Security context is not bound to a resource (expected '{entity.resource}')"
            )
        if context.resource != entity.resource:
            raise PermissionDeniedError(
                f"Security context is for '{context.resource}', not '{entity.resource}'"
            )
        self.matrix.require_permission(context.role, entity.resource, operation)
        policy = self.matrix.rls_policy(context.role, entity.resource)
        if policy != context.filter_config:
            logger.warning(
                "Replacing caller filter %r with %r for role=%s on %s",
                context.filter_config,
                policy,
                context.role,
                entity.resource,
            )
            context = replace(context, filter_config=policy)
        return entity, context

    def _select_visible(
        self, entity: EntityMetadata, record_id: int, context: SecurityContext | None
    ) -> tuple[dict[str, Any], FilterResult]:
        table = entity.table_name
        rls = compile_filter_for_find_by_id(context, entity)
        conditions = [f"{table}.{entity.primary_key} = $1"]
        if rls.clause:
            conditions.append(rls.clause)
        rows = self.db.query(
            f"SELECT * FROM {table}{where_sql(conditions)}", [record_id, *rls.params]
        ).rows
        if not rows:
            raise NotFoundError(self._not_found_message(entity))
        return rows[0], rls

    def _writable_payload(
        self,
        entity: EntityMetadata,
        data: dict[str, Any],
        context: SecurityContext | None,
        operation: str,
        allowed: tuple[str, ...],
    ) -> dict[str, Any]:
        if not isinstance(data, dict):
            raise ValidationError("Request body must be an object")
        not_allowed = sorted(set(data) - set(allowed))
        if not_allowed:
            raise ValidationError(
                f"Field(s) not allowed on {operation} for {entity.name}: {', '.join(not_allowed)}"
            )
        payload = dict(data)
        if context is not None:
            payload = filter_write_payload(payload, entity, context.role, self.matrix, operation)
            dropped = sorted(set(data) - set(payload))
            if dropped:
                logger.debug("Dropped fields %s for role %s on %s", dropped, context.role, operation)
        return {
            name: coerce_value(entity.get_field(name), value) if entity.get_field(name) else value
            for name, value in payload.items()
        }

    def _enforce_ownership(
        self,
        entity: EntityMetadata,
        payload: dict[str, Any],
        context: SecurityContext | None,
        creating: bool,
    ) -> bool:
        """Pin the owner column of field-filtered roles; returns whether RLS was evaluated."""
        if context is None:
            return False
        policy = parse_policy(context.filter_config)
        if isinstance(policy, NoFilter):
            return True
        if isinstance(policy, FieldShorthand):
            column, key = policy.column, "userId"
        elif isinstance(policy, FieldReference):
            column, key = policy.column, policy.context_key
        elif creating:
            raise PermissionDeniedError(f"Role '{context.role}' cannot create {entity.name} records")
        else:
            return True

        owner = context.value_for(key)
        if owner is None:
            raise PermissionDeniedError(f"No {key} available to scope {entity.name} records")
        if column in payload and payload[column] is not None and str(payload[column]) != str(owner):
            raise PermissionDeniedError(f"Cannot assign {entity.name} to another owner")
        if creating:
            payload[column] = owner
        return True

    def _check_immutable(
        self, entity: EntityMetadata, existing: dict[str, Any], payload: dict[str, Any]
    ) -> None:
        protection = entity.system_protected
        if protection is None or not protection.protects(existing):
            return
        changed = [
            name
            for name in protection.immutable_fields
            if name in payload and payload[name] != existing.get(name)
        ]
        if changed:
            raise ProtectedResourceError(
                f"Cannot modify {', '.join(changed)} on system-protected {entity.table_name} "
                f"record '{existing.get(protection.identity_field)}'"
            )

    def _output(
        self, row: dict[str, Any], entity: EntityMetadata, context: SecurityContext | None
    ) -> dict[str, Any]:
        if context is None:
            return row
        return filter_output(row, entity, context.role, self.matrix)

    def _output_many(
        self, rows: list[dict[str, Any]], entity: EntityMetadata, context: SecurityContext | None
    ) -> list[dict[str, Any]]:
        if context is None:
            return rows
        return filter_output_many(rows, entity, context.role, self.matrix)

    @staticmethod
    def _not_found_message(entity: EntityMetadata) -> str:
        return entity.not_found_message or f"{entity.display_name} not found"
