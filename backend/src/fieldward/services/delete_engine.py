"""Transactional delete with before-delete hooks and dependent cascades.

A delete walks a fixed sequence of states:

    BEGIN -> FETCH -> HOOK -> CASCADE_DEPENDENTS -> CASCADE_AUDIT
          -> DELETE_TARGET -> COMMIT

FETCH may end in NOT_FOUND or PROTECTED. Any failure after BEGIN rolls
back. The client is released on every exit path. A protected identity
known before the call is rejected before a connection is acquired.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from fieldward.config import DEFAULT_AUDIT_TABLE
from fieldward.core.errors import NotFoundError, ProtectedResourceError, ValidationError
from fieldward.core.security_log import log_security_event
from fieldward.hooks.registry import HookFn, call_hook, compose_before_delete
from fieldward.hooks.types import DeleteHookContext, DeleteOptions
from fieldward.metadata.loader import DependentConfig, PolymorphicType, SystemProtection
from fieldward.rls.policy import is_identifier

if TYPE_CHECKING:
    from fieldward.metadata.loader import EntityMetadata, EntityRegistry
    from fieldward.persistence.client import ConnectionSource, TransactionalClient

logger = logging.getLogger(__name__)


class DeleteState(str, Enum):
    BEGIN = "BEGIN"
    FETCH = "FETCH"
    NOT_FOUND = "NOT_FOUND"
    PROTECTED = "PROTECTED"
    HOOK = "HOOK"
    CASCADE_DEPENDENTS = "CASCADE_DEPENDENTS"
    CASCADE_AUDIT = "CASCADE_AUDIT"
    DELETE_TARGET = "DELETE_TARGET"
    COMMIT = "COMMIT"
    ROLLBACK = "ROLLBACK"


@dataclass(frozen=True)
class ProtectionCheck:
    """System-protection rule applied to one delete.

    Attributes:
        identity_field: Column holding the identity value
        values: Protected identity values
        prevent_delete: Whether protected records may be deleted at all
        identity_value: Identity of the target when the caller already knows it
    """

    identity_field: str
    values: tuple[Any, ...]
    prevent_delete: bool = True
    identity_value: Any = None

    @classmethod
    def from_protection(
        cls, protection: SystemProtection, identity_value: Any = None
    ) -> ProtectionCheck:
        return cls(
            identity_field=protection.identity_field,
            values=protection.values,
            prevent_delete=protection.prevent_delete,
            identity_value=identity_value,
        )

    def blocks_value(self, value: Any) -> bool:
        return self.prevent_delete and value is not None and value in self.values


@dataclass
class DeleteRequest:
    """Everything the engine needs to delete one row.

    Attributes:
        table_name: Target table
        id: Primary key value
        before_delete: Optional hook run after FETCH, inside the transaction
        options: Acting user, force flag and extras
        protection: Optional system-protection rule
        dependents: Child tables cascaded before the target
        primary_key: Primary key column
        not_found_message: Overrides the default not-found message
    """

    table_name: str
    id: Any
    before_delete: HookFn | None = None
    options: DeleteOptions = field(default_factory=DeleteOptions)
    protection: ProtectionCheck | None = None
    dependents: tuple[DependentConfig, ...] = ()
    primary_key: str = "id"
    not_found_message: str | None = None


class AuditCascadeDeleteEngine:
    """Runs DeleteRequests against a connection source.

    Args:
        source: Hands out one transactional client per delete
        registry: Optional entity registry for not-found messages
        audit_table: Table holding polymorphic audit rows
    """

    def __init__(
        self,
        source: ConnectionSource,
        registry: EntityRegistry | None = None,
        audit_table: str = DEFAULT_AUDIT_TABLE,
    ):
        self._source = source
        self._registry = registry
        self.audit_table = audit_table

    def request_for(
        self,
        entity: EntityMetadata,
        record_id: Any,
        options: DeleteOptions | None = None,
        before_delete: HookFn | None = None,
        identity_value: Any = None,
    ) -> DeleteRequest:
        """Build a DeleteRequest from entity metadata.

        Hooks named under ``hooks.beforeDelete`` run first, then
        ``before_delete`` if given.

        Raises:
            ValueError: If a named hook is not registered
        """
        named = compose_before_delete(entity.hook_names("beforeDelete"))
        hook_fns = [fn for fn in (named, before_delete) if fn is not None]
        if len(hook_fns) > 1:
            first, second = hook_fns

            async def chained(record: dict[str, Any], ctx: DeleteHookContext) -> None:
                await call_hook(first, record, ctx)
                await call_hook(second, record, ctx)

            hook_fn = chained
        else:
            hook_fn = hook_fns[0] if hook_fns else None

        protection = None
        if entity.system_protected is not None:
            protection = ProtectionCheck.from_protection(entity.system_protected, identity_value)

        return DeleteRequest(
            table_name=entity.table_name,
            id=record_id,
            before_delete=hook_fn,
            options=options or DeleteOptions(),
            protection=protection,
            dependents=entity.dependents,
            primary_key=entity.primary_key,
            not_found_message=entity.not_found_message,
        )

    async def delete(self, request: DeleteRequest) -> dict[str, Any]:
        """Delete the target row and its dependents in one transaction.

        Returns:
            The target row as it was before deletion

        Raises:
            ProtectedResourceError: Target is system protected and force is not set
            NotFoundError: Target does not exist
            StorageError: The database failed; the transaction was rolled back
            Exception: Anything the before-delete hook raises, unchanged
        """
        self._check_identifiers(request)
        protection = request.protection
        force = request.options.force

        if protection and not force and protection.blocks_value(protection.identity_value):
            self._reject_protected(request, protection.identity_value)

        client = self._source.acquire()
        try:
            self._enter(DeleteState.BEGIN, request)
            client.begin()
            try:
                record = await self._run(client, request)
            except BaseException:
                self._rollback(client, request)
                raise
            return record
        finally:
            client.release()

    async def _run(self, client: TransactionalClient, request: DeleteRequest) -> dict[str, Any]:
        table = request.table_name
        pk = request.primary_key

        self._enter(DeleteState.FETCH, request)
        fetch_sql = f"SELECT * FROM {table} WHERE {pk} = $1"
        if getattr(client, "supports_row_locks", False) is True:
            fetch_sql += " FOR UPDATE"
        rows = client.execute(fetch_sql, [request.id]).rows
        if not rows:
            self._enter(DeleteState.NOT_FOUND, request)
            raise NotFoundError(self._not_found_message(request))
        record = rows[0]

        protection = request.protection
        if protection and not request.options.force:
            identity = record.get(protection.identity_field)
            if protection.blocks_value(identity):
                self._enter(DeleteState.PROTECTED, request)
                self._reject_protected(request, identity)

        if request.before_delete is not None:
            self._enter(DeleteState.HOOK, request)
            ctx = DeleteHookContext(
                client=client,
                options=request.options,
                record=record,
                table_name=table,
                id=request.id,
            )
            await call_hook(request.before_delete, record, ctx)

        audit_dependents = [d for d in request.dependents if d.table == self.audit_table]
        other_dependents = [d for d in request.dependents if d.table != self.audit_table]

        self._enter(DeleteState.CASCADE_DEPENDENTS, request)
        cascaded = sum(self._delete_dependent(client, d, request.id) for d in other_dependents)

        self._enter(DeleteState.CASCADE_AUDIT, request)
        if not any(d.polymorphic for d in audit_dependents):
            audit_dependents.append(
                DependentConfig(
                    table=self.audit_table,
                    foreign_key="resource_id",
                    polymorphic=PolymorphicType(column="resource_type", value=table),
                )
            )
        cascaded += sum(self._delete_dependent(client, d, request.id) for d in audit_dependents)

        self._enter(DeleteState.DELETE_TARGET, request)
        client.execute(f"DELETE FROM {table} WHERE {pk} = $1", [request.id])

        self._enter(DeleteState.COMMIT, request)
        client.commit()
        logger.info(
            "Deleted %s %s (%d dependent row(s) removed)", table, request.id, cascaded
        )
        return record

    def _delete_dependent(
        self, client: TransactionalClient, dependent: DependentConfig, record_id: Any
    ) -> int:
        if dependent.polymorphic is not None:
            sql = (
                f"DELETE FROM {dependent.table} "
                f"WHERE {dependent.polymorphic.column} = $1 AND {dependent.foreign_key} = $2"
            )
            params = [dependent.polymorphic.value, record_id]
        else:
            sql = f"DELETE FROM {dependent.table} WHERE {dependent.foreign_key} = $1"
            params = [record_id]
        rowcount = client.execute(sql, params).rowcount
        return rowcount if isinstance(rowcount, int) and rowcount > 0 else 0

    def _rollback(self, client: TransactionalClient, request: DeleteRequest) -> None:
        self._enter(DeleteState.ROLLBACK, request)
        try:
            client.rollback()
        except Exception:
            logger.exception("Rollback failed while deleting %s %s", request.table_name, request.id)

    def _reject_protected(self, request: DeleteRequest, identity: Any) -> None:
        log_security_event(
            "PROTECTED_DELETE_BLOCKED",
            "MEDIUM",
            table=request.table_name,
            id=request.id,
            identity=identity,
            acting_user_id=request.options.acting_user_id,
        )
        raise ProtectedResourceError(
            f"Cannot delete system-protected {request.table_name} record '{identity}'"
        )

    def _not_found_message(self, request: DeleteRequest) -> str:
        if request.not_found_message:
            return request.not_found_message
        if self._registry is not None:
            entity = self._registry.by_table(request.table_name)
            if entity is not None and entity.not_found_message:
                return entity.not_found_message
        return f"{request.table_name} not found"

    def _check_identifiers(self, request: DeleteRequest) -> None:
        names = [request.table_name, request.primary_key]
        for dependent in request.dependents:
            names.extend([dependent.table, dependent.foreign_key])
            if dependent.polymorphic is not None:
                names.append(dependent.polymorphic.column)
        invalid = [name for name in names if not is_identifier(name)]
        if invalid:
            raise ValidationError(f"Invalid SQL identifier(s) in delete request: {invalid}")

    def _enter(self, state: DeleteState, request: DeleteRequest) -> None:
        logger.debug("delete %s %s: %s", request.table_name, request.id, state.value)
