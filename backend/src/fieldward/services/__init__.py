"""Entity service, query building and the audit-cascade delete engine."""

from fieldward.services.delete_engine import (
    AuditCascadeDeleteEngine,
    DeleteRequest,
    DeleteState,
    ProtectionCheck,
)
from fieldward.services.entity_service import GenericEntityService, ListResult, RecordResult
from fieldward.services.query_builder import QueryBuilder, QueryOptions, coerce_id

__all__ = [
    "AuditCascadeDeleteEngine",
    "DeleteRequest",
    "DeleteState",
    "GenericEntityService",
    "ListResult",
    "ProtectionCheck",
    "QueryBuilder",
    "QueryOptions",
    "RecordResult",
    "coerce_id",
]
