"""Build SQLAlchemy tables from entity metadata.

Column types come from the field type registry. Defaults are emitted as
server defaults because Fieldward writes through textual SQL, not ORM
inserts. The audit table is always present so deletes can cascade into it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import (
    Column,
    DateTime,
    Engine,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    false,
    func,
    true,
)

from fieldward.config import DEFAULT_AUDIT_TABLE
from fieldward.core.types import get_field_type

if TYPE_CHECKING:
    from fieldward.metadata.loader import EntityMetadata, EntityRegistry, FieldDefinition

logger = logging.getLogger(__name__)


def _server_default(field_def: FieldDefinition) -> Any:
    default = field_def.default
    if default is None:
        return None
    if isinstance(default, bool):
        return true() if default else false()
    if default == "now":
        return func.current_timestamp()
    return str(default)


def _column(entity: EntityMetadata, field_def: FieldDefinition) -> Column:
    if field_def.name == entity.primary_key:
        return Column(field_def.name, Integer, primary_key=True, autoincrement=True)

    column_type = get_field_type(field_def.type).column_type
    if column_type is String and field_def.max_length:
        type_instance = String(field_def.max_length)
    elif column_type is String:
        type_instance = String(255)
    else:
        type_instance = column_type()

    return Column(
        field_def.name,
        type_instance,
        nullable=not field_def.required,
        server_default=_server_default(field_def),
    )


def audit_table(metadata: MetaData, name: str = DEFAULT_AUDIT_TABLE) -> Table:
    """Polymorphic audit log: one row per action on (resource_type, resource_id)."""
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("user_id", Integer, nullable=True),
        Column("action", String(50), nullable=False),
        Column("resource_type", String(100), nullable=False),
        Column("resource_id", Integer, nullable=True),
        Column("old_values", Text, nullable=True),
        Column("new_values", Text, nullable=True),
        Column("created_at", DateTime, server_default=func.current_timestamp()),
    )


def build_metadata(registry: EntityRegistry, audit_table_name: str = DEFAULT_AUDIT_TABLE) -> MetaData:
    """Create a MetaData with one table per entity plus the audit table."""
    metadata = MetaData()
    for entity in registry:
        if not entity.fields:
            logger.warning("Entity '%s' declares no fields; skipping table", entity.name)
            continue
        Table(
            entity.table_name,
            metadata,
            *(_column(entity, f) for f in entity.fields),
        )
    if audit_table_name not in metadata.tables:
        audit_table(metadata, audit_table_name)
    return metadata


def create_schema(
    engine: Engine,
    registry: EntityRegistry,
    audit_table_name: str = DEFAULT_AUDIT_TABLE,
) -> list[str]:
    """Create all tables that do not exist yet. Returns the table names."""
    metadata = build_metadata(registry, audit_table_name)
    metadata.create_all(engine)
    logger.info("Ensured %d tables", len(metadata.tables))
    return sorted(metadata.tables)
