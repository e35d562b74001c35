"""Load entity metadata from YAML files into an immutable registry."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from fieldward.auth.roles import ACCESS_LEVELS, FIELD_OPERATIONS, OPERATIONS, ROLE_HIERARCHY
from fieldward.core.errors import ValidationError
from fieldward.core.types import get_field_type
from fieldward.rls.policy import FilterPolicy, MalformedPolicy, is_identifier, parse_policy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldAccess:
    """Per-field minimum roles. None inherits the entity-level requirement."""

    create: str | None = None
    read: str | None = None
    update: str | None = None

    def for_operation(self, operation: str) -> str | None:
        return getattr(self, operation, None)


@dataclass(frozen=True)
class FieldDefinition:
    name: str
    type: str
    required: bool = False
    read_only: bool = False
    max_length: int | None = None
    values: tuple[str, ...] | None = None
    default: Any = None
    access: FieldAccess = field(default_factory=FieldAccess)


@dataclass(frozen=True)
class Relationship:
    """A belongsTo or hasMany link to another table."""

    name: str
    kind: str  # "belongsTo" | "hasMany"
    table: str
    foreign_key: str
    fields: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolymorphicType:
    column: str
    value: str


@dataclass(frozen=True)
class DependentConfig:
    """A child table whose rows are removed before the parent row."""

    table: str
    foreign_key: str
    polymorphic: PolymorphicType | None = None
    description: str = ""


@dataclass(frozen=True)
class SystemProtection:
    """Records whose identity value is in ``values`` are system records.

    Attributes:
        identity_field: Column compared against ``values``
        values: Protected identity values
        immutable_fields: Columns that may not change on a protected record
        prevent_delete: Whether protected records may be deleted
    """

    identity_field: str
    values: tuple[Any, ...] = ()
    immutable_fields: tuple[str, ...] = ()
    prevent_delete: bool = True

    def protects_value(self, value: Any) -> bool:
        return value is not None and value in self.values

    def protects(self, record: dict[str, Any]) -> bool:
        return self.protects_value(record.get(self.identity_field))


@dataclass(frozen=True)
class EntityPermissions:
    """Minimum access level per operation. None disables the operation."""

    create: str | None = "admin"
    read: str | None = "admin"
    update: str | None = "admin"
    delete: str | None = "admin"

    def for_operation(self, operation: str) -> str | None:
        return getattr(self, operation, None)


@dataclass(frozen=True)
class EntityMetadata:
    name: str
    table_name: str
    primary_key: str
    display_name: str
    fields: tuple[FieldDefinition, ...]
    permissions: EntityPermissions = field(default_factory=EntityPermissions)
    rls_resource: str | None = None
    rls_policy: dict[str, FilterPolicy] | None = None
    identity_field: str | None = None
    not_found_message: str | None = None
    aliases: tuple[str, ...] = ()
    required_fields: tuple[str, ...] = ()
    createable_fields: tuple[str, ...] = ()
    updateable_fields: tuple[str, ...] = ()
    searchable_fields: tuple[str, ...] = ()
    filterable_fields: tuple[str, ...] = ()
    sortable_fields: tuple[str, ...] = ()
    default_sort: tuple[str, str] = ("id", "ASC")
    sensitive_fields: tuple[str, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    dependents: tuple[DependentConfig, ...] = ()
    system_protected: SystemProtection | None = None
    hooks: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @property
    def resource(self) -> str:
        """Name used for permission and RLS lookups."""
        return self.rls_resource or self.table_name

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def has_active_flag(self) -> bool:
        return "is_active" in self.field_names

    def get_field(self, name: str) -> FieldDefinition | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None

    def hook_names(self, hook_point: str) -> tuple[str, ...]:
        return self.hooks.get(hook_point, ())


def normalize_entity_name(name: str) -> str:
    """Normalize user-supplied entity names: ``workOrder``, ``work-orders`` -> snake case."""
    stripped = name.strip()
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", stripped)
    return snake.replace("-", "_").replace(" ", "_").lower()


class EntityRegistry:
    """Loads entity definitions from ``metadata/entities/*.yaml``.

    The registry is built once at startup and is read-only afterwards.
    Lookups return None for unknown names; ``require`` raises.
    """

    def __init__(self, metadata_path: Path | None = None):
        self.metadata_path = metadata_path
        self.entities: dict[str, EntityMetadata] = {}
        self._aliases: dict[str, str] = {}

    def load_all(self) -> EntityRegistry:
        """Load every entity YAML file under ``entities/``."""
        if self.metadata_path is None:
            return self
        entities_path = self.metadata_path / "entities"
        if not entities_path.exists():
            logger.warning("No entity metadata found at %s", entities_path)
            return self

        for yaml_file in sorted(entities_path.glob("*.yaml")):
            with open(yaml_file) as f:
                data = yaml.safe_load(f)
            if data and "entity" in data:
                try:
                    self.register(self.resolve_entity(data))
                except ValueError as exc:
                    raise ValueError(f"{yaml_file.name}: {exc}") from exc

        self._validate_dependents()
        logger.info("Loaded %d entities from %s", len(self.entities), entities_path)
        return self

    def register(self, entity: EntityMetadata) -> None:
        """Add an entity and index its table name and aliases."""
        if entity.name in self.entities:
            raise ValueError(f"Duplicate entity '{entity.name}'")
        self.entities[entity.name] = entity
        for alias in (entity.name, entity.table_name, *entity.aliases):
            key = normalize_entity_name(alias)
            self._aliases.setdefault(key, entity.name)
            self._aliases.setdefault(key.replace("_", ""), entity.name)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, name: Any) -> EntityMetadata | None:
        """Return the entity for a name, table name or alias, or None."""
        if not isinstance(name, str) or not name.strip():
            return None
        key = normalize_entity_name(name)
        if key in self.entities:
            return self.entities[key]
        canonical = self._aliases.get(key) or self._aliases.get(key.replace("_", ""))
        return self.entities.get(canonical) if canonical else None

    def require(self, name: Any) -> EntityMetadata:
        """Return the entity for name or raise ValidationError."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Entity name is required and must be a string")
        entity = self.lookup(name)
        if entity is None:
            raise ValidationError(
                f"Unknown entity: {name.strip()}. "
                f"Valid entities: {', '.join(self.list_entities())}"
            )
        return entity

    def by_table(self, table_name: str) -> EntityMetadata | None:
        for entity in self.entities.values():
            if entity.table_name == table_name:
                return entity
        return None

    def by_resource(self, resource: str) -> EntityMetadata | None:
        for entity in self.entities.values():
            if entity.resource == resource:
                return entity
        return None

    def list_entities(self) -> list[str]:
        return sorted(self.entities)

    def __contains__(self, name: object) -> bool:
        return self.lookup(name) is not None

    def __iter__(self) -> Iterator[EntityMetadata]:
        return iter(self.entities[name] for name in self.list_entities())

    def __len__(self) -> int:
        return len(self.entities)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_entity(self, data: dict[str, Any]) -> EntityMetadata:
        """Build an EntityMetadata from a parsed YAML document.

        Raises:
            ValueError: If a required key is missing or a reference is invalid.
        """
        name = data["entity"]
        table_name = data.get("tableName")
        primary_key = data.get("primaryKey")
        if not table_name:
            raise ValueError(f"Entity '{name}' has no tableName")
        if not primary_key:
            raise ValueError(f"Entity '{name}' has no primaryKey")

        fields = tuple(
            self._resolve_field(field_name, spec or {})
            for field_name, spec in (data.get("fields") or {}).items()
        )
        field_names = {f.name for f in fields}
        if fields and primary_key not in field_names:
            raise ValueError(f"Entity '{name}' primaryKey '{primary_key}' is not a field")

        def field_list(key: str) -> tuple[str, ...]:
            values = tuple(data.get(key) or ())
            unknown = [v for v in values if v not in field_names]
            if unknown:
                raise ValueError(f"Entity '{name}' {key} references unknown fields: {unknown}")
            return values

        searchable_fields = field_list("searchableFields")
        by_name = {f.name: f for f in fields}
        not_text = [n for n in searchable_fields if not get_field_type(by_name[n].type).searchable]
        if not_text:
            raise ValueError(
                f"Entity '{name}' searchableFields must be text-like fields: {not_text}"
            )

        default_sort = data.get("defaultSort") or {}

        return EntityMetadata(
            name=name,
            table_name=table_name,
            primary_key=primary_key,
            display_name=data.get("displayName", name.replace("_", " ").title()),
            fields=fields,
            permissions=self._resolve_permissions(name, data.get("permissions")),
            rls_resource=data.get("rlsResource"),
            rls_policy=self._resolve_rls_policy(name, data),
            identity_field=data.get("identityField"),
            not_found_message=data.get("notFoundMessage"),
            aliases=tuple(data.get("aliases") or ()),
            required_fields=field_list("requiredFields"),
            createable_fields=field_list("createableFields"),
            updateable_fields=field_list("updateableFields"),
            searchable_fields=searchable_fields,
            filterable_fields=field_list("filterableFields"),
            sortable_fields=field_list("sortableFields"),
            default_sort=(
                default_sort.get("field", primary_key),
                str(default_sort.get("order", "ASC")).upper(),
            ),
            sensitive_fields=tuple(data.get("sensitiveFields") or ()),
            relationships=tuple(
                Relationship(
                    name=rel_name,
                    kind=rel["type"],
                    table=rel["table"],
                    foreign_key=rel["foreignKey"],
                    fields=tuple(rel.get("fields") or ()),
                )
                for rel_name, rel in (data.get("relationships") or {}).items()
            ),
            dependents=tuple(self._resolve_dependent(name, d) for d in data.get("dependents") or ()),
            system_protected=self._resolve_protection(name, data),
            hooks={
                point: tuple(names or ())
                for point, names in (data.get("hooks") or {}).items()
            },
        )

    def _resolve_field(self, name: str, spec: dict[str, Any]) -> FieldDefinition:
        field_type = spec.get("type", "string")
        get_field_type(field_type)
        access = spec.get("access") or {}
        for operation, level in access.items():
            if operation not in FIELD_OPERATIONS:
                raise ValueError(f"Field '{name}' access has unknown operation '{operation}'")
            _check_access_level(f"field '{name}' {operation}", level)
        values = spec.get("values")
        return FieldDefinition(
            name=name,
            type=field_type,
            required=bool(spec.get("required", False)),
            read_only=bool(spec.get("readOnly", False)),
            max_length=spec.get("maxLength"),
            values=tuple(values) if values else None,
            default=spec.get("default"),
            access=FieldAccess(**{op: access.get(op) for op in FIELD_OPERATIONS}),
        )

    def _resolve_permissions(self, entity_name: str, data: dict | None) -> EntityPermissions:
        if data is None:
            return EntityPermissions()
        for operation, level in data.items():
            if operation not in OPERATIONS:
                raise ValueError(
                    f"Entity '{entity_name}' permissions has unknown operation '{operation}'"
                )
            _check_access_level(f"entity '{entity_name}' {operation}", level)
        return EntityPermissions(**{op: data.get(op) for op in OPERATIONS})

    def _resolve_rls_policy(self, entity_name: str, data: dict) -> dict[str, FilterPolicy] | None:
        raw = data.get("rlsPolicy")
        if raw is None:
            return None
        policies: dict[str, FilterPolicy] = {}
        for role, value in raw.items():
            if role not in ROLE_HIERARCHY:
                raise ValueError(
                    f"Entity '{entity_name}' rlsPolicy has unknown role '{role}'. "
                    f"Known roles: {', '.join(ROLE_HIERARCHY)}"
                )
            policy = parse_policy(value)
            if isinstance(policy, MalformedPolicy):
                logger.warning(
                    "Entity '%s' rlsPolicy for role '%s' is malformed (%r); access will be denied",
                    entity_name,
                    role,
                    value,
                )
            policies[role] = policy
        return policies

    def _resolve_dependent(self, entity_name: str, data: dict[str, Any]) -> DependentConfig:
        table = data.get("table")
        foreign_key = data.get("foreignKey")
        if not is_identifier(table) or not is_identifier(foreign_key):
            raise ValueError(
                f"Entity '{entity_name}' dependent needs identifier table and foreignKey: {data}"
            )
        polymorphic = data.get("polymorphicType")
        if polymorphic is not None:
            if not is_identifier(polymorphic.get("column")) or "value" not in polymorphic:
                raise ValueError(
                    f"Entity '{entity_name}' dependent {table} has invalid polymorphicType"
                )
            polymorphic = PolymorphicType(polymorphic["column"], str(polymorphic["value"]))
        return DependentConfig(
            table=table,
            foreign_key=foreign_key,
            polymorphic=polymorphic,
            description=data.get("description", ""),
        )

    def _resolve_protection(self, entity_name: str, data: dict) -> SystemProtection | None:
        raw = data.get("systemProtected")
        if not raw:
            return None
        identity_field = raw.get("identityField") or data.get("identityField")
        if not identity_field:
            raise ValueError(f"Entity '{entity_name}' systemProtected requires an identityField")
        return SystemProtection(
            identity_field=identity_field,
            values=tuple(raw.get("values") or ()),
            immutable_fields=tuple(raw.get("immutableFields") or ()),
            prevent_delete=bool(raw.get("preventDelete", True)),
        )

    def _validate_dependents(self) -> None:
        """Warn about dependents that point at tables no entity declares."""
        tables = {e.table_name for e in self.entities.values()}
        for entity in self.entities.values():
            for dependent in entity.dependents:
                if dependent.table not in tables:
                    logger.warning(
                        "Entity '%s' dependent table '%s' is not declared by any entity",
                        entity.name,
                        dependent.table,
                    )


def _check_access_level(label: str, level: Any) -> None:
    if level is not None and level not in ACCESS_LEVELS:
        raise ValueError(
            f"Access level '{level}' for {label} is not one of: {', '.join(ACCESS_LEVELS)}"
        )
