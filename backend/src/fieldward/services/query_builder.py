"""Build WHERE / ORDER BY / LIMIT fragments from validated caller input.

Every column that reaches SQL text comes from entity metadata allow-lists;
every caller value is bound as a ``$N`` parameter.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fieldward.core.errors import ValidationError
from fieldward.core.types import get_field_type

if TYPE_CHECKING:
    from fieldward.metadata.loader import EntityMetadata, FieldDefinition

DEFAULT_LIMIT = 50
MAX_LIMIT = 200

_OPERATOR_SQL = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

_INTEGER = re.compile(r"^\s*-?\d+\s*$")


def coerce_id(value: Any) -> int:
    """Coerce a caller-supplied primary key to a positive integer.

    Raises:
        ValidationError: If the id is missing, not an integer, or below 1
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("id is required")
    if isinstance(value, bool):
        raise ValidationError("id must be a valid integer")
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and _INTEGER.match(value):
        number = int(value)
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    else:
        raise ValidationError("id must be a valid integer")
    if number < 1:
        raise ValidationError("id must be at least 1")
    return number


@dataclass
class QueryOptions:
    """Caller input for list queries.

    ``filters`` maps a filterable field to a value (equality) or to
    ``{operator: value}``, e.g. ``{"priority": {"in": ["high", "emergency"]}}``.
    """

    filters: dict[str, Any] = field(default_factory=dict)
    search: str | None = None
    sort_by: str | None = None
    sort_order: str | None = None
    page: int = 1
    limit: int = DEFAULT_LIMIT
    include_inactive: bool = False


@dataclass
class WhereClause:
    conditions: list[str] = field(default_factory=list)
    params: list[Any] = field(default_factory=list)
    applied_filters: dict[str, Any] = field(default_factory=dict)

    def add(self, condition: str, *values: Any) -> None:
        self.conditions.append(condition)
        self.params.extend(values)

    def placeholder(self, offset: int) -> str:
        """Placeholder for the next parameter."""
        return f"${offset + len(self.params) + 1}"


def where_sql(conditions: list[str]) -> str:
    return f" WHERE {' AND '.join(conditions)}" if conditions else ""


class QueryBuilder:
    """Translates QueryOptions into SQL fragments for one entity."""

    def __init__(self, entity: EntityMetadata):
        self.entity = entity
        self.table = entity.table_name

    def column(self, name: str) -> str:
        return f"{self.table}.{name}"

    def build_where(self, options: QueryOptions, param_offset: int = 0) -> WhereClause:
        """Caller conditions, numbered from ``param_offset + 1``.

        Raises:
            ValidationError: For unknown fields, unsupported operators or bad values
        """
        where = WhereClause()

        for name, raw in (options.filters or {}).items():
            field_def = self._filterable(name)
            operators = raw if isinstance(raw, dict) else {"eq": raw}
            for operator, value in operators.items():
                self._add_filter(where, field_def, operator, value, param_offset)
            where.applied_filters[name] = raw

        if options.search:
            self._add_search(where, options.search, param_offset)
            where.applied_filters["search"] = options.search

        if (
            self.entity.has_active_flag
            and not options.include_inactive
            and "is_active" not in (options.filters or {})
        ):
            where.add(f"{self.column('is_active')} = {where.placeholder(param_offset)}", True)
            where.applied_filters["is_active"] = True

        return where

    def build_order_by(self, options: QueryOptions) -> str:
        """ORDER BY clause from validated sort input, else the entity default."""
        default_field, default_order = self.entity.default_sort
        sort_by = options.sort_by or default_field
        sort_order = (options.sort_order or default_order).upper()

        if options.sort_by and options.sort_by not in self.entity.sortable_fields:
            raise ValidationError(
                f"Invalid sort field '{options.sort_by}' for {self.entity.name}. "
                f"Allowed: {', '.join(self.entity.sortable_fields)}"
            )
        if sort_order not in ("ASC", "DESC"):
            raise ValidationError(f"Invalid sort order '{options.sort_order}'. Use ASC or DESC")
        if self.entity.get_field(sort_by) is None:
            sort_by = self.entity.primary_key

        order = f" ORDER BY {self.column(sort_by)} {sort_order}"
        if sort_by != self.entity.primary_key:
            order += f", {self.column(self.entity.primary_key)} ASC"
        return order

    def build_pagination(self, options: QueryOptions) -> tuple[str, int, int]:
        """Return (LIMIT/OFFSET SQL, page, limit)."""
        page = self._positive_int(options.page, "page")
        limit = self._positive_int(options.limit, "limit")
        if limit > MAX_LIMIT:
            raise ValidationError(f"limit must be at most {MAX_LIMIT}")
        offset = (page - 1) * limit
        return f" LIMIT {limit} OFFSET {offset}", page, limit

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _filterable(self, name: str) -> FieldDefinition:
        allowed = self.entity.filterable_fields
        field_def = self.entity.get_field(name)
        if name not in allowed or field_def is None:
            raise ValidationError(
                f"Invalid filter field '{name}' for {self.entity.name}. "
                f"Allowed: {', '.join(allowed) or 'none'}"
            )
        return field_def

    def _add_filter(
        self,
        where: WhereClause,
        field_def: FieldDefinition,
        operator: str,
        value: Any,
        offset: int,
    ) -> None:
        field_type = get_field_type(field_def.type)
        if operator not in field_type.operators:
            raise ValidationError(
                f"Operator '{operator}' is not supported for field '{field_def.name}'"
            )
        column = self.column(field_def.name)

        if operator == "isNull":
            is_null = _coerce_bool(value, field_def.name)
            where.add(f"{column} IS {'NULL' if is_null else 'NOT NULL'}")
            return

        if value is None:
            if operator not in ("eq", "ne"):
                raise ValidationError(
                    f"Operator '{operator}' on '{field_def.name}' needs a value, not null"
                )
            where.add(f"{column} IS {'NULL' if operator == 'eq' else 'NOT NULL'}")
            return

        if operator == "in":
            values = value if isinstance(value, (list, tuple)) else str(value).split(",")
            if not values:
                raise ValidationError(f"Filter '{field_def.name}' with 'in' needs at least one value")
            coerced = [coerce_value(field_def, v) for v in values]
            start = offset + len(where.params)
            placeholders = ", ".join(f"${start + i}" for i in range(1, len(coerced) + 1))
            where.add(f"{column} IN ({placeholders})", *coerced)
            return

        where.add(
            f"{column} {_OPERATOR_SQL[operator]} {where.placeholder(offset)}",
            coerce_value(field_def, value),
        )

    def _add_search(self, where: WhereClause, term: str, offset: int) -> None:
        columns = self.entity.searchable_fields
        if not columns:
            raise ValidationError(f"Search is not supported for {self.entity.name}")
        placeholder = where.placeholder(offset)
        clause = " OR ".join(
            f"LOWER({self.column(c)}) LIKE {placeholder} ESCAPE '\\'" for c in columns
        )
        where.add(f"({clause})", f"%{escape_like(term.strip().lower())}%")

    @staticmethod
    def _positive_int(value: Any, name: str) -> int:
        if isinstance(value, bool):
            raise ValidationError(f"{name} must be a positive integer")
        try:
            number = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be a positive integer") from None
        if number < 1:
            raise ValidationError(f"{name} must be a positive integer")
        return number


def escape_like(term: str) -> str:
    """Make LIKE wildcards in term match literally (used with ESCAPE '\\')."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _coerce_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "1", "yes"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "0", "no"):
        return False
    if isinstance(value, int):
        return bool(value)
    raise ValidationError(f"Field '{name}' expects a boolean")


def coerce_value(field_def: FieldDefinition, value: Any) -> Any:
    """Coerce a caller value to the field's type and check its constraints.

    Raises:
        ValidationError: If the value cannot be used for the field
    """
    if value is None:
        return None
    name = field_def.name
    if field_def.type == "boolean":
        return _coerce_bool(value, name)
    if field_def.type in ("id", "integer", "foreignKey"):
        if isinstance(value, bool):
            raise ValidationError(f"Field '{name}' expects an integer")
        if isinstance(value, int):
            return value
        if isinstance(value, str) and _INTEGER.match(value):
            return int(value)
        raise ValidationError(f"Field '{name}' expects an integer")
    if field_def.type == "enum" and field_def.values and value not in field_def.values:
        raise ValidationError(
            f"Invalid value '{value}' for {name}. Allowed: {', '.join(field_def.values)}"
        )
    if field_def.max_length and isinstance(value, str) and len(value) > field_def.max_length:
        raise ValidationError(f"Field '{name}' exceeds maximum length of {field_def.max_length}")
    return value
