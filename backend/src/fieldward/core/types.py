"""Semantic field type registry.

Maps the field types used in entity metadata to SQLAlchemy column types
and to the filter operators each type accepts.
"""

from dataclasses import dataclass

from sqlalchemy import Boolean, Date, DateTime, Float, Integer, Numeric, String, Text
from sqlalchemy.types import TypeEngine

COMPARISON_OPERATORS = ("eq", "ne", "gt", "gte", "lt", "lte", "in", "isNull")
EQUALITY_OPERATORS = ("eq", "ne", "in", "isNull")


@dataclass(frozen=True)
class FieldType:
    """Storage and filtering behaviour of a semantic field type."""

    name: str
    column_type: type[TypeEngine]
    operators: tuple[str, ...]
    searchable: bool = False


FIELD_TYPES: dict[str, FieldType] = {
    "id": FieldType("id", Integer, COMPARISON_OPERATORS),
    "integer": FieldType("integer", Integer, COMPARISON_OPERATORS),
    "foreignKey": FieldType("foreignKey", Integer, EQUALITY_OPERATORS),
    "decimal": FieldType("decimal", Numeric, COMPARISON_OPERATORS),
    "currency": FieldType("currency", Numeric, COMPARISON_OPERATORS),
    "float": FieldType("float", Float, COMPARISON_OPERATORS),
    "string": FieldType("string", String, EQUALITY_OPERATORS, searchable=True),
    "email": FieldType("email", String, EQUALITY_OPERATORS, searchable=True),
    "phone": FieldType("phone", String, EQUALITY_OPERATORS, searchable=True),
    "text": FieldType("text", Text, EQUALITY_OPERATORS, searchable=True),
    "enum": FieldType("enum", String, EQUALITY_OPERATORS),
    "boolean": FieldType("boolean", Boolean, ("eq", "ne", "isNull")),
    "date": FieldType("date", Date, COMPARISON_OPERATORS),
    "timestamp": FieldType("timestamp", DateTime, COMPARISON_OPERATORS),
}


def get_field_type(name: str) -> FieldType:
    """Return the field type registered under name.

    Raises:
        ValueError: If the type is unknown.
    """
    try:
        return FIELD_TYPES[name]
    except KeyError:
        raise ValueError(
            f"Unknown field type '{name}'. Known types: {', '.join(sorted(FIELD_TYPES))}"
        ) from None
