"""Row-level security filter policies.

A policy states which rows of an entity a role may see:

- NoFilter: every row (``null`` in metadata)
- DenyAll: no row (``false``)
- ParentDerived: access follows a parent entity (``"$parent"``)
- FieldShorthand: ``column = <acting user id>`` (a bare column name)
- FieldReference: ``column = <context value>`` (``{field, value}``)

Anything else parses to MalformedPolicy, which is always denied.
"""

import re
from dataclasses import dataclass
from typing import Any

PARENT_MARKER = "$parent"
DEFAULT_CONTEXT_KEY = "userId"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class NoFilter:
    pass


@dataclass(frozen=True)
class DenyAll:
    pass


@dataclass(frozen=True)
class ParentDerived:
    pass


@dataclass(frozen=True)
class FieldShorthand:
    column: str


@dataclass(frozen=True)
class FieldReference:
    column: str
    context_key: str = DEFAULT_CONTEXT_KEY


@dataclass(frozen=True)
class MalformedPolicy:
    """A configuration value that matches none of the policy shapes."""

    raw: Any = None


FilterPolicy = NoFilter | DenyAll | ParentDerived | FieldShorthand | FieldReference | MalformedPolicy

POLICY_TYPES = (NoFilter, DenyAll, ParentDerived, FieldShorthand, FieldReference, MalformedPolicy)


def is_identifier(name: Any) -> bool:
    """True if name is a plain SQL identifier safe to interpolate."""
    return isinstance(name, str) and bool(_IDENTIFIER.match(name))


def parse_policy(raw: Any) -> FilterPolicy:
    """Convert a raw metadata value into a FilterPolicy.

    Already-parsed policies are returned unchanged.
    """
    if isinstance(raw, POLICY_TYPES):
        return raw
    if raw is None:
        return NoFilter()
    if raw is False:
        return DenyAll()
    if isinstance(raw, str):
        if raw == PARENT_MARKER:
            return ParentDerived()
        if is_identifier(raw):
            return FieldShorthand(raw)
        return MalformedPolicy(raw)
    if isinstance(raw, dict):
        column = raw.get("field")
        context_key = raw.get("value", DEFAULT_CONTEXT_KEY)
        if is_identifier(column) and isinstance(context_key, str) and context_key:
            return FieldReference(column, context_key)
        return MalformedPolicy(raw)
    return MalformedPolicy(raw)
