"""Compile filter policies into parameterized SQL fragments.

The compiler is pure: the same context, table and offset always produce
the same FilterResult. Every decision it cannot make safely compiles to
``1=0`` so that misconfiguration hides rows instead of exposing them.
Placeholders are numbered ``$N`` starting at ``param_offset + 1`` so the
fragment can be appended to a query that already binds parameters.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, assert_never

from fieldward.rls.context import SecurityContext
from fieldward.rls.policy import (
    DEFAULT_CONTEXT_KEY,
    DenyAll,
    FieldReference,
    FieldShorthand,
    FilterPolicy,
    MalformedPolicy,
    NoFilter,
    ParentDerived,
    parse_policy,
)

logger = logging.getLogger(__name__)

DENY_CLAUSE = "1=0"


@dataclass
class FilterResult:
    """Compiled RLS fragment.

    Attributes:
        clause: SQL boolean expression, empty when no filtering is needed
        params: Values bound to the clause placeholders, in order
        applied: Whether RLS was evaluated for this query
        no_filter: True when the policy grants access to every row
    """

    clause: str = ""
    params: list[Any] = field(default_factory=list)
    applied: bool = False
    no_filter: bool = False


def _table_name(metadata: Any) -> str:
    if metadata is None:
        return ""
    if isinstance(metadata, str):
        return metadata
    if isinstance(metadata, dict):
        return metadata.get("tableName") or metadata.get("table_name") or ""
    return getattr(metadata, "table_name", "") or ""


def _deny() -> FilterResult:
    return FilterResult(clause=DENY_CLAUSE, params=[], applied=True)


def compile_filter(
    context: SecurityContext | None,
    metadata: Any,
    param_offset: int = 0,
) -> FilterResult:
    """Build the RLS WHERE fragment for a query.

    Args:
        context: Security context, or None for internal unscoped queries
        metadata: Entity metadata (or table name) used to qualify the column
        param_offset: Number of parameters already bound by the caller

    Returns:
        A FilterResult. A None context yields an empty, unapplied result.
    """
    if context is None:
        return FilterResult()

    table = _table_name(metadata)
    policy = parse_policy(context.filter_config)

    match policy:
        case NoFilter():
            logger.debug("RLS: no filter for role=%s on %s", context.role, table)
            return FilterResult(clause="", params=[], applied=True, no_filter=True)
        case DenyAll():
            logger.debug("RLS: deny all for role=%s on %s", context.role, table)
            return _deny()
        case ParentDerived():
            logger.warning(
                "RLS: parent-derived policy reached the compiler for %s (role=%s); denying",
                table,
                context.role,
            )
            return _deny()
        case FieldShorthand(column=column):
            return _compile_reference(context, table, column, DEFAULT_CONTEXT_KEY, param_offset)
        case FieldReference(column=column, context_key=key):
            return _compile_reference(context, table, column, key, param_offset)
        case MalformedPolicy(raw=raw):
            logger.warning(
                "RLS: malformed policy %r for %s (role=%s); denying", raw, table, context.role
            )
            return _deny()
        case _:
            assert_never(policy)


def _compile_reference(
    context: SecurityContext,
    table: str,
    column: str,
    context_key: str,
    param_offset: int,
) -> FilterResult:
    value = context.value_for(context_key)
    if value is None:
        logger.warning(
            "RLS: context value '%s' missing for role=%s on %s; denying",
            context_key,
            context.role,
            table,
        )
        return _deny()

    qualified = f"{table}.{column}" if table else column
    return FilterResult(
        clause=f"{qualified} = ${param_offset + 1}",
        params=[value],
        applied=True,
    )


def compile_filter_for_find_by_id(
    context: SecurityContext | None,
    metadata: Any,
    param_offset: int = 1,
) -> FilterResult:
    """compile_filter for ``WHERE pk = $1 AND ...`` queries."""
    return compile_filter(context, metadata, param_offset)


def policy_allows_access(policy: Any) -> bool:
    """False only for policies that deny every row."""
    return not isinstance(parse_policy(policy), DenyAll)


def describe_policy(policy: Any) -> str:
    """Short machine-readable description of a policy."""
    parsed = parse_policy(policy)
    match parsed:
        case NoFilter():
            return "all_records"
        case DenyAll():
            return "deny_all"
        case ParentDerived():
            return "parent_entity_access"
        case FieldShorthand(column=column):
            return f"filter_by_{column}"
        case FieldReference(column=column, context_key=key):
            return f"filter_by_{column}_via_{key}"
        case MalformedPolicy():
            return "unknown"
        case _:
            assert_never(parsed)


def describe(policy: FilterPolicy) -> str:
    """Human-readable sentence for CLI output."""
    match policy:
        case NoFilter():
            return "all rows"
        case DenyAll():
            return "no rows"
        case ParentDerived():
            return "rows visible through the parent entity (denied when queried directly)"
        case FieldShorthand(column=column):
            return f"rows where {column} = acting user id"
        case FieldReference(column=column, context_key=key):
            return f"rows where {column} = {key}"
        case MalformedPolicy():
            return "no rows (malformed policy)"
        case _:
            assert_never(policy)
