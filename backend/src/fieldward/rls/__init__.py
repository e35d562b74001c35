"""Row-level security: policies, request context and the filter compiler.

Usage:
    from fieldward.rls import SecurityContext, compile_filter

    ctx = SecurityContext(
        filter_config={"field": "customer_id", "value": "customerProfileId"},
        user_id=7,
        customer_profile_id=42,
        role="customer",
        resource="work_orders",
    )
    result = compile_filter(ctx, entity, param_offset=2)
    # result.clause == "work_orders.customer_id = $3", result.params == [42]
"""

from fieldward.rls.compiler import (
    DENY_CLAUSE,
    FilterResult,
    compile_filter,
    compile_filter_for_find_by_id,
    describe_policy,
    policy_allows_access,
)
from fieldward.rls.context import SecurityContext, build_security_context
from fieldward.rls.enforcement import requires_rls, validate_rls_applied
from fieldward.rls.policy import (
    DenyAll,
    FieldReference,
    FieldShorthand,
    FilterPolicy,
    MalformedPolicy,
    NoFilter,
    ParentDerived,
    parse_policy,
)

__all__ = [
    "DENY_CLAUSE",
    "DenyAll",
    "FieldReference",
    "FieldShorthand",
    "FilterPolicy",
    "FilterResult",
    "MalformedPolicy",
    "NoFilter",
    "ParentDerived",
    "SecurityContext",
    "build_security_context",
    "compile_filter",
    "compile_filter_for_find_by_id",
    "describe_policy",
    "parse_policy",
    "policy_allows_access",
    "requires_rls",
    "validate_rls_applied",
]
