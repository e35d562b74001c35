"""Post-query check that row-level security was actually applied."""

from __future__ import annotations

from typing import Any

from fieldward.core.errors import RLSValidationError
from fieldward.core.security_log import log_security_event
from fieldward.rls.context import SecurityContext
from fieldward.rls.policy import NoFilter, parse_policy


def requires_rls(context: SecurityContext | None) -> bool:
    """True when queries under context must carry an applied RLS filter."""
    if context is None:
        return False
    return not isinstance(parse_policy(context.filter_config), NoFilter)


def validate_rls_applied(context: SecurityContext | None, result: Any) -> None:
    """Raise if a result that needed RLS does not carry the applied marker.

    ``result`` is any object with an ``rls_applied`` attribute (or a dict
    with that key).

    Raises:
        RLSValidationError: When RLS was required but not applied
    """
    if not requires_rls(context):
        return

    if isinstance(result, dict):
        applied = bool(result.get("rls_applied"))
    else:
        applied = bool(getattr(result, "rls_applied", False))
    if applied:
        return

    log_security_event(
        "RLS_VALIDATION_FAILED",
        "CRITICAL",
        resource=context.resource,
        role=context.role,
        user_id=context.user_id,
    )
    raise RLSValidationError(context.resource, context.role)
