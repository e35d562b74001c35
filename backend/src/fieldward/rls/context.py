"""Per-request security context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from fieldward.core.errors import PermissionDeniedError
from fieldward.rls.policy import FilterPolicy, parse_policy

if TYPE_CHECKING:
    from fieldward.auth.permissions import PermissionMatrix

# Context keys a FieldReference may name, with their snake_case spellings
CONTEXT_KEYS = {
    "userId": "user_id",
    "user_id": "user_id",
    "customerProfileId": "customer_profile_id",
    "customer_profile_id": "customer_profile_id",
    "technicianProfileId": "technician_profile_id",
    "technician_profile_id": "technician_profile_id",
}


def normalize_profile_id(value: Any) -> int | None:
    """Coerce a profile id to a positive integer or None.

    Falsy placeholders (None, 0, "", False) mean "no profile".

    Raises:
        ValueError: For negative numbers, non-numeric strings or other types
    """
    if not value:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid profile id: {value!r}")
    if isinstance(value, str):
        if not value.strip().isdigit():
            raise ValueError(f"Invalid profile id: {value!r}")
        value = int(value.strip())
    if not isinstance(value, int) or value < 1:
        raise ValueError(f"Invalid profile id: {value!r}")
    return value


@dataclass(frozen=True)
class SecurityContext:
    """Identity and resolved filter policy for one request.

    Attributes:
        filter_config: Policy for (role, resource); raw metadata values are parsed
        user_id: Acting user id
        customer_profile_id: Customer profile of the acting user, if any
        technician_profile_id: Technician profile of the acting user, if any
        role: Acting user's role name
        resource: Resource the request targets
    """

    filter_config: FilterPolicy | Any = None
    user_id: Any = None
    customer_profile_id: int | None = None
    technician_profile_id: int | None = None
    role: str | None = None
    resource: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "filter_config", parse_policy(self.filter_config))
        object.__setattr__(
            self, "customer_profile_id", normalize_profile_id(self.customer_profile_id)
        )
        object.__setattr__(
            self, "technician_profile_id", normalize_profile_id(self.technician_profile_id)
        )

    def value_for(self, key: str) -> Any:
        """Look up a context value by policy key; None when unknown or unset."""
        attr = CONTEXT_KEYS.get(key)
        return getattr(self, attr) if attr else None


def build_security_context(
    acting_user: dict[str, Any],
    resource: str,
    matrix: PermissionMatrix,
) -> SecurityContext:
    """Build the context for an authenticated user acting on resource.

    Args:
        acting_user: Authenticated user record with ``id``, ``role`` and
            optional ``customer_profile_id`` / ``technician_profile_id``
        resource: Resource name used for permission and RLS lookups
        matrix: Permission matrix supplying the filter policy

    Raises:
        PermissionDeniedError: If the user has no role
    """
    role = acting_user.get("role")
    if not role:
        raise PermissionDeniedError("User has no assigned role")

    return SecurityContext(
        filter_config=matrix.rls_policy(role, resource),
        user_id=acting_user.get("id"),
        customer_profile_id=acting_user.get("customer_profile_id"),
        technician_profile_id=acting_user.get("technician_profile_id"),
        role=role,
        resource=resource,
    )
