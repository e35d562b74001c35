"""Role-based permissions and output filtering."""

from fieldward.auth.roles import ACCESS_LEVELS, OPERATIONS, ROLE_HIERARCHY, role_level, satisfies

__all__ = [
    "ACCESS_LEVELS",
    "OPERATIONS",
    "ROLE_HIERARCHY",
    "role_level",
    "satisfies",
]
