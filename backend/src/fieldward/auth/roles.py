"""Role hierarchy and access levels."""

# Role hierarchy - higher number = more permissions
# Higher roles automatically have all permissions of lower roles
ROLE_HIERARCHY = {
    "customer": 1,
    "technician": 2,
    "dispatcher": 3,
    "manager": 4,
    "admin": 5,
}

# "none" and "system" are valid requirements that no API role satisfies
UNREACHABLE_LEVELS = ("none", "system")

ACCESS_LEVELS = (*UNREACHABLE_LEVELS, *ROLE_HIERARCHY)

OPERATIONS = ("create", "read", "update", "delete")
FIELD_OPERATIONS = ("create", "read", "update")


def role_level(role: str | None) -> int:
    """Return numeric level for a role name, 0 if unknown/None."""
    return ROLE_HIERARCHY.get(role or "", 0)


def satisfies(role: str | None, required: str | None) -> bool:
    """True if role meets the required access level.

    A None requirement (operation disabled) and the unreachable levels are
    never satisfied. An unknown role satisfies nothing.
    """
    if required is None or required in UNREACHABLE_LEVELS:
        return False
    required_level = ROLE_HIERARCHY.get(required)
    if required_level is None:
        return False
    level = role_level(role)
    return level > 0 and level >= required_level
