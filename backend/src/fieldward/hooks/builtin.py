"""Built-in before-delete hooks."""

import logging
from typing import Any

from fieldward.core.errors import HookAbortError
from fieldward.hooks.registry import hook
from fieldward.hooks.types import DeleteHookContext

logger = logging.getLogger(__name__)


@hook("preventSelfDelete")
async def prevent_self_delete(record: dict[str, Any], ctx: DeleteHookContext) -> None:
    """Users may not delete their own account."""
    acting_user_id = ctx.options.acting_user_id
    if acting_user_id is None:
        return
    if str(record.get("id")) == str(acting_user_id):
        raise HookAbortError("Cannot delete your own account", hook_name="preventSelfDelete")


@hook("preventRoleInUse")
async def prevent_role_in_use(record: dict[str, Any], ctx: DeleteHookContext) -> None:
    """Block deleting a role that users are still assigned to.

    With ``force`` the assignments are cleared instead.
    """
    result = ctx.client.execute(
        "SELECT COUNT(*) AS user_count FROM users WHERE role_id = $1", [ctx.id]
    )
    user_count = int(result.rows[0]["user_count"]) if result.rows else 0
    if user_count == 0:
        return

    if not ctx.options.force:
        raise HookAbortError(
            f"Cannot delete role '{record.get('name')}': {user_count} user(s) are assigned to it",
            hook_name="preventRoleInUse",
        )

    logger.warning(
        "Force-deleting role %s; clearing role on %d user(s)", record.get("name"), user_count
    )
    ctx.client.execute("UPDATE users SET role_id = NULL WHERE role_id = $1", [ctx.id])
