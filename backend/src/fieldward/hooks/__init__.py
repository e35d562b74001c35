"""Fieldward before-delete hook system.

Hooks run inside the delete transaction, after the target row is fetched
and before any cascade. Raising aborts the delete and rolls back.

Usage:
    from fieldward.core.errors import HookAbortError
    from fieldward.hooks import hook, DeleteHookContext

    @hook("preventPaidInvoiceDelete")
    async def prevent_paid_invoice_delete(record, ctx: DeleteHookContext) -> None:
        if record["status"] == "paid":
            raise HookAbortError("Paid invoices cannot be deleted")
"""

from fieldward.hooks.registry import (
    BEFORE_DELETE,
    HOOK_POINTS,
    HookFn,
    HookRegistry,
    RegisteredHook,
    call_hook,
    compose_before_delete,
    hook,
)
from fieldward.hooks.types import DeleteHookContext, DeleteOptions

VALID_HOOK_POINTS = HOOK_POINTS


def register_builtin_hooks() -> None:
    """Make the built-in hooks available, including after HookRegistry.clear()."""
    from fieldward.hooks import builtin

    HookRegistry.register("preventSelfDelete", builtin.prevent_self_delete)
    HookRegistry.register("preventRoleInUse", builtin.prevent_role_in_use)


__all__ = [
    "BEFORE_DELETE",
    "DeleteHookContext",
    "DeleteOptions",
    "HookFn",
    "HookRegistry",
    "RegisteredHook",
    "VALID_HOOK_POINTS",
    "call_hook",
    "compose_before_delete",
    "hook",
    "register_builtin_hooks",
]
