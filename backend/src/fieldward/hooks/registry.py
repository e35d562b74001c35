"""Named hooks that entity metadata can reference.

Entities list hook names per hook point, e.g.::

    hooks:
      beforeDelete: [preventRoleInUse]

Names resolve against HookRegistry when a delete request is built, so a
typo surfaces as an error before any SQL runs.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any

from fieldward.hooks.types import DeleteHookContext

BEFORE_DELETE = "beforeDelete"
HOOK_POINTS = (BEFORE_DELETE,)

# (record, DeleteHookContext) -> None; may be a coroutine function
HookFn = Callable[[dict[str, Any], DeleteHookContext], Awaitable[None] | None]


@dataclass(frozen=True)
class RegisteredHook:
    name: str
    point: str
    fn: HookFn


class HookRegistry:
    """Process-wide table of hooks, keyed by hook point and name."""

    _entries: dict[tuple[str, str], RegisteredHook] = {}

    @classmethod
    def register(cls, name: str, hook_fn: HookFn, point: str = BEFORE_DELETE) -> None:
        """Add hook_fn under name.

        Registering the same function twice is a no-op.

        Raises:
            ValueError: Unknown hook point, or name already bound to another function
        """
        if point not in HOOK_POINTS:
            raise ValueError(f"Unknown hook point '{point}'. Valid points: {', '.join(HOOK_POINTS)}")
        existing = cls._entries.get((point, name))
        if existing is not None:
            if existing.fn is not hook_fn:
                raise ValueError(f"{point} hook '{name}' is already registered to {existing.fn!r}")
            return
        cls._entries[(point, name)] = RegisteredHook(name=name, point=point, fn=hook_fn)

    @classmethod
    def get(cls, name: str, point: str = BEFORE_DELETE) -> HookFn:
        """Raises ValueError when name is not registered for point."""
        entry = cls._entries.get((point, name))
        if entry is None:
            known = ", ".join(cls.list_registered(point)) or "none"
            raise ValueError(f"{point} hook '{name}' is not registered (registered: {known})")
        return entry.fn

    @classmethod
    def is_registered(cls, name: str, point: str = BEFORE_DELETE) -> bool:
        return (point, name) in cls._entries

    @classmethod
    def list_registered(cls, point: str = BEFORE_DELETE) -> list[str]:
        return sorted(name for (entry_point, name) in cls._entries if entry_point == point)

    @classmethod
    def clear(cls) -> None:
        cls._entries.clear()


def hook(name: str, point: str = BEFORE_DELETE) -> Callable[[HookFn], HookFn]:
    """Register the decorated function under name.

    Usage:
        @hook("preventSelfDelete")
        async def prevent_self_delete(record, ctx):
            ...
    """

    def register(fn: HookFn) -> HookFn:
        HookRegistry.register(name, fn, point)
        return fn

    return register


async def call_hook(hook_fn: HookFn, record: dict[str, Any], ctx: DeleteHookContext) -> None:
    """Invoke a hook, awaiting it when it is a coroutine function."""
    result = hook_fn(record, ctx)
    if inspect.isawaitable(result):
        await result


def compose_before_delete(names: Sequence[str]) -> HookFn | None:
    """Chain the named before-delete hooks into one.

    Hooks run in order; the first exception stops the chain.

    Raises:
        ValueError: If any name is not registered
    """
    if not names:
        return None
    hook_fns = [HookRegistry.get(name, BEFORE_DELETE) for name in names]

    async def before_delete(record: dict[str, Any], ctx: DeleteHookContext) -> None:
        for hook_fn in hook_fns:
            await call_hook(hook_fn, record, ctx)

    before_delete.__name__ = "before_delete_" + "_".join(names)
    return before_delete
