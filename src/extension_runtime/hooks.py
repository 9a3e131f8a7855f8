"""
Hook bus: named, priority-ordered callback pipelines.

Each hook name owns a list of callbacks sorted by priority (higher runs
first; equal priorities keep registration order). Executing a hook runs the
callbacks one after another and threads their return values through the
pipeline:

- ``None`` leaves the arguments unchanged
- a tuple replaces the whole argument tuple
- any other value becomes the single argument for the next callback

A callback that raises or exceeds the timeout is logged, reported as a
``hook:error`` event, and skipped; the next callback receives the arguments
as they were before the failure.

Example:
    bus = HookBus()
    bus.add("request:start", tag_request, owner="tracing", priority=20)
    (request,) = await bus.execute("request:start", request)
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from extension_runtime.events import HOOK_ERROR, EventBus, HookErrorEvent
from extension_runtime.logging import get_logger
from extension_runtime.models import DEFAULT_PRIORITY, HookRegistration

logger = get_logger("hooks")

T = TypeVar("T")

DEFAULT_HOOK_TIMEOUT = 5.0

DEFAULT_HOOKS: tuple[str, ...] = (
    "app:init", "app:start", "app:stop", "app:restart",
    "route:load", "route:create", "route:delete", "route:update",
    "request:start", "request:end", "request:error",
    "response:start", "response:end", "response:error",
    "middleware:add", "middleware:remove",
    "error:handle", "error:critical",
    "websocket:connect", "websocket:disconnect", "websocket:message",
    "file:change", "file:add", "file:delete",
    "extension:load", "extension:unload", "extension:error", "extension:timeout",
    "extension:activate", "extension:deactivate", "extension:reload",
    "config:change", "config:validate",
    "database:connect", "database:disconnect", "database:query",
    "cache:set", "cache:get", "cache:delete", "cache:clear",
    "auth:login", "auth:logout", "auth:register",
    "dev:hotreload", "dev:debug", "dev:profile",
)  # fmt: skip


class DeadlineExceeded(Exception):
    """An awaited extension callable did not finish before its deadline."""


class _RaisedInside(Exception):
    def __init__(self, error: BaseException) -> None:
        super().__init__(error)
        self.error = error


async def await_within(awaitable: Any, timeout: float | None) -> Any:
    """
    Await ``awaitable`` under ``timeout``.

    Raises DeadlineExceeded only when the deadline was hit. A TimeoutError
    raised by the awaited code itself propagates unchanged.
    """

    async def run() -> Any:
        try:
            return await awaitable
        except (asyncio.TimeoutError, TimeoutError) as e:
            raise _RaisedInside(e) from e

    try:
        return await asyncio.wait_for(run(), timeout=timeout)
    except _RaisedInside as e:
        error = e.error
    except asyncio.TimeoutError as e:
        raise DeadlineExceeded(f"not finished after {timeout}s") from e
    raise error


def _task_cancelling() -> bool:
    """True when the running task itself has a pending cancellation request."""
    task = asyncio.current_task()
    if task is None:
        return False
    cancelling = getattr(task, "cancelling", None)
    # 3.10 has no Task.cancelling(); assume the cancellation is real
    return cancelling is None or cancelling() > 0


class HookBus:
    """Registry and executor for hook pipelines."""

    def __init__(
        self,
        events: EventBus | None = None,
        timeout: float = DEFAULT_HOOK_TIMEOUT,
        hook_names: tuple[str, ...] = DEFAULT_HOOKS,
    ) -> None:
        self.events = events
        self.timeout = timeout
        self._hooks: dict[str, list[HookRegistration]] = {name: [] for name in hook_names}

    def add(
        self,
        hook_name: str,
        callback: Callable[..., Any],
        owner: str = "core",
        priority: int = DEFAULT_PRIORITY,
    ) -> HookRegistration:
        """Register a callback; the hook list stays sorted by priority (descending)."""
        if not callable(callback):
            raise TypeError(f"Hook callback for {hook_name} must be callable")

        try:
            priority = int(priority)
        except (TypeError, ValueError):
            priority = DEFAULT_PRIORITY

        registration = HookRegistration(
            hook_name=hook_name, callback=callback, owner=owner, priority=priority
        )
        hooks = self._hooks.setdefault(hook_name, [])
        hooks.append(registration)
        # list.sort is stable: ties keep insertion order
        hooks.sort(key=lambda h: h.priority, reverse=True)
        logger.debug("Hook added: %s (owner=%s, priority=%d)", hook_name, owner, priority)
        return registration

    def remove(self, hook_name: str, callback: Callable[..., Any], owner: str) -> int:
        """Remove a callback registered by ``owner``. Returns count removed."""
        hooks = self._hooks.get(hook_name)
        if not hooks:
            return 0
        kept = [h for h in hooks if not (h.callback == callback and h.owner == owner)]
        self._hooks[hook_name] = kept
        return len(hooks) - len(kept)

    def remove_owner(self, owner: str) -> int:
        """Remove every callback registered by ``owner``. Returns count removed."""
        removed = 0
        for hook_name, hooks in self._hooks.items():
            kept = [h for h in hooks if h.owner != owner]
            removed += len(hooks) - len(kept)
            self._hooks[hook_name] = kept
        if removed:
            logger.debug("Removed %d hook(s) owned by %s", removed, owner)
        return removed

    async def execute(self, hook_name: str, *args: Any) -> tuple[Any, ...]:
        """
        Run a hook pipeline and return the final argument tuple.

        Never raises for callback-level failures.
        """
        result: tuple[Any, ...] = args
        # Snapshot: callbacks may add or remove hooks while the pipeline runs
        for registration in list(self._hooks.get(hook_name, ())):
            try:
                value = registration.callback(*result)
                if inspect.isawaitable(value):
                    value = await await_within(value, self.timeout)
            except DeadlineExceeded:
                error = TimeoutError(
                    f"Hook {hook_name} timed out after {self.timeout}s (owner={registration.owner})"
                )
                await self._report(hook_name, registration.owner, error)
                continue
            except asyncio.CancelledError as e:
                if _task_cancelling():
                    raise
                await self._report(hook_name, registration.owner, e)
                continue
            except Exception as e:
                await self._report(hook_name, registration.owner, e)
                continue

            if value is not None:
                result = value if isinstance(value, tuple) else (value,)
        return result

    async def transform(self, hook_name: str, value: T) -> T:
        """Run a single-value pipeline and return the transformed value."""
        result = await self.execute(hook_name, value)
        return result[0] if len(result) == 1 else result  # type: ignore[return-value]

    async def _report(self, hook_name: str, owner: str, error: BaseException) -> None:
        logger.error("Hook %s failed (extension=%s): %s", hook_name, owner, error)
        if self.events is not None:
            await self.events.emit(HOOK_ERROR, HookErrorEvent(hook_name, owner, error))

    def registrations(self, hook_name: str) -> list[HookRegistration]:
        """Registered callbacks for a hook, in execution order."""
        return list(self._hooks.get(hook_name, ()))

    def hook_names(self) -> list[str]:
        """All known hook names (default and extension-created)."""
        return list(self._hooks)

    def is_known(self, hook_name: str) -> bool:
        return hook_name in self._hooks

    def owner_hooks(self, owner: str) -> dict[str, int]:
        """Per-hook callback counts for one owner."""
        counts: dict[str, int] = {}
        for hook_name, hooks in self._hooks.items():
            count = sum(1 for h in hooks if h.owner == owner)
            if count:
                counts[hook_name] = count
        return counts

    def total_callbacks(self) -> int:
        return sum(len(hooks) for hooks in self._hooks.values())
