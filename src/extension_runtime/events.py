"""
Observability events for the extension runtime.

The EventBus carries lifecycle notifications (``extension:loaded``,
``hook:error``, ...) to host and extension listeners. It is distinct from
the HookBus: listener return values are collected but never fed back into
the runtime.

Example:
    from extension_runtime.events import EXTENSION_LOADED, EventBus

    bus = EventBus()

    @bus.on(EXTENSION_LOADED)
    def announce(event):
        print(f"{event.name} is up")
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from extension_runtime.logging import get_logger

logger = get_logger("events")


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

EXTENSION_LOADED = "extension:loaded"
EXTENSION_UNLOADED = "extension:unloaded"
EXTENSION_ERROR = "extension:error"
EXTENSION_ACTIVATED = "extension:activated"
EXTENSION_DEACTIVATED = "extension:deactivated"
HOOK_ERROR = "hook:error"
DEV_HOTRELOAD = "dev:hotreload"
CONFIG_CHANGE = "config:change"


@dataclass
class ExtensionEvent:
    """Emitted on extension lifecycle transitions."""

    name: str
    extension: Any = None  # ExtensionInfo, avoid circular import
    error: BaseException | None = None


@dataclass
class HookErrorEvent:
    """Emitted when a hook callback raises or times out."""

    hook_name: str
    owner: str
    error: BaseException


@dataclass
class HotReloadEvent:
    """Emitted after an extension was reloaded because its sources changed."""

    name: str
    paths: list[Path] = field(default_factory=list)


@dataclass
class ConfigChangeEvent:
    """Emitted when an extension's live config is updated."""

    name: str
    config: dict[str, Any]
    warnings: list[str] = field(default_factory=list)


EventHandler = Callable[..., Any]


@dataclass(eq=False)
class _Listener:
    handler: EventHandler
    owner: str | None = None  # extension name; None for the host


class EventBus:
    """
    Publish/subscribe channel for runtime notifications.

    Listeners run in subscription order and may be sync or async. A failing
    listener is logged and skipped. Listeners subscribed by an extension are
    tagged with its name so they can be dropped together when it goes away.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Listener]] = {}

    def on(
        self,
        event: str,
        handler: EventHandler | None = None,
        owner: str | None = None,
    ) -> Callable[[], None] | Callable[[EventHandler], EventHandler]:
        """
        Subscribe ``handler`` to ``event``; returns an unsubscribe function.

        Without ``handler`` it works as a decorator and returns the function.
        """
        if handler is None:

            def decorator(fn: EventHandler) -> EventHandler:
                self.on(event, fn, owner=owner)
                return fn

            return decorator

        listener = _Listener(handler, owner)
        self._listeners.setdefault(event, []).append(listener)

        def unsubscribe() -> None:
            listeners = self._listeners.get(event, [])
            if listener in listeners:
                listeners.remove(listener)

        return unsubscribe

    def off(self, event: str, handler: EventHandler) -> int:
        """Unsubscribe ``handler`` from ``event``. Returns count removed."""
        listeners = self._listeners.get(event, [])
        kept = [item for item in listeners if item.handler != handler]
        self._listeners[event] = kept
        return len(listeners) - len(kept)

    def off_by_owner(self, owner: str) -> int:
        """Drop every listener an extension subscribed. Returns count removed."""
        removed = 0
        for event, listeners in self._listeners.items():
            kept = [item for item in listeners if item.owner != owner]
            removed += len(listeners) - len(kept)
            self._listeners[event] = kept
        if removed:
            logger.debug("Removed %d listener(s) owned by %s", removed, owner)
        return removed

    async def emit(self, event: str, data: Any = None) -> list[Any]:
        """Deliver ``data`` to every listener of ``event``; returns their non-None results."""
        results: list[Any] = []
        for listener in list(self._listeners.get(event, ())):
            try:
                result = listener.handler(data)
                if inspect.isawaitable(result):
                    result = await result
            except Exception as e:
                logger.warning(
                    "Event listener failed (event=%s, owner=%s): %s",
                    event,
                    listener.owner or "host",
                    e,
                )
                continue
            if result is not None:
                results.append(result)
        return results
