"""
Extension context - the surface passed to an extension's ``load()``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from extension_runtime.host import ServingLayer
from extension_runtime.logging import get_logger, resolve_level
from extension_runtime.models import DEFAULT_PRIORITY, ExtensionInfo
from extension_runtime.points import PendingPoints
from extension_runtime.storage import ExtensionStorage

if TYPE_CHECKING:
    from extension_runtime.lifecycle import LifecycleController

logger = get_logger("context")


class ExtensionContext:
    """
    API object passed to an extension's ``load(host, config, context)``.

    Extensions use it to register hooks, middleware, routes and commands,
    read and update their config, persist data, and talk to the host.

    While the extension is loading, middleware, routes and commands are
    buffered and reach the host only once ``load()`` succeeded. After a
    failed or timed-out load the context is revoked: registration calls are
    ignored with a warning.

    Example extension:
        async def load(host, config, context):
            @context.hook("request:start", priority=20)
            def stamp(request):
                request.headers["x-stamp"] = config["stamp"]

            context.add_command("stamp", lambda: config["stamp"], "Show the stamp")
            context.log("success", "ready")
    """

    def __init__(
        self,
        controller: LifecycleController,
        info: ExtensionInfo,
        storage: ExtensionStorage,
        host: ServingLayer | None = None,
    ) -> None:
        self._controller = controller
        self._info = info
        self._pending: PendingPoints | None = controller.points.stage(info.name)
        self._revoked = False
        self.storage = storage
        self.host = host
        self.logger = get_logger(f"ext.{info.name}")

    @property
    def name(self) -> str:
        return self._info.name

    @property
    def revoked(self) -> bool:
        return self._revoked

    @property
    def staged(self) -> int:
        """Number of contributions still waiting for ``commit()``."""
        return len(self._pending) if self._pending is not None else 0

    def _usable(self, action: str) -> bool:
        if self._revoked:
            logger.warning("Ignoring %s from %s: context is no longer active", action, self.name)
            return False
        return True

    # -- hooks -------------------------------------------------------------

    def hook(
        self,
        hook_name: str,
        callback: Callable[..., Any] | None = None,
        priority: int = DEFAULT_PRIORITY,
    ) -> Any:
        """
        Register a hook callback. Without ``callback`` it works as a decorator.

        Returns the HookRegistration (method form) or the decorated function.
        """
        if callback is None:

            def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                self.hook(hook_name, fn, priority)
                return fn

            return decorator

        if not self._usable(f"hook {hook_name}"):
            return None
        return self._controller.hooks.add(hook_name, callback, owner=self.name, priority=priority)

    def remove_hook(self, hook_name: str, callback: Callable[..., Any]) -> int:
        if not self._usable(f"remove_hook {hook_name}"):
            return 0
        return self._controller.hooks.remove(hook_name, callback, self.name)

    # -- extension points ----------------------------------------------------

    def add_middleware(self, middleware: Callable[..., Any]) -> None:
        if not self._usable("add_middleware"):
            return
        if self._pending is not None:
            self._pending.add_middleware(middleware)
        else:
            self._controller.points.add_middleware(middleware, owner=self.name)

    def add_route(self, method: str, path: str, *handlers: Callable[..., Any]) -> None:
        """Register a route; several handlers give one registration each."""
        if not self._usable(f"add_route {method} {path}"):
            return
        if not handlers:
            raise ValueError("Method, path and handler are required for a route")
        for handler in handlers:
            if self._pending is not None:
                self._pending.add_route(method, path, handler)
            else:
                self._controller.points.add_route(method, path, handler, owner=self.name)

    def add_command(self, name: str, handler: Callable[..., Any], description: str = "") -> None:
        if not self._usable(f"add_command {name}"):
            return
        if self._pending is not None:
            self._pending.add_command(name, handler, description)
        else:
            self._controller.points.add_command(name, handler, description, owner=self.name)

    # -- logging -------------------------------------------------------------

    def log(self, level: str, message: str, details: Any = None) -> None:
        """Log under ``extension_runtime.ext.<name>``; ``success`` logs at INFO."""
        if details:
            self.logger.log(resolve_level(level), "[%s] %s %s", self.name, message, details)
        else:
            self.logger.log(resolve_level(level), "[%s] %s", self.name, message)

    # -- registry and config -------------------------------------------------

    def get_plugin(self, name: str) -> ExtensionInfo | None:
        return self._controller.get(name)

    def list_plugins(self) -> list[dict[str, Any]]:
        return [info.to_dict() for info in self._controller.list()]

    def get_config(self) -> dict[str, Any]:
        """Copy of the live config."""
        return dict(self._info.config)

    async def update_config(self, config: dict[str, Any]) -> bool:
        if not self._usable("update_config"):
            return False
        return await self._controller.update_config(self.name, config)

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        """
        Listen to a runtime event. The listener is dropped when this
        extension unloads or fails to load.
        """
        if handler is None:

            def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                self.on(event, fn)
                return fn

            return decorator

        if not self._usable(f"on {event}"):
            return None
        return self._controller.events.on(event, handler, owner=self.name)

    async def emit(self, event: str, *args: Any) -> list[Any]:
        """
        Publish ``extension:<name>:<event>`` on the event bus.

        Listeners receive the single argument as is, several arguments as a
        tuple, and None when there are none.
        """
        if not self._usable(f"emit {event}"):
            return []
        data = args[0] if len(args) == 1 else (args or None)
        return await self._controller.events.emit(f"extension:{self.name}:{event}", data)

    # -- staging -------------------------------------------------------------

    def commit(self) -> int:
        """Forward buffered contributions to the host; later calls go straight through."""
        if self._pending is None:
            return 0
        pending, self._pending = self._pending, None
        return pending.commit()

    def revoke(self) -> int:
        """Drop buffered contributions and refuse further registrations."""
        self._revoked = True
        if self._pending is None:
            return 0
        pending, self._pending = self._pending, None
        return pending.discard()
