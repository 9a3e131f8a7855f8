"""
Extension point registry.

Keeps a ledger of every middleware, route, and command an extension
contributed, tagged by owner, so that unloading an extension can withdraw
all of them from the host again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from extension_runtime.host import ServingLayer
from extension_runtime.logging import get_logger
from extension_runtime.models import CommandInfo, ExtensionPoint, PointKind

logger = get_logger("points")


class CommandRegistry:
    """
    In-process command registry.

    Commands are plain names (no leading slash) mapped to sync or async
    handlers. A later registration under the same name replaces the earlier
    one.
    """

    def __init__(self) -> None:
        self._commands: dict[str, CommandInfo] = {}

    def register(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        extension_name: str = "",
    ) -> None:
        """Register a command."""
        existing = self._commands.get(name)
        if existing is not None:
            logger.warning(
                "Command '%s' already registered by %s, overriding with %s",
                name,
                existing.extension_name or "host",
                extension_name or "host",
            )
        self._commands[name] = CommandInfo(
            name=name,
            handler=handler,
            description=description,
            extension_name=extension_name,
        )

    def unregister(self, name: str, extension_name: str | None = None) -> bool:
        """Remove a command. With ``extension_name`` only if that extension owns it."""
        cmd = self._commands.get(name)
        if cmd is None:
            return False
        if extension_name is not None and cmd.extension_name != extension_name:
            return False
        del self._commands[name]
        return True

    def get(self, name: str) -> CommandInfo | None:
        return self._commands.get(name)

    def list_commands(self) -> list[CommandInfo]:
        """All commands, sorted by name."""
        return sorted(self._commands.values(), key=lambda c: c.name)

    async def dispatch(self, name: str, *args: Any, **kwargs: Any) -> Any:
        """Run a command handler. Raises KeyError for unknown commands."""
        cmd = self._commands.get(name)
        if cmd is None or cmd.handler is None:
            raise KeyError(f"Unknown command: {name}")
        result = cmd.handler(*args, **kwargs)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def __len__(self) -> int:
        return len(self._commands)


class ExtensionPointRegistry:
    """
    Reversible registration ledger for extension contributions.

    Every ``add_*`` call forwards to the host immediately and records the
    entry locally so ``remove_all_by_owner`` can undo it. Removal from the
    host only happens when it also implements RemovableRoutes.
    """

    def __init__(
        self, host: ServingLayer | None = None, commands: CommandRegistry | None = None
    ) -> None:
        self.host = host
        self.commands = commands if commands is not None else CommandRegistry()
        self._entries: list[ExtensionPoint] = []

    def add_middleware(self, middleware: Callable[..., Any], owner: str) -> ExtensionPoint:
        """Install a middleware and record it for ``owner``."""
        _check_middleware(middleware)
        entry = ExtensionPoint(PointKind.MIDDLEWARE, {"middleware": middleware}, owner)
        use = getattr(self.host, "use", None)
        if callable(use):
            use(middleware)
        self._entries.append(entry)
        return entry

    def add_route(
        self,
        method: str,
        path: str,
        handler: Callable[..., Any],
        owner: str,
    ) -> ExtensionPoint:
        """Register a route with the host and record it for ``owner``."""
        method = _check_route(method, path, handler)
        entry = ExtensionPoint(
            PointKind.ROUTE, {"method": method, "path": path, "handler": handler}, owner
        )
        register_route = getattr(self.host, "register_route", None)
        if callable(register_route):
            register_route(method, path, handler)
        self._entries.append(entry)
        return entry

    def add_command(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str,
        owner: str,
    ) -> ExtensionPoint:
        """Register a command and record it for ``owner``."""
        _check_command(name, handler)
        entry = ExtensionPoint(
            PointKind.COMMAND,
            {"name": name, "handler": handler, "description": description or ""},
            owner,
        )
        self.commands.register(name, handler, description or "", extension_name=owner)
        self._entries.append(entry)
        return entry

    def remove_all_by_owner(self, owner: str) -> int:
        """Withdraw every contribution of ``owner`` from the host. Returns count removed."""
        owned = [e for e in self._entries if e.owner == owner]
        if not owned:
            return 0
        self._entries = [e for e in self._entries if e.owner != owner]

        remove_route = getattr(self.host, "remove_route", None)
        remove_middleware = getattr(self.host, "remove_middleware", None)

        for entry in owned:
            try:
                if entry.kind is PointKind.ROUTE and callable(remove_route):
                    remove_route(entry.payload["method"], entry.payload["path"])
                elif entry.kind is PointKind.MIDDLEWARE and callable(remove_middleware):
                    remove_middleware(entry.payload["middleware"])
                elif entry.kind is PointKind.COMMAND:
                    self.commands.unregister(entry.payload["name"], extension_name=owner)
            except Exception as e:
                # Cleanup must proceed for the remaining entries
                logger.warning(
                    "Failed to remove %s contributed by %s: %s", entry.kind.value, owner, e
                )

        logger.debug("Removed %d extension point(s) owned by %s", len(owned), owner)
        return len(owned)

    def stage(self, owner: str) -> PendingPoints:
        """Open a buffer whose contributions reach the host only on commit."""
        return PendingPoints(self, owner)

    def entries(self, kind: PointKind | None = None, owner: str | None = None) -> list[ExtensionPoint]:
        return [
            e
            for e in self._entries
            if (kind is None or e.kind is kind) and (owner is None or e.owner == owner)
        ]

    def count(self, kind: PointKind) -> int:
        return sum(1 for e in self._entries if e.kind is kind)


class PendingPoints:
    """
    Buffered contributions of an extension that is still loading.

    Arguments are validated on ``add_*`` so errors surface inside the
    extension's ``load()``; nothing is forwarded until ``commit()``.
    """

    def __init__(self, registry: ExtensionPointRegistry, owner: str) -> None:
        self.registry = registry
        self.owner = owner
        self._pending: list[tuple[PointKind, tuple[Any, ...]]] = []

    def add_middleware(self, middleware: Callable[..., Any]) -> None:
        _check_middleware(middleware)
        self._pending.append((PointKind.MIDDLEWARE, (middleware,)))

    def add_route(self, method: str, path: str, handler: Callable[..., Any]) -> None:
        _check_route(method, path, handler)
        self._pending.append((PointKind.ROUTE, (method, path, handler)))

    def add_command(self, name: str, handler: Callable[..., Any], description: str = "") -> None:
        _check_command(name, handler)
        self._pending.append((PointKind.COMMAND, (name, handler, description)))

    def commit(self) -> int:
        """Forward every buffered contribution to the registry. Returns count."""
        pending, self._pending = self._pending, []
        for kind, args in pending:
            if kind is PointKind.MIDDLEWARE:
                self.registry.add_middleware(*args, owner=self.owner)
            elif kind is PointKind.ROUTE:
                self.registry.add_route(*args, owner=self.owner)
            else:
                self.registry.add_command(*args, owner=self.owner)
        return len(pending)

    def discard(self) -> int:
        """Drop every buffered contribution. Returns count."""
        dropped = len(self._pending)
        self._pending = []
        return dropped

    def __len__(self) -> int:
        return len(self._pending)


def _check_middleware(middleware: Any) -> None:
    if not callable(middleware):
        raise TypeError("Middleware must be callable")


def _check_route(method: str, path: str, handler: Any) -> str:
    if not method or not path or handler is None:
        raise ValueError("Method, path and handler are required for a route")
    if not callable(handler):
        raise TypeError(f"Route handler for {method} {path} must be callable")
    return method.upper()


def _check_command(name: str, handler: Any) -> None:
    if not name or handler is None:
        raise ValueError("Name and handler are required for a command")
    if not callable(handler):
        raise TypeError(f"Command handler for {name} must be callable")
