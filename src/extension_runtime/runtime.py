"""
Extension runtime - the public entry point.

Wires one instance of every component together (event bus, hook bus,
extension point registry, storage, discovery, lifecycle controller, hot
reload watcher) and exposes the operations a host application needs.

Example:
    from extension_runtime import ExtensionRuntime, RuntimeConfig

    config = RuntimeConfig.from_yaml(Path("extensions.yaml"))
    async with ExtensionRuntime(config, host=app) as runtime:
        (request,) = await runtime.execute_hook("request:start", request)
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from extension_runtime.config import RuntimeConfig
from extension_runtime.errors import ExtensionError, StorageError
from extension_runtime.events import EventBus
from extension_runtime.hooks import HookBus
from extension_runtime.host import ServingLayer
from extension_runtime.lifecycle import LifecycleController
from extension_runtime.loaders import ExtensionDiscovery
from extension_runtime.logging import get_logger
from extension_runtime.models import (
    DEFAULT_PRIORITY,
    BackupDocument,
    BackupEntry,
    ExtensionDescriptor,
    ExtensionInfo,
    HealthReport,
    HookRegistration,
    LoadSummary,
    RuntimeStats,
)
from extension_runtime.points import CommandRegistry, ExtensionPointRegistry
from extension_runtime.storage import StorageProvider
from extension_runtime.watcher import HotReloadWatcher

logger = get_logger("runtime")


class ExtensionRuntime:
    """Facade over the extension lifecycle, hooks, and backups."""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        host: ServingLayer | None = None,
        commands: CommandRegistry | None = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.host = host

        self.events = EventBus()
        self.hooks = HookBus(self.events, timeout=self.config.hook_timeout_seconds)
        self.commands = commands if commands is not None else CommandRegistry()
        self.points = ExtensionPointRegistry(host, self.commands)
        self.storage = StorageProvider(self.config.data_dir)
        self.discovery = ExtensionDiscovery(
            self.config.extensions_dir,
            entry_point_group=self.config.entry_point_group,
        )
        self.controller = LifecycleController(
            self.config,
            host=host,
            events=self.events,
            hooks=self.hooks,
            points=self.points,
            storage=self.storage,
            discovery=self.discovery,
        )
        self.watcher = HotReloadWatcher(self.controller)

    # ------------------------------------------------------------------
    # Startup / shutdown
    # ------------------------------------------------------------------

    async def start(self) -> LoadSummary | None:
        """Load all extensions and start watching, as configured."""
        summary = await self.load_all() if self.config.auto_load else None
        if self.config.watch:
            await self.watcher.start()
        return summary

    async def stop(self) -> None:
        """Stop watching and unload everything in reverse load order."""
        await self.watcher.stop()
        await self.controller.unload_all()

    async def __aenter__(self) -> ExtensionRuntime:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def register(self, descriptor: Any) -> ExtensionDescriptor:
        """Make a descriptor loadable by name without putting it on disk."""
        return self.controller.register(descriptor)

    async def load_all(self) -> LoadSummary:
        return await self.controller.load_all()

    async def load_extension(
        self,
        target: str | ExtensionDescriptor | Any,
        config: Mapping[str, Any] | None = None,
    ) -> ExtensionInfo:
        return await self.controller.load(target, config)

    async def unload_extension(self, name: str) -> bool:
        return await self.controller.unload(name)

    async def reload_extension(
        self,
        name: str,
        new_config: Mapping[str, Any] | None = None,
        refresh: bool = False,
    ) -> ExtensionInfo:
        return await self.controller.reload(name, new_config, refresh=refresh)

    async def toggle_extension(self, name: str, active: bool | None = None) -> bool:
        return await self.controller.toggle(name, active)

    async def update_config(self, name: str, config: Mapping[str, Any]) -> bool:
        return await self.controller.update_config(name, config)

    # ------------------------------------------------------------------
    # Hooks and events
    # ------------------------------------------------------------------

    async def execute_hook(self, hook_name: str, *args: Any) -> tuple[Any, ...]:
        """Run a hook pipeline; see HookBus.execute."""
        return await self.hooks.execute(hook_name, *args)

    def add_hook(
        self,
        hook_name: str,
        callback: Callable[..., Any],
        priority: int = DEFAULT_PRIORITY,
    ) -> HookRegistration:
        """Register a host-owned hook callback."""
        return self.hooks.add(hook_name, callback, owner="core", priority=priority)

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        """Subscribe to a runtime event; see EventBus.on."""
        return self.events.on(event, handler)

    def off(self, event: str, handler: Callable[..., Any]) -> int:
        return self.events.off(event, handler)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_extensions(self) -> list[dict[str, Any]]:
        return [info.to_dict() for info in self.controller.list()]

    def get_extension(self, name: str) -> ExtensionInfo | None:
        return self.controller.get(name)

    def get_stats(self) -> RuntimeStats:
        return self.controller.stats()

    def check_health(self, name: str | None = None) -> HealthReport | list[HealthReport] | None:
        """Health of one extension (None if not loaded), or of all when ``name`` is None."""
        if name is not None:
            return self.controller.check_health(name)
        reports = [self.controller.check_health(n) for n in self.controller.load_order]
        return [r for r in reports if r is not None]

    # ------------------------------------------------------------------
    # Backup / restore
    # ------------------------------------------------------------------

    def snapshot(self) -> BackupDocument:
        """Capture versions, configs, active flags, and load order."""
        order = self.controller.load_order
        return BackupDocument(
            load_order=order,
            plugins=[
                BackupEntry(
                    name=info.name,
                    version=info.version,
                    config=dict(info.config),
                    active=info.active,
                    load_order=order.index(info.name),
                )
                for info in self.controller.list()
            ],
        )

    def backup(self, path: Path | str | None = None) -> Path:
        """
        Write a snapshot as JSON.

        Args:
            path: Output file (default: ``<backup_dir>/extensions-<epoch ms>.json``)

        Returns:
            The written path
        """
        document = self.snapshot()
        output = Path(path) if path is not None else (
            self.config.backup_dir / f"extensions-{document.timestamp}.json"
        )
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(document.to_dict(), indent=2, default=str), encoding="utf-8")
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Cannot write backup {output}: {e}") from e

        logger.info("Backed up %d extension(s) to %s", len(document.plugins), output)
        return output

    async def restore(self, path: Path | str) -> LoadSummary:
        """
        Replace the running set with the one saved in a backup.

        Everything is unloaded first (reverse load order), then each saved
        extension is loaded by name in its saved order with its saved config,
        and switched off again if it was inactive. Per-extension failures
        are logged and collected in the summary.

        Raises:
            StorageError: The backup cannot be read
        """
        path = Path(path)
        try:
            document = BackupDocument.from_dict(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Cannot read backup {path}: {e}") from e

        await self.controller.unload_all()

        summary = LoadSummary()
        started = time.monotonic()
        for entry in document.ordered_entries():
            summary.order.append(entry.name)
            try:
                await self.controller.load(entry.name, entry.config)
                if not entry.active:
                    await self.controller.toggle(entry.name, False)
            except ExtensionError as e:
                logger.error("Failed to restore %s: %s", entry.name, e)
                summary.failed += 1
                summary.record_error(entry.name, e, attempt=1)
                continue
            summary.success += 1

        logger.info(
            "Restored %d/%d extension(s) from %s in %.2fs",
            summary.success,
            len(document.plugins),
            path,
            time.monotonic() - started,
        )
        return summary
