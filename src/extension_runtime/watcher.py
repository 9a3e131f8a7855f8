"""
Hot-reload watcher.

Watches the extensions directory with watchfiles and reloads a loaded
extension, re-evaluating its source, whenever one of its files changes.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from watchfiles import Change, awatch

from extension_runtime.errors import ExtensionError
from extension_runtime.events import DEV_HOTRELOAD, HotReloadEvent
from extension_runtime.logging import get_logger

if TYPE_CHECKING:
    from extension_runtime.lifecycle import LifecycleController

logger = get_logger("watcher")

# Deletions are ignored: the extension keeps running until unloaded
RELOAD_CHANGES = frozenset({Change.added, Change.modified})


class HotReloadWatcher:
    """
    Maps file changes under the extensions directory to extension reloads.

    Example:
        watcher = HotReloadWatcher(controller)
        await watcher.start()
        ...
        await watcher.stop()
    """

    def __init__(
        self,
        controller: LifecycleController,
        root: Path | None = None,
        debounce_ms: int | None = None,
    ) -> None:
        self.controller = controller
        self.root = Path(root if root is not None else controller.config.extensions_dir)
        self.debounce_ms = (
            debounce_ms if debounce_ms is not None else controller.config.watch_debounce_ms
        )
        self.failures = 0
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None

    @property
    def is_watching(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start watching in a background task."""
        if self._task is not None:
            return  # Already watching

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info("Watching %s for extension changes", self.root)

    async def stop(self) -> None:
        """Stop watching."""
        if self._task is None:
            return

        if self._stop_event:
            self._stop_event.set()

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass

        self._task = None
        self._stop_event = None

    async def _watch_loop(self) -> None:
        if not self.root.is_dir():
            logger.warning("Extensions directory %s does not exist, not watching", self.root)
            return

        try:
            async for changes in awatch(
                str(self.root),
                debounce=self.debounce_ms,
                stop_event=self._stop_event,
            ):
                await self.handle_changes(changes)
        except asyncio.CancelledError:
            pass

    def extension_name_for(self, path: Path | str) -> str | None:
        """
        Name of the extension a path belongs to.

        The first path component below the root: a directory name, or the
        file stem for single-file extensions. None outside the root.
        """
        try:
            relative = Path(path).resolve().relative_to(self.root.resolve())
        except ValueError:
            return None
        if not relative.parts:
            return None

        first = relative.parts[0]
        name = Path(first).stem if len(relative.parts) == 1 else first
        if not name or name.startswith(("_", ".")):
            return None
        return name

    async def handle_changes(self, changes: Iterable[tuple[Change, str]]) -> list[str]:
        """
        Reload each loaded extension touched by ``changes`` once.

        Reload failures are logged and counted; they never stop the watcher.

        Returns:
            Names of the extensions reloaded successfully
        """
        suffixes = self.controller.discovery.suffixes
        touched: dict[str, list[Path]] = {}
        for change, path_str in changes:
            path = Path(path_str)
            if change not in RELOAD_CHANGES or path.suffix.lower() not in suffixes:
                continue
            name = self.extension_name_for(path)
            if name is not None:
                touched.setdefault(name, []).append(path)

        reloaded: list[str] = []
        for name, paths in touched.items():
            if self.controller.get(name) is None:
                logger.debug("Ignoring change to %s: not loaded", name)
                continue

            logger.info("Change detected in %s, reloading", name)
            try:
                await self.controller.reload(name, refresh=True)
            except ExtensionError as e:
                self.failures += 1
                logger.error("Hot reload of %s failed: %s", name, e)
                continue

            reloaded.append(name)
            await self.controller.events.emit(DEV_HOTRELOAD, HotReloadEvent(name, paths))
            await self.controller.hooks.execute("dev:hotreload", name, paths)

        return reloaded
