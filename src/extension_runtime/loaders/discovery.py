"""
Extension discovery.

Extensions are found from:
1. The configured extensions directory: ``<name>.<suffix>`` files and
   ``<name>/`` directories with an entry file (``index``, ``main``,
   ``plugin`` or ``__init__``, first match wins)
2. Python entry points in the configured group

Names starting with ``_`` or ``.`` are ignored.
"""

from __future__ import annotations

import inspect
from collections.abc import Collection
from dataclasses import dataclass
from importlib.metadata import EntryPoint, entry_points
from pathlib import Path
from typing import Any

from extension_runtime.loaders.base import SourceLoader
from extension_runtime.loaders.python import PythonSourceLoader
from extension_runtime.loaders.yaml_manifest import ManifestLoader
from extension_runtime.logging import get_logger
from extension_runtime.models import ExtensionDescriptor

logger = get_logger("loaders.discovery")

ENTRY_STEMS = ("index", "main", "plugin", "__init__")


@dataclass
class DiscoveryFailure:
    """An extension source that could not be evaluated."""

    name: str
    source: str
    error: BaseException


class ExtensionDiscovery:
    """Finds extension sources and evaluates them into descriptors."""

    def __init__(
        self,
        root: Path | None,
        loaders: list[SourceLoader] | None = None,
        entry_point_group: str | None = None,
    ) -> None:
        self.root = Path(root) if root is not None else None
        self.entry_point_group = entry_point_group
        if loaders is None:
            python_loader = PythonSourceLoader()
            loaders = [python_loader, ManifestLoader(python_loader)]
        self._loaders: list[SourceLoader] = list(loaders)

    def register_loader(self, loader: SourceLoader) -> None:
        """Add a loader strategy; earlier loaders win on shared suffixes."""
        self._loaders.append(loader)

    def loader_for(self, path: Path) -> SourceLoader | None:
        suffix = path.suffix.lower()
        for loader in self._loaders:
            if suffix in loader.suffixes:
                return loader
        return None

    @property
    def suffixes(self) -> tuple[str, ...]:
        seen: list[str] = []
        for loader in self._loaders:
            seen.extend(s for s in loader.suffixes if s not in seen)
        return tuple(seen)

    def scan(self) -> list[tuple[str, Path]]:
        """List ``(name, entry_file)`` pairs under the root, sorted by name."""
        found: dict[str, Path] = {}
        if self.root is None or not self.root.is_dir():
            return []

        for child in sorted(self.root.iterdir()):
            if child.name.startswith(("_", ".")):
                continue
            if child.is_dir():
                entry = self._entry_file(child)
                if entry is not None:
                    found.setdefault(child.name, entry)
            elif child.stem not in found and any(loader.can_load(child) for loader in self._loaders):
                found[child.stem] = child

        return sorted(found.items())

    def _entry_file(self, directory: Path) -> Path | None:
        for stem in ENTRY_STEMS:
            for suffix in self.suffixes:
                candidate = directory / f"{stem}{suffix}"
                if candidate.is_file():
                    return candidate
        return None

    def find(self, name: str) -> Path | None:
        """Entry file of the extension called ``name``, if present on disk."""
        for found_name, path in self.scan():
            if found_name == name:
                return path
        return None

    def evaluate(self, name: str, path: Path) -> ExtensionDescriptor:
        """Run the matching loader on an entry file and read its descriptor."""
        loader = self.loader_for(path)
        if loader is None:
            raise ValueError(f"No loader for {path.suffix or path.name}")
        raw = loader.load(path, name)
        return ExtensionDescriptor.from_object(raw, name=name, source=path)

    def entry_points(self) -> list[EntryPoint]:
        if not self.entry_point_group:
            return []
        try:
            return list(entry_points(group=self.entry_point_group))
        except Exception as e:
            logger.debug("Entry point discovery failed: %s", e)
            return []

    def evaluate_entry_point(self, ep: EntryPoint) -> ExtensionDescriptor:
        """Load an entry point; a plain function is taken as the ``load`` callable."""
        target: Any = ep.load()
        if inspect.isroutine(target):
            return ExtensionDescriptor(name=ep.name, load=target, raw=target)
        if target is None:
            raise ValueError(f"Entry point {ep.value} resolved to None")
        return ExtensionDescriptor.from_object(target, name=ep.name)

    def discover(
        self, skip: Collection[str] = ()
    ) -> tuple[list[ExtensionDescriptor], list[DiscoveryFailure]]:
        """
        Evaluate everything that can be found.

        Args:
            skip: Names not to evaluate (e.g. extensions already running)

        Returns:
            (descriptors, failures). On-disk extensions shadow entry points
            with the same name.
        """
        descriptors: list[ExtensionDescriptor] = []
        failures: list[DiscoveryFailure] = []
        names: set[str] = set(skip)

        for name, path in self.scan():
            if name in names:
                continue
            try:
                descriptors.append(self.evaluate(name, path))
                names.add(name)
                logger.debug("Discovered extension: %s (%s)", name, path)
            except Exception as e:
                logger.warning("Failed to evaluate extension %s from %s: %s", name, path, e)
                failures.append(DiscoveryFailure(name, str(path), e))

        for ep in self.entry_points():
            if ep.name in names:
                logger.debug("Entry point %s skipped (already known)", ep.name)
                continue
            try:
                descriptors.append(self.evaluate_entry_point(ep))
                names.add(ep.name)
                logger.debug("Discovered entry point extension: %s", ep.name)
            except Exception as e:
                logger.warning("Failed to load entry point extension %s: %s", ep.name, e)
                failures.append(DiscoveryFailure(ep.name, ep.value, e))

        return descriptors, failures

    def release(self, descriptor: ExtensionDescriptor) -> None:
        """Drop cached modules for a descriptor evaluated from a file."""
        if descriptor.source is None:
            return
        loader = self.loader_for(descriptor.source)
        if loader is not None:
            loader.release(descriptor.name)
