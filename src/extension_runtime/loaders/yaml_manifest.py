"""
Loader for YAML manifests.

A manifest carries the extension's metadata and points at the code through
``entry``, either a file next to the manifest or an importable
``module:attribute`` reference:

```yaml
name: analytics
version: 1.4.0
description: Request analytics
dependencies: [storage-base]
default_config:
  sample_rate: 0.25
entry: analytics_impl.py
```

Manifest metadata overrides whatever the entry module declares itself.
"""

from __future__ import annotations

import importlib
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from extension_runtime.loaders.base import SourceLoader
from extension_runtime.loaders.python import PythonSourceLoader
from extension_runtime.models import ExtensionDescriptor

# Manifest key -> descriptor field
_METADATA_KEYS: dict[str, str] = {
    "version": "version",
    "description": "description",
    "author": "author",
    "dependencies": "dependencies",
    "peer_dependencies": "peer_dependencies",
    "peerDependencies": "peer_dependencies",
    "default_config": "default_config",
    "defaultConfig": "default_config",
    "config_schema": "config_schema",
    "configSchema": "config_schema",
    "hooks": "hooks",
    "permissions": "permissions",
    "type": "type",
    "priority": "priority",
    "engines": "engines",
}


class ManifestLoader(SourceLoader):
    """Loads ``.yaml``/``.yml`` manifests and the code they reference."""

    suffixes = (".yaml", ".yml")

    def __init__(self, python_loader: PythonSourceLoader | None = None) -> None:
        self.python_loader = python_loader or PythonSourceLoader()

    def load(self, path: Path, name: str) -> ExtensionDescriptor:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Manifest {path} must be a mapping")

        entry = data.get("entry")
        if not entry:
            raise ValueError(f"Manifest {path} has no 'entry'")

        target = self._resolve_entry(str(entry), path, name)
        descriptor = ExtensionDescriptor.from_object(target, name=name, source=path)

        overrides: dict[str, Any] = {
            field_name: data[key] for key, field_name in _METADATA_KEYS.items() if key in data
        }
        if "name" in data:
            overrides["declared_name"] = data["name"]
        return replace(descriptor, **overrides)

    def _resolve_entry(self, entry: str, manifest: Path, name: str) -> Any:
        if ":" in entry:
            module_name, _, attr = entry.partition(":")
            module = importlib.import_module(module_name)
            return getattr(module, attr)
        entry_path = (manifest.parent / entry).resolve()
        if not entry_path.is_file():
            raise FileNotFoundError(f"Manifest entry not found: {entry_path}")
        return self.python_loader.load(entry_path, name)

    def release(self, name: str) -> None:
        self.python_loader.release(name)
