"""
Configuration models for the extension runtime.

Provides a flexible configuration system that can be loaded from
YAML/JSON files or constructed programmatically.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_ENTRY_POINT_GROUP = "extension_runtime.extensions"


def is_dev_mode() -> bool:
    """Whether the runtime runs in development mode (enables watching by default)."""
    return os.environ.get("EXTENSION_RUNTIME_ENV", "").lower() == "development"


@dataclass
class ExtensionEntryConfig:
    """Per-extension configuration overrides."""

    enabled: bool = True  # Skipped by load_all() when False
    config: dict[str, Any] = field(default_factory=dict)  # Merged over default_config


@dataclass
class RuntimeConfig:
    """
    Main configuration for the extension runtime.

    Example YAML:
        extensions_dir: ./extensions
        data_dir: ./data/extensions
        load_timeout_seconds: 30
        hook_timeout_seconds: 5
        max_retries: 3
        watch: true
        entries:
          analytics:
            config:
              sample_rate: 0.5
          legacy-auth:
            enabled: false
    """

    # Locations
    extensions_dir: Path = field(default_factory=lambda: Path("extensions"))
    data_dir: Path = field(default_factory=lambda: Path("data") / "extensions")
    backup_dir: Path = field(default_factory=lambda: Path("backups"))
    entry_point_group: str | None = DEFAULT_ENTRY_POINT_GROUP  # None disables entry points

    # Timeouts
    load_timeout_seconds: float = 30.0
    unload_timeout_seconds: float = 30.0
    hook_timeout_seconds: float = 5.0

    # Batch loading
    auto_load: bool = True
    max_retries: int = 3  # Attempts per extension in load_all()
    retry_backoff_seconds: float = 1.0  # Linear: backoff * attempt

    # File watching
    watch: bool = field(default_factory=is_dev_mode)
    watch_debounce_ms: int = 250

    enable_validation: bool = True

    # Per-extension config
    entries: dict[str, ExtensionEntryConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RuntimeConfig:
        """Create config from a dictionary."""
        defaults = cls()
        entries = {}
        for name, entry_data in (data.get("entries") or {}).items():
            entry_data = entry_data or {}
            entries[name] = ExtensionEntryConfig(
                enabled=entry_data.get("enabled", True),
                config=dict(entry_data.get("config") or {}),
            )

        return cls(
            extensions_dir=Path(data.get("extensions_dir", defaults.extensions_dir)),
            data_dir=Path(data.get("data_dir", defaults.data_dir)),
            backup_dir=Path(data.get("backup_dir", defaults.backup_dir)),
            entry_point_group=data.get("entry_point_group", DEFAULT_ENTRY_POINT_GROUP),
            load_timeout_seconds=float(data.get("load_timeout_seconds", 30.0)),
            unload_timeout_seconds=float(data.get("unload_timeout_seconds", 30.0)),
            hook_timeout_seconds=float(data.get("hook_timeout_seconds", 5.0)),
            auto_load=data.get("auto_load", True),
            max_retries=int(data.get("max_retries", 3)),
            retry_backoff_seconds=float(data.get("retry_backoff_seconds", 1.0)),
            watch=data.get("watch", defaults.watch),
            watch_debounce_ms=int(data.get("watch_debounce_ms", 250)),
            enable_validation=data.get("enable_validation", True),
            entries=entries,
        )

    @classmethod
    def from_yaml(cls, path: Path) -> RuntimeConfig:
        """Load config from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> RuntimeConfig:
        """Load config from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary."""
        return {
            "extensions_dir": str(self.extensions_dir),
            "data_dir": str(self.data_dir),
            "backup_dir": str(self.backup_dir),
            "entry_point_group": self.entry_point_group,
            "load_timeout_seconds": self.load_timeout_seconds,
            "unload_timeout_seconds": self.unload_timeout_seconds,
            "hook_timeout_seconds": self.hook_timeout_seconds,
            "auto_load": self.auto_load,
            "max_retries": self.max_retries,
            "retry_backoff_seconds": self.retry_backoff_seconds,
            "watch": self.watch,
            "watch_debounce_ms": self.watch_debounce_ms,
            "enable_validation": self.enable_validation,
            "entries": {
                name: {"enabled": entry.enabled, "config": entry.config}
                for name, entry in self.entries.items()
            },
        }

    def get_entry(self, name: str) -> ExtensionEntryConfig:
        """Get config for a specific extension, with defaults."""
        return self.entries.get(name, ExtensionEntryConfig())
