"""
Data models for the extension runtime.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import ModuleType
from typing import Any

DEFAULT_PRIORITY = 10
DEFAULT_VERSION = "1.0.0"

# Lifecycle callables: load(host, config, context), the others (host, config)
LoadFn = Callable[..., Any]
LifecycleFn = Callable[..., Any]

# Attributes used to infer a classification tag when ``type`` is absent
_TYPE_MARKERS: list[tuple[str, str]] = [
    ("middleware", "middleware"),
    ("routes", "router"),
    ("commands", "cli"),
    ("websocket", "websocket"),
    ("database", "database"),
    ("auth", "auth"),
    ("theme", "theme"),
]


class ExtensionState(str, Enum):
    """Lifecycle state of an extension."""

    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"  # loaded but inactive
    ACTIVE = "active"  # loaded and active
    ERROR = "error"


class PointKind(str, Enum):
    """Kinds of extension points an extension can contribute."""

    MIDDLEWARE = "middleware"
    ROUTE = "route"
    COMMAND = "command"


def _lookup(obj: Any, *keys: str) -> Any:
    """Read the first present key/attribute from a mapping or object."""
    for key in keys:
        if isinstance(obj, Mapping):
            if key in obj:
                return obj[key]
        elif hasattr(obj, key):
            return getattr(obj, key)
    return None


@dataclass
class ExtensionDescriptor:
    """
    Capability interface of an extension.

    ``load`` is required; ``unload``, ``activate`` and ``deactivate`` are
    optional. Field values are copied as-is from the source object and only
    type-checked by the manifest validator.

    Example:
        async def load(host, config, context):
            context.hook("request:start", stamp_request, priority=20)

        descriptor = ExtensionDescriptor(name="stamp", version="1.2.0", load=load)
    """

    name: str
    load: LoadFn | None = None
    version: Any = None
    description: Any = None
    author: Any = None
    dependencies: Any = None
    peer_dependencies: Any = None
    default_config: Any = None
    config_schema: Any = None
    hooks: Any = None
    permissions: Any = None
    type: Any = None
    priority: Any = None
    engines: Any = None
    unload: LifecycleFn | None = None
    activate: LifecycleFn | None = None
    deactivate: LifecycleFn | None = None

    source: Path | None = None  # entry file the descriptor was evaluated from
    declared_name: Any = None  # ``name`` as written by the extension itself
    raw: Any = field(default=None, repr=False, compare=False)

    @classmethod
    def from_object(
        cls,
        obj: Any,
        name: str | None = None,
        source: Path | None = None,
    ) -> ExtensionDescriptor:
        """
        Build a descriptor from a module, mapping, or plain object.

        A module exposing an ``extension`` attribute (mapping, object, or
        descriptor) is read through that attribute; otherwise the module's own
        top-level names are used. ``name`` is the declared name (file or
        directory name) and wins over the object's own ``name``.
        """
        if isinstance(obj, ExtensionDescriptor):
            if (name and name != obj.name) or (source and source != obj.source):
                return replace(obj, name=name or obj.name, source=source or obj.source)
            return obj

        if isinstance(obj, ModuleType):
            inner = getattr(obj, "extension", None)
            if isinstance(inner, (Mapping, ExtensionDescriptor)) or (
                inner is not None and not callable(inner) and not isinstance(inner, ModuleType)
            ):
                return cls.from_object(inner, name=name, source=source)

        declared = _lookup(obj, "name")
        resolved_name = name or (declared if isinstance(declared, str) and declared else "anonymous")

        return cls(
            name=resolved_name,
            load=_lookup(obj, "load"),
            version=_lookup(obj, "version"),
            description=_lookup(obj, "description"),
            author=_lookup(obj, "author"),
            dependencies=_lookup(obj, "dependencies"),
            peer_dependencies=_lookup(obj, "peer_dependencies", "peerDependencies"),
            default_config=_lookup(obj, "default_config", "defaultConfig"),
            config_schema=_lookup(obj, "config_schema", "configSchema"),
            hooks=_lookup(obj, "hooks"),
            permissions=_lookup(obj, "permissions"),
            type=_lookup(obj, "type"),
            priority=_lookup(obj, "priority"),
            engines=_lookup(obj, "engines"),
            unload=_lookup(obj, "unload"),
            activate=_lookup(obj, "activate"),
            deactivate=_lookup(obj, "deactivate"),
            source=source,
            declared_name=declared,
            raw=obj,
        )

    @property
    def dependency_names(self) -> list[str]:
        """Declared dependencies as a list (empty when absent or malformed)."""
        if isinstance(self.dependencies, (list, tuple)):
            return [d for d in self.dependencies if isinstance(d, str)]
        return []

    @property
    def load_priority(self) -> int:
        """Priority used as a load-order hint."""
        try:
            return int(self.priority) if self.priority is not None else DEFAULT_PRIORITY
        except (TypeError, ValueError):
            return DEFAULT_PRIORITY

    def detect_type(self) -> str:
        """Return the classification tag, inferring one from attributes if unset."""
        if isinstance(self.type, str) and self.type:
            return self.type
        if self.raw is not None:
            for attr, tag in _TYPE_MARKERS:
                if _lookup(self.raw, attr) is not None:
                    return tag
        return "generic"


@dataclass
class ExtensionInfo:
    """Registry record of a loaded (or loading) extension."""

    name: str
    version: str = DEFAULT_VERSION
    description: str = ""
    author: str = ""
    dependencies: list[str] = field(default_factory=list)
    peer_dependencies: list[str] = field(default_factory=list)
    config: dict[str, Any] = field(default_factory=dict)
    state: ExtensionState = ExtensionState.UNLOADED
    load_timestamp: float = field(default_factory=time.time)
    error_count: int = 0
    priority: int = DEFAULT_PRIORITY
    type: str = "generic"
    source: Path | None = None
    descriptor: ExtensionDescriptor | None = field(default=None, repr=False, compare=False)

    @property
    def loaded(self) -> bool:
        return self.state in (ExtensionState.LOADED, ExtensionState.ACTIVE)

    @property
    def active(self) -> bool:
        return self.state is ExtensionState.ACTIVE

    def to_dict(self) -> dict[str, Any]:
        """Summary used by listings and the CLI."""
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "type": self.type,
            "state": self.state.value,
            "loaded": self.loaded,
            "active": self.active,
            "load_timestamp": self.load_timestamp,
            "error_count": self.error_count,
        }


@dataclass
class HookRegistration:
    """A callback registered on a named hook."""

    hook_name: str
    callback: Callable[..., Any]
    owner: str = "core"
    priority: int = DEFAULT_PRIORITY  # higher runs first


@dataclass
class ExtensionPoint:
    """A middleware, route, or command contributed by an extension."""

    kind: PointKind
    payload: dict[str, Any]
    owner: str


@dataclass
class CommandInfo:
    """A registered command."""

    name: str
    handler: Callable[..., Any] | None = None
    description: str = ""
    extension_name: str = ""


@dataclass
class LoadSummary:
    """Outcome of a batch load (load_all / restore)."""

    success: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)  # one per failed attempt
    skipped: list[str] = field(default_factory=list)
    order: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed == 0

    @property
    def failed_extensions(self) -> list[str]:
        """Names with at least one recorded failure, in first-failure order."""
        seen: list[str] = []
        for error in self.errors:
            if error["extension"] not in seen:
                seen.append(error["extension"])
        return seen

    def record_error(self, extension: str, error: BaseException | str, attempt: int) -> None:
        self.errors.append({"extension": extension, "error": str(error), "attempt": attempt})

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failed": self.failed,
            "errors": list(self.errors),
            "skipped": list(self.skipped),
            "order": list(self.order),
        }


@dataclass
class HealthReport:
    """Health of a single extension."""

    name: str
    loaded: bool
    active: bool
    error_count: int
    uptime: float  # seconds since load

    @property
    def health(self) -> str:
        if self.error_count == 0:
            return "healthy"
        if self.error_count < 5:
            return "warning"
        return "critical"


@dataclass
class RuntimeStats:
    """Aggregate counters across the runtime."""

    total: int = 0
    active: int = 0
    loaded: int = 0
    loading: int = 0
    hooks: int = 0
    total_hook_callbacks: int = 0
    middleware: int = 0
    routes: int = 0
    commands: int = 0
    errors: int = 0
    uptime: float = 0.0


@dataclass
class BackupEntry:
    """Saved state of one extension."""

    name: str
    version: str = DEFAULT_VERSION
    config: dict[str, Any] = field(default_factory=dict)
    active: bool = True
    load_order: int = -1


@dataclass
class BackupDocument:
    """Serializable snapshot of the registry."""

    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))
    load_order: list[str] = field(default_factory=list)
    plugins: list[BackupEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "loadOrder": list(self.load_order),
            "plugins": [
                {
                    "name": entry.name,
                    "version": entry.version,
                    "config": entry.config,
                    "active": entry.active,
                    "loadOrder": entry.load_order,
                }
                for entry in self.plugins
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BackupDocument:
        """Parse a backup document. Raises ValueError when its shape is wrong."""
        if not isinstance(data, Mapping):
            raise ValueError(f"backup must be a JSON object, got {type(data).__name__}")
        items = data.get("plugins", [])
        if not isinstance(items, list) or not all(isinstance(item, Mapping) for item in items):
            raise ValueError("backup plugins must be a list of objects")
        plugins = [
            BackupEntry(
                name=item["name"],
                version=item.get("version", DEFAULT_VERSION),
                config=dict(item.get("config") or {}),
                active=bool(item.get("active", True)),
                load_order=int(item.get("loadOrder", -1)),
            )
            for item in items
        ]
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            load_order=list(data.get("loadOrder", [])),
            plugins=plugins,
        )

    def ordered_entries(self) -> list[BackupEntry]:
        """Entries sorted by their saved load-order index."""
        return sorted(self.plugins, key=lambda e: e.load_order)
