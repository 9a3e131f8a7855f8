"""
Extension Runtime - discovery, lifecycle, and hooks for third-party extensions.

This library discovers extensions on disk or through entry points, validates
their descriptors, loads them in dependency order, hot-reloads them while
developing, and lets them observe and transform values flowing through the
host application via a priority-ordered hook bus.

Example:
    from extension_runtime import ExtensionRuntime, RuntimeConfig

    runtime = ExtensionRuntime(
        RuntimeConfig(extensions_dir=Path("./extensions"), watch=True),
        host=app,
    )

    # Discover, resolve dependencies, and load everything
    summary = await runtime.start()

    # Let extensions transform a request
    (request,) = await runtime.execute_hook("request:start", request)

    # Save and restore the running set
    path = runtime.backup()
    await runtime.restore(path)
"""

from extension_runtime.config import ExtensionEntryConfig, RuntimeConfig
from extension_runtime.context import ExtensionContext
from extension_runtime.errors import (
    DependencyError,
    ExtensionError,
    ExtensionNotFoundError,
    ExtensionRuntimeError,
    ExtensionStateError,
    ExtensionTimeoutError,
    StorageError,
    ValidationError,
)
from extension_runtime.events import (
    CONFIG_CHANGE,
    DEV_HOTRELOAD,
    EXTENSION_ACTIVATED,
    EXTENSION_DEACTIVATED,
    EXTENSION_ERROR,
    EXTENSION_LOADED,
    EXTENSION_UNLOADED,
    HOOK_ERROR,
    ConfigChangeEvent,
    EventBus,
    ExtensionEvent,
    HookErrorEvent,
    HotReloadEvent,
)
from extension_runtime.hooks import DEFAULT_HOOKS, HookBus
from extension_runtime.host import RemovableRoutes, ServingLayer
from extension_runtime.lifecycle import LifecycleController
from extension_runtime.loaders import (
    DiscoveryFailure,
    ExtensionDiscovery,
    ManifestLoader,
    PythonSourceLoader,
    SourceLoader,
)
from extension_runtime.manifest import ManifestReport, check_config, validate_manifest
from extension_runtime.models import (
    BackupDocument,
    BackupEntry,
    CommandInfo,
    ExtensionDescriptor,
    ExtensionInfo,
    ExtensionPoint,
    ExtensionState,
    HealthReport,
    HookRegistration,
    LoadSummary,
    PointKind,
    RuntimeStats,
)
from extension_runtime.points import CommandRegistry, ExtensionPointRegistry, PendingPoints
from extension_runtime.resolver import find_cycles, resolve_load_order
from extension_runtime.runtime import ExtensionRuntime
from extension_runtime.storage import ExtensionStorage, StorageProvider
from extension_runtime.watcher import HotReloadWatcher

__version__ = "0.1.0"

__all__ = [
    # Runtime
    "ExtensionRuntime",
    "LifecycleController",
    "ExtensionContext",
    "HotReloadWatcher",
    # Config
    "RuntimeConfig",
    "ExtensionEntryConfig",
    # Models
    "ExtensionDescriptor",
    "ExtensionInfo",
    "ExtensionState",
    "ExtensionPoint",
    "PointKind",
    "HookRegistration",
    "CommandInfo",
    "LoadSummary",
    "HealthReport",
    "RuntimeStats",
    "BackupDocument",
    "BackupEntry",
    # Errors
    "ExtensionError",
    "ValidationError",
    "DependencyError",
    "ExtensionTimeoutError",
    "ExtensionRuntimeError",
    "StorageError",
    "ExtensionNotFoundError",
    "ExtensionStateError",
    # Hooks and events
    "HookBus",
    "DEFAULT_HOOKS",
    "EventBus",
    "ExtensionEvent",
    "HookErrorEvent",
    "HotReloadEvent",
    "ConfigChangeEvent",
    "EXTENSION_LOADED",
    "EXTENSION_UNLOADED",
    "EXTENSION_ERROR",
    "EXTENSION_ACTIVATED",
    "EXTENSION_DEACTIVATED",
    "HOOK_ERROR",
    "DEV_HOTRELOAD",
    "CONFIG_CHANGE",
    # Extension points
    "ExtensionPointRegistry",
    "PendingPoints",
    "CommandRegistry",
    "ServingLayer",
    "RemovableRoutes",
    # Storage
    "StorageProvider",
    "ExtensionStorage",
    # Manifest and resolution
    "validate_manifest",
    "check_config",
    "ManifestReport",
    "resolve_load_order",
    "find_cycles",
    # Loaders
    "SourceLoader",
    "PythonSourceLoader",
    "ManifestLoader",
    "ExtensionDiscovery",
    "DiscoveryFailure",
]
