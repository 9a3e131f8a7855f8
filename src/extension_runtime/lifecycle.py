"""
Lifecycle controller - owns the extension registry and its state machine.

States:

    unloaded -> loading -> active | error
    active <-> loaded          (toggle)
    loaded | active -> unloaded (unload)

An extension enters the registry only after its ``load()`` succeeded. A
failed or timed-out load leaves no registry record, no hooks, and no
extension points behind.
"""

from __future__ import annotations

import asyncio
import copy
import importlib.util
import inspect
import time
from collections.abc import Callable, Mapping
from typing import Any

from extension_runtime.config import RuntimeConfig
from extension_runtime.context import ExtensionContext
from extension_runtime.errors import (
    DependencyError,
    ExtensionError,
    ExtensionNotFoundError,
    ExtensionRuntimeError,
    ExtensionStateError,
    ExtensionTimeoutError,
    ValidationError,
)
from extension_runtime.events import (
    CONFIG_CHANGE,
    EXTENSION_ACTIVATED,
    EXTENSION_DEACTIVATED,
    EXTENSION_ERROR,
    EXTENSION_LOADED,
    EXTENSION_UNLOADED,
    ConfigChangeEvent,
    EventBus,
    ExtensionEvent,
)
from extension_runtime.hooks import DeadlineExceeded, HookBus, await_within
from extension_runtime.host import ServingLayer
from extension_runtime.loaders import DiscoveryFailure, ExtensionDiscovery
from extension_runtime.logging import get_logger
from extension_runtime.manifest import ManifestReport, check_config, validate_manifest
from extension_runtime.models import (
    DEFAULT_VERSION,
    ExtensionDescriptor,
    ExtensionInfo,
    ExtensionState,
    HealthReport,
    LoadSummary,
    PointKind,
    RuntimeStats,
)
from extension_runtime.points import ExtensionPointRegistry
from extension_runtime.resolver import resolve_load_order
from extension_runtime.storage import StorageProvider

logger = get_logger("lifecycle")


class LifecycleController:
    """
    Loads, unloads, reloads and toggles extensions.

    All state lives on the instance; run one controller per host.

    Example:
        controller = LifecycleController(RuntimeConfig(extensions_dir=Path("ext")))
        summary = await controller.load_all()
        await controller.toggle("analytics", active=False)
    """

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        host: ServingLayer | None = None,
        events: EventBus | None = None,
        hooks: HookBus | None = None,
        points: ExtensionPointRegistry | None = None,
        storage: StorageProvider | None = None,
        discovery: ExtensionDiscovery | None = None,
    ) -> None:
        self.config = config or RuntimeConfig()
        self.host = host
        self.events = events or EventBus()
        self.hooks = hooks or HookBus(self.events, timeout=self.config.hook_timeout_seconds)
        self.points = points or ExtensionPointRegistry(host)
        self.storage = storage or StorageProvider(self.config.data_dir)
        self.discovery = discovery or ExtensionDiscovery(
            self.config.extensions_dir,
            entry_point_group=self.config.entry_point_group,
        )

        self._catalog: dict[str, ExtensionDescriptor] = {}
        self._extensions: dict[str, ExtensionInfo] = {}
        self._loading: dict[str, ExtensionInfo] = {}
        self._contexts: dict[str, ExtensionContext] = {}
        self._load_order: list[str] = []
        self._error_counts: dict[str, int] = {}
        self._schemas: dict[str, dict[str, Any]] = {}

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def register(self, descriptor: Any) -> ExtensionDescriptor:
        """Add a descriptor (or an object convertible to one) to the catalog."""
        descriptor = ExtensionDescriptor.from_object(descriptor)
        self._catalog[descriptor.name] = descriptor
        logger.debug("Registered extension descriptor: %s", descriptor.name)
        return descriptor

    def discover(self) -> tuple[list[ExtensionDescriptor], list[DiscoveryFailure]]:
        """Evaluate every discoverable source not currently loaded into the catalog."""
        descriptors, failures = self.discovery.discover(skip=set(self._extensions))
        for descriptor in descriptors:
            self._catalog[descriptor.name] = descriptor
        return descriptors, failures

    @property
    def catalog(self) -> dict[str, ExtensionDescriptor]:
        return dict(self._catalog)

    def resolve(self, name: str) -> ExtensionDescriptor:
        """Find a descriptor by name: catalog first, then on disk."""
        descriptor = self._catalog.get(name)
        if descriptor is not None:
            return descriptor

        path = self.discovery.find(name)
        if path is None:
            raise ExtensionNotFoundError(f"Extension '{name}' not found", name)
        try:
            descriptor = self.discovery.evaluate(name, path)
        except Exception as e:
            raise ExtensionRuntimeError(f"Failed to evaluate extension '{name}': {e}", name) from e
        self._catalog[name] = descriptor
        return descriptor

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    async def load(
        self,
        target: str | ExtensionDescriptor | Any,
        config: Mapping[str, Any] | None = None,
    ) -> ExtensionInfo:
        """
        Load and activate one extension.

        Args:
            target: Extension name, descriptor, or descriptor-like object
            config: Overrides merged over default_config and the runtime entry config

        Returns:
            The registry record, in state ACTIVE

        Raises:
            ExtensionStateError: The extension is loading or loaded already
            ExtensionNotFoundError: No descriptor under that name
            ValidationError: Malformed descriptor
            DependencyError: A dependency is not loaded
            ExtensionTimeoutError: load() exceeded load_timeout_seconds
            ExtensionRuntimeError: load() raised
        """
        if not isinstance(target, (str, ExtensionDescriptor)):
            target = ExtensionDescriptor.from_object(target)
        name = target if isinstance(target, str) else target.name

        # Checked before the first await: concurrent loads of one name are rejected
        if name in self._loading:
            raise ExtensionStateError(f"Extension '{name}' is already loading", name)
        if name in self._extensions:
            raise ExtensionStateError(f"Extension '{name}' is already loaded", name)

        info = ExtensionInfo(name=name, state=ExtensionState.LOADING)
        self._loading[name] = info
        context: ExtensionContext | None = None
        try:
            descriptor = target if isinstance(target, ExtensionDescriptor) else self.resolve(name)
            report = self._validate(descriptor, name)
            descriptor = report.descriptor
            self._check_dependencies(descriptor)
            self._check_peers(descriptor)

            info = self._build_info(descriptor, config)
            self._loading[name] = info
            if report.config_schema is not None:
                self._schemas[name] = report.config_schema

            context = ExtensionContext(self, info, self.storage.for_extension(name), self.host)
            await self._call(
                name,
                "load",
                descriptor.load,
                self.host,
                info.config,
                context,
                timeout=self.config.load_timeout_seconds,
            )
            context.commit()
        except ExtensionError as e:
            await self._fail(info, context, e)
            raise
        except asyncio.CancelledError:
            self._discard(name, context)
            raise
        except Exception as e:
            # Host rejected a committed contribution
            error = ExtensionRuntimeError(f"Extension '{name}' failed to register: {e}", name)
            await self._fail(info, context, error)
            raise error from e
        finally:
            self._loading.pop(name, None)

        info.state = ExtensionState.ACTIVE
        info.load_timestamp = time.time()
        info.error_count = self._error_counts.get(name, 0)
        self._catalog[name] = descriptor
        self._extensions[name] = info
        self._contexts[name] = context
        self._load_order.append(name)

        logger.info("Loaded extension: %s v%s", name, info.version)
        await self.events.emit(EXTENSION_LOADED, ExtensionEvent(name, info))
        await self.hooks.execute("extension:load", name, info)
        return info

    def _validate(self, descriptor: ExtensionDescriptor, name: str) -> ManifestReport:
        if not self.config.enable_validation:
            return ManifestReport(descriptor=descriptor)
        return validate_manifest(descriptor, name=name, known_hooks=self.hooks.hook_names())

    def _check_dependencies(self, descriptor: ExtensionDescriptor) -> None:
        missing = [dep for dep in descriptor.dependency_names if dep not in self._extensions]
        if missing:
            raise DependencyError(
                f"Extension '{descriptor.name}' requires unloaded extension(s): {', '.join(missing)}",
                descriptor.name,
                missing,
            )

    def _check_peers(self, descriptor: ExtensionDescriptor) -> None:
        peers = descriptor.peer_dependencies
        if not isinstance(peers, (list, tuple)):
            return
        for peer in peers:
            if not isinstance(peer, str) or peer in self._extensions:
                continue
            try:
                found = importlib.util.find_spec(peer) is not None
            except (ImportError, ValueError):
                found = False
            if not found:
                logger.warning("Extension %s: peer dependency %s is not available", descriptor.name, peer)

    def _build_info(
        self, descriptor: ExtensionDescriptor, overrides: Mapping[str, Any] | None
    ) -> ExtensionInfo:
        defaults = descriptor.default_config if isinstance(descriptor.default_config, Mapping) else {}
        entry = self.config.get_entry(descriptor.name)
        peers = descriptor.peer_dependencies
        return ExtensionInfo(
            name=descriptor.name,
            version=descriptor.version or DEFAULT_VERSION,
            description=descriptor.description or "",
            author=descriptor.author or "",
            dependencies=descriptor.dependency_names,
            peer_dependencies=list(peers) if isinstance(peers, (list, tuple)) else [],
            config=copy.deepcopy({**defaults, **entry.config, **(overrides or {})}),
            state=ExtensionState.LOADING,
            priority=descriptor.load_priority,
            type=descriptor.detect_type(),
            source=descriptor.source,
            descriptor=descriptor,
        )

    async def _call(
        self,
        name: str,
        action: str,
        fn: Callable[..., Any] | None,
        *args: Any,
        timeout: float | None,
    ) -> Any:
        """Invoke an extension callable, awaiting its result under ``timeout``."""
        if fn is None:
            raise ExtensionRuntimeError(f"Extension '{name}' has no {action}()", name)
        try:
            result = fn(*args)
            if inspect.isawaitable(result):
                result = await await_within(result, timeout)
            return result
        except DeadlineExceeded as e:
            raise ExtensionTimeoutError(
                f"Extension '{name}' {action}() timed out after {timeout}s", name
            ) from e
        except Exception as e:
            raise ExtensionRuntimeError(f"Extension '{name}' {action}() failed: {e}", name) from e

    def _discard(self, name: str, context: ExtensionContext | None) -> None:
        if context is not None:
            context.revoke()
        self.hooks.remove_owner(name)
        self.points.remove_all_by_owner(name)
        self.events.off_by_owner(name)
        self._schemas.pop(name, None)

    async def _fail(
        self, info: ExtensionInfo, context: ExtensionContext | None, error: ExtensionError
    ) -> None:
        name = info.name
        info.state = ExtensionState.ERROR
        self._discard(name, context)
        self._error_counts[name] = self._error_counts.get(name, 0) + 1
        info.error_count = self._error_counts[name]

        logger.error("Failed to load extension %s: %s", name, error)
        await self.events.emit(EXTENSION_ERROR, ExtensionEvent(name, info, error))
        await self.hooks.execute("extension:error", name, error)
        if isinstance(error, ExtensionTimeoutError):
            await self.hooks.execute("extension:timeout", name)

    # ------------------------------------------------------------------
    # Unload / reload / toggle
    # ------------------------------------------------------------------

    async def unload(self, name: str) -> bool:
        """
        Unload an extension. Cleanup always completes; returns False only
        when the extension was not loaded.
        """
        info = self._extensions.get(name)
        if info is None:
            logger.warning("Extension %s is not loaded", name)
            return False

        descriptor = info.descriptor
        if descriptor is not None and descriptor.unload is not None:
            try:
                await self._call(
                    name,
                    "unload",
                    descriptor.unload,
                    self.host,
                    info.config,
                    timeout=self.config.unload_timeout_seconds,
                )
            except ExtensionError as e:
                logger.error("Error while unloading %s: %s", name, e)

        context = self._contexts.pop(name, None)
        self._discard(name, context)
        del self._extensions[name]
        if name in self._load_order:
            self._load_order.remove(name)
        self._error_counts.pop(name, None)
        if descriptor is not None:
            self.discovery.release(descriptor)
        info.state = ExtensionState.UNLOADED

        logger.info("Unloaded extension: %s", name)
        await self.events.emit(EXTENSION_UNLOADED, ExtensionEvent(name, info))
        await self.hooks.execute("extension:unload", name)
        return True

    async def unload_all(self) -> int:
        """Unload everything in reverse load order. Returns count unloaded."""
        count = 0
        for name in reversed(list(self._load_order)):
            if await self.unload(name):
                count += 1
        return count

    async def reload(
        self,
        name: str,
        new_config: Mapping[str, Any] | None = None,
        refresh: bool = False,
    ) -> ExtensionInfo:
        """
        Unload and load again with ``{**old_config, **new_config}``.

        With ``refresh`` the entry file is evaluated again, picking up
        source changes.
        """
        info = self._extensions.get(name)
        if info is None:
            raise ExtensionNotFoundError(f"Extension '{name}' is not loaded", name)

        old_config = dict(info.config)
        descriptor = info.descriptor or self.resolve(name)

        await self.unload(name)

        if refresh and descriptor.source is not None:
            try:
                descriptor = self.discovery.evaluate(name, descriptor.source)
            except Exception as e:
                self._error_counts[name] = self._error_counts.get(name, 0) + 1
                raise ExtensionRuntimeError(
                    f"Failed to re-evaluate extension '{name}': {e}", name
                ) from e
            self._catalog[name] = descriptor

        reloaded = await self.load(descriptor, {**old_config, **(new_config or {})})
        await self.hooks.execute("extension:reload", name, reloaded)
        return reloaded

    async def toggle(self, name: str, active: bool | None = None) -> bool:
        """
        Activate or deactivate a loaded extension; flips when ``active`` is None.

        Hooks and extension points stay installed. Returns the new flag.
        """
        info = self._extensions.get(name)
        if info is None:
            raise ExtensionNotFoundError(f"Extension '{name}' is not loaded", name)

        target = not info.active if active is None else bool(active)
        if target == info.active:
            return info.active

        action = "activate" if target else "deactivate"
        fn = getattr(info.descriptor, action, None) if info.descriptor is not None else None
        if fn is not None:
            await self._call(
                name,
                action,
                fn,
                self.host,
                info.config,
                timeout=self.config.load_timeout_seconds,
            )

        info.state = ExtensionState.ACTIVE if target else ExtensionState.LOADED
        logger.info("Extension %s %sd", name, action)
        event = EXTENSION_ACTIVATED if target else EXTENSION_DEACTIVATED
        await self.events.emit(event, ExtensionEvent(name, info))
        await self.hooks.execute(f"extension:{action}", name)
        return info.active

    # ------------------------------------------------------------------
    # Batch loading
    # ------------------------------------------------------------------

    async def load_all(self) -> LoadSummary:
        """
        Discover and load every enabled extension in dependency order.

        Never raises for individual failures: they are retried, then
        recorded in the summary.
        """
        summary = LoadSummary()
        _, failures = self.discover()
        for failure in failures:
            summary.failed += 1
            summary.record_error(failure.name, failure.error, attempt=1)

        pending: set[str] = set()
        for name in self._catalog:
            if name in self._extensions:
                summary.skipped.append(name)
            elif not self.config.get_entry(name).enabled:
                logger.info("Extension %s is disabled, skipping", name)
                summary.skipped.append(name)
            else:
                pending.add(name)

        order = resolve_load_order(list(self._catalog.values()))
        summary.order = [name for name in order if name in pending]

        for name in summary.order:
            if await self._load_with_retry(name, summary):
                summary.success += 1
            else:
                summary.failed += 1

        logger.info(
            "Extension loading finished: %d loaded, %d failed, %d skipped",
            summary.success,
            summary.failed,
            len(summary.skipped),
        )
        return summary

    async def _load_with_retry(self, name: str, summary: LoadSummary) -> bool:
        attempts = max(1, self.config.max_retries)
        for attempt in range(1, attempts + 1):
            try:
                await self.load(name)
                return True
            except ValidationError as e:
                # Retrying cannot fix a malformed descriptor
                summary.record_error(name, e, attempt)
                return False
            except ExtensionError as e:
                summary.record_error(name, e, attempt)
                if attempt < attempts:
                    delay = self.config.retry_backoff_seconds * attempt
                    logger.warning(
                        "Retrying %s in %.1fs (attempt %d/%d)", name, delay, attempt + 1, attempts
                    )
                    await asyncio.sleep(delay)
        return False

    # ------------------------------------------------------------------
    # Config
    # ------------------------------------------------------------------

    async def update_config(self, name: str, config: Mapping[str, Any]) -> bool:
        """Merge ``config`` into the live config; schema problems are only warned about."""
        info = self._extensions.get(name) or self._loading.get(name)
        if info is None:
            logger.warning("Cannot update config of %s: not loaded", name)
            return False

        info.config.update(config)
        problems = check_config(self._schemas.get(name), info.config)
        for problem in problems:
            logger.warning("Extension %s config: %s", name, problem)

        await self.events.emit(CONFIG_CHANGE, ConfigChangeEvent(name, dict(info.config), problems))
        await self.hooks.execute("config:change", name, dict(info.config))
        return True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, name: str) -> ExtensionInfo | None:
        return self._extensions.get(name)

    def list(self) -> list[ExtensionInfo]:
        """Loaded extensions, in load order."""
        return [self._extensions[name] for name in self._load_order]

    @property
    def load_order(self) -> list[str]:
        return list(self._load_order)

    @property
    def loading(self) -> set[str]:
        return set(self._loading)

    def error_count(self, name: str) -> int:
        return self._error_counts.get(name, 0)

    def check_health(self, name: str) -> HealthReport | None:
        info = self._extensions.get(name)
        if info is None:
            return None
        return HealthReport(
            name=name,
            loaded=info.loaded,
            active=info.active,
            error_count=self._error_counts.get(name, 0),
            uptime=time.time() - info.load_timestamp,
        )

    def stats(self) -> RuntimeStats:
        infos = list(self._extensions.values())
        oldest = min((info.load_timestamp for info in infos), default=None)
        return RuntimeStats(
            total=len(infos),
            active=sum(1 for info in infos if info.active),
            loaded=sum(1 for info in infos if info.loaded),
            loading=len(self._loading),
            hooks=len(self.hooks.hook_names()),
            total_hook_callbacks=self.hooks.total_callbacks(),
            middleware=self.points.count(PointKind.MIDDLEWARE),
            routes=self.points.count(PointKind.ROUTE),
            commands=self.points.count(PointKind.COMMAND),
            errors=sum(self._error_counts.values()),
            uptime=time.time() - oldest if oldest is not None else 0.0,
        )
