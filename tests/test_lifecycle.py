"""Tests for the lifecycle controller."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from extension_runtime import ExtensionDescriptor, ExtensionRuntime
from extension_runtime.config import ExtensionEntryConfig
from extension_runtime.errors import (
    DependencyError,
    ExtensionNotFoundError,
    ExtensionRuntimeError,
    ExtensionStateError,
    ExtensionTimeoutError,
    ValidationError,
)
from extension_runtime.events import CONFIG_CHANGE, EXTENSION_ERROR, EXTENSION_LOADED, ExtensionEvent
from extension_runtime.lifecycle import LifecycleController
from extension_runtime.models import ExtensionState

MakeDescriptor = Callable[..., ExtensionDescriptor]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


class TestLoad:
    @pytest.mark.asyncio
    async def test_load_registers_active_extension(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        seen: dict[str, Any] = {}

        async def load(host, config, context):
            seen.update(host=host, config=config, context=context)

        info = await controller.load(
            make_descriptor("alpha", load=load, default_config={"a": 1, "b": 1}), {"b": 2}
        )

        assert info.state is ExtensionState.ACTIVE
        assert info.config == {"a": 1, "b": 2}
        assert controller.get("alpha") is info
        assert controller.load_order == ["alpha"]
        assert seen["host"] is controller.host
        assert seen["context"].name == "alpha"

    @pytest.mark.asyncio
    async def test_entry_config_sits_between_defaults_and_overrides(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.config.entries["alpha"] = ExtensionEntryConfig(config={"b": "entry", "c": "entry"})

        info = await controller.load(
            make_descriptor("alpha", default_config={"a": "default", "b": "default"}),
            {"c": "override"},
        )

        assert info.config == {"a": "default", "b": "entry", "c": "override"}

    @pytest.mark.asyncio
    async def test_nested_config_changes_do_not_leak_into_next_load(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.config.entries["counter"] = ExtensionEntryConfig(config={"limits": {"max": 3}})
        seen: list[int] = []

        def load(host, config, context):
            config["headers"]["x-count"] = config["headers"].get("x-count", 0) + 1
            config["limits"]["max"] += 1
            seen.append(config["headers"]["x-count"])

        descriptor = make_descriptor("counter", load=load, default_config={"headers": {}})
        await controller.load(descriptor)
        await controller.unload("counter")
        info = await controller.load(descriptor)

        assert seen == [1, 1]
        assert descriptor.default_config == {"headers": {}}
        assert controller.config.get_entry("counter").config == {"limits": {"max": 3}}
        assert info.config == {"headers": {"x-count": 1}, "limits": {"max": 4}}

    @pytest.mark.asyncio
    async def test_load_by_name_from_disk(
        self, controller: LifecycleController, sample_extensions: Path
    ) -> None:
        info = await controller.load("base")

        assert info.version == "1.0.0"
        assert info.config == {"greeting": "hello"}
        assert info.source == sample_extensions / "base.py"

    @pytest.mark.asyncio
    async def test_load_unknown_name(self, controller: LifecycleController) -> None:
        with pytest.raises(ExtensionNotFoundError):
            await controller.load("ghost")

        assert controller.loading == set()

    @pytest.mark.asyncio
    async def test_sync_load_function(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        calls: list[str] = []

        info = await controller.load(
            make_descriptor("plain", load=lambda host, config, context: calls.append(context.name))
        )

        assert calls == ["plain"]
        assert info.active

    @pytest.mark.asyncio
    async def test_already_loaded(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        await controller.load(make_descriptor("alpha"))

        with pytest.raises(ExtensionStateError):
            await controller.load(make_descriptor("alpha"))

    @pytest.mark.asyncio
    async def test_concurrent_load_of_same_name_rejected(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        calls = 0

        async def slow(host, config, context):
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.05)

        descriptor = make_descriptor("slow", load=slow)

        results = await asyncio.gather(
            controller.load(descriptor),
            controller.load(descriptor),
            return_exceptions=True,
        )

        assert calls == 1
        assert sum(isinstance(r, ExtensionStateError) for r in results) == 1
        assert controller.get("slow").active

    @pytest.mark.asyncio
    async def test_loaded_event_and_hook(
        self, runtime: ExtensionRuntime, make_descriptor: MakeDescriptor
    ) -> None:
        events: list[ExtensionEvent] = []
        hooked: list[str] = []
        runtime.on(EXTENSION_LOADED, events.append)
        runtime.add_hook("extension:load", lambda name, info: hooked.append(name))

        await runtime.load_extension(make_descriptor("alpha"))

        assert [e.name for e in events] == ["alpha"]
        assert hooked == ["alpha"]


class TestLoadFailures:
    @pytest.mark.asyncio
    async def test_missing_load_fails_validation(self, controller: LifecycleController) -> None:
        with pytest.raises(ValidationError):
            await controller.load(ExtensionDescriptor(name="empty"))

        assert controller.get("empty") is None
        assert controller.error_count("empty") == 1

    @pytest.mark.asyncio
    async def test_invalid_version(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        with pytest.raises(ValidationError, match="invalid version"):
            await controller.load(make_descriptor("alpha", version="one"))

    @pytest.mark.asyncio
    async def test_validation_disabled(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.config.enable_validation = False

        info = await controller.load(make_descriptor("alpha", version="one"))
        assert info.version == "one"

        with pytest.raises(ExtensionRuntimeError, match="no load"):
            await controller.load(ExtensionDescriptor(name="empty"))

    @pytest.mark.asyncio
    async def test_missing_dependency(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        load = MagicMock()

        with pytest.raises(DependencyError) as exc_info:
            await controller.load(make_descriptor("feature", dependencies=["base"], load=load))

        assert exc_info.value.missing == ["base"]
        load.assert_not_called()

    @pytest.mark.asyncio
    async def test_load_error_is_wrapped(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        def load(host, config, context):
            raise KeyError("token")

        with pytest.raises(ExtensionRuntimeError) as exc_info:
            await controller.load(make_descriptor("broken", load=load))

        assert isinstance(exc_info.value.__cause__, KeyError)
        assert exc_info.value.extension == "broken"
        assert controller.list() == []

    @pytest.mark.asyncio
    async def test_timeout_leaves_no_record(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.config.load_timeout_seconds = 0.05
        timeouts: list[str] = []
        controller.hooks.add("extension:timeout", timeouts.append)

        async def hang(host, config, context):
            context.hook("request:start", lambda req: req)
            await asyncio.sleep(5)

        with pytest.raises(ExtensionTimeoutError):
            await controller.load(make_descriptor("hang", load=hang))

        assert controller.get("hang") is None
        assert controller.loading == set()
        assert controller.hooks.owner_hooks("hang") == {}
        assert timeouts == ["hang"]

    @pytest.mark.asyncio
    async def test_timeout_raised_by_extension_is_not_a_deadline(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        timeouts: list[str] = []
        controller.hooks.add("extension:timeout", timeouts.append)

        async def connect(host, config, context):
            await asyncio.sleep(0)
            raise TimeoutError("database did not answer")

        def connect_sync(host, config, context):
            raise TimeoutError("socket timeout")

        for name, load in (("db", connect), ("db-sync", connect_sync)):
            with pytest.raises(ExtensionRuntimeError) as exc_info:
                await controller.load(make_descriptor(name, load=load))

            assert not isinstance(exc_info.value, ExtensionTimeoutError)
            assert isinstance(exc_info.value.__cause__, TimeoutError)
            assert "timed out after" not in str(exc_info.value)

        assert timeouts == []

    @pytest.mark.asyncio
    async def test_failed_load_commits_nothing(
        self,
        controller: LifecycleController,
        make_descriptor: MakeDescriptor,
        host: MagicMock,
    ) -> None:
        def load(host, config, context):
            context.add_route("get", "/half", lambda request: None)
            context.add_middleware(lambda request, call_next: call_next(request))
            context.add_command("half", lambda: None)
            context.hook("request:start", lambda req: req)
            raise RuntimeError("half way")

        with pytest.raises(ExtensionRuntimeError):
            await controller.load(make_descriptor("half", load=load))

        host.register_route.assert_not_called()
        host.use.assert_not_called()
        assert controller.points.commands.get("half") is None
        assert controller.points.entries() == []
        assert controller.hooks.total_callbacks() == 0

    @pytest.mark.asyncio
    async def test_context_revoked_after_failure(
        self,
        controller: LifecycleController,
        make_descriptor: MakeDescriptor,
        host: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        captured: list[Any] = []

        def load(host, config, context):
            captured.append(context)
            raise RuntimeError("nope")

        with pytest.raises(ExtensionRuntimeError):
            await controller.load(make_descriptor("late", load=load))

        context = captured[0]
        context.add_route("get", "/late", lambda request: None)
        context.hook("request:start", lambda req: req)

        assert context.revoked
        host.register_route.assert_not_called()
        assert controller.hooks.total_callbacks() == 0
        assert "context is no longer active" in caplog.text

    @pytest.mark.asyncio
    async def test_error_event_and_count(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        errors: list[ExtensionEvent] = []
        controller.events.on(EXTENSION_ERROR, errors.append)
        attempts = 0

        def flaky(host, config, context):
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise RuntimeError("first try")

        descriptor = make_descriptor("flaky", load=flaky)
        with pytest.raises(ExtensionRuntimeError):
            await controller.load(descriptor)
        info = await controller.load(descriptor)

        assert len(errors) == 1
        assert errors[0].extension.state is ExtensionState.ERROR
        assert info.error_count == 1
        assert controller.check_health("flaky").health == "warning"

    @pytest.mark.asyncio
    async def test_host_rejecting_route_fails_load(
        self,
        controller: LifecycleController,
        make_descriptor: MakeDescriptor,
        host: MagicMock,
    ) -> None:
        host.register_route.side_effect = ValueError("duplicate route")

        def load(host, config, context):
            context.add_route("get", "/dup", lambda request: None)
            context.hook("request:start", lambda req: req)

        with pytest.raises(ExtensionRuntimeError, match="failed to register"):
            await controller.load(make_descriptor("dup", load=load))

        assert controller.get("dup") is None
        assert controller.hooks.total_callbacks() == 0


# ---------------------------------------------------------------------------
# Unload, reload, toggle
# ---------------------------------------------------------------------------


class TestUnload:
    @pytest.mark.asyncio
    async def test_unload_removes_contributions(
        self,
        controller: LifecycleController,
        sample_extensions: Path,
        host: MagicMock,
    ) -> None:
        await controller.load_all()
        assert controller.points.commands.get("greet") is not None

        assert await controller.unload("stats") is True
        assert await controller.unload("feature") is True
        assert await controller.unload("base") is True

        host.remove_route.assert_called_once()
        assert host.remove_route.call_args.args == ("GET", "/stats")
        assert controller.points.commands.get("greet") is None
        assert controller.hooks.total_callbacks() == 0
        assert controller.list() == []

    @pytest.mark.asyncio
    async def test_unload_not_loaded(self, controller: LifecycleController) -> None:
        assert await controller.unload("ghost") is False

    @pytest.mark.asyncio
    async def test_unload_callback_and_failure(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        calls: list[dict[str, Any]] = []

        def unload(host, config):
            calls.append(config)
            raise RuntimeError("cleanup failed")

        info = await controller.load(make_descriptor("alpha", unload=unload), {"x": 1})

        assert await controller.unload("alpha") is True
        assert calls == [{"x": 1}]
        assert info.state is ExtensionState.UNLOADED
        assert controller.get("alpha") is None

    @pytest.mark.asyncio
    async def test_unload_all_reverse_order(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        unloaded: list[str] = []
        for name in ("a", "b", "c"):
            await controller.load(
                make_descriptor(name, unload=lambda host, config, name=name: unloaded.append(name))
            )

        assert await controller.unload_all() == 3
        assert unloaded == ["c", "b", "a"]


class TestReload:
    @pytest.mark.asyncio
    async def test_reload_merges_config(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        configs: list[dict[str, Any]] = []
        reloaded: list[str] = []
        controller.hooks.add("extension:reload", lambda name, info: reloaded.append(name))

        await controller.load(
            make_descriptor("alpha", load=lambda h, config, c: configs.append(dict(config))),
            {"a": 1, "b": 2},
        )
        info = await controller.reload("alpha", {"b": 3})

        assert configs == [{"a": 1, "b": 2}, {"a": 1, "b": 3}]
        assert info.config == {"a": 1, "b": 3}
        assert reloaded == ["alpha"]

    @pytest.mark.asyncio
    async def test_reload_not_loaded(self, controller: LifecycleController) -> None:
        with pytest.raises(ExtensionNotFoundError):
            await controller.reload("ghost")

    @pytest.mark.asyncio
    async def test_reload_refresh_picks_up_source(
        self, controller: LifecycleController, write_extension: Callable[[str, str], Path]
    ) -> None:
        path = write_extension(
            "live.py",
            """
            version = "1.0.0"

            def load(host, config, context):
                pass
            """,
        )
        await controller.load("live")

        path.write_text('version = "1.10.0"\n\ndef load(host, config, context):\n    pass\n')
        info = await controller.reload("live", refresh=True)

        assert info.version == "1.10.0"

    @pytest.mark.asyncio
    async def test_reload_refresh_broken_source(
        self, controller: LifecycleController, write_extension: Callable[[str, str], Path]
    ) -> None:
        path = write_extension("live.py", "def load(host, config, context):\n    pass\n")
        await controller.load("live")

        path.write_text("def load(:\n")
        with pytest.raises(ExtensionRuntimeError, match="re-evaluate"):
            await controller.reload("live", refresh=True)

        assert controller.get("live") is None
        assert controller.error_count("live") == 1


class TestToggle:
    @pytest.mark.asyncio
    async def test_toggle_calls_activate_and_deactivate(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        calls: list[str] = []
        hooked: list[str] = []
        controller.hooks.add("extension:deactivate", lambda name: hooked.append(name))
        await controller.load(
            make_descriptor(
                "alpha",
                activate=lambda host, config: calls.append("activate"),
                deactivate=lambda host, config: calls.append("deactivate"),
            )
        )

        assert await controller.toggle("alpha") is False
        assert controller.get("alpha").state is ExtensionState.LOADED
        assert await controller.toggle("alpha", active=True) is True

        assert calls == ["deactivate", "activate"]
        assert hooked == ["alpha"]

    @pytest.mark.asyncio
    async def test_toggle_to_current_state_is_noop(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        activate = MagicMock()
        await controller.load(make_descriptor("alpha", activate=activate))

        assert await controller.toggle("alpha", active=True) is True
        activate.assert_not_called()

    @pytest.mark.asyncio
    async def test_toggle_failure_keeps_state(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        def deactivate(host, config):
            raise RuntimeError("stuck")

        await controller.load(make_descriptor("alpha", deactivate=deactivate))

        with pytest.raises(ExtensionRuntimeError):
            await controller.toggle("alpha", active=False)

        assert controller.get("alpha").active

    @pytest.mark.asyncio
    async def test_toggle_keeps_hooks(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        await controller.load(
            make_descriptor("alpha", load=lambda h, c, context: context.hook("app:start", print))
        )

        await controller.toggle("alpha", active=False)

        assert controller.hooks.owner_hooks("alpha") == {"app:start": 1}

    @pytest.mark.asyncio
    async def test_toggle_not_loaded(self, controller: LifecycleController) -> None:
        with pytest.raises(ExtensionNotFoundError):
            await controller.toggle("ghost")


# ---------------------------------------------------------------------------
# Batch loading
# ---------------------------------------------------------------------------


class TestLoadAll:
    @pytest.mark.asyncio
    async def test_dependency_order(
        self, controller: LifecycleController, sample_extensions: Path
    ) -> None:
        summary = await controller.load_all()

        assert summary.ok
        assert summary.success == 3
        assert summary.order[0] == "base"
        assert set(summary.order) == {"base", "feature", "stats"}
        assert controller.load_order == summary.order

    @pytest.mark.asyncio
    async def test_registered_descriptors_reversed_input(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.register(make_descriptor("feature", dependencies=["base"]))
        controller.register(make_descriptor("base"))

        summary = await controller.load_all()

        assert summary.order == ["base", "feature"]

    @pytest.mark.asyncio
    async def test_second_run_skips_loaded(
        self, controller: LifecycleController, sample_extensions: Path
    ) -> None:
        await controller.load_all()

        summary = await controller.load_all()

        assert summary.success == 0
        assert sorted(summary.skipped) == ["base", "feature", "stats"]

    @pytest.mark.asyncio
    async def test_disabled_entry(
        self, controller: LifecycleController, sample_extensions: Path
    ) -> None:
        controller.config.entries["base"] = ExtensionEntryConfig(enabled=False)

        summary = await controller.load_all()

        assert summary.skipped == ["base"]
        assert summary.success == 0
        assert sorted(summary.failed_extensions) == ["feature", "stats"]
        assert controller.list() == []

    @pytest.mark.asyncio
    async def test_retries_until_success(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        attempts = 0

        def flaky(host, config, context):
            nonlocal attempts
            attempts += 1
            if attempts < 3:
                raise ConnectionError("not yet")

        controller.register(make_descriptor("flaky", load=flaky))

        summary = await controller.load_all()

        assert summary.success == 1
        assert summary.failed == 0
        assert [e["attempt"] for e in summary.errors] == [1, 2]
        assert controller.get("flaky").error_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        controller.config.max_retries = 2
        load = MagicMock(side_effect=RuntimeError("always"))
        controller.register(make_descriptor("doomed", load=load))

        summary = await controller.load_all()

        assert load.call_count == 2
        assert summary.failed == 1
        assert summary.failed_extensions == ["doomed"]

    @pytest.mark.asyncio
    async def test_validation_error_not_retried(self, controller: LifecycleController) -> None:
        controller.register(ExtensionDescriptor(name="empty"))

        summary = await controller.load_all()

        assert summary.failed == 1
        assert len(summary.errors) == 1

    @pytest.mark.asyncio
    async def test_discovery_failures_are_counted(
        self,
        controller: LifecycleController,
        write_extension: Callable[[str, str], Path],
    ) -> None:
        write_extension("good.py", "def load(host, config, context):\n    pass\n")
        write_extension("bad.py", "def load(:\n")

        summary = await controller.load_all()

        assert summary.success == 1
        assert summary.failed == 1
        assert summary.failed_extensions == ["bad"]


# ---------------------------------------------------------------------------
# Config and queries
# ---------------------------------------------------------------------------


class TestUpdateConfig:
    @pytest.mark.asyncio
    async def test_schema_problems_are_warnings(
        self,
        controller: LifecycleController,
        make_descriptor: MakeDescriptor,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        changes: list[Any] = []
        controller.events.on(CONFIG_CHANGE, changes.append)
        schema = {"required": ["token"], "properties": {"port": {"type": "integer"}}}
        await controller.load(make_descriptor("alpha", config_schema=schema))

        assert await controller.update_config("alpha", {"port": "eighty"}) is True

        assert controller.get("alpha").config == {"port": "eighty"}
        assert changes[0].warnings == [
            "missing required key: token",
            "port: expected integer, got str",
        ]
        assert "missing required key: token" in caplog.text

    @pytest.mark.asyncio
    async def test_update_from_inside_load(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        async def load(host, config, context):
            await context.update_config({"ready": True})

        info = await controller.load(make_descriptor("alpha", load=load))

        assert info.config == {"ready": True}

    @pytest.mark.asyncio
    async def test_not_loaded(self, controller: LifecycleController) -> None:
        assert await controller.update_config("ghost", {"a": 1}) is False


class TestQueries:
    @pytest.mark.asyncio
    async def test_stats(self, controller: LifecycleController, sample_extensions: Path) -> None:
        await controller.load_all()
        await controller.toggle("stats", active=False)

        stats = controller.stats()

        assert stats.total == 3
        assert stats.active == 2
        assert stats.loaded == 3
        assert stats.loading == 0
        assert stats.routes == 1
        assert stats.commands == 1
        assert stats.middleware == 0
        assert stats.total_hook_callbacks == 1
        assert stats.errors == 0

    @pytest.mark.asyncio
    async def test_check_health(
        self, controller: LifecycleController, make_descriptor: MakeDescriptor
    ) -> None:
        await controller.load(make_descriptor("alpha"))

        report = controller.check_health("alpha")

        assert report.loaded and report.active
        assert report.health == "healthy"
        assert report.uptime >= 0
        assert controller.check_health("ghost") is None
