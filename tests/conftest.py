"""Shared pytest fixtures for extension-runtime tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from textwrap import dedent
from typing import Any
from unittest.mock import MagicMock

import pytest

from extension_runtime import ExtensionDescriptor, ExtensionRuntime, RuntimeConfig
from extension_runtime.lifecycle import LifecycleController


async def _noop_load(host: Any, config: dict[str, Any], context: Any) -> None:
    return None


@pytest.fixture
def config(tmp_path: Path) -> RuntimeConfig:
    """Runtime config rooted in a temporary directory, with short timeouts."""
    return RuntimeConfig(
        extensions_dir=tmp_path / "extensions",
        data_dir=tmp_path / "data",
        backup_dir=tmp_path / "backups",
        entry_point_group=None,
        load_timeout_seconds=0.5,
        unload_timeout_seconds=0.5,
        hook_timeout_seconds=0.2,
        retry_backoff_seconds=0.0,
        watch=False,
    )


@pytest.fixture
def host() -> MagicMock:
    """Serving layer double with the optional removal methods."""
    return MagicMock(spec=["register_route", "use", "remove_route", "remove_middleware"])


@pytest.fixture
def runtime(config: RuntimeConfig, host: MagicMock) -> ExtensionRuntime:
    return ExtensionRuntime(config, host=host)


@pytest.fixture
def controller(runtime: ExtensionRuntime) -> LifecycleController:
    return runtime.controller


@pytest.fixture
def make_descriptor() -> Callable[..., ExtensionDescriptor]:
    """Factory for complete descriptors (no validation warnings by default)."""

    def _make(
        name: str,
        dependencies: list[str] | None = None,
        load: Callable[..., Any] | None = None,
        **kwargs: Any,
    ) -> ExtensionDescriptor:
        kwargs.setdefault("version", "1.0.0")
        kwargs.setdefault("description", f"The {name} extension")
        kwargs.setdefault("author", "tests")
        return ExtensionDescriptor(
            name=name,
            load=load or _noop_load,
            dependencies=dependencies or [],
            **kwargs,
        )

    return _make


@pytest.fixture
def extensions_dir(config: RuntimeConfig) -> Path:
    config.extensions_dir.mkdir(parents=True, exist_ok=True)
    return config.extensions_dir


@pytest.fixture
def write_extension(extensions_dir: Path) -> Callable[[str, str], Path]:
    """Write ``<extensions_dir>/<relative>`` with dedented source, returning the path."""

    def _write(relative: str, source: str) -> Path:
        path = extensions_dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dedent(source).lstrip())
        return path

    return _write


@pytest.fixture
def sample_extensions(write_extension: Callable[[str, str], Path]) -> Path:
    """A base extension, a dependent one (directory form), and a YAML manifest."""
    write_extension(
        "base.py",
        """
        name = "base"
        version = "1.0.0"
        description = "Base services"
        author = "tests"
        default_config = {"greeting": "hello"}

        async def load(host, config, context):
            context.add_command("greet", lambda: config["greeting"], "Say hello")
        """,
    )
    write_extension(
        "feature/index.py",
        """
        extension = {
            "name": "feature",
            "version": "2.1.0",
            "description": "Feature on top of base",
            "author": "tests",
            "dependencies": ["base"],
            "load": lambda host, config, context: context.hook("request:start", lambda req: req),
        }
        """,
    )
    write_extension(
        "stats/impl.py",
        """
        def load(host, config, context):
            context.add_route("get", "/stats", lambda request: {"ok": True})
        """,
    )
    return write_extension(
        "stats/plugin.yaml",
        """
        name: stats
        version: 0.3.0
        description: Stats endpoint
        author: tests
        dependencies: [base]
        entry: impl.py
        """,
    ).parent.parent
