#!/usr/bin/env python3
"""
Extension Runtime Demo

Loads the extensions in ``examples/extensions`` into a toy host, pushes a
few requests through the hook bus, toggles and reloads an extension, and
round-trips the running set through a backup file.

Usage:
    python examples/runtime_demo.py
"""

import asyncio
import sys
import tempfile
from pathlib import Path

# Add src to path for development
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from extension_runtime import ExtensionRuntime, RuntimeConfig
from extension_runtime.logging import setup_logging


class ToyHost:
    """In-memory serving layer that just remembers what was registered."""

    def __init__(self):
        self.routes = {}
        self.middleware = []

    def register_route(self, method, path, handler):
        self.routes[(method, path)] = handler

    def remove_route(self, method, path):
        self.routes.pop((method, path), None)

    def use(self, middleware):
        self.middleware.append(middleware)

    def remove_middleware(self, middleware):
        self.middleware.remove(middleware)


async def main():
    setup_logging("INFO")
    work_dir = Path(tempfile.mkdtemp(prefix="extension-runtime-demo-"))
    config = RuntimeConfig(
        extensions_dir=Path(__file__).parent / "extensions",
        data_dir=work_dir / "data",
        backup_dir=work_dir / "backups",
        watch=False,
    )
    host = ToyHost()

    print("=" * 60)
    print("Extension Runtime - Demo")
    print("=" * 60)

    async with ExtensionRuntime(config, host=host) as runtime:
        for info in runtime.list_extensions():
            print(f"  {info['name']:<10} v{info['version']:<8} {info['state']}")
        print(f"\nRoutes: {sorted(path for _, path in host.routes)}")

        for path in ("/", "/audit", "/"):
            (request,) = await runtime.execute_hook("request:start", {"path": path})
            await runtime.execute_hook("request:end", request)
            print(f"  {path:<8} headers={request.get('headers')}")

        print(f"\ngreet -> {await runtime.commands.dispatch('greet', 'demo')}")
        print(f"metrics -> {host.routes[('GET', '/metrics')]({})}")

        await runtime.toggle_extension("audit", False)
        await runtime.reload_extension("greeter", {"greeting": "hi"})
        print(f"greet after reload -> {await runtime.commands.dispatch('greet', 'demo')}")

        backup = runtime.backup()
        print(f"\nBackup: {backup}")
        summary = await runtime.restore(backup)
        print(f"Restored {summary.success} extension(s), audit active: "
              f"{runtime.get_extension('audit').active}")

        stats = runtime.get_stats()
        print(f"\nStats: {stats.total} loaded, {stats.active} active, "
              f"{stats.total_hook_callbacks} hook callbacks, {stats.routes} routes")


if __name__ == "__main__":
    asyncio.run(main())
