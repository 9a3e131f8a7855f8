"""
Loader for extensions written as Python modules.

A single-file extension is ``<name>.py``; a directory extension has an
entry file such as ``<name>/index.py`` or ``<name>/__init__.py``. The
module is imported under a private name so two extensions with the same
file name never collide in ``sys.modules``.
"""

from __future__ import annotations

import importlib.util
import sys
from pathlib import Path
from types import ModuleType

from extension_runtime.loaders.base import SourceLoader
from extension_runtime.logging import get_logger

logger = get_logger("loaders.python")

MODULE_PREFIX = "extension_runtime_ext_"


def module_name_for(name: str) -> str:
    safe = "".join(c if c.isalnum() else "_" for c in name)
    return f"{MODULE_PREFIX}{safe}"


class PythonSourceLoader(SourceLoader):
    """Imports ``.py`` entry files."""

    suffixes = (".py",)

    def load(self, path: Path, name: str) -> ModuleType:
        """Import a Python module from a file path."""
        module_name = module_name_for(name)
        search_locations = [str(path.parent)] if path.name == "__init__.py" else None
        spec = importlib.util.spec_from_file_location(
            module_name, path, submodule_search_locations=search_locations
        )
        if spec is None or spec.loader is None:
            raise ImportError(f"Cannot load module from {path}")

        # Drop stale versions so a reload re-executes the source
        self.release(name)

        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            spec.loader.exec_module(module)
        except BaseException:
            sys.modules.pop(module_name, None)
            raise
        logger.debug("Imported %s from %s", module_name, path)
        return module

    def release(self, name: str) -> None:
        module_name = module_name_for(name)
        for key in [k for k in sys.modules if k == module_name or k.startswith(f"{module_name}.")]:
            del sys.modules[key]
