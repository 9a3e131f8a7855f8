"""
Base source loader interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class SourceLoader(ABC):
    """
    Abstract base class for extension source loaders.

    A loader turns an entry file into a raw descriptor object (a module,
    mapping, or ExtensionDescriptor). Loaders are selected by file suffix.
    """

    suffixes: tuple[str, ...] = ()

    def can_load(self, path: Path) -> bool:
        """Check if this loader can handle the given file."""
        return path.suffix.lower() in self.suffixes and path.is_file()

    @abstractmethod
    def load(self, path: Path, name: str) -> Any:
        """Evaluate an entry file and return the raw descriptor object."""
        pass

    def release(self, name: str) -> None:
        """Forget anything cached for ``name`` so the next load re-evaluates it."""
        return None
