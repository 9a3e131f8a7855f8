"""
Exception types raised by the extension runtime.
"""

from __future__ import annotations


class ExtensionError(Exception):
    """Base class for extension runtime errors."""

    def __init__(self, message: str, extension: str | None = None) -> None:
        super().__init__(message)
        self.extension = extension


class ValidationError(ExtensionError):
    """The extension descriptor is malformed. Nothing was registered."""


class DependencyError(ExtensionError):
    """One or more required extensions are not loaded yet."""

    def __init__(self, message: str, extension: str | None = None, missing: list[str] | None = None) -> None:
        super().__init__(message, extension)
        self.missing = list(missing or [])


class ExtensionTimeoutError(ExtensionError, TimeoutError):
    """An entry point or lifecycle method exceeded its time budget."""


class ExtensionRuntimeError(ExtensionError):
    """An extension entry point raised."""


class StorageError(ExtensionError):
    """Persistent storage could not be read or written."""


class ExtensionNotFoundError(ExtensionError):
    """No descriptor or loaded extension exists under the given name."""


class ExtensionStateError(ExtensionError):
    """The operation conflicts with the extension's current state."""
