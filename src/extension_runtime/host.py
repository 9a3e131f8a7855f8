"""
Interfaces of the host application consumed by the runtime.

The runtime never serves requests itself. It forwards extension
contributions to whatever serving layer the host hands in, and only calls
the optional removal methods when the host provides them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ServingLayer(Protocol):
    """Minimal routing surface of the host's HTTP layer."""

    def register_route(self, method: str, path: str, handler: Callable[..., Any]) -> Any: ...

    def use(self, middleware: Callable[..., Any]) -> Any: ...


@runtime_checkable
class RemovableRoutes(Protocol):
    """Optional: the host can drop routes and middleware again."""

    def remove_route(self, method: str, path: str) -> Any: ...

    def remove_middleware(self, middleware: Callable[..., Any]) -> Any: ...
