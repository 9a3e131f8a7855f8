"""
Dependency ordering for extension batches.

The resolver never fails: unknown dependencies are skipped and cycles are
broken at the edge that closes them, both with a warning. One malformed
graph should degrade the load order, not abort the batch.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from extension_runtime.logging import get_logger

logger = get_logger("resolver")


class Resolvable(Protocol):
    name: str

    @property
    def dependency_names(self) -> list[str]: ...

    @property
    def load_priority(self) -> int: ...


def resolve_load_order(descriptors: Sequence[Resolvable]) -> list[str]:
    """
    Order extensions so each comes after the extensions it depends on.

    Roots are visited by descending priority; equal priorities keep the
    input order, so the result is deterministic for a given discovery order.

    Args:
        descriptors: Discovered (not yet loaded) extensions

    Returns:
        Extension names, each exactly once
    """
    by_name = {d.name: d for d in descriptors}
    order: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(node: Resolvable) -> None:
        if node.name in visited:
            return
        visiting.add(node.name)

        for dep_name in node.dependency_names:
            if dep_name in visiting:
                logger.warning("Circular dependency detected: %s -> %s", node.name, dep_name)
                continue
            dep = by_name.get(dep_name)
            if dep is None:
                logger.warning("Missing dependency: %s -> %s", node.name, dep_name)
                continue
            visit(dep)

        visiting.discard(node.name)
        visited.add(node.name)
        order.append(node.name)

    roots = sorted(by_name.values(), key=lambda d: d.load_priority, reverse=True)
    for root in roots:
        visit(root)

    return order


def find_cycles(descriptors: Sequence[Resolvable]) -> list[list[str]]:
    """Return each dependency cycle found, as a closed path of names."""
    by_name = {d.name: d for d in descriptors}
    cycles: list[list[str]] = []
    seen: set[frozenset[str]] = set()
    done: set[str] = set()

    def walk(name: str, path: list[str]) -> None:
        if name in path:
            cycle = path[path.index(name):] + [name]
            key = frozenset(cycle)
            if key not in seen:
                seen.add(key)
                cycles.append(cycle)
            return
        if name in done or name not in by_name:
            return
        path.append(name)
        for dep in by_name[name].dependency_names:
            walk(dep, path)
        path.pop()
        done.add(name)

    for name in by_name:
        walk(name, [])
    return cycles
