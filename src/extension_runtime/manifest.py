"""
Manifest validation for extension descriptors.

Hard failures raise ValidationError and stop the load before anything is
registered. Everything else (unknown hooks, missing metadata) is reported
as a warning.
"""

from __future__ import annotations

import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass, field
from typing import Any

from extension_runtime.errors import ValidationError
from extension_runtime.logging import get_logger
from extension_runtime.models import ExtensionDescriptor

logger = get_logger("manifest")

VERSION_PATTERN = re.compile(r"^\d+\.\d+\.\d+(-[a-zA-Z0-9-]+)?$")

RECOMMENDED_FIELDS = ("version", "description", "author")
OPTIONAL_METHODS = ("unload", "activate", "deactivate")

# JSON schema type name -> accepted Python types
_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
    "null": (type(None),),
}


@dataclass
class ManifestReport:
    """Result of a successful validation."""

    descriptor: ExtensionDescriptor
    warnings: list[str] = field(default_factory=list)
    config_schema: dict[str, Any] | None = None


def is_valid_version(version: Any) -> bool:
    """Check ``major.minor.patch[-prerelease]``."""
    return isinstance(version, str) and bool(VERSION_PATTERN.match(version))


def _is_string_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value)


def validate_manifest(
    raw: Any,
    name: str | None = None,
    known_hooks: Collection[str] = (),
) -> ManifestReport:
    """
    Validate a raw descriptor and return the typed descriptor with warnings.

    Args:
        raw: Module, mapping, object, or ExtensionDescriptor
        name: Declared name (file or directory name)
        known_hooks: Hook names the host provides

    Returns:
        ManifestReport with the descriptor, warnings, and recorded config schema

    Raises:
        ValidationError: If the descriptor cannot be loaded
    """
    if raw is None:
        raise ValidationError(f"Extension '{name}' must export a descriptor", name)

    descriptor = ExtensionDescriptor.from_object(raw, name=name)
    ext = descriptor.name
    warnings: list[str] = []

    if not callable(descriptor.load):
        raise ValidationError(f"Extension '{ext}' must provide a callable load()", ext)

    for method in OPTIONAL_METHODS:
        fn = getattr(descriptor, method)
        if fn is not None and not callable(fn):
            raise ValidationError(f"Extension '{ext}': {method} must be callable", ext)

    if descriptor.declared_name is not None:
        if not isinstance(descriptor.declared_name, str):
            raise ValidationError(f"Extension '{ext}': name must be a string", ext)
        if descriptor.declared_name != ext:
            warnings.append(f"declared name '{descriptor.declared_name}' differs from '{ext}'")

    if descriptor.version is not None and not is_valid_version(descriptor.version):
        raise ValidationError(f"Extension '{ext}': invalid version '{descriptor.version}'", ext)

    for attr in ("dependencies", "peer_dependencies"):
        value = getattr(descriptor, attr)
        if value is not None and not _is_string_list(value):
            raise ValidationError(f"Extension '{ext}': {attr} must be a list of strings", ext)

    if descriptor.default_config is not None and not isinstance(descriptor.default_config, Mapping):
        raise ValidationError(f"Extension '{ext}': default_config must be a mapping", ext)

    for attr in RECOMMENDED_FIELDS:
        if not getattr(descriptor, attr):
            warnings.append(f"missing recommended field: {attr}")

    if descriptor.hooks is not None:
        if not _is_string_list(descriptor.hooks):
            warnings.append("hooks should be a list of hook names")
        else:
            for hook_name in descriptor.hooks:
                if hook_name not in known_hooks:
                    warnings.append(f"unknown hook: {hook_name}")

    if descriptor.permissions is not None and not _is_string_list(descriptor.permissions):
        warnings.append("permissions should be a list of strings")

    schema = None
    if descriptor.config_schema is not None:
        if isinstance(descriptor.config_schema, Mapping):
            schema = dict(descriptor.config_schema)
        else:
            warnings.append("config_schema should be a mapping")

    for warning in warnings:
        logger.warning("Extension %s: %s", ext, warning)

    return ManifestReport(descriptor=descriptor, warnings=warnings, config_schema=schema)


def check_config(schema: Mapping[str, Any] | None, config: Mapping[str, Any]) -> list[str]:
    """
    Advisory check of a config against a JSON-schema style object schema.

    Only ``required`` and the ``type`` of declared ``properties`` are
    checked. Returns a list of problems; never raises.
    """
    if not schema:
        return []

    problems: list[str] = []
    for key in schema.get("required", ()) or ():
        if key not in config:
            problems.append(f"missing required key: {key}")

    properties = schema.get("properties") or {}
    for key, spec in properties.items():
        if key not in config or not isinstance(spec, Mapping):
            continue
        expected = spec.get("type")
        names = expected if isinstance(expected, list) else [expected]
        accepted = tuple(t for n in names if n in _JSON_TYPES for t in _JSON_TYPES[n])
        if not accepted:
            continue
        value = config[key]
        # bool is an int subclass but not a JSON number
        if isinstance(value, bool) and bool not in accepted:
            problems.append(f"{key}: expected {expected}, got boolean")
        elif not isinstance(value, accepted):
            problems.append(f"{key}: expected {expected}, got {type(value).__name__}")

    return problems
