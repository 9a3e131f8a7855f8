"""
Extension source loaders and discovery.
"""

from extension_runtime.loaders.base import SourceLoader
from extension_runtime.loaders.discovery import DiscoveryFailure, ExtensionDiscovery
from extension_runtime.loaders.python import PythonSourceLoader
from extension_runtime.loaders.yaml_manifest import ManifestLoader

__all__ = [
    "SourceLoader",
    "PythonSourceLoader",
    "ManifestLoader",
    "ExtensionDiscovery",
    "DiscoveryFailure",
]
