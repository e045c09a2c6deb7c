"""Structure providers: turn source bytes into selectable handles."""

from editplane.providers.base import Handle, ProviderRegistry, StructureProvider
from editplane.providers.fallback import FallbackProvider
from editplane.providers.treesitter import LANGUAGE_SPECS, TreeSitterProvider

__all__ = [
    "FallbackProvider",
    "Handle",
    "LANGUAGE_SPECS",
    "ProviderRegistry",
    "StructureProvider",
    "TreeSitterProvider",
]
