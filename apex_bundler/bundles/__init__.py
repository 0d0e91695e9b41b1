"""Bundle assembly module.

This module handles:
- Multilib policy resolution
- Dependency edges of bundles
- Per-bundle variant propagation
- Dependency classification and file collection
- Packaging plans and their execution
"""

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.errors import BundleError

__all__ = ["BundleError", "BundleModule"]

# Lazy imports for submodules to avoid circular imports
# Access via apex_bundler.bundles.packaging, etc.
