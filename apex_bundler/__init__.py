"""APEX Bundler - assemble signed runtime bundles from a module graph.

This package resolves the constituent artifacts of a bundle through a
module dependency graph and plans the build actions that turn them into
image, zip, and flattened bundle outputs.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
