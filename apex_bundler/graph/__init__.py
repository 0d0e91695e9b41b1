"""Module graph.

This module handles:
- Module kinds (native libraries and executables, scripts, java
  libraries, prebuilts, keys, certificates)
- The in-memory graph engine: lookup, typed edges, walks, variants
"""

from apex_bundler.graph.engine import Edge, ModuleGraph, ModuleVariant
from apex_bundler.graph.modules import Module

__all__ = ["Edge", "Module", "ModuleGraph", "ModuleVariant"]
