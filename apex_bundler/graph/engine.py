"""In-memory module graph.

This module provides the graph collaborator the bundle logic runs against:
- Node registry keyed by (name, architecture variant)
- Typed dependency edges selected by variation
- Depth-first walks with a per-edge descend/stop decision
- An index of per-bundle module variants
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass

from apex_bundler.graph.modules import Module
from apex_bundler.types import DependencyTag

logger = logging.getLogger(__name__)

ModuleKey = tuple[str, str]


class DuplicateModuleError(Exception):
    """Raised when two nodes share the same name and variant."""

    def __init__(self, key: ModuleKey, code: str = "duplicate_module") -> None:
        super().__init__(f"Module {key[0]!r} already defined for {key[1]!r}")
        self.key = key
        self.code = code


@dataclass(frozen=True)
class Edge:
    """A typed dependency edge between two nodes."""

    parent: Module
    child: Module
    tag: DependencyTag


@dataclass(frozen=True)
class ModuleVariant:
    """A build variant of a module created for one enclosing bundle.

    Attributes:
        module: The node the variant was created from.
        name: Variant name (the bundle name).
    """

    module: Module
    name: str

    @property
    def key(self) -> tuple[ModuleKey, str]:
        return (self.module.key, self.name)


# Decision callback for walks: (child, parent, edge) -> descend into child?
VisitFunc = Callable[[Module, Module, Edge], bool]


class ModuleGraph:
    """Module nodes, their typed edges, and their per-bundle variants."""

    def __init__(self) -> None:
        self._nodes: dict[ModuleKey, Module] = {}
        self._by_name: dict[str, list[Module]] = {}
        self._edges: dict[ModuleKey, list[Edge]] = {}
        self._variants: dict[tuple[ModuleKey, str], ModuleVariant] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Module]:
        return iter(list(self._nodes.values()))

    def add_module(self, module: Module) -> Module:
        """Register a node.

        Raises:
            DuplicateModuleError: If a node with the same key exists.
        """
        if module.key in self._nodes:
            raise DuplicateModuleError(module.key)
        self._nodes[module.key] = module
        self._by_name.setdefault(module.name, []).append(module)
        return module

    def variants_named(self, name: str) -> list[Module]:
        """All architecture variants of a module, in registration order."""
        return list(self._by_name.get(name, []))

    def find(
        self,
        name: str,
        variations: Mapping[str, str] | None = None,
    ) -> Module | None:
        """Look up a node by name and variation selectors.

        A selector only constrains nodes that define that variation axis.

        Args:
            name: Module name.
            variations: Variation axis values to match (e.g. arch, image).

        Returns:
            The first matching node, or None.
        """
        for module in self._by_name.get(name, []):
            own = module.variations()
            if all(own.get(axis, value) == value for axis, value in (variations or {}).items()):
                return module
        return None

    def add_dependency(
        self,
        parent: Module,
        tag: DependencyTag,
        names: Iterable[str],
        variations: Mapping[str, str] | None = None,
    ) -> list[str]:
        """Add typed edges from parent to each named module.

        Args:
            parent: Node the edges start from.
            tag: Why the edges exist.
            names: Names of the dependency modules.
            variations: Variation selectors for the dependency nodes.

        Returns:
            Names that could not be resolved to a node.
        """
        missing: list[str] = []
        edges = self._edges.setdefault(parent.key, [])
        for name in names:
            child = self.find(name, variations)
            if child is None:
                logger.debug(
                    "No variant of %s matches %s for %s", name, variations, parent
                )
                missing.append(name)
                continue
            edges.append(Edge(parent=parent, child=child, tag=tag))
        return missing

    def dependencies(self, module: Module) -> list[Edge]:
        """Outgoing edges of a node, in insertion order."""
        return list(self._edges.get(module.key, []))

    def walk_deps(self, root: Module, visit: VisitFunc) -> None:
        """Depth-first walk over every edge reachable from root.

        visit is called once per edge; a node is descended into at most once,
        and only when visit returns True for an edge leading to it.
        """
        descended: set[ModuleKey] = {root.key}
        stack: list[Iterator[Edge]] = [iter(self._edges.get(root.key, []))]
        while stack:
            edge = next(stack[-1], None)
            if edge is None:
                stack.pop()
                continue
            child = edge.child
            if visit(child, edge.parent, edge) and child.key not in descended:
                descended.add(child.key)
                stack.append(iter(self._edges.get(child.key, [])))

    def create_variations(
        self, module: Module, names: Iterable[str]
    ) -> list[ModuleVariant]:
        """Create (or return existing) named variants of a node."""
        created: list[ModuleVariant] = []
        for name in names:
            variant = self._variants.get((module.key, name))
            if variant is None:
                variant = ModuleVariant(module=module, name=name)
                self._variants[variant.key] = variant
            created.append(variant)
        return created

    def variant(self, module: Module, name: str) -> ModuleVariant | None:
        return self._variants.get((module.key, name))

    def variants_of(self, module: Module) -> list[ModuleVariant]:
        """All per-bundle variants of a node, sorted by variant name."""
        return sorted(
            (v for (key, _), v in self._variants.items() if key == module.key),
            key=lambda v: v.name,
        )


__all__ = [
    "DuplicateModuleError",
    "Edge",
    "ModuleGraph",
    "ModuleKey",
    "ModuleVariant",
    "VisitFunc",
]
