"""Per-bundle variant propagation.

The same library may need to be built differently for each bundle that
embeds it while still being installed unmodified in the system image.
Propagation runs as two passes over the module graph:

1. annotate: walk down from each bundle, recording install dependencies
   and collecting (module, bundle) variant obligations. The walk only
   descends into modules that can have per-bundle variants.
2. create: materialize one graph variant per obligation, keyed by
   (module key, bundle name); each bundle gets a single variant named
   after itself.

Neither pass validates anything.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from dataclasses import dataclass

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.graph.engine import Edge, ModuleGraph, ModuleKey, ModuleVariant
from apex_bundler.graph.modules import Module

logger = logging.getLogger(__name__)


class ApexDependencyTable:
    """Install dependencies of bundles, shared by all bundle evaluations.

    Entries are (bundle name, dependency name) pairs. Inserts are
    idempotent and may come from several threads at once.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: set[tuple[str, str]] = set()

    def add(self, bundle: str, dependency: str) -> bool:
        """Insert a pair; returns False if it was already present."""
        entry = (bundle, dependency)
        with self._lock:
            if entry in self._entries:
                return False
            self._entries.add(entry)
            return True

    def snapshot(self) -> frozenset[tuple[str, str]]:
        with self._lock:
            return frozenset(self._entries)

    def dependencies_of(self, bundle: str) -> list[str]:
        """Sorted install dependencies of one bundle."""
        return sorted(dep for name, dep in self.snapshot() if name == bundle)

    def bundles_of(self, dependency: str) -> list[str]:
        """Sorted names of the bundles that depend on a module."""
        return sorted(name for name, dep in self.snapshot() if dep == dependency)

    def __contains__(self, entry: object) -> bool:
        with self._lock:
            return entry in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass(frozen=True)
class VariantObligation:
    """A module that must be built for a bundle."""

    module: Module
    bundle: str

    @property
    def key(self) -> tuple[ModuleKey, str]:
        return (self.module.key, self.bundle)


def annotate_bundle(
    graph: ModuleGraph,
    bundle: BundleModule,
    table: ApexDependencyTable,
) -> set[VariantObligation]:
    """Walk down from a bundle and collect its variant obligations.

    Direct dependencies of an installable, non-test bundle are recorded in
    the install dependency table.

    Args:
        graph: The module graph.
        bundle: The bundle node to start from.
        table: Shared install dependency table.

    Returns:
        The (module, bundle) obligations found.
    """
    obligations: set[VariantObligation] = set()
    record = bundle.installable() and not bundle.test_apex

    def visit(child: Module, parent: Module, edge: Edge) -> bool:
        if record and parent is bundle:
            table.add(bundle.name, child.name)
        if not child.can_have_apex_variants:
            return False
        obligations.add(VariantObligation(child, bundle.name))
        return True

    graph.walk_deps(bundle, visit)
    logger.debug("%s requires %d module variants", bundle.name, len(obligations))
    return obligations


def create_variants(
    graph: ModuleGraph,
    obligations: Iterable[VariantObligation],
    bundles: Iterable[BundleModule] = (),
) -> list[ModuleVariant]:
    """Materialize variants for obligations and for the bundles themselves.

    Args:
        graph: The module graph.
        obligations: Obligations from every bundle's annotate pass.
        bundles: Bundle nodes; each gets one variant named after itself.

    Returns:
        All created variants, modules first, ordered by module key then name.
    """
    names: dict[ModuleKey, set[str]] = {}
    modules: dict[ModuleKey, Module] = {}
    for obligation in obligations:
        modules[obligation.module.key] = obligation.module
        names.setdefault(obligation.module.key, set()).add(obligation.bundle)

    created: list[ModuleVariant] = []
    for key in sorted(modules):
        created += graph.create_variations(modules[key], sorted(names[key]))
    for bundle in bundles:
        created += graph.create_variations(bundle, [bundle.name])
    return created


def propagate_variants(
    graph: ModuleGraph,
    bundles: Iterable[BundleModule],
    table: ApexDependencyTable,
) -> list[ModuleVariant]:
    """Run both passes over every bundle."""
    bundles = list(bundles)
    obligations: set[VariantObligation] = set()
    for bundle in bundles:
        obligations |= annotate_bundle(graph, bundle, table)
    variants = create_variants(graph, obligations, bundles)
    logger.info(
        "Created %d variants for %d bundles", len(variants), len(bundles)
    )
    return variants


__all__ = [
    "ApexDependencyTable",
    "VariantObligation",
    "annotate_bundle",
    "create_variants",
    "propagate_variants",
]
