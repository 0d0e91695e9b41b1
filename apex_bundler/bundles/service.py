"""Bundle assembly orchestration.

This module provides the high-level operations used by the CLI:
- Adding every bundle's dependency edges to the graph
- Propagating per-bundle variants over the whole graph
- Classifying files and planning build actions per bundle, concurrently
- Running planned actions

Graph mutation runs sequentially; per-bundle generation only reads the
graph. A fatal error aborts its own bundle and no other.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.collector import collect_files
from apex_bundler.bundles.deps import add_bundle_dependencies
from apex_bundler.bundles.errors import BundleError
from apex_bundler.bundles.io import LoadedGraph
from apex_bundler.bundles.packaging import BundlePlan, bundle_out_dir, plan_bundle
from apex_bundler.bundles.runner import BuildResult, run_plan
from apex_bundler.bundles.variants import ApexDependencyTable, propagate_variants
from apex_bundler.config import Settings
from apex_bundler.graph.engine import ModuleVariant
from apex_bundler.types import PropertyError

logger = logging.getLogger(__name__)


@dataclass
class BundleOutcome:
    """Generation result of one bundle.

    Attributes:
        bundle: Bundle name.
        plan: The packaging plan, None if a fatal error occurred.
        errors: Reported errors from the dependency pass and collection.
        fatal: The fatal error that aborted generation, if any.
    """

    bundle: str
    plan: BundlePlan | None = None
    errors: list[PropertyError] = field(default_factory=list)
    fatal: BundleError | None = None

    @property
    def ok(self) -> bool:
        return self.fatal is None and not self.errors


@dataclass
class AssemblyResult:
    """Result of assembling a set of bundles.

    Attributes:
        outcomes: One outcome per selected bundle, in declaration order.
        dependency_table: Install dependencies recorded for every bundle.
        variants: Per-bundle module variants created.
    """

    outcomes: list[BundleOutcome]
    dependency_table: ApexDependencyTable
    variants: list[ModuleVariant] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(o.ok for o in self.outcomes)

    def outcome(self, name: str) -> BundleOutcome | None:
        for outcome in self.outcomes:
            if outcome.bundle == name:
                return outcome
        return None


def add_all_dependencies(
    loaded: LoadedGraph, settings: Settings
) -> tuple[dict[str, list[PropertyError]], dict[str, BundleError]]:
    """Run the dependency pass for every bundle.

    Returns:
        Tuple of (reported errors per bundle, fatal errors per bundle).
    """
    reported: dict[str, list[PropertyError]] = {}
    fatal: dict[str, BundleError] = {}
    for bundle in loaded.bundles:
        try:
            reported[bundle.name] = add_bundle_dependencies(loaded.graph, bundle, settings)
        except BundleError as e:
            logger.error("%s", e)
            fatal[bundle.name] = e
    return reported, fatal


def generate_bundle(
    loaded: LoadedGraph, bundle: BundleModule, settings: Settings
) -> BundleOutcome:
    """Classify a bundle's files and plan its build actions."""
    try:
        bundle.properties.payload_selection()
        collection = collect_files(loaded.graph, bundle, settings)
        plan = plan_bundle(bundle, collection, settings)
    except BundleError as e:
        logger.error("%s", e)
        return BundleOutcome(bundle=bundle.name, fatal=e)
    return BundleOutcome(bundle=bundle.name, plan=plan, errors=list(plan.errors))


def assemble(
    loaded: LoadedGraph,
    settings: Settings,
    bundle_names: Iterable[str] | None = None,
) -> AssemblyResult:
    """Assemble bundles from a loaded module graph.

    Dependency edges and variants are computed for every bundle, since
    variants are shared across bundles; only the selected bundles are
    planned.

    Args:
        loaded: The loaded module graph.
        settings: Build settings.
        bundle_names: Bundles to plan (default: all).

    Returns:
        AssemblyResult with one outcome per selected bundle.

    Raises:
        DeclarationError: If a selected bundle does not exist.
    """
    selected = (
        [loaded.bundle(name) for name in bundle_names]
        if bundle_names
        else list(loaded.bundles)
    )

    reported, fatal = add_all_dependencies(loaded, settings)
    table = ApexDependencyTable()
    variants = propagate_variants(loaded.graph, loaded.bundles, table)

    runnable = [b for b in selected if b.name not in fatal]
    with ThreadPoolExecutor(max_workers=settings.max_concurrent_bundles) as pool:
        generated = dict(
            zip(
                (b.name for b in runnable),
                pool.map(lambda b: generate_bundle(loaded, b, settings), runnable),
            )
        )

    outcomes: list[BundleOutcome] = []
    for bundle in selected:
        if bundle.name in fatal:
            outcome = BundleOutcome(bundle=bundle.name, fatal=fatal[bundle.name])
        else:
            outcome = generated[bundle.name]
        outcome.errors = reported.get(bundle.name, []) + outcome.errors
        outcomes.append(outcome)

    logger.info(
        "Assembled %d bundles (%d failed)",
        len(outcomes),
        sum(1 for o in outcomes if not o.ok),
    )
    return AssemblyResult(outcomes=outcomes, dependency_table=table, variants=variants)


def build_plans(
    plans: Iterable[BundlePlan],
    loaded: LoadedGraph,
    settings: Settings,
    dry_run: bool = False,
) -> list[BuildResult]:
    """Run the actions of each plan, one bundle after another.

    Raises:
        BuildExecutionError: If an action fails; later bundles are not run.
    """
    results: list[BuildResult] = []
    for plan in plans:
        bundle = loaded.bundle(plan.bundle)
        log_path = bundle_out_dir(bundle, settings) / "build.log"
        results.append(
            run_plan(
                plan,
                log_path,
                cwd=settings.source_root,
                timeout=settings.action_timeout,
                dry_run=dry_run,
            )
        )
    return results


__all__ = [
    "AssemblyResult",
    "BundleOutcome",
    "add_all_dependencies",
    "assemble",
    "build_plans",
    "generate_bundle",
]
