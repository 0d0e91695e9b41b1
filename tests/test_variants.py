"""Tests for bundles/variants.py module.

Tests the install dependency table and per-bundle variant creation.
"""

import threading

from apex_bundler.bundles.service import add_all_dependencies
from apex_bundler.bundles.variants import (
    ApexDependencyTable,
    annotate_bundle,
    propagate_variants,
)
from tests.helpers import KEY, bundle_decl


def variant_names(loaded, name, variant_id="android_arm64"):
    module = next(m for m in loaded.graph.variants_named(name) if m.variant_id == variant_id)
    return [v.name for v in loaded.graph.variants_of(module)]


class TestApexDependencyTable:
    """Tests for ApexDependencyTable."""

    def test_add_is_idempotent(self):
        """Adding the same pair twice should keep one entry."""
        table = ApexDependencyTable()
        assert table.add("com.a", "libfoo") is True
        assert table.add("com.a", "libfoo") is False
        assert len(table) == 1
        assert ("com.a", "libfoo") in table

    def test_queries(self):
        """Should answer lookups in both directions, sorted."""
        table = ApexDependencyTable()
        table.add("com.b", "libfoo")
        table.add("com.a", "libfoo")
        table.add("com.a", "libbar")

        assert table.dependencies_of("com.a") == ["libbar", "libfoo"]
        assert table.bundles_of("libfoo") == ["com.a", "com.b"]

    def test_concurrent_inserts(self):
        """Concurrent inserts should neither lose nor duplicate entries."""
        table = ApexDependencyTable()

        def insert(bundle):
            for i in range(200):
                table.add(bundle, f"lib{i % 50}")

        threads = [threading.Thread(target=insert, args=(f"com.{n}",)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(table) == 200


class TestPropagateVariants:
    """Tests for annotate_bundle and propagate_variants."""

    def test_shared_library_gets_variant_per_bundle(self, declare, settings):
        """Modules reached from two bundles get one variant for each."""
        loaded = declare(
            {"type": "cc_library_shared", "name": "libfoo", "shared_libs": ["libbar"]},
            {"type": "cc_library_shared", "name": "libbar"},
            bundle_decl("com.a", native_shared_libs=["libfoo"]),
            bundle_decl("com.b", native_shared_libs=["libfoo"]),
        )
        add_all_dependencies(loaded, settings)
        table = ApexDependencyTable()
        propagate_variants(loaded.graph, loaded.bundles, table)

        assert variant_names(loaded, "libfoo") == ["com.a", "com.b"]
        assert variant_names(loaded, "libfoo", "android_arm") == ["com.a", "com.b"]
        # Transitive dependencies are rebuilt per bundle too
        assert variant_names(loaded, "libbar") == ["com.a", "com.b"]

    def test_bundle_gets_own_variant(self, declare, settings):
        """Each bundle gets a single variant named after itself."""
        loaded = declare(bundle_decl("com.a"))
        add_all_dependencies(loaded, settings)
        propagate_variants(loaded.graph, loaded.bundles, ApexDependencyTable())

        bundle = loaded.bundle("com.a")
        assert [v.name for v in loaded.graph.variants_of(bundle)] == ["com.a"]

    def test_table_records_direct_dependencies(self, declare, settings):
        """Only direct dependencies of the bundle are recorded."""
        loaded = declare(
            {"type": "cc_library_shared", "name": "libfoo", "shared_libs": ["libbar"]},
            {"type": "cc_library_shared", "name": "libbar"},
            bundle_decl("com.a", native_shared_libs=["libfoo"]),
        )
        add_all_dependencies(loaded, settings)
        table = ApexDependencyTable()
        annotate_bundle(loaded.graph, loaded.bundle("com.a"), table)

        assert table.dependencies_of("com.a") == sorted(["libfoo", KEY])
        assert ("com.a", "libbar") not in table

    def test_test_and_uninstallable_bundles_not_recorded(self, declare, settings):
        """Test bundles and non-installable bundles record nothing."""
        loaded = declare(
            {"type": "cc_library_shared", "name": "libfoo"},
            {**bundle_decl("com.test", native_shared_libs=["libfoo"]), "type": "apex_test"},
            bundle_decl("com.hidden", native_shared_libs=["libfoo"], installable=False),
        )
        add_all_dependencies(loaded, settings)
        table = ApexDependencyTable()
        propagate_variants(loaded.graph, loaded.bundles, table)

        assert len(table) == 0
        # Variants are still created
        assert variant_names(loaded, "libfoo") == ["com.hidden", "com.test"]

    def test_walk_stops_at_modules_without_variants(self, declare, settings):
        """Script binaries and keys are not rebuilt per bundle."""
        loaded = declare(
            {"type": "sh_binary", "name": "tool.sh", "src": "tool.sh"},
            bundle_decl("com.a", binaries=["tool.sh"]),
        )
        add_all_dependencies(loaded, settings)
        obligations = annotate_bundle(loaded.graph, loaded.bundle("com.a"), ApexDependencyTable())

        assert obligations == set()
