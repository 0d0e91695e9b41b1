"""Tests for graph/engine.py module.

Tests node lookup by variation, typed edges, walks, and variants.
"""

from pathlib import Path

import pytest

from apex_bundler.graph.engine import DuplicateModuleError, ModuleGraph
from apex_bundler.graph.modules import NativeLibrary, PrebuiltEtc, ShBinary
from apex_bundler.types import DependencyTag, OsClass, Target

ARM64 = Target("android", OsClass.DEVICE, "arm64", "lib64", abis=("arm64-v8a",))
ARM = Target("android", OsClass.DEVICE, "arm", "lib32", abis=("armeabi-v7a",))


def lib(name: str, target: Target = ARM64, image: str = "core") -> NativeLibrary:
    return NativeLibrary(name=name, target=target, image=image, output_file=Path(f"/out/{name}.so"))


@pytest.fixture
def graph() -> ModuleGraph:
    """A graph with arm64 and arm variants of libfoo."""
    g = ModuleGraph()
    g.add_module(lib("libfoo", ARM64))
    g.add_module(lib("libfoo", ARM))
    return g


class TestRegistry:
    """Tests for node registration and lookup."""

    def test_duplicate_rejected(self, graph):
        """Two nodes with the same name and variant should be rejected."""
        with pytest.raises(DuplicateModuleError) as exc_info:
            graph.add_module(lib("libfoo", ARM64))
        assert exc_info.value.code == "duplicate_module"

    def test_image_variants_coexist(self, graph):
        """A vendor variant has its own key."""
        graph.add_module(lib("libfoo", ARM64, image="vendor"))
        assert len(graph.variants_named("libfoo")) == 3

    def test_find_by_arch(self, graph):
        """Should select the variant matching the arch selector."""
        found = graph.find("libfoo", {"arch": "android_arm"})
        assert found is not None
        assert found.target is ARM

    def test_find_unknown(self, graph):
        """Should return None for unknown names or unmatched selectors."""
        assert graph.find("libbar", {"arch": "android_arm"}) is None
        assert graph.find("libfoo", {"arch": "android_x86"}) is None
        assert graph.find("libfoo", {"arch": "android_arm", "image": "vendor"}) is None

    def test_selector_ignores_undefined_axes(self):
        """Axes a node does not define should not constrain it."""
        g = ModuleGraph()
        g.add_module(ShBinary(name="tool.sh", target=ARM64))
        g.add_module(PrebuiltEtc(name="conf", target=ARM64))

        assert g.find("tool.sh", {"arch": "android_arm64", "image": "vendor"}) is not None
        assert g.find("conf", {"arch": "android_arm64", "link": "shared"}) is not None


class TestEdges:
    """Tests for add_dependency and walk_deps."""

    def test_add_dependency_reports_missing(self, graph):
        """Unresolvable names should be returned, resolvable ones linked."""
        root = graph.add_module(PrebuiltEtc(name="root", target=ARM64))
        missing = graph.add_dependency(
            root, DependencyTag.SHARED_LIB, ["libfoo", "libmissing"], {"arch": "android_arm64"}
        )

        assert missing == ["libmissing"]
        edges = graph.dependencies(root)
        assert len(edges) == 1
        assert edges[0].child.target is ARM64
        assert edges[0].tag is DependencyTag.SHARED_LIB

    def test_walk_visits_every_edge_descends_once(self):
        """Shared children are visited per edge but descended into once."""
        g = ModuleGraph()
        root, a, b, c, d = (g.add_module(lib(n)) for n in ("root", "a", "b", "c", "d"))
        sel = {"arch": "android_arm64"}
        g.add_dependency(root, DependencyTag.SHARED_LIB, ["a", "b"], sel)
        g.add_dependency(a, DependencyTag.MODULE_DEP, ["c"], sel)
        g.add_dependency(b, DependencyTag.MODULE_DEP, ["c"], sel)
        g.add_dependency(c, DependencyTag.MODULE_DEP, ["d"], sel)

        visited = []

        def visit(child, parent, edge):
            visited.append((parent.name, child.name))
            return True

        g.walk_deps(root, visit)

        assert visited.count(("a", "c")) == 1
        assert visited.count(("b", "c")) == 1
        assert visited.count(("c", "d")) == 1
        assert len(visited) == 5

    def test_walk_stops_when_visit_declines(self):
        """Returning False should not descend into the child."""
        g = ModuleGraph()
        root, a, c = (g.add_module(lib(n)) for n in ("root", "a", "c"))
        sel = {"arch": "android_arm64"}
        g.add_dependency(root, DependencyTag.SHARED_LIB, ["a"], sel)
        g.add_dependency(a, DependencyTag.MODULE_DEP, ["c"], sel)

        visited = []
        g.walk_deps(root, lambda child, parent, edge: visited.append(child.name) or False)

        assert visited == ["a"]

    def test_walk_terminates_on_cycles(self):
        """Cycles should not loop forever."""
        g = ModuleGraph()
        a, b = g.add_module(lib("a")), g.add_module(lib("b"))
        sel = {"arch": "android_arm64"}
        g.add_dependency(a, DependencyTag.MODULE_DEP, ["b"], sel)
        g.add_dependency(b, DependencyTag.MODULE_DEP, ["a"], sel)

        visited = []
        g.walk_deps(a, lambda child, parent, edge: visited.append(child.name) or True)

        assert visited == ["b", "a"]

    def test_walk_is_depth_first(self):
        """A child's subtree is walked before its next sibling."""
        g = ModuleGraph()
        root, a, b, c = (g.add_module(lib(n)) for n in ("root", "a", "b", "c"))
        sel = {"arch": "android_arm64"}
        g.add_dependency(root, DependencyTag.SHARED_LIB, ["a", "b"], sel)
        g.add_dependency(a, DependencyTag.MODULE_DEP, ["c"], sel)

        visited = []
        g.walk_deps(root, lambda child, parent, edge: visited.append(child.name) or True)

        assert visited == ["a", "c", "b"]

    def test_walk_deep_chain(self):
        """Long dependency chains should not exhaust the call stack."""
        g = ModuleGraph()
        depth = 5000
        nodes = [g.add_module(lib(f"lib{i}")) for i in range(depth)]
        sel = {"arch": "android_arm64"}
        for parent, child in zip(nodes, nodes[1:]):
            g.add_dependency(parent, DependencyTag.MODULE_DEP, [child.name], sel)

        visited = []
        g.walk_deps(nodes[0], lambda child, parent, edge: visited.append(child.name) or True)

        assert len(visited) == depth - 1
        assert visited[-1] == f"lib{depth - 1}"


class TestVariants:
    """Tests for per-bundle variants."""

    def test_create_is_idempotent(self, graph):
        """Creating the same variant twice should return the same object."""
        module = graph.find("libfoo", {"arch": "android_arm64"})
        first = graph.create_variations(module, ["com.a"])
        second = graph.create_variations(module, ["com.a", "com.b"])

        assert first[0] is second[0]
        assert [v.name for v in graph.variants_of(module)] == ["com.a", "com.b"]
        assert graph.variant(module, "com.b") is second[1]
        assert graph.variant(module, "com.c") is None
