"""Shared test fixtures for the apex_bundler test suite.

Declarations are written to a temporary source tree and loaded through
the same path the CLI uses. The default targets are arm64 (primary) and
arm.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from apex_bundler.bundles.io import LoadedGraph, load_graph
from apex_bundler.config import Settings
from tests.helpers import KEY_DECL, write_file_contexts


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings rooted in a temporary source tree."""
    source_root = tmp_path / "src"
    source_root.mkdir()
    return Settings(
        source_root=source_root,
        out_dir=tmp_path / "out",
        install_root=tmp_path / "install",
        targets=["arm64", "arm"],
        native_bridge_targets=[],
        debuggable=False,
        flatten_apex=False,
        unbundled_build=False,
        vndk_version="",
        manifest_package_name_overrides=[],
        apexer_tool_path="",
    )


@pytest.fixture
def declare(settings: Settings) -> Callable[..., LoadedGraph]:
    """Factory writing declarations to a YAML file and loading them.

    The shared key is always declared; a file_contexts file is created for
    every bundle unless file_contexts=False.
    """

    def _declare(*modules: dict[str, Any], file_contexts: bool = True) -> LoadedGraph:
        path = settings.source_root / "Android.yaml"
        path.write_text(yaml.safe_dump({"modules": [KEY_DECL, *modules]}))
        if file_contexts:
            for decl in modules:
                if decl["type"] in ("apex", "apex_test"):
                    write_file_contexts(settings, decl.get("file_contexts") or decl["name"])
        return load_graph(path, settings)

    return _declare
