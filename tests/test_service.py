"""Tests for bundles/service.py module.

Tests end-to-end assembly across several bundles, with per-bundle
isolation of fatal errors.
"""

from unittest.mock import MagicMock, patch

import pytest

from apex_bundler.bundles.errors import FileContextsNotFoundError, MissingKeyError
from apex_bundler.bundles.io import DeclarationError
from apex_bundler.bundles.service import assemble, build_plans
from apex_bundler.types import PayloadType
from tests.helpers import bundle_decl


@pytest.fixture
def two_bundles(declare):
    """Two bundles sharing a library."""
    return declare(
        {"type": "cc_library_shared", "name": "libshared"},
        {"type": "cc_binary", "name": "tool", "shared_libs": ["libshared"]},
        bundle_decl("com.a", native_shared_libs=["libshared"]),
        bundle_decl("com.b", binaries=["tool"], payload_type="both"),
    )


class TestAssemble:
    """Tests for assemble."""

    def test_all_bundles(self, two_bundles, settings):
        """Every bundle is planned and the shared library gets two variants."""
        result = assemble(two_bundles, settings)

        assert result.success
        assert [o.bundle for o in result.outcomes] == ["com.a", "com.b"]
        assert set(result.outcome("com.b").plan.output_files) == {
            PayloadType.ZIP,
            PayloadType.IMAGE,
        }

        lib = two_bundles.graph.variants_named("libshared")[0]
        assert [v.name for v in two_bundles.graph.variants_of(lib)] == ["com.a", "com.b"]
        assert result.dependency_table.bundles_of("libshared") == ["com.a"]
        assert result.dependency_table.bundles_of("tool") == ["com.b"]

    def test_selected_bundle(self, two_bundles, settings):
        """Only selected bundles are planned; variants still cover all."""
        result = assemble(two_bundles, settings, bundle_names=["com.b"])

        assert [o.bundle for o in result.outcomes] == ["com.b"]
        lib = two_bundles.graph.variants_named("libshared")[0]
        assert [v.name for v in two_bundles.graph.variants_of(lib)] == ["com.a", "com.b"]

    def test_unknown_bundle(self, two_bundles, settings):
        """Selecting an undeclared bundle raises."""
        with pytest.raises(DeclarationError):
            assemble(two_bundles, settings, bundle_names=["com.nope"])

    def test_fatal_error_isolated(self, declare, settings):
        """A bundle without a key fails alone."""
        loaded = declare(
            {"type": "apex", "name": "com.nokey"},
            bundle_decl("com.ok"),
        )
        result = assemble(loaded, settings, bundle_names=None)

        nokey = result.outcome("com.nokey")
        assert isinstance(nokey.fatal, MissingKeyError)
        assert nokey.plan is None
        assert result.outcome("com.ok").ok
        assert not result.success

    def test_file_contexts_error_isolated(self, declare, settings):
        """A missing label file only aborts its own bundle."""
        loaded = declare(bundle_decl("com.a"), file_contexts=False)
        result = assemble(loaded, settings)

        assert isinstance(result.outcome("com.a").fatal, FileContextsNotFoundError)

    def test_reported_errors_collected(self, declare, settings):
        """Dependency and classification errors are both reported."""
        loaded = declare(
            {"type": "java_library", "name": "nodex", "installable": False},
            bundle_decl(native_shared_libs=["libmissing"], java_libs=["nodex"]),
        )
        result = assemble(loaded, settings)
        outcome = result.outcomes[0]

        assert outcome.fatal is None
        assert outcome.plan is not None
        assert [e.property for e in outcome.errors] == [
            "native_shared_libs",
            "native_shared_libs",
            "java_libs",
        ]
        assert not outcome.ok

    def test_concurrency_bound(self, two_bundles, settings):
        """Planning runs in a pool bounded by max_concurrent_bundles."""
        settings.max_concurrent_bundles = 1
        with patch("apex_bundler.bundles.service.ThreadPoolExecutor") as mock_pool:
            mock_pool.return_value.__enter__.return_value.map.side_effect = (
                lambda fn, items: [fn(i) for i in items]
            )
            result = assemble(two_bundles, settings)

        mock_pool.assert_called_once_with(max_workers=1)
        assert result.success


class TestBuildPlans:
    """Tests for build_plans."""

    def test_runs_each_plan(self, two_bundles, settings):
        """Each plan is run with the configured timeout and its own log."""
        result = assemble(two_bundles, settings)
        plans = [o.plan for o in result.outcomes]

        with patch("apex_bundler.bundles.service.run_plan") as mock_run:
            mock_run.return_value = MagicMock()
            build_plans(plans, two_bundles, settings, dry_run=True)

        assert mock_run.call_count == 2
        first_call = mock_run.call_args_list[0]
        assert first_call.args[0] is plans[0]
        assert first_call.args[1].name == "build.log"
        assert first_call.kwargs["timeout"] == settings.action_timeout
        assert first_call.kwargs["dry_run"] is True
