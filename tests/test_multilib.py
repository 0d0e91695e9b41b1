"""Tests for bundles/multilib.py module.

Tests mapping of multilib buckets onto ordered architecture targets.
"""

import pytest

from apex_bundler.bundles.multilib import (
    bucket_applies,
    combine_multilib,
    resolve_native_requests,
)
from apex_bundler.bundles.schema import BundleSchema
from apex_bundler.types import DependencyTag, MultilibBucket, OsClass, Target

ARM64 = Target("android", OsClass.DEVICE, "arm64", "lib64", abis=("arm64-v8a",))
ARM = Target("android", OsClass.DEVICE, "arm", "lib32", abis=("armeabi-v7a",))
X86_64 = Target("android", OsClass.DEVICE, "x86_64", "lib64", abis=("x86_64",))


def arches(requests, name):
    return [r.arch for r in requests if r.name == name]


class TestBucketApplies:
    """Tests for bucket_applies."""

    @pytest.mark.parametrize(
        "bucket,expected",
        [
            (MultilibBucket.BOTH, [True, True]),
            (MultilibBucket.FIRST, [True, False]),
            (MultilibBucket.LIB32, [False, True]),
            (MultilibBucket.LIB64, [True, False]),
            (MultilibBucket.PREFER32, [False, True]),
        ],
    )
    def test_64bit_primary(self, bucket, expected):
        """Buckets on a 64-bit primary device with a 32-bit secondary."""
        targets = [ARM64, ARM]
        assert [bucket_applies(bucket, i, targets) for i in range(2)] == expected

    def test_prefer32_on_64bit_only_device(self):
        """prefer32 falls back to 64-bit when there is no 32-bit target."""
        assert bucket_applies(MultilibBucket.PREFER32, 0, [X86_64]) is True

    def test_prefer32_with_32bit_primary(self):
        """prefer32 should pick the 32-bit target regardless of order."""
        targets = [ARM, ARM64]
        assert bucket_applies(MultilibBucket.PREFER32, 0, targets) is True
        assert bucket_applies(MultilibBucket.PREFER32, 1, targets) is False

    def test_first_follows_configured_order(self):
        """first is always index 0, even when it is the 32-bit target."""
        targets = [ARM, ARM64]
        assert bucket_applies(MultilibBucket.FIRST, 0, targets) is True
        assert bucket_applies(MultilibBucket.FIRST, 1, targets) is False


class TestResolveNativeRequests:
    """Tests for resolve_native_requests."""

    def test_unannotated_lists(self):
        """Libraries imply both; binaries and prebuilts imply first."""
        props = BundleSchema(
            name="com.example",
            native_shared_libs=["libfoo"],
            binaries=["tool"],
            prebuilts=["conf"],
        )
        requests = resolve_native_requests([ARM64, ARM], props)

        assert arches(requests, "libfoo") == ["android_arm64", "android_arm"]
        assert arches(requests, "tool") == ["android_arm64"]
        assert arches(requests, "conf") == ["android_arm64"]

    def test_tags_and_variations(self):
        """Libraries select the shared link variant; prebuilts only arch."""
        props = BundleSchema(
            name="com.example",
            native_shared_libs=["libfoo"],
            binaries=["tool"],
            prebuilts=["conf"],
        )
        by_name = {r.name: r for r in resolve_native_requests([ARM64], props, image_variation="vendor")}

        assert by_name["libfoo"].tag is DependencyTag.SHARED_LIB
        assert dict(by_name["libfoo"].variations) == {
            "arch": "android_arm64",
            "image": "vendor",
            "link": "shared",
        }
        assert by_name["tool"].tag is DependencyTag.EXECUTABLE
        assert dict(by_name["tool"].variations) == {"arch": "android_arm64", "image": "vendor"}
        assert by_name["conf"].tag is DependencyTag.PREBUILT
        assert dict(by_name["conf"].variations) == {"arch": "android_arm64"}

    def test_buckets(self):
        """Each bucket should add requests only for the targets it applies to."""
        props = BundleSchema.model_validate(
            {
                "name": "com.example",
                "multilib": {
                    "first": {"binaries": ["first_bin"]},
                    "both": {"native_shared_libs": ["libboth"]},
                    "prefer32": {"binaries": ["pref_bin"]},
                    "32": {"native_shared_libs": ["lib32only"]},
                    "64": {"native_shared_libs": ["lib64only"]},
                },
            }
        )
        requests = resolve_native_requests([ARM64, ARM], props)

        assert arches(requests, "first_bin") == ["android_arm64"]
        assert arches(requests, "libboth") == ["android_arm64", "android_arm"]
        assert arches(requests, "pref_bin") == ["android_arm"]
        assert arches(requests, "lib32only") == ["android_arm"]
        assert arches(requests, "lib64only") == ["android_arm64"]

    def test_prefer32_on_64bit_only(self):
        """prefer32 resolves to the 64-bit target when alone."""
        props = BundleSchema.model_validate(
            {"name": "com.example", "multilib": {"prefer32": {"binaries": ["pref_bin"]}}}
        )
        requests = resolve_native_requests([X86_64], props)
        assert arches(requests, "pref_bin") == ["android_x86_64"]

    def test_empty_targets(self):
        """No targets means no native requests."""
        props = BundleSchema(name="com.example", native_shared_libs=["libfoo"])
        assert resolve_native_requests([], props) == []


class TestCombineMultilib:
    """Tests for combine_multilib."""

    def test_device_uses_android_properties(self):
        """Device targets should merge target.android.multilib."""
        props = BundleSchema.model_validate(
            {
                "name": "com.example",
                "multilib": {"both": {"native_shared_libs": ["liba"]}},
                "target": {
                    "android": {"multilib": {"both": {"native_shared_libs": ["libandroid"]}}},
                    "host": {"multilib": {"both": {"native_shared_libs": ["libhost"]}}},
                },
            }
        )
        merged = combine_multilib(props, "android", OsClass.DEVICE)
        assert merged.both.native_shared_libs == ["liba", "libandroid"]

    def test_host_uses_host_and_os_properties(self):
        """Host targets merge target.host and the specific OS."""
        props = BundleSchema.model_validate(
            {
                "name": "com.example",
                "target": {
                    "host": {"multilib": {"first": {"binaries": ["hosttool"]}}},
                    "linux_bionic": {"multilib": {"first": {"binaries": ["bionictool"]}}},
                    "linux_glibc": {"multilib": {"first": {"binaries": ["glibctool"]}}},
                },
            }
        )
        merged = combine_multilib(props, "linux_bionic", OsClass.HOST)
        assert merged.first.binaries == ["hosttool", "bionictool"]
