"""Multilib policy resolution.

This module maps a bundle's native dependencies, declared per multilib
bucket, onto the bundle's ordered architecture targets. The result is the
set of (name, architecture) dependency requests the bundle adds to the
module graph.

Rules, applied once per target in target order:
- both: every target
- first: the primary target (index 0) only
- lib32 / lib64: only targets of that bitness
- prefer32: every 32-bit target, and 64-bit targets only when the bundle
  has no 32-bit target at all

Target order is supplied by configuration and never re-derived from
architecture names.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from apex_bundler.bundles.schema import BundlePropertiesSchema, MultilibSchema
from apex_bundler.types import DependencyTag, MultilibBucket, OsClass, Target


@dataclass(frozen=True)
class DependencyRequest:
    """A typed dependency edge a bundle asks the graph to add.

    Attributes:
        name: Dependency module name.
        tag: Why the edge exists.
        variations: Variation selectors as sorted (axis, value) pairs.
        bucket: Multilib bucket the request came from, if any.
    """

    name: str
    tag: DependencyTag
    variations: tuple[tuple[str, str], ...]
    bucket: MultilibBucket | None = None

    @property
    def arch(self) -> str | None:
        return dict(self.variations).get("arch")


def shared_lib_variations(target: Target, image_variation: str) -> tuple[tuple[str, str], ...]:
    """Variations selecting the shared, non-stub variant of a library."""
    return (("arch", target.variant_name), ("image", image_variation), ("link", "shared"))


def executable_variations(target: Target, image_variation: str) -> tuple[tuple[str, str], ...]:
    return (("arch", target.variant_name), ("image", image_variation))


def has_32bit_target(targets: Sequence[Target]) -> bool:
    return any(t.is_32bit for t in targets)


def bucket_applies(
    bucket: MultilibBucket,
    index: int,
    targets: Sequence[Target],
) -> bool:
    """Decide whether a multilib bucket applies to targets[index].

    Args:
        bucket: The multilib bucket.
        index: Position of the target in the bundle's target list.
        targets: The bundle's ordered targets (index 0 is primary).

    Returns:
        True if dependencies in the bucket are requested for that target.
    """
    target = targets[index]
    match bucket:
        case MultilibBucket.BOTH:
            return True
        case MultilibBucket.FIRST:
            return index == 0
        case MultilibBucket.LIB32:
            return target.is_32bit
        case MultilibBucket.LIB64:
            return target.is_64bit
        case MultilibBucket.PREFER32:
            if target.is_32bit:
                return True
            return target.is_64bit and not has_32bit_target(targets)
    raise ValueError(f"Unknown multilib bucket: {bucket}")


def _native_requests(
    names_libs: Sequence[str],
    names_bins: Sequence[str],
    target: Target,
    image_variation: str,
    bucket: MultilibBucket | None,
) -> list[DependencyRequest]:
    libs = [
        DependencyRequest(
            name, DependencyTag.SHARED_LIB, shared_lib_variations(target, image_variation), bucket
        )
        for name in names_libs
    ]
    bins = [
        DependencyRequest(
            name, DependencyTag.EXECUTABLE, executable_variations(target, image_variation), bucket
        )
        for name in names_bins
    ]
    return libs + bins


def resolve_target_requests(
    index: int,
    targets: Sequence[Target],
    props: BundlePropertiesSchema,
    multilib: MultilibSchema | None = None,
    image_variation: str = "core",
) -> list[DependencyRequest]:
    """Resolve the native and prebuilt requests for a single target.

    Args:
        index: Position of the target being processed.
        targets: The bundle's ordered targets.
        props: Bundle properties holding the unannotated dependency lists.
        multilib: Combined multilib buckets (defaults to props.multilib).
        image_variation: Image variation of native dependencies.

    Returns:
        Requests for targets[index], in the order they are added.
    """
    target = targets[index]
    buckets = multilib if multilib is not None else props.multilib
    requests: list[DependencyRequest] = []

    # Unannotated native_shared_libs imply multilib.both
    requests += _native_requests(
        props.native_shared_libs, [], target, image_variation, MultilibBucket.BOTH
    )
    both = buckets.both
    requests += _native_requests(
        both.native_shared_libs, both.binaries, target, image_variation, MultilibBucket.BOTH
    )

    if bucket_applies(MultilibBucket.FIRST, index, targets):
        # Unannotated binaries and prebuilts imply multilib.first
        requests += _native_requests(
            [], props.binaries, target, image_variation, MultilibBucket.FIRST
        )
        first = buckets.first
        requests += _native_requests(
            first.native_shared_libs, first.binaries, target, image_variation,
            MultilibBucket.FIRST,
        )
        requests += [
            DependencyRequest(
                name,
                DependencyTag.PREBUILT,
                (("arch", target.variant_name),),
                MultilibBucket.FIRST,
            )
            for name in props.prebuilts
        ]

    for bucket in (MultilibBucket.LIB32, MultilibBucket.LIB64, MultilibBucket.PREFER32):
        if bucket_applies(bucket, index, targets):
            deps = buckets.bucket(bucket)
            requests += _native_requests(
                deps.native_shared_libs, deps.binaries, target, image_variation, bucket
            )

    return requests


def resolve_native_requests(
    targets: Sequence[Target],
    props: BundlePropertiesSchema,
    multilib: MultilibSchema | None = None,
    image_variation: str = "core",
) -> list[DependencyRequest]:
    """Resolve requests for every target, accumulated in target order."""
    requests: list[DependencyRequest] = []
    for index in range(len(targets)):
        requests += resolve_target_requests(
            index, targets, props, multilib=multilib, image_variation=image_variation
        )
    return requests


def combine_multilib(
    props: BundlePropertiesSchema,
    os: str,
    os_class: OsClass,
) -> MultilibSchema:
    """Merge per-OS multilib properties into the bundle's multilib.

    Device targets use target.android; host targets use target.host plus
    target.linux_bionic or target.linux_glibc.
    """
    multilib = props.multilib
    if os_class is OsClass.DEVICE:
        return multilib.extended(props.target.android.multilib)
    multilib = multilib.extended(props.target.host.multilib)
    if os == "linux_bionic":
        return multilib.extended(props.target.linux_bionic.multilib)
    return multilib.extended(props.target.linux_glibc.multilib)


__all__ = [
    "DependencyRequest",
    "bucket_applies",
    "combine_multilib",
    "executable_variations",
    "has_32bit_target",
    "resolve_native_requests",
    "resolve_target_requests",
    "shared_lib_variations",
]
