"""Dependency edges of a bundle.

This module adds the typed edges a bundle needs to the module graph:
native libraries and executables per multilib policy, prebuilts, java
libraries, the signing key, and the certificate module when one is named.
"""

from __future__ import annotations

import logging

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.errors import MissingKeyError
from apex_bundler.bundles.multilib import (
    DependencyRequest,
    combine_multilib,
    resolve_native_requests,
)
from apex_bundler.config import Settings
from apex_bundler.graph.engine import ModuleGraph
from apex_bundler.types import DependencyTag, OsClass, PropertyError

logger = logging.getLogger(__name__)

# Bundle property each tag's dependencies are declared under
TAG_PROPERTIES: dict[DependencyTag, str] = {
    DependencyTag.SHARED_LIB: "native_shared_libs",
    DependencyTag.EXECUTABLE: "binaries",
    DependencyTag.JAVA_LIB: "java_libs",
    DependencyTag.PREBUILT: "prebuilts",
    DependencyTag.KEY: "key",
    DependencyTag.CERTIFICATE: "certificate",
}


def module_reference(value: str | None) -> str:
    """Return the module name of a ':module' reference, or ''."""
    if value and value.startswith(":") and len(value) > 1:
        return value[1:]
    return ""


def image_variation(bundle: BundleModule, settings: Settings) -> str:
    """Image variation native dependencies are requested with."""
    if settings.vndk_version and bundle.properties.use_vendor:
        return "vendor"
    return "core"


def bundle_requests(bundle: BundleModule, settings: Settings) -> list[DependencyRequest]:
    """Compute the native, prebuilt and java requests of a bundle."""
    props = bundle.properties
    targets = bundle.multi_targets
    os_class = targets[0].os_class if targets else OsClass.DEVICE
    multilib = combine_multilib(props, bundle.target.os, os_class)

    requests = resolve_native_requests(
        targets,
        props,
        multilib=multilib,
        image_variation=image_variation(bundle, settings),
    )
    common_arch = f"{bundle.target.os}_common"
    requests += [
        DependencyRequest(name, DependencyTag.JAVA_LIB, (("arch", common_arch),))
        for name in props.java_libs
    ]
    return requests


def add_bundle_dependencies(
    graph: ModuleGraph,
    bundle: BundleModule,
    settings: Settings,
) -> list[PropertyError]:
    """Add every dependency edge of a bundle to the graph.

    Args:
        graph: The module graph.
        bundle: The bundle node.
        settings: Build settings.

    Returns:
        Reported errors for dependencies with no matching module.

    Raises:
        MissingKeyError: If the bundle does not name a key.
    """
    errors: list[PropertyError] = []

    def add(tag: DependencyTag, name: str, variations: dict[str, str] | None) -> None:
        for missing in graph.add_dependency(bundle, tag, [name], variations):
            where = f" for {variations['arch']}" if variations and "arch" in variations else ""
            error = PropertyError(
                bundle.name, TAG_PROPERTIES[tag], f"{missing!r} is not a defined module{where}"
            )
            logger.error("%s", error)
            errors.append(error)

    for request in bundle_requests(bundle, settings):
        add(request.tag, request.name, dict(request.variations))

    key = bundle.properties.key
    if not key:
        raise MissingKeyError(bundle.name, "key is missing")
    add(DependencyTag.KEY, key, None)

    cert = module_reference(bundle.properties.certificate)
    if cert:
        add(DependencyTag.CERTIFICATE, cert, None)

    logger.debug(
        "Added %d dependencies for %s", len(graph.dependencies(bundle)), bundle.name
    )
    return errors


__all__ = [
    "TAG_PROPERTIES",
    "add_bundle_dependencies",
    "bundle_requests",
    "image_variation",
    "module_reference",
]
