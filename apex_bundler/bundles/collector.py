"""Dependency classification and file collection.

This module handles:
- Walking a bundle's resolved dependencies (direct and transitive)
- Classifying direct dependencies by their dependency tag
- Computing each embedded file's directory inside the bundle
- Resolving the signing key and certificate
- Deduplicating, sorting and namespacing the collected files

Classification mismatches are reported per dependency and do not stop
collection, so a single run surfaces every misconfiguration. A bundle
without a resolvable key cannot be built at all.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.deps import module_reference
from apex_bundler.bundles.errors import MissingKeyError
from apex_bundler.config import Settings
from apex_bundler.graph.engine import Edge, ModuleGraph
from apex_bundler.graph.modules import (
    ApexKey,
    AppCertificate,
    JavaLibrary,
    Module,
    NativeBinary,
    NativeLibrary,
    PrebuiltEtc,
    ShBinary,
)
from apex_bundler.types import (
    Certificate,
    DependencyTag,
    FileClass,
    PackagedFile,
    PropertyError,
)

logger = logging.getLogger(__name__)

# Low-level runtime libraries the system already provides through
# bind-mounted legacy paths. Inside a bundle they are moved out of the
# default library search path, loading them twice fails at runtime.
SPECIAL_SYSTEM_LIBRARIES = frozenset({"libc", "libm", "libdl"})
SPECIAL_SYSTEM_LIBRARIES_DIR = "bionic"


@dataclass
class FileCollection:
    """Result of classifying a bundle's dependencies.

    Attributes:
        bundle: Bundle name.
        files: Deduplicated, sorted files with namespaced module names.
        key_file: Private key used to sign the payload.
        public_key_file: Public key to embed (debuggable builds with a key
            that is not installed only).
        certificate: Certificate from a certificate module, if one was named.
        errors: Reported (recoverable) errors.
    """

    bundle: str
    files: list[PackagedFile]
    key_file: Path
    public_key_file: Path | None = None
    certificate: Certificate | None = None
    errors: list[PropertyError] = field(default_factory=list)


def _join(*parts: str) -> str:
    return PurePosixPath(*[p for p in parts if p]).as_posix() if any(parts) else ""


def native_library_install_dir(lib: NativeLibrary, handle_special_libs: bool) -> str:
    """Directory of a native library inside the bundle.

    lib/ or lib64/ by bitness, then the library's relative install path,
    then the architecture name for translated architectures.
    """
    dir_in_bundle = "lib64" if lib.target.is_64bit else "lib"
    dir_in_bundle = _join(dir_in_bundle, lib.relative_install_path)
    if not lib.target.native:
        dir_in_bundle = _join(dir_in_bundle, lib.target.arch_type)
    if handle_special_libs and lib.name in SPECIAL_SYSTEM_LIBRARIES:
        dir_in_bundle = _join(dir_in_bundle, SPECIAL_SYSTEM_LIBRARIES_DIR)
    return dir_in_bundle


def executable_install_dir(binary: NativeBinary) -> str:
    # TODO: honour relative_install_path for executables.
    return "bin"


def sh_binary_install_dir(sh: ShBinary) -> str:
    return _join("bin", sh.sub_dir)


def java_library_install_dir(java: JavaLibrary) -> str:
    return "javalib"


def prebuilt_install_dir(prebuilt: PrebuiltEtc) -> str:
    return _join("etc", prebuilt.sub_dir)


def remove_duplicates(files: Iterable[PackagedFile]) -> list[PackagedFile]:
    """Keep the first entry for each built file."""
    seen: set[Path] = set()
    result: list[PackagedFile] = []
    for f in files:
        if f.built_file not in seen:
            seen.add(f.built_file)
            result.append(f)
    return result


def sort_files(files: Iterable[PackagedFile]) -> list[PackagedFile]:
    """Sort by built file path so actions do not depend on walk order."""
    return sorted(files, key=lambda f: str(f.built_file))


def namespace_module_names(files: Iterable[PackagedFile], bundle: str) -> list[PackagedFile]:
    """Prefix module names with the bundle name."""
    return [f.with_module_name(f"{bundle}.{f.module_name}") for f in files]


def resolve_certificate(
    bundle: BundleModule,
    module_certificate: Certificate | None,
    settings: Settings,
) -> Certificate:
    """Resolve the certificate pair used to sign the bundle container.

    A ':module' value uses the certificate module's pair; any other
    non-empty value names a pair in the default certificate directory; an
    empty value uses the default certificate.
    """
    cert = bundle.properties.certificate or ""
    if cert and not module_reference(cert):
        return Certificate(
            pem=settings.cert_dir / f"{cert}.x509.pem",
            key=settings.cert_dir / f"{cert}.pk8",
        )
    if cert and module_certificate is not None:
        return module_certificate
    name = settings.default_certificate
    return Certificate(
        pem=settings.cert_dir / f"{name}.x509.pem",
        key=settings.cert_dir / f"{name}.pk8",
    )


class _Classifier:
    """Per-edge decision function for the collection walk."""

    def __init__(self, bundle: BundleModule, settings: Settings) -> None:
        self.bundle = bundle
        self.settings = settings
        self.handle_special_libs = not bundle.properties.ignore_system_library_special_case
        self.files: list[PackagedFile] = []
        self.errors: list[PropertyError] = []
        self.key_file: Path | None = None
        self.public_key_file: Path | None = None
        self.certificate: Certificate | None = None

    def report(self, prop: str, message: str) -> None:
        error = PropertyError(self.bundle.name, prop, message)
        logger.error("%s", error)
        self.errors.append(error)

    def add(
        self,
        prop: str,
        module: Module,
        built_file: Path,
        install_dir: str,
        file_class: FileClass,
        symlinks: tuple[str, ...] = (),
    ) -> bool:
        try:
            packaged = PackagedFile(
                built_file=built_file,
                module_name=module.name,
                install_dir=install_dir,
                file_class=file_class,
                symlinks=symlinks,
                owner=module,
            )
        except ValueError as e:
            self.report(prop, f"{module.name!r}: {e}")
            return False
        self.files.append(packaged)
        return True

    def __call__(self, child: Module, parent: Module, edge: Edge) -> bool:
        if parent is self.bundle:
            return self.direct(child, edge.tag)
        return self.indirect(child)

    def direct(self, child: Module, tag: DependencyTag) -> bool:
        name = child.name
        match tag:
            case DependencyTag.SHARED_LIB:
                if isinstance(child, NativeLibrary):
                    return self.add(
                        "native_shared_libs",
                        child,
                        child.output_file,
                        native_library_install_dir(child, self.handle_special_libs),
                        FileClass.NATIVE_SHARED_LIB,
                    )
                self.report(
                    "native_shared_libs",
                    f"{name!r} is not a cc_library or cc_library_shared module",
                )
            case DependencyTag.EXECUTABLE:
                if isinstance(child, NativeBinary):
                    if not child.target.native:
                        # Only one bin/ directory: translated binaries are dropped
                        return True
                    return self.add(
                        "binaries",
                        child,
                        child.output_file,
                        executable_install_dir(child),
                        FileClass.NATIVE_EXECUTABLE,
                        tuple(child.symlinks),
                    )
                if isinstance(child, ShBinary):
                    self.add(
                        "binaries",
                        child,
                        child.output_file,
                        sh_binary_install_dir(child),
                        FileClass.SH_BINARY,
                    )
                    return False
                self.report("binaries", f"{name!r} is neither cc_binary nor sh_binary")
            case DependencyTag.JAVA_LIB:
                if isinstance(child, JavaLibrary):
                    if child.dex_jar is None:
                        self.report(
                            "java_libs", f"{name!r} is not configured to be compiled into dex"
                        )
                        return True
                    self.add(
                        "java_libs",
                        child,
                        child.dex_jar,
                        java_library_install_dir(child),
                        FileClass.JAVA_SHARED_LIB,
                    )
                    return True
                self.report("java_libs", f"{name!r} is not a java_library module")
            case DependencyTag.PREBUILT:
                if isinstance(child, PrebuiltEtc):
                    return self.add(
                        "prebuilts",
                        child,
                        child.output_file,
                        prebuilt_install_dir(child),
                        FileClass.ETC,
                    )
                self.report("prebuilts", f"{name!r} is not a prebuilt_etc module")
            case DependencyTag.KEY:
                if isinstance(child, ApexKey):
                    self.key_file = child.private_key_file
                    if not child.installable and self.settings.debuggable:
                        # Only valid for non-production builds
                        self.public_key_file = child.public_key_file
                    return False
                self.report("key", f"{name!r} is not an apex_key module")
            case DependencyTag.CERTIFICATE:
                if isinstance(child, AppCertificate):
                    self.certificate = child.certificate
                    return False
                self.report(
                    "certificate",
                    f"certificate dependency {name!r} must be an android_app_certificate module",
                )
            case DependencyTag.MODULE_DEP:
                pass
        return False

    def indirect(self, child: Module) -> bool:
        if not (child.can_have_apex_variants and child.is_installable_to_apex()):
            return False
        if not isinstance(child, NativeLibrary):
            return False
        # Stubs only stand for an interface the base system implements
        if child.is_stubs or child.has_stubs_variants:
            return False
        return self.add(
            "native_shared_libs",
            child,
            child.output_file,
            native_library_install_dir(child, self.handle_special_libs),
            FileClass.NATIVE_SHARED_LIB,
        )


def collect_files(
    graph: ModuleGraph,
    bundle: BundleModule,
    settings: Settings,
) -> FileCollection:
    """Classify a bundle's dependencies and collect the files it embeds.

    Args:
        graph: The module graph, with the bundle's edges already added.
        bundle: The bundle node.
        settings: Build settings.

    Returns:
        FileCollection with the normalized file list and reported errors.

    Raises:
        MissingKeyError: If no key dependency resolved to an apex_key module.
    """
    classifier = _Classifier(bundle, settings)
    graph.walk_deps(bundle, classifier)

    if classifier.key_file is None:
        raise MissingKeyError(
            bundle.name,
            f"private_key for {bundle.properties.key or ''!r} could not be found",
        )

    files = remove_duplicates(classifier.files)
    files = sort_files(files)
    files = namespace_module_names(files, bundle.name)
    logger.info(
        "Collected %d files for %s (%d errors)",
        len(files),
        bundle.name,
        len(classifier.errors),
    )

    return FileCollection(
        bundle=bundle.name,
        files=files,
        key_file=classifier.key_file,
        public_key_file=classifier.public_key_file,
        certificate=classifier.certificate,
        errors=classifier.errors,
    )


__all__ = [
    "SPECIAL_SYSTEM_LIBRARIES",
    "SPECIAL_SYSTEM_LIBRARIES_DIR",
    "FileCollection",
    "collect_files",
    "executable_install_dir",
    "java_library_install_dir",
    "namespace_module_names",
    "native_library_install_dir",
    "prebuilt_install_dir",
    "remove_duplicates",
    "resolve_certificate",
    "sh_binary_install_dir",
    "sort_files",
]
