"""Shared type definitions for apex_bundler.

This module contains dataclasses, enums, and type aliases shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

import weakref
from dataclasses import InitVar, dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from apex_bundler.graph.modules import Module


class DependencyTag(Enum):
    """Why an edge from a bundle to a module exists.

    Members are singletons and compare by identity, so two edges to the same
    module with different purposes never collide.
    """

    SHARED_LIB = "sharedLib"
    EXECUTABLE = "executable"
    JAVA_LIB = "javaLib"
    PREBUILT = "prebuilt"
    KEY = "key"
    CERTIFICATE = "certificate"
    # Ordinary module-to-module edge declared by a module itself
    MODULE_DEP = "moduleDep"


class FileClass(str, Enum):
    """Class of a file embedded in a bundle."""

    ETC = "etc"
    NATIVE_SHARED_LIB = "native-shared-lib"
    NATIVE_EXECUTABLE = "native-executable"
    SH_BINARY = "sh-binary"
    JAVA_SHARED_LIB = "java-shared-lib"

    @property
    def make_class(self) -> str:
        """Module class name used by the legacy make-based build."""
        return _MAKE_CLASSES[self]


_MAKE_CLASSES = {
    FileClass.ETC: "ETC",
    FileClass.NATIVE_SHARED_LIB: "SHARED_LIBRARIES",
    FileClass.NATIVE_EXECUTABLE: "EXECUTABLES",
    FileClass.SH_BINARY: "EXECUTABLES",
    FileClass.JAVA_SHARED_LIB: "JAVA_LIBRARIES",
}


class PayloadType(str, Enum):
    """Payload format of a single bundle output."""

    IMAGE = "image"
    ZIP = "zip"

    @property
    def suffix(self) -> str:
        """File suffix of the signed output for this payload."""
        return ".apex" if self is PayloadType.IMAGE else ".zipapex"


class PayloadSelection(str, Enum):
    """Which payloads a bundle declares."""

    IMAGE = "image"
    ZIP = "zip"
    BOTH = "both"

    @property
    def image(self) -> bool:
        return self in (PayloadSelection.IMAGE, PayloadSelection.BOTH)

    @property
    def zip(self) -> bool:
        return self in (PayloadSelection.ZIP, PayloadSelection.BOTH)


class MultilibBucket(str, Enum):
    """Named policy for which bitness a native dependency is built for."""

    FIRST = "first"
    BOTH = "both"
    PREFER32 = "prefer32"
    LIB32 = "lib32"
    LIB64 = "lib64"


class OsClass(str, Enum):
    """Operating-system class of a build target."""

    DEVICE = "device"
    HOST = "host"


@dataclass(frozen=True)
class Target:
    """Architecture target a module variant is built for.

    Attributes:
        os: Operating system name (android, linux_glibc, linux_bionic).
        os_class: Device, host or host-cross.
        arch_type: Architecture name (arm, arm64, x86, x86_64, common).
        multilib: Bitness bucket, "lib32" or "lib64" (empty for common).
        native: False for native-bridge (translated) architectures.
        abis: ABI names, the first one is the primary ABI.
    """

    os: str
    os_class: OsClass
    arch_type: str
    multilib: str = ""
    native: bool = True
    abis: tuple[str, ...] = ()

    @property
    def variant_name(self) -> str:
        """Variation name used to select this target on a dependency edge."""
        name = f"{self.os}_{self.arch_type}"
        if not self.native:
            name = f"{name}_native_bridge"
        return name

    @property
    def is_32bit(self) -> bool:
        return self.multilib == "lib32"

    @property
    def is_64bit(self) -> bool:
        return self.multilib == "lib64"


@dataclass(frozen=True)
class Certificate:
    """A public certificate and private key pair used by the signing tool."""

    pem: Path
    key: Path


def is_relative_subdir(path: str) -> bool:
    """Whether a path stays below the directory it is joined to."""
    pure = PurePosixPath(path)
    return not pure.is_absolute() and ".." not in pure.parts


def is_plain_name(name: str) -> bool:
    """Whether a name is a single path component."""
    return bool(name) and "/" not in name and name not in (".", "..")


@dataclass(frozen=True)
class PropertyError:
    """A recoverable configuration error against a single bundle property."""

    bundle: str
    property: str
    message: str

    def __str__(self) -> str:
        return f"{self.bundle}: {self.property}: {self.message}"


@dataclass
class PackagedFile:
    """A file embedded in a bundle.

    The owning module is only referenced weakly; it is used to look up
    metadata and never keeps the module alive.
    """

    built_file: Path
    module_name: str
    install_dir: str
    file_class: FileClass
    symlinks: tuple[str, ...] = ()
    owner: InitVar[Module | None] = None
    _module_ref: weakref.ref[Module] | None = field(
        default=None, init=False, repr=False, compare=False
    )

    def __post_init__(self, owner: Module | None) -> None:
        if not is_relative_subdir(self.install_dir):
            raise ValueError(
                f"install_dir must stay inside the bundle: {self.install_dir}"
            )
        for sym in self.symlinks:
            if not is_plain_name(sym):
                raise ValueError(f"symlink must be a plain file name: {sym!r}")
        self._module_ref = weakref.ref(owner) if owner is not None else None

    @property
    def module(self) -> Module | None:
        """The owning module, or None if it is gone or was never set."""
        return self._module_ref() if self._module_ref is not None else None

    @property
    def path_in_bundle(self) -> str:
        """Path of the file relative to the bundle root."""
        return (Path(self.install_dir) / self.built_file.name).as_posix()

    def with_module_name(self, module_name: str) -> PackagedFile:
        """Return a copy under a different module name, same owner."""
        return PackagedFile(
            built_file=self.built_file,
            module_name=module_name,
            install_dir=self.install_dir,
            file_class=self.file_class,
            symlinks=self.symlinks,
            owner=self.module,
        )


__all__ = [
    "Certificate",
    "DependencyTag",
    "FileClass",
    "MultilibBucket",
    "OsClass",
    "PackagedFile",
    "PayloadSelection",
    "PayloadType",
    "PropertyError",
    "Target",
    "is_plain_name",
    "is_relative_subdir",
]
