"""Module kinds that can appear in the module graph.

Each module is one node of the graph: a named build target for a single
architecture variant. Bundles only read from modules: their built output
paths, targets, and the few flags that decide whether and how they are
embedded.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from apex_bundler.types import Certificate, Target


@dataclass(eq=False)
class Module:
    """Base class of every graph node.

    Attributes:
        name: Module name, shared by all architecture variants.
        target: Architecture target of this variant.
        deps: Names of modules this module depends on.
        image: Image variation (core or vendor).
    """

    kind: ClassVar[str] = "module"
    # Whether this kind can be rebuilt per enclosing bundle
    can_have_apex_variants: ClassVar[bool] = False

    name: str
    target: Target
    deps: list[str] = field(default_factory=list)
    image: str = "core"

    @property
    def variant_id(self) -> str:
        """Architecture variant name, qualified by a non-core image."""
        if self.image == "core":
            return self.target.variant_name
        return f"{self.target.variant_name}_{self.image}"

    @property
    def key(self) -> tuple[str, str]:
        """Identity of this node in the graph."""
        return (self.name, self.variant_id)

    def variations(self) -> dict[str, str]:
        """Variation axes used to select this node from a dependency edge."""
        return {"arch": self.target.variant_name, "image": self.image}

    def is_installable_to_apex(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, {self.target.variant_name!r})"


@dataclass(eq=False, repr=False)
class NativeLibrary(Module):
    """A native shared library.

    Attributes:
        output_file: Built (stripped) shared object.
        relative_install_path: Subdirectory below lib/ or lib64/.
        is_stubs: This node is itself a stub (ABI surrogate) variant.
        has_stubs_variants: The library publishes versioned stubs.
        installable: Whether the library may be installed at all.
    """

    kind: ClassVar[str] = "cc_library_shared"
    can_have_apex_variants: ClassVar[bool] = True

    output_file: Path = Path()
    relative_install_path: str = ""
    is_stubs: bool = False
    has_stubs_variants: bool = False
    installable: bool = True

    def variations(self) -> dict[str, str]:
        variations = super().variations()
        variations["link"] = "shared"
        return variations

    def is_installable_to_apex(self) -> bool:
        return self.installable and not self.is_stubs


@dataclass(eq=False, repr=False)
class NativeBinary(Module):
    """A native executable.

    Attributes:
        output_file: Built executable.
        symlinks: Names of alongside symlinks pointing at the executable.
        relative_install_path: Declared subdirectory (not used for bundles).
    """

    kind: ClassVar[str] = "cc_binary"
    can_have_apex_variants: ClassVar[bool] = True

    output_file: Path = Path()
    symlinks: tuple[str, ...] = ()
    relative_install_path: str = ""


@dataclass(eq=False, repr=False)
class ShBinary(Module):
    """A script executable."""

    kind: ClassVar[str] = "sh_binary"

    output_file: Path = Path()
    sub_dir: str = ""

    def variations(self) -> dict[str, str]:
        # Scripts are identical across images
        return {"arch": self.target.variant_name}


@dataclass(eq=False, repr=False)
class JavaLibrary(Module):
    """A managed-code library.

    Attributes:
        dex_jar: Compiled byte-code archive, None when the library is not
            compiled to dex.
    """

    kind: ClassVar[str] = "java_library"
    can_have_apex_variants: ClassVar[bool] = True

    dex_jar: Path | None = None


@dataclass(eq=False, repr=False)
class PrebuiltEtc(Module):
    """A static resource file installed under etc/."""

    kind: ClassVar[str] = "prebuilt_etc"

    output_file: Path = Path()
    sub_dir: str = ""

    def variations(self) -> dict[str, str]:
        return {"arch": self.target.variant_name}


@dataclass(eq=False, repr=False)
class ApexKey(Module):
    """Provider of the key pair used to sign a bundle's payload."""

    kind: ClassVar[str] = "apex_key"

    public_key_file: Path = Path()
    private_key_file: Path = Path()
    installable: bool = True


@dataclass(eq=False, repr=False)
class AppCertificate(Module):
    """Provider of the certificate used to sign the bundle container."""

    kind: ClassVar[str] = "android_app_certificate"

    certificate: Certificate = field(
        default_factory=lambda: Certificate(Path(), Path())
    )


__all__ = [
    "ApexKey",
    "AppCertificate",
    "JavaLibrary",
    "Module",
    "NativeBinary",
    "NativeLibrary",
    "PrebuiltEtc",
    "ShBinary",
]
