"""Declaration file loading and module graph construction.

This module provides helpers for loading module declarations from YAML or
JSON files and turning them into a module graph: one node per module per
architecture target, plus one node per bundle.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.schema import (
    ApexKeyDecl,
    AppCertificateDecl,
    BundleDefaultsSchema,
    BundleSchema,
    CcBinaryDecl,
    CcLibraryDecl,
    DeclarationFileSchema,
    JavaLibraryDecl,
    PrebuiltEtcDecl,
    ShBinaryDecl,
)
from apex_bundler.config import KNOWN_ARCHES, Settings
from apex_bundler.graph.engine import ModuleGraph
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
from apex_bundler.types import Certificate, DependencyTag, OsClass, Target

logger = logging.getLogger(__name__)

VENDOR_IMAGE = "vendor"


class DeclarationError(Exception):
    """Raised when declarations cannot be turned into a module graph."""

    def __init__(self, message: str, code: str = "declaration_error") -> None:
        super().__init__(message)
        self.code = code


@dataclass
class LoadedGraph:
    """A module graph built from a declaration file.

    Attributes:
        graph: The module graph.
        bundles: Bundle nodes in declaration order.
        targets: Ordered architecture targets (index 0 is primary).
        source: Declaration file the graph was loaded from, if any.
    """

    graph: ModuleGraph
    bundles: list[BundleModule]
    targets: tuple[Target, ...]
    source: Path | None = None

    def bundle(self, name: str) -> BundleModule:
        """Look up a bundle node by name.

        Raises:
            DeclarationError: If no bundle has that name.
        """
        for bundle in self.bundles:
            if bundle.name == name:
                return bundle
        raise DeclarationError(f"Unknown bundle: {name!r}", code="unknown_bundle")


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the content is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the content is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def load_declarations(path: Path) -> DeclarationFileSchema:
    """Load and validate a declaration file (.json, otherwise YAML).

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    data = load_json(path) if path.suffix.lower() == ".json" else load_yaml(path)
    return DeclarationFileSchema.model_validate(data)


def targets_from_settings(settings: Settings) -> tuple[Target, ...]:
    """Build the ordered target list: native arches, then native-bridge ones."""
    os_class = OsClass.DEVICE if settings.target_os == "android" else OsClass.HOST
    targets: list[Target] = []
    for arches, native in ((settings.targets, True), (settings.native_bridge_targets, False)):
        for arch in arches:
            multilib, abi = KNOWN_ARCHES[arch]
            targets.append(
                Target(
                    os=settings.target_os,
                    os_class=os_class,
                    arch_type=arch,
                    multilib=multilib,
                    native=native,
                    abis=(abi,),
                )
            )
    return tuple(targets)


def common_target(settings: Settings) -> Target:
    """Architecture-independent target of java libraries, keys and bundles."""
    os_class = OsClass.DEVICE if settings.target_os == "android" else OsClass.HOST
    return Target(os=settings.target_os, os_class=os_class, arch_type="common")


class _GraphBuilder:
    """Creates graph nodes for each declaration kind."""

    def __init__(self, settings: Settings, base_dir: Path) -> None:
        self.settings = settings
        self.base_dir = base_dir
        self.graph = ModuleGraph()
        self.targets = targets_from_settings(settings)
        self.common = common_target(settings)

    def out_path(self, module: Module, *parts: str) -> Path:
        return self.settings.out_dir / module.name / module.variant_id / Path(*parts)

    def images(self, vendor_available: bool | None) -> list[str]:
        return ["core", VENDOR_IMAGE] if vendor_available else ["core"]

    def add_cc_library(self, decl: CcLibraryDecl) -> None:
        has_stubs = bool(decl.stubs and decl.stubs.versions)
        for target in self.targets:
            for image in self.images(decl.vendor_available):
                lib = NativeLibrary(
                    name=decl.name,
                    target=target,
                    deps=list(decl.shared_libs),
                    image=image,
                    relative_install_path=decl.relative_install_path or "",
                    is_stubs=decl.type == "llndk_library",
                    has_stubs_variants=has_stubs,
                    installable=decl.installable is None or decl.installable,
                )
                stem = f"{decl.stem or decl.name}.so"
                lib.output_file = self.out_path(lib, stem)
                self.graph.add_module(lib)

    def add_cc_binary(self, decl: CcBinaryDecl) -> None:
        for target in self.targets:
            for image in self.images(decl.vendor_available):
                binary = NativeBinary(
                    name=decl.name,
                    target=target,
                    deps=list(decl.shared_libs),
                    image=image,
                    symlinks=tuple(decl.symlinks),
                    relative_install_path=decl.relative_install_path or "",
                )
                binary.output_file = self.out_path(binary, decl.stem or decl.name)
                self.graph.add_module(binary)

    def add_sh_binary(self, decl: ShBinaryDecl) -> None:
        for target in self.targets:
            sh = ShBinary(name=decl.name, target=target, sub_dir=decl.sub_dir or "")
            sh.output_file = self.out_path(sh, decl.filename or Path(decl.src).name)
            self.graph.add_module(sh)

    def add_java_library(self, decl: JavaLibraryDecl) -> None:
        java = JavaLibrary(name=decl.name, target=self.common, deps=list(decl.libs))
        installable = decl.installable is None or decl.installable
        if decl.compile_dex or (decl.compile_dex is None and installable):
            java.dex_jar = self.out_path(java, "dex", f"{decl.name}.jar")
        self.graph.add_module(java)

    def add_prebuilt_etc(self, decl: PrebuiltEtcDecl) -> None:
        for target in self.targets:
            prebuilt = PrebuiltEtc(name=decl.name, target=target, sub_dir=decl.sub_dir or "")
            prebuilt.output_file = self.out_path(prebuilt, decl.filename or Path(decl.src).name)
            self.graph.add_module(prebuilt)

    def add_apex_key(self, decl: ApexKeyDecl) -> None:
        self.graph.add_module(
            ApexKey(
                name=decl.name,
                target=self.common,
                public_key_file=self.base_dir / decl.public_key,
                private_key_file=self.base_dir / decl.private_key,
                installable=decl.installable is None or decl.installable,
            )
        )

    def add_certificate(self, decl: AppCertificateDecl) -> None:
        prefix = self.base_dir / decl.certificate
        self.graph.add_module(
            AppCertificate(
                name=decl.name,
                target=self.common,
                certificate=Certificate(
                    pem=prefix.with_name(f"{prefix.name}.x509.pem"),
                    key=prefix.with_name(f"{prefix.name}.pk8"),
                ),
            )
        )

    def add_bundle(self, decl: BundleSchema) -> BundleModule:
        bundle = BundleModule(
            name=decl.name,
            target=self.common,
            properties=decl,
            multi_targets=self.targets,
            source_dir=self.base_dir,
        )
        self.graph.add_module(bundle)
        return bundle

    def link_module_deps(self) -> None:
        """Add edges for dependencies declared by modules themselves.

        Raises:
            DeclarationError: If a dependency is not declared.
        """
        for module in self.graph:
            if not module.deps:
                continue
            tag = DependencyTag.MODULE_DEP
            variations = {"arch": module.target.variant_name, "image": module.image}
            if isinstance(module, JavaLibrary):
                variations = {"arch": module.target.variant_name}
            missing = self.graph.add_dependency(module, tag, module.deps, variations)
            if missing:
                raise DeclarationError(
                    f"{module.name!r} ({module.variant_id}) depends on undefined "
                    f"module(s): {', '.join(missing)}"
                )


def resolve_defaults(
    bundle: BundleSchema, defaults: dict[str, BundleDefaultsSchema]
) -> BundleSchema:
    """Apply the defaults a bundle names.

    Raises:
        DeclarationError: If a named defaults declaration does not exist.
    """
    if not bundle.defaults:
        return bundle
    chosen: list[BundleDefaultsSchema] = []
    for name in bundle.defaults:
        if name not in defaults:
            raise DeclarationError(f"{bundle.name!r} names unknown defaults {name!r}")
        chosen.append(defaults[name])
    return bundle.with_defaults(chosen)


def build_graph(
    declarations: DeclarationFileSchema,
    settings: Settings,
    base_dir: Path | None = None,
) -> LoadedGraph:
    """Create the module graph for a set of declarations.

    Args:
        declarations: Validated declarations.
        settings: Build settings (targets, output directory).
        base_dir: Directory relative paths are resolved against
            (defaults to settings.source_root).

    Returns:
        LoadedGraph with every node and module-to-module edge added.

    Raises:
        DeclarationError: On duplicate names, unknown defaults, or
            dependencies on undeclared modules.
    """
    builder = _GraphBuilder(settings, base_dir or settings.source_root)

    seen: set[str] = set()
    for decl in declarations.modules:
        if decl.name in seen:
            raise DeclarationError(f"Module {decl.name!r} declared more than once")
        seen.add(decl.name)

    defaults = {
        d.name: d for d in declarations.modules if isinstance(d, BundleDefaultsSchema)
    }
    bundles: list[BundleModule] = []
    for decl in declarations.modules:
        match decl:
            case CcLibraryDecl():
                builder.add_cc_library(decl)
            case CcBinaryDecl():
                builder.add_cc_binary(decl)
            case ShBinaryDecl():
                builder.add_sh_binary(decl)
            case JavaLibraryDecl():
                builder.add_java_library(decl)
            case PrebuiltEtcDecl():
                builder.add_prebuilt_etc(decl)
            case ApexKeyDecl():
                builder.add_apex_key(decl)
            case AppCertificateDecl():
                builder.add_certificate(decl)
            case BundleSchema():
                bundles.append(builder.add_bundle(resolve_defaults(decl, defaults)))
            case BundleDefaultsSchema():
                pass

    builder.link_module_deps()
    logger.info(
        "Loaded %d graph nodes (%d bundles) for %d targets",
        len(builder.graph),
        len(bundles),
        len(builder.targets),
    )
    return LoadedGraph(graph=builder.graph, bundles=bundles, targets=builder.targets)


def load_graph(path: Path, settings: Settings) -> LoadedGraph:
    """Load a declaration file and build its module graph.

    Relative paths in the file are resolved against the file's directory.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        json.JSONDecodeError: If the file is not valid JSON.
        pydantic.ValidationError: If data does not match the schema.
        DeclarationError: If the graph cannot be built.
    """
    declarations = load_declarations(path)
    loaded = build_graph(declarations, settings, base_dir=path.parent)
    loaded.source = path
    return loaded


__all__ = [
    "DeclarationError",
    "LoadedGraph",
    "build_graph",
    "common_target",
    "load_declarations",
    "load_graph",
    "load_json",
    "load_yaml",
    "resolve_defaults",
    "targets_from_settings",
]
