"""Packaging plan for a bundle.

This module turns a bundle's collected files into declarative build
actions:
- Staging the bundle tree (copies plus sibling-relative symlinks)
- Generating the access-mode manifest (canned_fs_config)
- Resolving the security-label (file_contexts) file
- Building the image payload and its distribution bundle
- Building the zip payload
- Signing both payloads
- Installing either the signed payloads or the flattened tree

Actions are only described here; bundles/runner.py executes them.
"""

from __future__ import annotations

import logging
import shlex
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath

from apex_bundler.bundles.bundle import BundleModule
from apex_bundler.bundles.collector import FileCollection, resolve_certificate
from apex_bundler.bundles.errors import FileContextsNotFoundError
from apex_bundler.config import Settings
from apex_bundler.types import (
    Certificate,
    FileClass,
    PackagedFile,
    PayloadType,
    PropertyError,
    Target,
)

logger = logging.getLogger(__name__)

# Ownership and permission triples of the access-mode manifest
ROOT_FS_CONFIG = "/ 1000 1000 0755"
MANIFEST_FS_CONFIG = "/apex_manifest.json 1000 1000 0644"
READ_ONLY_MODE = "1000 1000 0644"
EXECUTABLE_MODE = "0 2000 0755"

EXECUTABLES_DIR = "bin"
SIGNING_ALIGNMENT = "4096"
FLATTENED_MANIFEST_NAME = "apex_manifest.json"


class ActionKind(str, Enum):
    """Kind of a build action."""

    STAGE = "stage"
    WRITE = "write"
    COMMAND = "command"
    COPY = "copy"


@dataclass(frozen=True)
class CopyInstruction:
    """Copy a built file into a staging tree."""

    source: Path
    dest: Path


@dataclass(frozen=True)
class SymlinkInstruction:
    """Create a symlink; target is a sibling base name, never a full path."""

    target: str
    link: Path


@dataclass
class BuildAction:
    """A declarative build action.

    Attributes:
        kind: What the action does.
        description: Short human-readable description.
        outputs: Files (or the directory, for staging) the action produces.
        inputs: Files the action reads.
        command: Argument vector for COMMAND actions.
        env: Extra environment for COMMAND actions.
        content: File content for WRITE actions.
        copies: Copy instructions for STAGE actions.
        symlinks: Symlink instructions for STAGE actions.
        install: The action installs into the installation tree.
    """

    kind: ActionKind
    description: str
    outputs: list[Path]
    inputs: list[Path] = field(default_factory=list)
    command: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    content: str | None = None
    copies: list[CopyInstruction] = field(default_factory=list)
    symlinks: list[SymlinkInstruction] = field(default_factory=list)
    install: bool = False

    def command_line(self) -> str:
        """Shell rendering of a COMMAND action, environment first."""
        env = [f"{k}={shlex.quote(v)}" for k, v in sorted(self.env.items())]
        return " ".join(env + [shlex.join(self.command)])


@dataclass
class BundlePlan:
    """Everything generated for one bundle.

    Attributes:
        bundle: Bundle name.
        files: Files embedded in the bundle (deduplicated and sorted).
        flattened_files: Files of the flattened form, including the
            manifest description file.
        actions: Build actions in execution order.
        output_files: Signed output per payload type.
        bundle_module_file: Distribution bundle derived from the image.
        flattened: Whether the build installs bundles flattened.
        install_dir: Directory bundles are installed to.
        errors: Reported (recoverable) errors.
    """

    bundle: str
    files: list[PackagedFile]
    flattened_files: list[PackagedFile]
    actions: list[BuildAction]
    output_files: dict[PayloadType, Path]
    bundle_module_file: Path | None
    flattened: bool
    install_dir: Path
    errors: list[PropertyError] = field(default_factory=list)

    def srcs(self) -> list[Path]:
        """Outputs other modules may reference directly (the signed image)."""
        image = self.output_files.get(PayloadType.IMAGE)
        return [image] if image is not None else []

    def installed_files(self) -> list[Path]:
        return [out for a in self.actions if a.install for out in a.outputs]


def bundle_out_dir(bundle: BundleModule, settings: Settings) -> Path:
    """Intermediates directory of a bundle."""
    return settings.out_dir / bundle.name / f"{bundle.target.variant_name}_{bundle.name}"


def bundle_install_dir(settings: Settings) -> Path:
    return settings.install_root / "apex"


def plan_staging(files: Sequence[PackagedFile], image_dir: Path) -> BuildAction:
    """Plan the copy of every file into a staging tree.

    Each file lands at <install_dir>/<basename>; each of its symlinks is
    created beside it, pointing at the file's base name.
    """
    copies: list[CopyInstruction] = []
    symlinks: list[SymlinkInstruction] = []
    for f in files:
        dest = image_dir / f.install_dir / f.built_file.name
        copies.append(CopyInstruction(source=f.built_file, dest=dest))
        for sym in f.symlinks:
            symlinks.append(SymlinkInstruction(target=dest.name, link=dest.parent / sym))
    return BuildAction(
        kind=ActionKind.STAGE,
        description=f"stage {image_dir.name}",
        outputs=[image_dir],
        inputs=[f.built_file for f in files],
        copies=copies,
        symlinks=symlinks,
    )


def _is_executable_dir(install_dir: str) -> bool:
    return install_dir == EXECUTABLES_DIR or install_dir.startswith(EXECUTABLES_DIR + "/")


def access_mode_partitions(files: Iterable[PackagedFile]) -> tuple[list[str], list[str]]:
    """Split in-bundle paths into read-only and executable partitions.

    Executables (anything under bin/) and their symlinks are executable, as
    is every directory on the way from a file up to the bundle root. Other
    files are read-only. Each path is listed once; both lists are sorted.

    Returns:
        Tuple of (read_only_paths, executable_paths).
    """
    read_only: set[str] = set()
    executable: set[str] = set()
    for f in files:
        path_in_bundle = f.path_in_bundle
        if _is_executable_dir(f.install_dir):
            executable.add(path_in_bundle)
            for sym in f.symlinks:
                executable.add((PurePosixPath(f.install_dir) / sym).as_posix())
        else:
            read_only.add(path_in_bundle)
        directory = PurePosixPath(f.install_dir)
        while directory != directory.parent:
            executable.add(directory.as_posix())
            directory = directory.parent
    return sorted(read_only), sorted(executable)


def canned_fs_config(read_only: Iterable[str], executable: Iterable[str]) -> str:
    """Render the access-mode manifest consumed by the image builder."""
    lines = [ROOT_FS_CONFIG, MANIFEST_FS_CONFIG]
    lines += [f"/{p} {READ_ONLY_MODE}" for p in read_only]
    lines += [f"/{p} {EXECUTABLE_MODE}" for p in executable]
    return "\n".join(lines) + "\n"


def file_contexts_path(bundle: BundleModule, settings: Settings) -> Path:
    """Resolve the security-label file of a bundle.

    Raises:
        FileContextsNotFoundError: If the file does not exist.
    """
    name = bundle.properties.file_contexts_name()
    path = settings.sepolicy_path / f"{name}-file_contexts"
    relative = f"{settings.sepolicy_dir}/{name}-file_contexts"
    if not path.is_file():
        raise FileContextsNotFoundError(bundle.name, relative)
    return path


def override_package_name(name: str, overrides: Iterable[str]) -> str | None:
    """Apply the first matching 'from:to' package name override.

    A '%' in the pattern matches any substring, which replaces '%' in the
    replacement.
    """
    for entry in overrides:
        pattern, sep, replacement = entry.partition(":")
        if not sep:
            continue
        if "%" not in pattern:
            if pattern == name:
                return replacement
            continue
        prefix, _, suffix = pattern.partition("%")
        if name.startswith(prefix) and name.endswith(suffix) and len(name) >= len(prefix) + len(suffix):
            stem = name[len(prefix) : len(name) - len(suffix)]
            return replacement.replace("%", stem, 1)
    return None


def target_abis(targets: Iterable[Target]) -> list[str]:
    """Primary ABI of each target, deduplicated in first-seen order."""
    abis: list[str] = []
    for target in targets:
        if target.abis and target.abis[0] not in abis:
            abis.append(target.abis[0])
    return abis


def apexer_image_command(
    settings: Settings,
    manifest: Path,
    file_contexts: Path,
    fs_config: Path,
    key_file: Path,
    image_dir: Path,
    output: Path,
    public_key_file: Path | None = None,
    package_name: str | None = None,
) -> list[str]:
    """Compose the image payload builder invocation."""
    cmd = [
        settings.apexer,
        "--force",
        "--manifest", str(manifest),
        "--file_contexts", str(file_contexts),
        "--canned_fs_config", str(fs_config),
        "--payload_type", PayloadType.IMAGE.value,
        "--key", str(key_file),
    ]
    if public_key_file is not None:
        cmd += ["--pubkey", str(public_key_file)]
    if package_name:
        cmd += ["--override_apk_package_name", package_name]
    cmd += [str(image_dir), str(output)]
    return cmd


def apexer_zip_command(
    settings: Settings, manifest: Path, image_dir: Path, output: Path
) -> list[str]:
    """Compose the zip payload builder invocation."""
    return [
        settings.apexer,
        "--force",
        "--manifest", str(manifest),
        "--payload_type", PayloadType.ZIP.value,
        str(image_dir),
        str(output),
    ]


def proto_convert_command(settings: Settings, source: Path, output: Path) -> list[str]:
    return [settings.aapt2, "convert", "--output-format", "proto", str(source), "-o", str(output)]


def bundle_module_command(
    settings: Settings, source: Path, output: Path, abis: Sequence[str]
) -> list[str]:
    """Compose the repackaging of a converted image into a distribution bundle."""
    return [
        settings.zip2zip,
        "-i", str(source),
        "-o", str(output),
        f"apex_payload.img:apex/{'.'.join(abis)}.img",
        "apex_manifest.json:root/apex_manifest.json",
        "AndroidManifest.xml:manifest/AndroidManifest.xml",
    ]


def signapk_command(
    settings: Settings, certificate: Certificate, source: Path, output: Path
) -> list[str]:
    return [
        settings.java,
        "-jar", settings.signapk_jar,
        "-a", SIGNING_ALIGNMENT,
        str(certificate.pem),
        str(certificate.key),
        str(source),
        str(output),
    ]


def _tool_env(settings: Settings) -> dict[str, str]:
    if settings.apexer_tool_path:
        return {"APEXER_TOOL_PATH": settings.apexer_tool_path}
    return {}


def plan_unflattened(
    bundle: BundleModule,
    collection: FileCollection,
    certificate: Certificate,
    payload: PayloadType,
    settings: Settings,
    file_contexts: Path | None = None,
) -> tuple[list[BuildAction], Path, Path | None]:
    """Plan the archive form of one payload type.

    Returns:
        Tuple of (actions, signed output, distribution bundle or None).
    """
    name = bundle.name
    out_dir = bundle_out_dir(bundle, settings)
    suffix = payload.suffix
    image_dir = out_dir / f"image{suffix}"
    unsigned = out_dir / f"{name}{suffix}.unsigned"
    manifest = bundle.manifest_path
    files = collection.files

    actions = [plan_staging(files, image_dir)]
    inputs = [f.built_file for f in files] + [manifest]
    bundle_module_file: Path | None = None

    if payload is PayloadType.IMAGE:
        if file_contexts is None:
            file_contexts = file_contexts_path(bundle, settings)
        read_only, executable = access_mode_partitions(files)
        fs_config = out_dir / "canned_fs_config"
        actions.append(
            BuildAction(
                kind=ActionKind.WRITE,
                description="generate fs config",
                outputs=[fs_config],
                content=canned_fs_config(read_only, executable),
            )
        )
        inputs += [fs_config, file_contexts, collection.key_file]
        if collection.public_key_file is not None:
            inputs.append(collection.public_key_file)
        package_name = override_package_name(name, settings.manifest_package_name_overrides)
        actions.append(
            BuildAction(
                kind=ActionKind.COMMAND,
                description=f"apex ({payload.value})",
                outputs=[unsigned],
                inputs=inputs,
                command=apexer_image_command(
                    settings,
                    manifest=manifest,
                    file_contexts=file_contexts,
                    fs_config=fs_config,
                    key_file=collection.key_file,
                    image_dir=image_dir,
                    output=unsigned,
                    public_key_file=collection.public_key_file,
                    package_name=package_name,
                ),
                env=_tool_env(settings),
            )
        )

        proto_file = out_dir / f"{name}.pb{suffix}"
        bundle_module_file = out_dir / f"{name}{suffix}-base.zip"
        actions.append(
            BuildAction(
                kind=ActionKind.COMMAND,
                description="apex proto convert",
                outputs=[proto_file],
                inputs=[unsigned],
                command=proto_convert_command(settings, unsigned, proto_file),
            )
        )
        actions.append(
            BuildAction(
                kind=ActionKind.COMMAND,
                description="apex bundle module",
                outputs=[bundle_module_file],
                inputs=[proto_file],
                command=bundle_module_command(
                    settings, proto_file, bundle_module_file, target_abis(bundle.multi_targets)
                ),
            )
        )
    else:
        actions.append(
            BuildAction(
                kind=ActionKind.COMMAND,
                description=f"apex ({payload.value})",
                outputs=[unsigned],
                inputs=inputs,
                command=apexer_zip_command(settings, manifest, image_dir, unsigned),
                env=_tool_env(settings),
            )
        )

    signed = out_dir / f"{name}{suffix}"
    actions.append(
        BuildAction(
            kind=ActionKind.COMMAND,
            description="signapk",
            outputs=[signed],
            inputs=[unsigned, certificate.pem, certificate.key],
            command=signapk_command(settings, certificate, unsigned, signed),
        )
    )

    if bundle.installable() and not settings.flatten_apex:
        actions.append(
            BuildAction(
                kind=ActionKind.COPY,
                description=f"install {signed.name}",
                outputs=[bundle_install_dir(settings) / f"{name}{suffix}"],
                inputs=[signed],
                install=True,
            )
        )
    return actions, signed, bundle_module_file


def plan_flattened(
    bundle: BundleModule,
    files: Sequence[PackagedFile],
    settings: Settings,
) -> tuple[list[BuildAction], list[PackagedFile]]:
    """Plan the flattened form of an installable bundle.

    The manifest is copied in as apex_manifest.json so the flattened tree
    describes itself; files are installed only when the build flattens
    bundles.

    Returns:
        Tuple of (actions, files of the flattened tree).
    """
    if not bundle.installable():
        return [], list(files)

    copied_manifest = bundle_out_dir(bundle, settings) / FLATTENED_MANIFEST_NAME
    actions = [
        BuildAction(
            kind=ActionKind.COPY,
            description=f"copy {bundle.properties.manifest_name()}",
            outputs=[copied_manifest],
            inputs=[bundle.manifest_path],
        )
    ]
    flattened_files = list(files) + [
        PackagedFile(
            built_file=copied_manifest,
            module_name=f"{bundle.name}.{FLATTENED_MANIFEST_NAME}",
            install_dir=".",
            file_class=FileClass.ETC,
        )
    ]

    if settings.flatten_apex:
        root = bundle_install_dir(settings) / bundle.name
        for f in flattened_files:
            dest = root / f.install_dir / f.built_file.name
            actions.append(
                BuildAction(
                    kind=ActionKind.COPY,
                    description=f"install {f.module_name}",
                    outputs=[dest],
                    inputs=[f.built_file],
                    install=True,
                )
            )
    return actions, flattened_files


def plan_bundle(
    bundle: BundleModule,
    collection: FileCollection,
    settings: Settings,
) -> BundlePlan:
    """Plan every build action of a bundle.

    Both archive forms are always planned, even for flattened builds, so
    other modules can reference the signed image directly; only what gets
    installed differs.

    Raises:
        InvalidPayloadTypeError: If the payload type is unknown.
        FileContextsNotFoundError: If an image payload is requested and the
            security-label file does not exist.
    """
    selection = bundle.properties.payload_selection()
    file_contexts = file_contexts_path(bundle, settings) if selection.image else None
    certificate = resolve_certificate(bundle, collection.certificate, settings)

    actions: list[BuildAction] = []
    output_files: dict[PayloadType, Path] = {}
    bundle_module_file: Path | None = None
    flattened_files = list(collection.files)

    if selection.zip:
        zip_actions, signed, _ = plan_unflattened(
            bundle, collection, certificate, PayloadType.ZIP, settings
        )
        actions += zip_actions
        output_files[PayloadType.ZIP] = signed
    if selection.image:
        image_actions, signed, bundle_module_file = plan_unflattened(
            bundle, collection, certificate, PayloadType.IMAGE, settings,
            file_contexts=file_contexts,
        )
        actions += image_actions
        output_files[PayloadType.IMAGE] = signed
        flat_actions, flattened_files = plan_flattened(bundle, collection.files, settings)
        actions += flat_actions

    logger.info(
        "Planned %d actions for %s (%s)", len(actions), bundle.name, selection.value
    )
    return BundlePlan(
        bundle=bundle.name,
        files=list(collection.files),
        flattened_files=flattened_files,
        actions=actions,
        output_files=output_files,
        bundle_module_file=bundle_module_file,
        flattened=settings.flattened,
        install_dir=bundle_install_dir(settings),
        errors=list(collection.errors),
    )


__all__ = [
    "EXECUTABLE_MODE",
    "READ_ONLY_MODE",
    "SIGNING_ALIGNMENT",
    "ActionKind",
    "BuildAction",
    "BundlePlan",
    "CopyInstruction",
    "SymlinkInstruction",
    "access_mode_partitions",
    "apexer_image_command",
    "apexer_zip_command",
    "bundle_install_dir",
    "bundle_module_command",
    "bundle_out_dir",
    "canned_fs_config",
    "file_contexts_path",
    "override_package_name",
    "plan_bundle",
    "plan_flattened",
    "plan_staging",
    "plan_unflattened",
    "proto_convert_command",
    "signapk_command",
    "target_abis",
]
