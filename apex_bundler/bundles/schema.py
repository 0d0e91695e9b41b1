"""Pydantic models for bundle and module declarations.

This module defines the models used to validate declaration files
(YAML/JSON) before the module graph is built from them, and the
property merging applied for bundle defaults.
"""

from __future__ import annotations

import re
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from apex_bundler.bundles.errors import InvalidPayloadTypeError
from apex_bundler.types import (
    MultilibBucket,
    PayloadSelection,
    is_plain_name,
    is_relative_subdir,
)

MODULE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-+@]+$")

DEFAULT_MANIFEST = "apex_manifest.json"


def _validate_names(v: list[str]) -> list[str]:
    for item in v:
        if not item or not item.strip():
            raise ValueError("list items must be non-empty strings")
        if any(c.isspace() for c in item):
            raise ValueError(f"list items must not contain whitespace, got '{item}'")
    return v


def _validate_subdir(v: str | None) -> str | None:
    if v is not None and not is_relative_subdir(v):
        raise ValueError(f"must be a relative path inside the bundle, got '{v}'")
    return v


class NativeDependenciesSchema(BaseModel):
    """Native dependencies listed under one multilib bucket."""

    model_config = ConfigDict(extra="forbid")

    native_shared_libs: list[str] = Field(default_factory=list)
    binaries: list[str] = Field(default_factory=list)

    @field_validator("native_shared_libs", "binaries")
    @classmethod
    def validate_names(cls, v: list[str]) -> list[str]:
        return _validate_names(v)


class MultilibSchema(BaseModel):
    """Native dependencies per multilib bucket.

    The 32-bit and 64-bit buckets are also accepted under their declaration
    names "32" and "64".
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    first: NativeDependenciesSchema = Field(default_factory=NativeDependenciesSchema)
    both: NativeDependenciesSchema = Field(default_factory=NativeDependenciesSchema)
    prefer32: NativeDependenciesSchema = Field(default_factory=NativeDependenciesSchema)
    lib32: NativeDependenciesSchema = Field(
        default_factory=NativeDependenciesSchema, alias="32"
    )
    lib64: NativeDependenciesSchema = Field(
        default_factory=NativeDependenciesSchema, alias="64"
    )

    def bucket(self, bucket: MultilibBucket) -> NativeDependenciesSchema:
        """Return the dependencies declared under a bucket."""
        return getattr(self, bucket.value)

    def extended(self, other: MultilibSchema) -> MultilibSchema:
        """Return a copy with other's lists appended bucket by bucket."""
        merged: dict[str, NativeDependenciesSchema] = {}
        for bucket in MultilibBucket:
            mine, theirs = self.bucket(bucket), other.bucket(bucket)
            merged[bucket.value] = NativeDependenciesSchema(
                native_shared_libs=mine.native_shared_libs + theirs.native_shared_libs,
                binaries=mine.binaries + theirs.binaries,
            )
        return MultilibSchema.model_validate(merged)


class OsMultilibSchema(BaseModel):
    """Multilib properties that apply to one operating system only."""

    model_config = ConfigDict(extra="forbid")

    multilib: MultilibSchema = Field(default_factory=MultilibSchema)


class TargetPropertiesSchema(BaseModel):
    """Per-OS multilib properties of a bundle."""

    model_config = ConfigDict(extra="forbid")

    android: OsMultilibSchema = Field(default_factory=OsMultilibSchema)
    host: OsMultilibSchema = Field(default_factory=OsMultilibSchema)
    linux_bionic: OsMultilibSchema = Field(default_factory=OsMultilibSchema)
    linux_glibc: OsMultilibSchema = Field(default_factory=OsMultilibSchema)


class BundlePropertiesSchema(BaseModel):
    """Properties shared by bundles and bundle defaults.

    Attributes:
        manifest: JSON manifest describing the bundle (default
            apex_manifest.json, relative to the declaring directory).
        file_contexts: Name of the security-label file; the file used is
            <sepolicy_dir>/<value>-file_contexts. Defaults to the bundle name.
        native_shared_libs: Native shared libraries (implicitly multilib.both).
        binaries: Executables (implicitly multilib.first).
        java_libs: Java libraries.
        prebuilts: Prebuilt resource files (implicitly multilib.first).
        key: Name of the apex_key module providing the signing key.
        payload_type: 'image', 'zip' or 'both' (default image).
        certificate: Certificate name in the default directory, ':module'
            for an android_app_certificate module, or unset for the default.
        installable: Whether the bundle is installed (default true).
        use_vendor: Use vendor variants of native dependencies.
        ignore_system_library_special_case: Do not isolate libc/libm/libdl.
        multilib: Native dependencies per multilib bucket.
        target: Per-OS multilib properties.
    """

    model_config = ConfigDict(extra="forbid")

    manifest: str | None = None
    file_contexts: str | None = None
    native_shared_libs: list[str] = Field(default_factory=list)
    binaries: list[str] = Field(default_factory=list)
    java_libs: list[str] = Field(default_factory=list)
    prebuilts: list[str] = Field(default_factory=list)
    key: str | None = None
    payload_type: str | None = None
    certificate: str | None = None
    installable: bool | None = None
    use_vendor: bool | None = None
    ignore_system_library_special_case: bool | None = None
    multilib: MultilibSchema = Field(default_factory=MultilibSchema)
    target: TargetPropertiesSchema = Field(default_factory=TargetPropertiesSchema)

    @field_validator("native_shared_libs", "binaries", "java_libs", "prebuilts")
    @classmethod
    def validate_names(cls, v: list[str]) -> list[str]:
        return _validate_names(v)


class BundleDefaultsSchema(BundlePropertiesSchema):
    """An apex_defaults declaration."""

    type: Literal["apex_defaults"] = "apex_defaults"
    name: Annotated[str, Field(min_length=1, max_length=255)]


class BundleSchema(BundlePropertiesSchema):
    """An apex or apex_test declaration."""

    type: Literal["apex", "apex_test"] = "apex"
    name: Annotated[str, Field(min_length=1, max_length=255)]
    defaults: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not MODULE_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {MODULE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @property
    def test_apex(self) -> bool:
        return self.type == "apex_test"

    def is_installable(self) -> bool:
        return self.installable is None or self.installable

    def manifest_name(self) -> str:
        return self.manifest or DEFAULT_MANIFEST

    def file_contexts_name(self) -> str:
        return self.file_contexts or self.name

    def payload_selection(self) -> PayloadSelection:
        """Resolve the declared payload type.

        Raises:
            InvalidPayloadTypeError: If the value is not image, zip or both.
        """
        if self.payload_type is None:
            return PayloadSelection.IMAGE
        try:
            return PayloadSelection(self.payload_type)
        except ValueError:
            raise InvalidPayloadTypeError(self.name, self.payload_type) from None

    def with_defaults(self, defaults: list[BundleDefaultsSchema]) -> BundleSchema:
        """Apply defaults declarations to this bundle.

        Lists from defaults are prepended, in the order the defaults are
        named; scalar properties are taken from defaults only where this
        bundle leaves them unset.
        """
        merged: dict[str, Any] = {}
        for default in defaults:
            merged = merge_properties(
                merged, default.model_dump(exclude={"type", "name"}, exclude_unset=True)
            )
        merged = merge_properties(merged, self.model_dump(exclude_unset=True))
        return BundleSchema.model_validate(merged)


def merge_properties(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge two property dictionaries.

    Lists are concatenated (base first), mappings are merged recursively,
    and other values from override win unless they are None.
    """
    result = dict(base)
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, list) and isinstance(value, list):
            result[key] = current + value
        elif isinstance(current, dict) and isinstance(value, dict):
            result[key] = merge_properties(current, value)
        elif value is not None or key not in result:
            result[key] = value
    return result


# Module declarations


class ModuleDeclBase(BaseModel):
    """Fields shared by every module declaration."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not MODULE_NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {MODULE_NAME_PATTERN.pattern}, got '{v}'"
            )
        return v


class StubsSchema(BaseModel):
    """Versioned stubs published by a native library."""

    model_config = ConfigDict(extra="forbid")

    versions: list[str] = Field(default_factory=list)


class CcLibraryDecl(ModuleDeclBase):
    """A cc_library / cc_library_shared / llndk_library declaration."""

    type: Literal["cc_library", "cc_library_shared", "llndk_library"]
    shared_libs: list[str] = Field(default_factory=list)
    relative_install_path: str | None = None
    stubs: StubsSchema | None = None
    installable: bool | None = None
    vendor_available: bool | None = None
    stem: str | None = None

    @field_validator("relative_install_path")
    @classmethod
    def validate_install_path(cls, v: str | None) -> str | None:
        return _validate_subdir(v)


class CcBinaryDecl(ModuleDeclBase):
    """A cc_binary declaration."""

    type: Literal["cc_binary"]
    shared_libs: list[str] = Field(default_factory=list)
    symlinks: list[str] = Field(default_factory=list)
    relative_install_path: str | None = None
    vendor_available: bool | None = None
    stem: str | None = None

    @field_validator("symlinks")
    @classmethod
    def validate_symlinks(cls, v: list[str]) -> list[str]:
        for name in v:
            if not is_plain_name(name):
                raise ValueError(f"symlinks must be plain file names, got '{name}'")
        return v

    @field_validator("relative_install_path")
    @classmethod
    def validate_install_path(cls, v: str | None) -> str | None:
        return _validate_subdir(v)


class ShBinaryDecl(ModuleDeclBase):
    """A sh_binary declaration."""

    type: Literal["sh_binary"]
    src: str
    sub_dir: str | None = None
    filename: str | None = None

    @field_validator("sub_dir")
    @classmethod
    def validate_sub_dir(cls, v: str | None) -> str | None:
        return _validate_subdir(v)


class JavaLibraryDecl(ModuleDeclBase):
    """A java_library declaration."""

    type: Literal["java_library"]
    libs: list[str] = Field(default_factory=list)
    installable: bool | None = None
    compile_dex: bool | None = None


class PrebuiltEtcDecl(ModuleDeclBase):
    """A prebuilt_etc declaration."""

    type: Literal["prebuilt_etc"]
    src: str
    sub_dir: str | None = None
    filename: str | None = None

    @field_validator("sub_dir")
    @classmethod
    def validate_sub_dir(cls, v: str | None) -> str | None:
        return _validate_subdir(v)


class ApexKeyDecl(ModuleDeclBase):
    """An apex_key declaration."""

    type: Literal["apex_key"]
    public_key: str
    private_key: str
    installable: bool | None = None


class AppCertificateDecl(ModuleDeclBase):
    """An android_app_certificate declaration.

    The certificate pair is <certificate>.x509.pem and <certificate>.pk8.
    """

    type: Literal["android_app_certificate"]
    certificate: str


ModuleDecl = Annotated[
    CcLibraryDecl
    | CcBinaryDecl
    | ShBinaryDecl
    | JavaLibraryDecl
    | PrebuiltEtcDecl
    | ApexKeyDecl
    | AppCertificateDecl
    | BundleSchema
    | BundleDefaultsSchema,
    Field(discriminator="type"),
]


class DeclarationFileSchema(BaseModel):
    """Top-level shape of a declaration file."""

    model_config = ConfigDict(extra="forbid")

    modules: list[ModuleDecl] = Field(default_factory=list)


__all__ = [
    "DEFAULT_MANIFEST",
    "AppCertificateDecl",
    "ApexKeyDecl",
    "BundleDefaultsSchema",
    "BundlePropertiesSchema",
    "BundleSchema",
    "CcBinaryDecl",
    "CcLibraryDecl",
    "DeclarationFileSchema",
    "JavaLibraryDecl",
    "ModuleDecl",
    "MultilibSchema",
    "NativeDependenciesSchema",
    "PrebuiltEtcDecl",
    "ShBinaryDecl",
    "StubsSchema",
    "merge_properties",
]
