"""Configuration settings for apex_bundler.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Architectures the module graph knows how to build for, with their bitness
# bucket and primary ABI.
KNOWN_ARCHES: dict[str, tuple[str, str]] = {
    "arm": ("lib32", "armeabi-v7a"),
    "arm64": ("lib64", "arm64-v8a"),
    "x86": ("lib32", "x86"),
    "x86_64": ("lib64", "x86_64"),
}


def _default_out_dir() -> Path:
    """Return the default output directory for intermediates."""
    return Path.cwd() / "out" / "soong" / ".intermediates"


def _default_install_root() -> Path:
    """Return the default installation root."""
    return Path.cwd() / "out" / "target" / "product" / "generic"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the APEX_BUNDLER_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="APEX_BUNDLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    source_root: Path = Field(
        default_factory=Path.cwd,
        description="Root of the source tree declarations are resolved against",
    )
    out_dir: Path = Field(
        default_factory=_default_out_dir,
        description="Root directory for per-module build intermediates",
    )
    install_root: Path = Field(
        default_factory=_default_install_root,
        description="Root of the installation tree",
    )
    sepolicy_dir: str = Field(
        default="system/sepolicy/apex",
        description="Directory (relative to source_root) holding file_contexts files",
    )
    default_cert_dir: str = Field(
        default="build/make/target/product/security",
        description="Directory (relative to source_root) holding named certificates",
    )
    default_certificate: str = Field(
        default="testkey",
        description="Certificate used when a bundle does not name one",
    )

    # Targets
    targets: list[str] = Field(
        default_factory=lambda: ["arm64", "arm"],
        description="Ordered architecture targets; the first one is primary",
    )
    native_bridge_targets: list[str] = Field(
        default_factory=list,
        description="Translated architecture targets appended after native ones",
    )
    target_os: Literal["android", "linux_glibc", "linux_bionic"] = Field(
        default="android",
        description="Operating system bundles are built for",
    )

    # Build flavour
    debuggable: bool = Field(
        default=False,
        description="Debuggable (eng/userdebug) build; allows embedding public keys",
    )
    flatten_apex: bool = Field(
        default=False,
        description="Install bundles as flattened directory trees",
    )
    unbundled_build: bool = Field(
        default=False,
        description="Unbundled build; bundles are never marked flattened",
    )
    vndk_version: str = Field(
        default="",
        description="VNDK version; enables vendor variants for use_vendor bundles",
    )
    manifest_package_name_overrides: list[str] = Field(
        default_factory=list,
        description="Package name overrides as 'from:to' entries ('%' wildcard)",
    )

    # Tools
    apexer: str = Field(default="apexer", description="Image/zip builder tool")
    aapt2: str = Field(default="aapt2", description="Format conversion tool")
    zip2zip: str = Field(default="zip2zip", description="Format repackaging tool")
    java: str = Field(default="java", description="Java launcher for the signer")
    signapk_jar: str = Field(
        default="signapk.jar", description="Path to the signing tool jar"
    )
    apexer_tool_path: str = Field(
        default="",
        description="Search path exported as APEXER_TOOL_PATH to the builder",
    )

    # Operational
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    max_concurrent_bundles: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Maximum bundles planned concurrently",
    )
    action_timeout: int = Field(
        default=1800,
        ge=1,
        description="Timeout in seconds for a single external tool invocation",
    )

    @field_validator("targets", "native_bridge_targets")
    @classmethod
    def validate_arches(cls, v: list[str]) -> list[str]:
        """Validate that every target is a known architecture."""
        for arch in v:
            if arch not in KNOWN_ARCHES:
                raise ValueError(
                    f"unknown architecture '{arch}', expected one of {sorted(KNOWN_ARCHES)}"
                )
        return v

    @property
    def sepolicy_path(self) -> Path:
        return self.source_root / self.sepolicy_dir

    @property
    def cert_dir(self) -> Path:
        return self.source_root / self.default_cert_dir

    @property
    def flattened(self) -> bool:
        """Whether bundles are marked as flattened for this build."""
        return self.flatten_apex and not self.unbundled_build


def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["KNOWN_ARCHES", "Settings", "get_settings", "print_settings_json"]
