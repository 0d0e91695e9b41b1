"""The bundle node of the module graph."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from apex_bundler.bundles.schema import BundleSchema
from apex_bundler.graph.modules import Module
from apex_bundler.types import Target


@dataclass(eq=False, repr=False)
class BundleModule(Module):
    """A bundle declared in the graph.

    Attributes:
        properties: Declared properties, with defaults already applied.
        multi_targets: Ordered architecture targets the bundle embeds
            native code for; index 0 is the primary target.
        source_dir: Directory the bundle was declared in; the manifest is
            resolved against it.
    """

    kind: ClassVar[str] = "apex"

    properties: BundleSchema = field(default_factory=lambda: BundleSchema(name="unnamed"))
    multi_targets: tuple[Target, ...] = ()
    source_dir: Path = Path()

    @property
    def test_apex(self) -> bool:
        return self.properties.test_apex

    def installable(self) -> bool:
        return self.properties.is_installable()

    @property
    def manifest_path(self) -> Path:
        return self.source_dir / self.properties.manifest_name()


__all__ = ["BundleModule"]
