"""Pydantic models for build metadata.

Build metadata maps buildpack IDs to their layers, and each layer to its
metadata: the opaque config ``data`` declared in the layer's TOML sidecar and
the ``diffid`` of the filesystem layer assembled from its directory.

Shape::

    {"<buildpack-id>": {"<layer-name>": {"data": {...}, "diffid": "sha256:<hex>"}}}
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator

from packs_lifecycle.types import LayerRef

DIFF_ID_PATTERN = re.compile(r"^sha256:[0-9a-f]+$")


class LayerMetadata(BaseModel):
    """Metadata recorded for one layer.

    Attributes:
        data: Layer config, passed through without interpretation.
        diffid: Digest of the uncompressed layer archive.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    data: dict[str, Any] = Field(default_factory=dict)
    diffid: str

    @field_validator("diffid")
    @classmethod
    def validate_diffid(cls, v: str) -> str:
        """Validate the diffid is a sha256 digest reference."""
        if not DIFF_ID_PATTERN.match(v):
            raise ValueError(f"diffid must look like 'sha256:<hex>', got '{v}'")
        return v


BuildpackMetadata = dict[str, LayerMetadata]


class BuildMetadata(RootModel[dict[str, BuildpackMetadata]]):
    """Per-buildpack layer metadata for a whole build."""

    root: dict[str, BuildpackMetadata] = Field(default_factory=dict)

    @classmethod
    def from_layers(
        cls, layers: Iterable[tuple[LayerRef, LayerMetadata]]
    ) -> BuildMetadata:
        """Build metadata from (layer reference, metadata) pairs."""
        root: dict[str, BuildpackMetadata] = {}
        for ref, meta in layers:
            root.setdefault(ref.buildpack_id, {})[ref.name] = meta
        return cls(root)

    def buildpack(self, buildpack_id: str) -> BuildpackMetadata:
        """Return the layers recorded for a buildpack (empty if none)."""
        return dict(self.root.get(buildpack_id, {}))

    def layer(self, ref: LayerRef) -> LayerMetadata | None:
        return self.root.get(ref.buildpack_id, {}).get(ref.name)

    def layers(self) -> Iterator[tuple[LayerRef, LayerMetadata]]:
        """Iterate over all layers sorted by buildpack ID, then layer name."""
        for buildpack_id in sorted(self.root):
            layers = self.root[buildpack_id]
            for name in sorted(layers):
                yield LayerRef(buildpack_id, name), layers[name]

    def is_empty(self) -> bool:
        return not any(self.root.values())

    def __len__(self) -> int:
        return sum(len(layers) for layers in self.root.values())


__all__ = [
    "DIFF_ID_PATTERN",
    "BuildMetadata",
    "BuildpackMetadata",
    "LayerMetadata",
]
