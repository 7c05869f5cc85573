"""Immutable image and layer values.

An Image is an OCI image config plus an ordered tuple of layers. Images are
never modified in place: ``with_layers`` and ``with_labels`` return new
Image values built on a deep copy of the config, so a base image can be
shared between exports safely.

Layer content is loaded lazily through an opener callable, so images
resolved from a registry or daemon only transfer the blobs actually used.
"""

from __future__ import annotations

import copy
import gzip
import hashlib
import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from packs_lifecycle.errors import LayerStoreError
from packs_lifecycle.layers.archive import LayerArchive

# Media types
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
OCI_INDEX = "application/vnd.oci.image.index.v1+json"
OCI_CONFIG = "application/vnd.oci.image.config.v1+json"
OCI_LAYER = "application/vnd.oci.image.layer.v1.tar"
OCI_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
DOCKER_LAYER = "application/vnd.docker.image.rootfs.diff.tar"
DOCKER_LAYER_GZIP = "application/vnd.docker.image.rootfs.diff.tar.gzip"

UNCOMPRESSED_LAYER_TYPES = frozenset({OCI_LAYER, DOCKER_LAYER})
GZIP_LAYER_TYPES = frozenset({OCI_LAYER_GZIP, DOCKER_LAYER_GZIP})


def sha256_digest(data: bytes) -> str:
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


@dataclass(frozen=True)
class Layer:
    """A filesystem layer of an image.

    Attributes:
        diff_id: Digest of the uncompressed layer archive.
        digest: Digest of the blob as stored (equals diff_id when uncompressed).
        size: Size of the stored blob in bytes, if known.
        media_type: Media type of the stored blob.
        opener: Callable returning the stored blob bytes.
    """

    diff_id: str
    digest: str
    size: int | None
    media_type: str
    opener: Callable[[], bytes] = field(repr=False, compare=False)

    @classmethod
    def from_archive(cls, archive: LayerArchive) -> Layer:
        """Wrap a freshly built archive as an uncompressed OCI layer."""
        data = archive.data
        return cls(
            diff_id=archive.diff_id,
            digest=archive.diff_id,
            size=archive.size,
            media_type=OCI_LAYER,
            opener=lambda: data,
        )

    def blob(self) -> bytes:
        """Return the blob bytes as stored."""
        return self.opener()

    def uncompressed(self) -> bytes:
        """Return the uncompressed tar archive.

        Raises:
            LayerStoreError: If the blob uses an unsupported compression.
        """
        if self.media_type in UNCOMPRESSED_LAYER_TYPES:
            return self.blob()
        if self.media_type in GZIP_LAYER_TYPES:
            try:
                return gzip.decompress(self.blob())
            except (OSError, EOFError) as e:
                raise LayerStoreError(
                    f"layer {self.digest} is not valid gzip: {e}",
                    code="layer_decompress_error",
                    operation="read layer",
                ) from e
        raise LayerStoreError(
            f"unsupported layer media type: {self.media_type}",
            code="unsupported_media_type",
            operation="read layer",
        )

    def descriptor(self) -> dict[str, Any]:
        """Return the manifest descriptor for this layer."""
        size = self.size if self.size is not None else len(self.blob())
        return {"mediaType": self.media_type, "digest": self.digest, "size": size}


def _empty_config(os_name: str, architecture: str) -> dict[str, Any]:
    return {
        "architecture": architecture,
        "os": os_name,
        "config": {},
        "rootfs": {"type": "layers", "diff_ids": []},
        "history": [],
    }


@dataclass(frozen=True)
class Image:
    """An OCI image: config document plus ordered layers.

    Attributes:
        config: Image config document (copied on construction).
        layers: Layers in application order.
    """

    config: Mapping[str, Any]
    layers: tuple[Layer, ...] = ()

    def __post_init__(self) -> None:
        config = copy.deepcopy(dict(self.config))
        rootfs = config.setdefault("rootfs", {"type": "layers", "diff_ids": []})
        diff_ids = list(rootfs.get("diff_ids") or [])
        rootfs["diff_ids"] = diff_ids
        layers = tuple(self.layers)
        if diff_ids != [layer.diff_id for layer in layers]:
            raise ValueError(
                f"image config lists {len(diff_ids)} diff_ids but "
                f"{len(layers)} layers were given, or their order differs"
            )
        object.__setattr__(self, "config", config)
        object.__setattr__(self, "layers", layers)

    @classmethod
    def empty(cls, os_name: str = "linux", architecture: str = "amd64") -> Image:
        """Return an image with no layers and no labels."""
        return cls(config=_empty_config(os_name, architecture))

    def config_file(self) -> dict[str, Any]:
        """Return a deep copy of the config document."""
        return copy.deepcopy(dict(self.config))

    @property
    def labels(self) -> dict[str, str]:
        return dict((self.config.get("config") or {}).get("Labels") or {})

    def label(self, key: str) -> str | None:
        return self.labels.get(key)

    @property
    def diff_ids(self) -> list[str]:
        return [layer.diff_id for layer in self.layers]

    def layer_by_diff_id(self, diff_id: str) -> Layer | None:
        for layer in self.layers:
            if layer.diff_id == diff_id:
                return layer
        return None

    def with_layers(self, *layers: Layer, created_by: str | None = None) -> Image:
        """Return a new image with layers appended."""
        config = self.config_file()
        config["rootfs"]["diff_ids"].extend(layer.diff_id for layer in layers)
        history = config.setdefault("history", [])
        for _ in layers:
            entry: dict[str, Any] = {}
            if created_by:
                entry["created_by"] = created_by
            history.append(entry)
        return Image(config=config, layers=self.layers + tuple(layers))

    def with_labels(self, labels: Mapping[str, str]) -> Image:
        """Return a new image with labels merged over the existing ones."""
        config = self.config_file()
        container_config = config.setdefault("config", {})
        merged = dict(container_config.get("Labels") or {})
        merged.update(labels)
        container_config["Labels"] = merged
        return Image(config=config, layers=self.layers)

    def config_bytes(self) -> bytes:
        """Serialize the config document canonically."""
        return json.dumps(
            self.config, sort_keys=True, separators=(",", ":")
        ).encode("utf-8")

    def config_digest(self) -> str:
        return sha256_digest(self.config_bytes())

    def manifest(self) -> dict[str, Any]:
        """Return the OCI image manifest for this image."""
        config_bytes = self.config_bytes()
        return {
            "schemaVersion": 2,
            "mediaType": OCI_MANIFEST,
            "config": {
                "mediaType": OCI_CONFIG,
                "digest": sha256_digest(config_bytes),
                "size": len(config_bytes),
            },
            "layers": [layer.descriptor() for layer in self.layers],
        }


__all__ = [
    "DOCKER_LAYER",
    "DOCKER_LAYER_GZIP",
    "DOCKER_MANIFEST",
    "DOCKER_MANIFEST_LIST",
    "GZIP_LAYER_TYPES",
    "OCI_CONFIG",
    "OCI_INDEX",
    "OCI_LAYER",
    "OCI_LAYER_GZIP",
    "OCI_MANIFEST",
    "UNCOMPRESSED_LAYER_TYPES",
    "Image",
    "Layer",
    "sha256_digest",
]
