"""Build metadata serialization.

This module handles:
- Encoding build metadata to a canonical JSON label value
- Decoding label values (lenient: a bad label means "no cache")
- Decoding metadata documents supplied directly (strict)
- Rendering the per-layer labels exposed next to the metadata label

Encoding is canonical (sorted keys, no extra whitespace) so exporting
unchanged state yields byte-identical labels.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import tomli_w
from pydantic import ValidationError

from packs_lifecycle.errors import ExportError, MalformedInputError
from packs_lifecycle.metadata.schema import BuildMetadata

if TYPE_CHECKING:
    from packs_lifecycle.images.models import Image
    from packs_lifecycle.types import LayerRef

logger = logging.getLogger(__name__)

DEFAULT_METADATA_LABEL = "sh.packs.build"


def encode(metadata: BuildMetadata) -> str:
    """Encode build metadata as a canonical JSON string.

    Args:
        metadata: Build metadata to encode.

    Returns:
        JSON text with sorted keys and compact separators.
    """
    return json.dumps(
        metadata.model_dump(mode="json"),
        sort_keys=True,
        separators=(",", ":"),
    )


def decode(label: str | None) -> BuildMetadata:
    """Decode a metadata label value.

    A missing, empty or malformed label is not an error: it means there is
    no usable cache, so an empty BuildMetadata is returned.

    Args:
        label: Label value, or None if the image carries no such label.

    Returns:
        Decoded BuildMetadata (empty on any problem).
    """
    if not label:
        return BuildMetadata()
    try:
        return BuildMetadata.model_validate_json(label)
    except ValidationError as e:
        logger.warning(
            "Ignoring malformed build metadata label (%d error(s)), "
            "continuing without cache",
            e.error_count(),
        )
        return BuildMetadata()


def decode_document(text: str | bytes) -> BuildMetadata:
    """Decode a metadata document supplied directly (e.g. on stdin).

    Unlike :func:`decode`, a malformed document is fatal: the caller asked
    for exactly this metadata.

    Args:
        text: JSON document.

    Returns:
        Decoded BuildMetadata.

    Raises:
        MalformedInputError: If the document is not valid metadata JSON.
    """
    try:
        return BuildMetadata.model_validate_json(text)
    except ValidationError as e:
        raise MalformedInputError(
            f"invalid metadata document: {e}",
            code="invalid_metadata",
            operation="read metadata",
        ) from e


def decode_image(image: Image, label: str = DEFAULT_METADATA_LABEL) -> BuildMetadata:
    """Decode the metadata label of an image."""
    return decode(image.label(label))


def layer_label_prefix(ref: LayerRef) -> str:
    return f"{ref.buildpack_id}.{ref.name}"


def layer_labels(
    metadata: BuildMetadata,
    raw_configs: Mapping[LayerRef, str] | None = None,
) -> dict[str, str]:
    """Render the per-layer labels for every layer in the metadata.

    Each layer gets ``<buildpack-id>.<layer>.diffid`` and
    ``<buildpack-id>.<layer>.toml``. The TOML label holds the raw sidecar
    text when available, otherwise the layer data rendered as TOML.

    Args:
        metadata: Build metadata.
        raw_configs: Raw sidecar text keyed by layer reference.

    Returns:
        Mapping of label key to value.

    Raises:
        ExportError: If layer data cannot be rendered as TOML.
    """
    raw_configs = raw_configs or {}
    labels: dict[str, str] = {}
    for ref, meta in metadata.layers():
        prefix = layer_label_prefix(ref)
        labels[f"{prefix}.diffid"] = meta.diffid
        raw = raw_configs.get(ref)
        if raw is None:
            try:
                raw = tomli_w.dumps(meta.data)
            except TypeError as e:
                raise ExportError(
                    f"layer {ref} data cannot be rendered as TOML: {e}",
                    code="label_encode_error",
                    operation="encode labels",
                ) from e
        labels[f"{prefix}.toml"] = raw
    return labels


def metadata_labels(
    metadata: BuildMetadata,
    raw_configs: Mapping[LayerRef, str] | None = None,
    label: str = DEFAULT_METADATA_LABEL,
) -> dict[str, str]:
    """Render the metadata label plus all per-layer labels."""
    labels = layer_labels(metadata, raw_configs)
    labels[label] = encode(metadata)
    return labels


__all__ = [
    "DEFAULT_METADATA_LABEL",
    "decode",
    "decode_document",
    "decode_image",
    "encode",
    "layer_label_prefix",
    "layer_labels",
    "metadata_labels",
]
