"""Cache resolver (analyze step).

This module handles:
- Obtaining build metadata from a previous image or a supplied document
- Restoring each cached layer's config sidecar and content into the
  launch directory, for the buildpacks of the current group only
- Treating an inaccessible previous image as a cold cache
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from packs_lifecycle.buildpacks.schema import is_valid_name
from packs_lifecycle.config import get_settings
from packs_lifecycle.errors import (
    ConfigurationError,
    ImageAccessError,
    MalformedInputError,
)
from packs_lifecycle.layers.archive import extract_layer, layer_prefix
from packs_lifecycle.metadata.codec import decode_image
from packs_lifecycle.metadata.sidecar import sidecar_path, write_sidecar
from packs_lifecycle.types import LayerRef, Outcome

if TYPE_CHECKING:
    from packs_lifecycle.buildpacks.schema import BuildpackGroup
    from packs_lifecycle.config import Settings
    from packs_lifecycle.images.models import Image
    from packs_lifecycle.images.source import ImageSource
    from packs_lifecycle.metadata.schema import BuildMetadata

logger = logging.getLogger(__name__)


def _validate_layer_name(buildpack_id: str, name: str) -> None:
    if not is_valid_name(name):
        raise MalformedInputError(
            f"invalid layer name '{name}' for buildpack '{buildpack_id}'",
            code="invalid_layer_name",
            operation="analyze",
        )


def restore_layers(
    launch_dir: Path,
    group: BuildpackGroup,
    metadata: BuildMetadata,
    image: Image | None = None,
    image_launch_dir: str = "launch",
) -> list[LayerRef]:
    """Restore cached layers for the buildpacks in the group.

    For every buildpack in group order that has metadata, each layer's
    config is written to ``<launch>/<bp>/<layer>.toml``. When an image is
    given, the layer whose diffID is recorded in the metadata is extracted
    into ``<launch>/<bp>/<layer>/``. Buildpacks without metadata and
    metadata for buildpacks outside the group are skipped.

    Args:
        launch_dir: Launch directory.
        group: Current buildpack group.
        metadata: Build metadata to restore.
        image: Previous image holding the layer content.
        image_launch_dir: Location of the launch directory inside layers.

    Returns:
        References of the layers whose config was restored, in order.

    Raises:
        MalformedInputError: If the metadata names an unusable layer.
        AnalyzeError: If a config sidecar cannot be written.
        LayerStoreError: If layer content cannot be restored.
        ImageSourceError: If layer content cannot be fetched.
    """
    restored: list[LayerRef] = []
    for buildpack in group.buildpacks:
        layers = metadata.buildpack(buildpack.id)
        if not layers:
            logger.debug("No cached layers for %s", buildpack.id)
            continue

        buildpack_dir = launch_dir / buildpack.id
        for name in sorted(layers):
            _validate_layer_name(buildpack.id, name)
            ref = LayerRef(buildpack.id, name)
            layer_meta = layers[name]

            write_sidecar(sidecar_path(buildpack_dir, name), layer_meta.data)
            restored.append(ref)

            if image is None:
                continue
            layer = image.layer_by_diff_id(layer_meta.diffid)
            if layer is None:
                logger.warning(
                    "Layer %s (%s) is not in the previous image, "
                    "restoring config only",
                    ref,
                    layer_meta.diffid[:19],
                )
                continue

            count = extract_layer(
                layer.uncompressed(),
                buildpack_dir / name,
                layer_prefix(image_launch_dir, buildpack.id, name),
            )
            logger.info("Restored layer %s (%d entries)", ref, count)

    skipped = sorted(set(metadata.root) - set(group.ids()))
    if skipped:
        logger.debug("Ignoring metadata for buildpacks not in group: %s", skipped)
    return restored


def analyze(
    launch_dir: Path,
    group: BuildpackGroup,
    image: Image | None = None,
    metadata: BuildMetadata | None = None,
    settings: Settings | None = None,
) -> Outcome:
    """Restore cached layers from a previous image or a metadata document.

    Exactly one of ``image`` and ``metadata`` may be given. With neither,
    nothing is restored and a skipped outcome is returned.

    Args:
        launch_dir: Launch directory.
        group: Current buildpack group.
        image: Previous image; metadata is decoded from its label.
        metadata: Metadata supplied directly (no layer content restored).
        settings: Application settings.

    Returns:
        Outcome (ok, or skipped when there was nothing to restore from).

    Raises:
        ConfigurationError: If both image and metadata are given.
        LifecycleError: For any fatal restore failure.
    """
    if image is not None and metadata is not None:
        raise ConfigurationError(
            "a previous image and a metadata document are mutually exclusive",
            code="conflicting_inputs",
            operation="analyze",
        )
    if settings is None:
        settings = get_settings()

    if metadata is None:
        if image is None:
            logger.warning("No previous image or metadata, continuing without cache")
            return Outcome.skipped("no previous image or metadata")
        metadata = decode_image(image, settings.metadata_label)

    if metadata.is_empty():
        logger.info("No cached layers recorded, nothing to restore")
        return Outcome.ok("restored 0 layer(s)", restored=[])

    restored = restore_layers(
        launch_dir,
        group,
        metadata,
        image=image,
        image_launch_dir=settings.image_launch_dir,
    )
    logger.info("Analyze restored %d layer(s)", len(restored))
    return Outcome.ok(
        f"restored {len(restored)} layer(s)",
        restored=[str(ref) for ref in restored],
    )


def analyze_source(
    launch_dir: Path,
    group: BuildpackGroup,
    source: ImageSource,
    settings: Settings | None = None,
) -> Outcome:
    """Analyze against the image resolved from an image source.

    An image that does not exist or cannot be accessed is not an error: a
    warning is logged and a skipped outcome is returned.

    Raises:
        LifecycleError: For any other failure.
    """
    try:
        image = source.image()
    except ImageAccessError as e:
        logger.warning(
            "Skipping analyze, image not found or requires authentication "
            "to access: %s",
            e,
        )
        return Outcome.skipped(str(e), code=e.code)
    return analyze(launch_dir, group, image=image, settings=settings)


__all__ = ["analyze", "analyze_source", "restore_layers"]
