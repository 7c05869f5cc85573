"""Image assembler (export step).

This module handles:
- Discovering layers under the launch directory, in group order
- Building one deterministic layer archive per layer directory
- Reusing layers of the previous image when content is unchanged or when
  only a layer config was left behind
- Composing a new image from the base image plus the layers and labels

Export is all-or-nothing: any failure raises and no image is returned.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from packs_lifecycle.buildpacks.schema import is_valid_name
from packs_lifecycle.config import get_settings
from packs_lifecycle.errors import ExportError
from packs_lifecycle.images.models import Image, Layer
from packs_lifecycle.layers.archive import LayerArchive, build_layer, layer_prefix
from packs_lifecycle.metadata.codec import decode_image, metadata_labels
from packs_lifecycle.metadata.schema import BuildMetadata, LayerMetadata
from packs_lifecycle.metadata.sidecar import SIDECAR_SUFFIX, read_sidecar
from packs_lifecycle.types import LayerRef

if TYPE_CHECKING:
    from packs_lifecycle.buildpacks.schema import BuildpackGroup
    from packs_lifecycle.config import Settings

logger = logging.getLogger(__name__)

# Launch directory entries that never hold buildpack layers
RESERVED_DIRS = frozenset({"app", "config"})

CREATED_BY = "packs-lifecycle export"


@dataclass(frozen=True)
class PlannedLayer:
    """A layer found under the launch directory.

    Attributes:
        ref: Buildpack ID and layer name.
        directory: ``<launch>/<bp>/<layer>/``.
        sidecar: ``<launch>/<bp>/<layer>.toml``.
        has_directory: Whether the layer directory exists.
        has_sidecar: Whether the layer config exists.
    """

    ref: LayerRef
    directory: Path
    sidecar: Path
    has_directory: bool
    has_sidecar: bool


@dataclass
class ExportResult:
    """Result of an export.

    Attributes:
        image: The assembled image.
        metadata: Build metadata recorded in the image label.
        built: Layers archived from the launch directory.
        reused: Layers taken from the previous image.
        skipped: Layers with nothing to export.
    """

    image: Image
    metadata: BuildMetadata
    built: list[LayerRef] = field(default_factory=list)
    reused: list[LayerRef] = field(default_factory=list)
    skipped: list[LayerRef] = field(default_factory=list)


def _buildpack_dirs(launch_dir: Path, group: BuildpackGroup | None) -> list[str]:
    try:
        present = sorted(
            entry.name
            for entry in launch_dir.iterdir()
            if entry.is_dir() and entry.name not in RESERVED_DIRS
        )
    except OSError as e:
        raise ExportError(
            f"cannot read launch directory {launch_dir}: {e}",
            code="launch_dir_unreadable",
            operation="export",
        ) from e

    if group is None:
        invalid = [name for name in present if not is_valid_name(name)]
        if invalid:
            logger.warning("Ignoring directories with invalid names: %s", invalid)
        return [name for name in present if name not in invalid]

    ignored = [name for name in present if name not in group]
    if ignored:
        logger.warning("Ignoring directories for buildpacks not in group: %s", ignored)
    return [buildpack_id for buildpack_id in group.ids() if buildpack_id in present]


def plan_layers(
    launch_dir: Path, group: BuildpackGroup | None = None
) -> list[PlannedLayer]:
    """Discover the layers to export.

    With a group, buildpacks are walked in group order; otherwise by
    directory name. Within a buildpack, layers are the sorted union of
    layer directories and ``.toml`` layer configs. Layers whose names the
    next analyze could not restore are ignored with a warning.

    Args:
        launch_dir: Launch directory.
        group: Buildpack group, if known.

    Returns:
        Planned layers in export order.

    Raises:
        ExportError: If the launch directory cannot be read.
    """
    if not launch_dir.is_dir():
        raise ExportError(
            f"launch directory does not exist: {launch_dir}",
            code="launch_dir_missing",
            operation="export",
        )

    planned: list[PlannedLayer] = []
    for buildpack_id in _buildpack_dirs(launch_dir, group):
        buildpack_dir = launch_dir / buildpack_id
        directories: set[str] = set()
        sidecars: set[str] = set()
        try:
            for entry in buildpack_dir.iterdir():
                if entry.is_dir():
                    directories.add(entry.name)
                elif entry.is_file() and entry.name.endswith(SIDECAR_SUFFIX):
                    sidecars.add(entry.name.removesuffix(SIDECAR_SUFFIX))
        except OSError as e:
            raise ExportError(
                f"cannot read {buildpack_dir}: {e}",
                code="launch_dir_unreadable",
                operation="export",
            ) from e

        names = directories | sidecars
        invalid = sorted(name for name in names if not is_valid_name(name))
        if invalid:
            logger.warning(
                "Ignoring layers with invalid names in %s: %s", buildpack_id, invalid
            )

        for name in sorted(names.difference(invalid)):
            planned.append(
                PlannedLayer(
                    ref=LayerRef(buildpack_id, name),
                    directory=buildpack_dir / name,
                    sidecar=buildpack_dir / f"{name}{SIDECAR_SUFFIX}",
                    has_directory=name in directories,
                    has_sidecar=name in sidecars,
                )
            )
    return planned


def _build_archives(
    planned: list[PlannedLayer], image_launch_dir: str, max_workers: int
) -> list[LayerArchive | None]:
    def build(item: PlannedLayer) -> LayerArchive | None:
        if not item.has_directory:
            return None
        prefix = layer_prefix(image_launch_dir, item.ref.buildpack_id, item.ref.name)
        return build_layer(item.directory, prefix)

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        return list(pool.map(build, planned))


def _unchanged_layer(
    ref: LayerRef,
    archive: LayerArchive,
    previous_image: Image | None,
    previous_metadata: BuildMetadata,
) -> Layer | None:
    previous = previous_metadata.layer(ref)
    if previous_image is None or previous is None:
        return None
    if previous.diffid != archive.diff_id:
        return None
    return previous_image.layer_by_diff_id(archive.diff_id)


def _reuse_layer(
    ref: LayerRef,
    previous_image: Image | None,
    previous_metadata: BuildMetadata,
) -> Layer:
    previous = previous_metadata.layer(ref)
    if previous_image is None or previous is None:
        raise ExportError(
            f"layer {ref} has a config but no directory, and the previous image "
            "has no such layer to reuse",
            code="reuse_missing",
            operation="export",
        )
    layer = previous_image.layer_by_diff_id(previous.diffid)
    if layer is None:
        raise ExportError(
            f"previous image metadata lists {previous.diffid} for {ref}, "
            "but the image has no such layer",
            code="reuse_missing",
            operation="export",
        )
    return layer


def export(
    launch_dir: Path,
    base_image: Image,
    group: BuildpackGroup | None = None,
    previous_image: Image | None = None,
    settings: Settings | None = None,
) -> ExportResult:
    """Assemble a new image from the base image and the launch directory.

    For every planned layer, in order:

    - a non-empty layer directory becomes a new layer, unless its diffID
      matches the previous image's layer, which is then reused as-is
    - a layer config without a directory reuses the previous image's layer
    - an empty layer directory without config is skipped

    The result carries one layer per exported layer on top of the base
    image's layers, the per-layer labels and the metadata label. The base
    image is not modified.

    Args:
        launch_dir: Launch directory.
        base_image: Stack run image to build on.
        group: Buildpack group; when given, layers are exported in group order.
        previous_image: Previous image, for layer reuse.
        settings: Application settings.

    Returns:
        ExportResult with the new image.

    Raises:
        ExportError: If a layer cannot be exported or reused.
        LayerStoreError: If a layer archive cannot be built.
    """
    if settings is None:
        settings = get_settings()

    previous_metadata = BuildMetadata()
    if previous_image is not None:
        previous_metadata = decode_image(previous_image, settings.metadata_label)

    planned = plan_layers(launch_dir, group)
    logger.info("Exporting %d layer(s) from %s", len(planned), launch_dir)
    archives = _build_archives(planned, settings.image_launch_dir, settings.max_workers)

    result_layers: list[Layer] = []
    entries: list[tuple[LayerRef, LayerMetadata]] = []
    raw_configs: dict[LayerRef, str] = {}
    built: list[LayerRef] = []
    reused: list[LayerRef] = []
    skipped: list[LayerRef] = []

    for item, archive in zip(planned, archives, strict=True):
        ref = item.ref
        data: dict[str, Any] = {}
        if item.has_sidecar:
            data, raw_configs[ref] = read_sidecar(item.sidecar)

        if archive is not None:
            layer = _unchanged_layer(ref, archive, previous_image, previous_metadata)
            if layer is not None:
                reused.append(ref)
                logger.info("Reusing unchanged layer %s", ref)
            else:
                layer = Layer.from_archive(archive)
                built.append(ref)
                logger.info("Built layer %s (%s)", ref, layer.diff_id[:19])
        elif item.has_sidecar:
            layer = _reuse_layer(ref, previous_image, previous_metadata)
            reused.append(ref)
            logger.info("Reusing layer %s from previous image", ref)
        else:
            logger.warning("Layer %s is empty, skipping", ref)
            skipped.append(ref)
            raw_configs.pop(ref, None)
            continue

        result_layers.append(layer)
        entries.append((ref, LayerMetadata(data=data, diffid=layer.diff_id)))

    metadata = BuildMetadata.from_layers(entries)
    labels = metadata_labels(metadata, raw_configs, settings.metadata_label)
    try:
        image = base_image.with_layers(*result_layers, created_by=CREATED_BY)
    except ValueError as e:
        raise ExportError(str(e), code="image_compose_error", operation="export") from e
    image = image.with_labels(labels)

    logger.info(
        "Export complete: %d built, %d reused, %d skipped",
        len(built),
        len(reused),
        len(skipped),
    )
    return ExportResult(
        image=image, metadata=metadata, built=built, reused=reused, skipped=skipped
    )


__all__ = ["ExportResult", "PlannedLayer", "export", "plan_layers"]
