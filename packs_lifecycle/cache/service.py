"""Analyze and export entry points.

This module provides the high-level lifecycle API used by the CLI:
- run_analyze(): restore the layer cache for a repository
- run_export(): assemble and save a new image for a repository

Both resolve image sources, apply the skip rules for inaccessible prior
images, and convert lifecycle errors into a fatal Outcome.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from packs_lifecycle.cache.analyzer import analyze, analyze_source
from packs_lifecycle.cache.exporter import export
from packs_lifecycle.config import get_settings
from packs_lifecycle.errors import ImageAccessError, LifecycleError
from packs_lifecycle.images.source import ImageSource, get_image_source
from packs_lifecycle.metadata.codec import decode_document
from packs_lifecycle.types import Outcome

if TYPE_CHECKING:
    from packs_lifecycle.buildpacks.schema import BuildpackGroup
    from packs_lifecycle.config import Settings
    from packs_lifecycle.images.models import Image

logger = logging.getLogger(__name__)

SourceFactory = Callable[[str], ImageSource]


def _source_factory(
    settings: Settings,
    use_daemon: bool | None,
    source_factory: SourceFactory | None,
) -> SourceFactory:
    if source_factory is not None:
        return source_factory
    return lambda name: get_image_source(name, settings, use_daemon=use_daemon)


def run_analyze(
    repo_name: str | None,
    group: BuildpackGroup,
    launch_dir: Path | None = None,
    metadata_text: str | bytes | None = None,
    settings: Settings | None = None,
    use_daemon: bool | None = None,
    source_factory: SourceFactory | None = None,
) -> Outcome:
    """Restore the layer cache for a repository.

    When ``metadata_text`` is given, metadata is read from it and only layer
    configs are restored. Otherwise the previous image is resolved from
    ``repo_name``.

    Args:
        repo_name: Repository the previous image is resolved from.
        group: Current buildpack group.
        launch_dir: Launch directory (defaults to settings.launch_dir).
        metadata_text: Metadata document supplied directly.
        settings: Application settings.
        use_daemon: Use the daemon instead of the registry.
        source_factory: Override for creating image sources.

    Returns:
        Outcome of the analyze step. Never raises for lifecycle errors.
    """
    if settings is None:
        settings = get_settings()
    if launch_dir is None:
        launch_dir = settings.launch_dir
    factory = _source_factory(settings, use_daemon, source_factory)

    try:
        if metadata_text is not None:
            metadata = decode_document(metadata_text)
            return analyze(launch_dir, group, metadata=metadata, settings=settings)
        if not repo_name:
            return analyze(launch_dir, group, settings=settings)
        with contextlib.closing(factory(repo_name)) as source:
            return analyze_source(launch_dir, group, source, settings=settings)
    except LifecycleError as e:
        logger.error("Analyze failed: %s", e)
        return Outcome.fatal(e)


def _previous_image(source: ImageSource) -> Image | None:
    try:
        return source.image()
    except ImageAccessError as e:
        logger.warning(
            "No previous image for %s, exporting without reuse: %s", source.name, e
        )
        return None


def run_export(
    repo_name: str,
    stack_name: str,
    group: BuildpackGroup | None = None,
    launch_dir: Path | None = None,
    settings: Settings | None = None,
    use_daemon: bool | None = None,
    source_factory: SourceFactory | None = None,
) -> Outcome:
    """Assemble a new image for a repository and save it.

    The base image is resolved from ``stack_name``; failing to resolve it
    is fatal. The previous image is resolved from ``repo_name`` for layer
    reuse; if it is missing or inaccessible the export proceeds without it.

    Args:
        repo_name: Repository to save the new image to.
        stack_name: Stack run image to build on.
        group: Buildpack group, if known.
        launch_dir: Launch directory (defaults to settings.launch_dir).
        settings: Application settings.
        use_daemon: Use the daemon instead of the registry.
        source_factory: Override for creating image sources.

    Returns:
        Outcome of the export step. Never raises for lifecycle errors.
    """
    if settings is None:
        settings = get_settings()
    if launch_dir is None:
        launch_dir = settings.launch_dir
    factory = _source_factory(settings, use_daemon, source_factory)

    try:
        with contextlib.ExitStack() as stack:
            stack_source = stack.enter_context(contextlib.closing(factory(stack_name)))
            repo_source = stack.enter_context(contextlib.closing(factory(repo_name)))

            base_image = stack_source.image()
            previous_image = _previous_image(repo_source)
            result = export(
                launch_dir,
                base_image,
                group=group,
                previous_image=previous_image,
                settings=settings,
            )
            image_id = repo_source.save(result.image)
    except LifecycleError as e:
        logger.error("Export failed: %s", e)
        return Outcome.fatal(e)

    logger.info("Saved %s (%s)", repo_name, image_id)
    return Outcome.ok(
        f"exported {repo_name}",
        image_id=image_id,
        built=[str(ref) for ref in result.built],
        reused=[str(ref) for ref in result.reused],
        skipped=[str(ref) for ref in result.skipped],
    )


__all__ = ["SourceFactory", "run_analyze", "run_export"]
