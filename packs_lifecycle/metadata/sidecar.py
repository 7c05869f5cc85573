"""Layer config sidecar files.

Each layer directory ``<launch>/<buildpack-id>/<layer>/`` may have a sibling
``<layer>.toml`` holding the layer's declared config.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from packs_lifecycle.errors import AnalyzeError, ExportError

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".toml"


def sidecar_path(buildpack_dir: Path, layer_name: str) -> Path:
    return buildpack_dir / f"{layer_name}{SIDECAR_SUFFIX}"


def write_sidecar(path: Path, data: dict[str, Any]) -> None:
    """Write layer config data as a TOML sidecar.

    Args:
        path: Sidecar file path.
        data: Layer config data.

    Raises:
        AnalyzeError: If the data cannot be rendered or written.
    """
    try:
        text = tomli_w.dumps(data)
    except TypeError as e:
        raise AnalyzeError(
            f"layer config for {path.name} cannot be rendered as TOML: {e}",
            code="sidecar_encode_error",
            operation="write layer config",
        ) from e

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise AnalyzeError(
            f"cannot write {path}: {e}",
            code="sidecar_write_error",
            operation="write layer config",
        ) from e
    logger.debug("Wrote layer config %s", path)


def read_sidecar(path: Path) -> tuple[dict[str, Any], str]:
    """Read a TOML sidecar.

    Args:
        path: Sidecar file path.

    Returns:
        Tuple of (parsed data, raw text).

    Raises:
        ExportError: If the file cannot be read or is not valid TOML.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ExportError(
            f"cannot read {path}: {e}",
            code="sidecar_read_error",
            operation="read layer config",
        ) from e
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError as e:
        raise ExportError(
            f"{path} is not valid TOML: {e}",
            code="sidecar_invalid",
            operation="read layer config",
        ) from e
    return data, raw


__all__ = ["SIDECAR_SUFFIX", "read_sidecar", "sidecar_path", "write_sidecar"]
