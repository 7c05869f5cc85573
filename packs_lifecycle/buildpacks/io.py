"""Loading buildpack groups from TOML files."""

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from packs_lifecycle.buildpacks.schema import BuildpackGroup
from packs_lifecycle.errors import MalformedInputError

logger = logging.getLogger(__name__)


def parse_group_data(data: dict[str, Any]) -> BuildpackGroup:
    """Validate parsed group data.

    Args:
        data: Dictionary with a 'buildpacks' list.

    Returns:
        Validated BuildpackGroup.

    Raises:
        MalformedInputError: If the data does not match the schema.
    """
    try:
        return BuildpackGroup.model_validate(data)
    except ValidationError as e:
        raise MalformedInputError(
            f"invalid buildpack group: {e}",
            code="invalid_group",
            operation="read group",
        ) from e


def load_group(path: Path) -> BuildpackGroup:
    """Load a buildpack group from a TOML file.

    The file has the shape::

        [[buildpacks]]
        id = "io.buildpacks.node"
        version = "1.0.0"

    Args:
        path: Path to the group file.

    Returns:
        Validated BuildpackGroup.

    Raises:
        MalformedInputError: If the file is missing, not TOML, or invalid.
    """
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except OSError as e:
        raise MalformedInputError(
            f"cannot read {path}: {e}",
            code="group_unreadable",
            operation="read group",
        ) from e
    except tomllib.TOMLDecodeError as e:
        raise MalformedInputError(
            f"{path} is not valid TOML: {e}",
            code="invalid_group",
            operation="read group",
        ) from e

    group = parse_group_data(data)
    logger.debug("Loaded group with %d buildpack(s) from %s", len(group), path)
    return group


__all__ = ["load_group", "parse_group_data"]
