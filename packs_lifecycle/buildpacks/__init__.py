"""Buildpack group module.

This module handles:
- The ordered buildpack group model
- Loading groups from TOML files
"""

from packs_lifecycle.buildpacks.io import load_group
from packs_lifecycle.buildpacks.schema import Buildpack, BuildpackGroup

__all__ = ["Buildpack", "BuildpackGroup", "load_group"]
