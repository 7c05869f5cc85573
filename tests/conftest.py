"""Shared fixtures for packs_lifecycle tests."""

from pathlib import Path

import pytest

from packs_lifecycle.buildpacks.schema import Buildpack, BuildpackGroup
from packs_lifecycle.config import Settings


@pytest.fixture
def launch_dir(tmp_path: Path) -> Path:
    """Empty launch directory."""
    path = tmp_path / "launch"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, launch_dir: Path) -> Settings:
    """Settings pointing at temporary paths, with no retries."""
    return Settings(
        launch_dir=launch_dir,
        group_path=tmp_path / "group.toml",
        max_workers=2,
        fetch_retries=0,
    )


@pytest.fixture
def group() -> BuildpackGroup:
    """Two-buildpack group."""
    return BuildpackGroup(
        buildpacks=(Buildpack(id="bp.A", version="1.0"), Buildpack(id="bp.B"))
    )
