"""Pydantic models for the buildpack group.

The group is the ordered list of buildpacks chosen by detection. Order is
significant: buildpacks restore and export in group order. Buildpack IDs
become directory names under the launch directory and prefixes of image
labels, so they are validated accordingly.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

BUILDPACK_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")


def is_valid_name(name: str) -> bool:
    """Check a buildpack ID or layer name is usable as a directory and label part."""
    return bool(BUILDPACK_ID_PATTERN.match(name)) and name not in (".", "..")


class Buildpack(BaseModel):
    """A single buildpack descriptor.

    Attributes:
        id: Stable buildpack identifier (e.g. 'io.buildpacks.node').
        version: Buildpack version string.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str = Field(description="Buildpack identifier")
    version: str = Field(default="", description="Buildpack version")

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Validate the ID is usable as a directory name."""
        if not is_valid_name(v):
            raise ValueError(
                f"buildpack id must match {BUILDPACK_ID_PATTERN.pattern}, got '{v}'"
            )
        return v


class BuildpackGroup(BaseModel):
    """Ordered sequence of buildpacks."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    buildpacks: tuple[Buildpack, ...] = Field(default_factory=tuple)

    @field_validator("buildpacks")
    @classmethod
    def validate_unique(cls, v: tuple[Buildpack, ...]) -> tuple[Buildpack, ...]:
        """Reject a group listing the same buildpack twice."""
        seen: set[str] = set()
        for bp in v:
            if bp.id in seen:
                raise ValueError(f"buildpack '{bp.id}' appears more than once")
            seen.add(bp.id)
        return v

    def ids(self) -> list[str]:
        """Return buildpack IDs in group order."""
        return [bp.id for bp in self.buildpacks]

    def __contains__(self, buildpack_id: object) -> bool:
        return any(bp.id == buildpack_id for bp in self.buildpacks)

    def __len__(self) -> int:
        return len(self.buildpacks)


__all__ = ["BUILDPACK_ID_PATTERN", "Buildpack", "BuildpackGroup", "is_valid_name"]
