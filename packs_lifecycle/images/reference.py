"""Image reference parsing.

Follows the Docker conventions: the first path component names a registry
when it contains '.' or ':' or is 'localhost'; otherwise the image lives on
Docker Hub and single-component names get the 'library/' namespace.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from packs_lifecycle.errors import ConfigurationError

DOCKER_HUB_REGISTRY = "index.docker.io"
DOCKER_HUB_API_HOST = "registry-1.docker.io"
DEFAULT_TAG = "latest"

REPOSITORY_PATTERN = re.compile(r"^[a-z0-9]+(?:[._\-/]+[a-z0-9]+)*$")
TAG_PATTERN = re.compile(r"^[\w][\w.\-]{0,127}$")
DIGEST_PATTERN = re.compile(r"^sha256:[0-9a-f]{64}$")


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference.

    Attributes:
        registry: Registry host (with optional port).
        repository: Repository path within the registry.
        tag: Tag, when the reference is not by digest.
        digest: Manifest digest, when given.
    """

    registry: str
    repository: str
    tag: str | None = DEFAULT_TAG
    digest: str | None = None

    @property
    def api_host(self) -> str:
        if self.registry == DOCKER_HUB_REGISTRY:
            return DOCKER_HUB_API_HOST
        return self.registry

    @property
    def identifier(self) -> str:
        """Tag or digest used in manifest URLs."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def name(self) -> str:
        """Short name as the daemon knows it (registry omitted for Docker Hub)."""
        if self.registry == DOCKER_HUB_REGISTRY:
            repo = self.repository.removeprefix("library/")
        else:
            repo = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{repo}@{self.digest}"
        return f"{repo}:{self.tag or DEFAULT_TAG}"

    def __str__(self) -> str:
        if self.digest:
            return f"{self.registry}/{self.repository}@{self.digest}"
        return f"{self.registry}/{self.repository}:{self.tag}"


def parse_reference(value: str) -> ImageReference:
    """Parse an image reference such as 'registry:5000/org/app:v1'.

    Args:
        value: Reference string.

    Returns:
        ImageReference.

    Raises:
        ConfigurationError: If the reference is malformed.
    """
    ref = value.strip()
    if not ref:
        raise ConfigurationError("empty image reference", code="invalid_reference")

    digest: str | None = None
    if "@" in ref:
        ref, digest = ref.split("@", 1)
        if not DIGEST_PATTERN.match(digest):
            raise ConfigurationError(
                f"invalid digest in image reference '{value}'",
                code="invalid_reference",
            )

    tag: str | None = None
    last = ref.rsplit("/", 1)[-1]
    if ":" in last:
        ref, tag = ref.rsplit(":", 1)
        if not TAG_PATTERN.match(tag):
            raise ConfigurationError(
                f"invalid tag in image reference '{value}'",
                code="invalid_reference",
            )

    parts = ref.split("/", 1)
    head = parts[0]
    if len(parts) == 2 and ("." in head or ":" in head or head == "localhost"):
        registry, repository = parts
    else:
        registry, repository = DOCKER_HUB_REGISTRY, ref

    if registry in ("docker.io", DOCKER_HUB_API_HOST):
        registry = DOCKER_HUB_REGISTRY
    if registry == DOCKER_HUB_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"

    if not REPOSITORY_PATTERN.match(repository):
        raise ConfigurationError(
            f"invalid repository in image reference '{value}'",
            code="invalid_reference",
        )

    if digest is None and tag is None:
        tag = DEFAULT_TAG
    return ImageReference(
        registry=registry, repository=repository, tag=tag, digest=digest
    )


__all__ = [
    "DEFAULT_TAG",
    "DOCKER_HUB_API_HOST",
    "DOCKER_HUB_REGISTRY",
    "ImageReference",
    "parse_reference",
]
