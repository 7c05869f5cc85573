"""Daemon-backed image source.

This module handles:
- Talking to the local image store through the docker SDK
- Resolving an image's config from the daemon's inspect document
- Loading layer content lazily from a docker-save tarball
- Saving images by loading a docker-save tarball into the daemon
"""

from __future__ import annotations

import functools
import gzip
import io
import json
import logging
import tarfile
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import docker
from docker.errors import APIError, DockerException, ImageNotFound

from packs_lifecycle.errors import (
    ImageNotFoundError,
    ImageSaveError,
    ImageSourceError,
)
from packs_lifecycle.images.models import DOCKER_LAYER, Image, Layer, sha256_digest
from packs_lifecycle.images.reference import ImageReference, parse_reference
from packs_lifecycle.images.source import get_with_retries

if TYPE_CHECKING:
    from packs_lifecycle.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

GZIP_MAGIC = b"\x1f\x8b"


def build_daemon_client(docker_host: str, timeout: int) -> docker.DockerClient:
    """Create a docker client for a daemon endpoint.

    Args:
        docker_host: 'unix:///path/to/socket', 'tcp://host:port' or an http(s) URL.
        timeout: Request timeout in seconds.

    Returns:
        Connected docker.DockerClient.

    Raises:
        ImageSourceError: If the endpoint is unsupported or unreachable.
    """
    try:
        return docker.DockerClient(base_url=docker_host, timeout=timeout)
    except DockerException as e:
        raise ImageSourceError(
            f"cannot connect to daemon at {docker_host}: {e}",
            code="daemon_unavailable",
            operation="connect daemon",
        ) from e


def config_from_inspect(inspect: dict[str, Any]) -> dict[str, Any]:
    """Build an OCI image config from a daemon inspect document."""
    rootfs = inspect.get("RootFS") or {}
    return {
        "architecture": inspect.get("Architecture", ""),
        "os": inspect.get("Os", ""),
        "config": dict(inspect.get("Config") or {}),
        "rootfs": {"type": "layers", "diff_ids": list(rootfs.get("Layers") or [])},
        "history": [],
    }


def write_save_tarball(image: Image, repo_tag: str) -> bytes:
    """Render an image in the docker-save tarball format.

    Args:
        image: Image to render (all layer blobs are read).
        repo_tag: Tag to record in manifest.json.

    Returns:
        Tarball bytes.
    """
    config_bytes = image.config_bytes()
    config_name = f"{sha256_digest(config_bytes).removeprefix('sha256:')}.json"

    buf = io.BytesIO()

    def add(tar: tarfile.TarFile, name: str, data: bytes) -> None:
        info = tarfile.TarInfo(name)
        info.size = len(data)
        info.mode = 0o644
        tar.addfile(info, io.BytesIO(data))

    layer_paths: list[str] = []
    with tarfile.open(fileobj=buf, mode="w") as tar:
        add(tar, config_name, config_bytes)
        for layer in image.layers:
            path = f"{layer.diff_id.removeprefix('sha256:')}/layer.tar"
            if path not in layer_paths:
                add(tar, path, layer.uncompressed())
            layer_paths.append(path)
        manifest = [
            {"Config": config_name, "RepoTags": [repo_tag], "Layers": layer_paths}
        ]
        add(tar, "manifest.json", json.dumps(manifest).encode())
    return buf.getvalue()


def read_save_tarball(data: bytes, diff_ids: list[str]) -> dict[str, bytes]:
    """Read layer archives out of a docker-save tarball.

    Layers stored compressed (as daemons backed by a content store may
    emit them) are decompressed before the diffID check.

    Args:
        data: Tarball bytes.
        diff_ids: Expected diff IDs, in layer order.

    Returns:
        Mapping of diff ID to uncompressed layer archive.

    Raises:
        ImageSourceError: If the tarball is malformed or does not match.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as tar:
            manifest_file = tar.extractfile("manifest.json")
            if manifest_file is None:
                raise ImageSourceError(
                    "save tarball has no manifest.json", code="malformed_manifest"
                )
            manifest = json.loads(manifest_file.read())
            layer_paths = manifest[0]["Layers"]
            if len(layer_paths) != len(diff_ids):
                raise ImageSourceError(
                    f"save tarball lists {len(layer_paths)} layers, "
                    f"expected {len(diff_ids)}",
                    code="malformed_manifest",
                )
            layers: dict[str, bytes] = {}
            for diff_id, path in zip(diff_ids, layer_paths, strict=True):
                member = tar.extractfile(path)
                if member is None:
                    raise ImageSourceError(
                        f"save tarball is missing {path}", code="malformed_manifest"
                    )
                content = member.read()
                if content.startswith(GZIP_MAGIC):
                    content = gzip.decompress(content)
                if sha256_digest(content) != diff_id:
                    raise ImageSourceError(
                        f"layer {path} does not match {diff_id}", code="digest_mismatch"
                    )
                layers[diff_id] = content
            return layers
    except (tarfile.TarError, OSError, EOFError, KeyError, IndexError, ValueError) as e:
        raise ImageSourceError(
            f"malformed save tarball: {e}",
            code="malformed_manifest",
            operation="fetch layer",
        ) from e


class DaemonImageSource:
    """Image source backed by a local daemon's image store."""

    def __init__(
        self,
        reference: ImageReference,
        client: docker.DockerClient,
        retries: int = 2,
    ) -> None:
        self.reference = reference
        self.name = reference.name
        self.client = client
        self.retries = retries
        self._layers: dict[str, bytes] | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, name: str, settings: Settings) -> DaemonImageSource:
        client = build_daemon_client(settings.docker_host, settings.request_timeout)
        return cls(parse_reference(name), client, retries=settings.fetch_retries)

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> DaemonImageSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _read(self, call: Callable[[], T], what: str) -> T:
        def attempt() -> T:
            try:
                return call()
            except ImageNotFound as e:
                raise ImageNotFoundError(
                    f"{what}: no such image {self.name}", operation="access manifest"
                ) from e
            except APIError as e:
                raise ImageSourceError(
                    f"{what}: {e}", code="http_error", operation="access manifest"
                ) from e
            except DockerException as e:
                raise ImageSourceError(
                    f"{what}: {e}", code="daemon_error", operation="access manifest"
                ) from e

        # Connection failures surface from requests as OSError subclasses
        return get_with_retries(attempt, self.retries, what, retry_on=(OSError,))

    def _inspect(self) -> Any:
        return self._read(
            lambda: self.client.images.get(self.name), f"inspect {self.name}"
        )

    def image(self) -> Image:
        """Resolve the image from the daemon's inspect document."""
        config = config_from_inspect(self._inspect().attrs)
        layers = tuple(
            Layer(
                diff_id=diff_id,
                digest=diff_id,
                size=None,
                media_type=DOCKER_LAYER,
                opener=functools.partial(self._layer_blob, diff_id),
            )
            for diff_id in config["rootfs"]["diff_ids"]
        )
        logger.info("Resolved %s from daemon (%d layers)", self.name, len(layers))
        return Image(config=config, layers=layers)

    def _layer_blob(self, diff_id: str) -> bytes:
        with self._lock:
            if self._layers is None:
                docker_image = self._inspect()
                diff_ids = config_from_inspect(docker_image.attrs)["rootfs"]["diff_ids"]
                logger.info("Exporting %s from daemon", self.name)
                data = self._read(
                    lambda: b"".join(docker_image.save()), f"export {self.name}"
                )
                self._layers = read_save_tarball(data, diff_ids)
        return self._layers[diff_id]

    def save(self, image: Image) -> str:
        """Load an image into the daemon under this source's name.

        Returns:
            Image ID (config digest).

        Raises:
            ImageSaveError: If the daemon rejects the image.
        """
        tarball = write_save_tarball(image, self.name)
        try:
            self.client.images.load(tarball)
        except (DockerException, OSError) as e:
            raise ImageSaveError(
                f"load into daemon failed: {e}", operation="save image"
            ) from e

        image_id = image.config_digest()
        logger.info("Loaded %s into daemon (%s)", self.name, image_id[:19])
        return image_id


__all__ = [
    "DaemonImageSource",
    "build_daemon_client",
    "config_from_inspect",
    "read_save_tarball",
    "write_save_tarball",
]
