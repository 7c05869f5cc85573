"""Image source abstraction.

An image source resolves one image reference against a backing store and
persists new images back to it. Two variants exist: a registry-backed
source (:mod:`packs_lifecycle.images.registry`) and a daemon-backed source
(:mod:`packs_lifecycle.images.daemon`).

Read-only requests are retried on transport errors; writes never are.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol, TypeVar, runtime_checkable

import httpx

from packs_lifecycle.errors import ImageSourceError

if TYPE_CHECKING:
    from packs_lifecycle.config import Settings
    from packs_lifecycle.images.models import Image

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5

T = TypeVar("T")


@runtime_checkable
class ImageSource(Protocol):
    """Capability interface shared by registry and daemon sources."""

    name: str

    def image(self) -> Image:
        """Resolve the image.

        Raises:
            ImageUnauthorizedError: If access is denied.
            ImageNotFoundError: If the image does not exist.
            ImageSourceError: For any other failure.
        """
        ...

    def save(self, image: Image) -> str:
        """Persist an image under this source's name and return its identifier.

        Raises:
            ImageSaveError: If the image cannot be persisted.
        """
        ...

    def close(self) -> None:
        """Release any connections held by the source."""
        ...


def get_with_retries(
    send: Callable[[], T],
    retries: int,
    what: str,
    retry_on: tuple[type[Exception], ...] = (httpx.TransportError,),
) -> T:
    """Perform an idempotent request, retrying transport errors.

    HTTP error statuses are returned to the caller untouched; only
    connection-level failures are retried.

    Args:
        send: Callable performing the request.
        retries: Extra attempts after the first.
        what: Description for log and error messages.
        retry_on: Exception types treated as connection-level failures.

    Returns:
        The response.

    Raises:
        ImageSourceError: If every attempt fails.
    """
    attempt = 0
    while True:
        try:
            return send()
        except retry_on as e:
            if attempt >= retries:
                raise ImageSourceError(
                    f"{what} failed after {attempt + 1} attempt(s): {e}",
                    code="network_error",
                    operation="access manifest",
                ) from e
            attempt += 1
            logger.warning(
                "%s failed (%s), retrying (%d/%d)", what, e, attempt, retries
            )
            time.sleep(RETRY_BACKOFF_SECONDS * attempt)


def get_image_source(
    name: str,
    settings: Settings,
    use_daemon: bool | None = None,
) -> ImageSource:
    """Create the image source selected by settings (or an explicit flag).

    Args:
        name: Image reference.
        settings: Application settings.
        use_daemon: Override for settings.use_daemon.

    Returns:
        A registry-backed or daemon-backed ImageSource.
    """
    if use_daemon is None:
        use_daemon = settings.use_daemon
    if use_daemon:
        from packs_lifecycle.images.daemon import DaemonImageSource

        return DaemonImageSource.from_settings(name, settings)

    from packs_lifecycle.images.registry import RegistryImageSource

    return RegistryImageSource.from_settings(name, settings)


__all__ = ["ImageSource", "get_image_source", "get_with_retries"]
