"""Registry-backed image source.

This module handles:
- Bearer token authentication against registry challenges
- Manifest and manifest-index resolution (with retries, reads only)
- Lazy layer blob fetches with digest verification
- Pushing new images (blobs, config, manifest; never retried)

Access failures (401/403, 404, UNAUTHORIZED/DENIED/MANIFEST_UNKNOWN/
NAME_UNKNOWN error codes) raise ImageAccessError subclasses, which the
analyzer treats as a cold cache. Everything else is fatal.
"""

from __future__ import annotations

import functools
import json
import logging
import re
from collections.abc import Generator
from typing import TYPE_CHECKING, Any

import httpx

from packs_lifecycle.errors import (
    ImageNotFoundError,
    ImageSaveError,
    ImageSourceError,
    ImageUnauthorizedError,
)
from packs_lifecycle.images.models import (
    DOCKER_MANIFEST,
    DOCKER_MANIFEST_LIST,
    OCI_INDEX,
    OCI_MANIFEST,
    Image,
    Layer,
    sha256_digest,
)
from packs_lifecycle.images.reference import ImageReference, parse_reference
from packs_lifecycle.images.source import get_with_retries

if TYPE_CHECKING:
    from packs_lifecycle.config import Settings

logger = logging.getLogger(__name__)

MANIFEST_ACCEPT = ", ".join(
    [OCI_MANIFEST, DOCKER_MANIFEST, OCI_INDEX, DOCKER_MANIFEST_LIST]
)
INDEX_TYPES = frozenset({OCI_INDEX, DOCKER_MANIFEST_LIST})

UNAUTHORIZED_CODES = frozenset({"UNAUTHORIZED", "DENIED"})
NOT_FOUND_CODES = frozenset({"MANIFEST_UNKNOWN", "NAME_UNKNOWN", "BLOB_UNKNOWN"})

_CHALLENGE_PARAM = re.compile(r'(\w+)="([^"]*)"')


def parse_challenge(header: str) -> tuple[str, dict[str, str]]:
    """Parse a WWW-Authenticate header into (scheme, params)."""
    scheme, _, rest = header.strip().partition(" ")
    return scheme.lower(), dict(_CHALLENGE_PARAM.findall(rest))


class RegistryAuth(httpx.Auth):
    """Answer registry auth challenges with bearer tokens.

    Tokens are requested anonymously unless credentials are configured, in
    which case they are sent as basic auth to the token realm. The last
    token is reused for later requests until the registry challenges again.
    """

    requires_response_body = True

    def __init__(self, username: str | None = None, password: str | None = None):
        self._basic = (
            httpx.BasicAuth(username, password or "") if username else None
        )
        self._token: str | None = None

    def auth_flow(
        self, request: httpx.Request
    ) -> Generator[httpx.Request, httpx.Response, None]:
        if self._token:
            request.headers["Authorization"] = f"Bearer {self._token}"
        response = yield request
        if response.status_code != 401:
            return

        scheme, params = parse_challenge(response.headers.get("WWW-Authenticate", ""))
        if scheme == "basic" and self._basic is not None:
            yield from self._basic.auth_flow(request)
            return
        if scheme != "bearer" or "realm" not in params:
            return

        query = {k: v for k, v in params.items() if k in ("service", "scope")}
        token_request = httpx.Request("GET", params["realm"], params=query)
        if self._basic is not None:
            token_request = next(self._basic.auth_flow(token_request))
        token_response = yield token_request
        if token_response.status_code != 200:
            logger.debug(
                "Token request to %s failed with %d",
                params["realm"],
                token_response.status_code,
            )
            return

        try:
            body = token_response.json()
        except ValueError:
            return
        token = body.get("token") or body.get("access_token")
        if not token:
            return
        self._token = token
        request.headers["Authorization"] = f"Bearer {token}"
        yield request


def _error_codes(response: httpx.Response) -> list[str]:
    try:
        body = response.json()
    except ValueError:
        return []
    if not isinstance(body, dict):
        return []
    return [
        str(err.get("code", "")).upper()
        for err in body.get("errors") or []
        if isinstance(err, dict)
    ]


def check_response(response: httpx.Response, what: str) -> None:
    """Classify a registry response, raising for error statuses.

    Raises:
        ImageUnauthorizedError: For 401/403 or UNAUTHORIZED/DENIED codes.
        ImageNotFoundError: For 404 or *_UNKNOWN codes.
        ImageSourceError: For any other error status.
    """
    if response.is_success:
        return
    response.read()
    codes = _error_codes(response)
    status = response.status_code
    message = f"{what}: HTTP {status}" + (f" ({', '.join(codes)})" if codes else "")

    if status in (401, 403) or UNAUTHORIZED_CODES.intersection(codes):
        raise ImageUnauthorizedError(message, operation="access manifest")
    if status == 404 or NOT_FOUND_CODES.intersection(codes):
        raise ImageNotFoundError(message, operation="access manifest")
    raise ImageSourceError(message, code="http_error", operation="access manifest")


def _malformed(message: str) -> ImageSourceError:
    return ImageSourceError(
        message, code="malformed_manifest", operation="access manifest"
    )


def _parse_json(data: bytes, what: str) -> dict[str, Any]:
    try:
        parsed = json.loads(data)
    except ValueError as e:
        raise _malformed(f"{what} is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise _malformed(f"{what} is not a JSON object")
    return parsed


class RegistryImageSource:
    """Image source backed by an OCI distribution registry."""

    def __init__(
        self,
        reference: ImageReference,
        client: httpx.Client,
        insecure: bool = False,
        platform: tuple[str, str] = ("linux", "amd64"),
        retries: int = 2,
    ) -> None:
        self.reference = reference
        self.name = str(reference)
        self.client = client
        self.platform = platform
        self.retries = retries
        scheme = "http" if insecure else "https"
        self.base_url = f"{scheme}://{reference.api_host}/v2/{reference.repository}"

    @classmethod
    def from_settings(cls, name: str, settings: Settings) -> RegistryImageSource:
        reference = parse_reference(name)
        password = (
            settings.registry_password.get_secret_value()
            if settings.registry_password
            else None
        )
        client = httpx.Client(
            auth=RegistryAuth(settings.registry_username, password),
            timeout=settings.request_timeout,
            follow_redirects=True,
        )
        return cls(
            reference,
            client,
            insecure=reference.registry in settings.insecure_registries,
            platform=(settings.platform_os, settings.platform_architecture),
            retries=settings.fetch_retries,
        )

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> RegistryImageSource:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Reads

    def _get(
        self, path: str, what: str, headers: dict[str, str] | None = None
    ) -> bytes:
        url = f"{self.base_url}/{path}"
        response = get_with_retries(
            lambda: self.client.get(url, headers=headers),
            self.retries,
            what,
        )
        check_response(response, what)
        return response.content

    def fetch_manifest(self, identifier: str) -> dict[str, Any]:
        """Fetch a manifest (or index) by tag or digest."""
        data = self._get(
            f"manifests/{identifier}",
            f"fetch manifest {self.reference.repository}:{identifier}",
            headers={"Accept": MANIFEST_ACCEPT},
        )
        if identifier.startswith("sha256:") and sha256_digest(data) != identifier:
            raise _malformed(f"manifest digest mismatch for {identifier}")
        return _parse_json(data, "manifest")

    def fetch_blob(self, digest: str) -> bytes:
        """Fetch a blob and verify its digest."""
        data = self._get(f"blobs/{digest}", f"fetch blob {digest[:19]}")
        if sha256_digest(data) != digest:
            raise ImageSourceError(
                f"blob digest mismatch for {digest}",
                code="digest_mismatch",
                operation="fetch layer",
            )
        return data

    def _select_platform(self, index: dict[str, Any]) -> str:
        os_name, architecture = self.platform
        for entry in index.get("manifests") or []:
            platform = entry.get("platform") or {}
            if (
                platform.get("os") == os_name
                and platform.get("architecture") == architecture
            ):
                return str(entry["digest"])
        raise ImageSourceError(
            f"no manifest for platform {os_name}/{architecture} in {self.name}",
            code="platform_not_found",
            operation="access manifest",
        )

    def image(self) -> Image:
        """Resolve the image, fetching manifest and config (not layers)."""
        manifest = self.fetch_manifest(self.reference.identifier)
        if manifest.get("mediaType") in INDEX_TYPES or "manifests" in manifest:
            manifest = self.fetch_manifest(self._select_platform(manifest))

        config_desc = manifest.get("config")
        layer_descs = manifest.get("layers")
        if not isinstance(config_desc, dict) or "digest" not in config_desc:
            raise _malformed(f"manifest for {self.name} has no config descriptor")
        if not isinstance(layer_descs, list):
            raise _malformed(f"manifest for {self.name} has no layer list")

        config = _parse_json(self.fetch_blob(config_desc["digest"]), "image config")
        diff_ids = (config.get("rootfs") or {}).get("diff_ids") or []
        if len(diff_ids) != len(layer_descs):
            raise _malformed(
                f"{self.name}: config lists {len(diff_ids)} diff_ids "
                f"for {len(layer_descs)} layers"
            )

        layers: list[Layer] = []
        for diff_id, desc in zip(diff_ids, layer_descs, strict=True):
            try:
                digest = str(desc["digest"])
                layers.append(
                    Layer(
                        diff_id=diff_id,
                        digest=digest,
                        size=int(desc["size"]),
                        media_type=str(desc["mediaType"]),
                        opener=functools.partial(self.fetch_blob, digest),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise _malformed(f"{self.name}: invalid layer descriptor {desc}") from e

        logger.info("Resolved %s (%d layers)", self.name, len(layers))
        return Image(config=config, layers=tuple(layers))

    # Writes

    def _blob_exists(self, digest: str) -> bool:
        response = self.client.head(f"{self.base_url}/blobs/{digest}")
        if response.status_code == 200:
            return True
        if response.status_code == 404:
            return False
        check_response(response, f"check blob {digest[:19]}")
        return False

    def _upload_blob(self, digest: str, data: bytes) -> None:
        start = self.client.post(f"{self.base_url}/blobs/uploads/")
        if start.status_code != 202 or "Location" not in start.headers:
            raise ImageSaveError(
                f"cannot start upload of {digest[:19]}: HTTP {start.status_code}",
                operation="push image",
            )
        location = start.url.join(start.headers["Location"])
        done = self.client.put(
            location,
            params={"digest": digest},
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )
        if done.status_code not in (201, 204):
            raise ImageSaveError(
                f"upload of {digest[:19]} failed: HTTP {done.status_code}",
                operation="push image",
            )

    def save(self, image: Image) -> str:
        """Push an image to the registry.

        Blobs already present are not uploaded again. Nothing is retried.

        Returns:
            Manifest digest.

        Raises:
            ImageSaveError: If any part of the push fails.
        """
        try:
            for layer in image.layers:
                if self._blob_exists(layer.digest):
                    logger.debug("Layer %s already present", layer.digest[:19])
                    continue
                logger.info("Uploading layer %s", layer.digest[:19])
                self._upload_blob(layer.digest, layer.blob())

            config_bytes = image.config_bytes()
            config_digest = sha256_digest(config_bytes)
            if not self._blob_exists(config_digest):
                self._upload_blob(config_digest, config_bytes)

            manifest = image.manifest()
            manifest_bytes = json.dumps(manifest, separators=(",", ":")).encode()
            tag = self.reference.tag or self.reference.identifier
            response = self.client.put(
                f"{self.base_url}/manifests/{tag}",
                content=manifest_bytes,
                headers={"Content-Type": OCI_MANIFEST},
            )
            if response.status_code not in (200, 201):
                raise ImageSaveError(
                    f"manifest push failed: HTTP {response.status_code}",
                    operation="push image",
                )
        except ImageSaveError:
            raise
        except (ImageSourceError, httpx.HTTPError) as e:
            raise ImageSaveError(
                f"push to {self.name} failed: {e}", operation="push image"
            ) from e

        digest = sha256_digest(manifest_bytes)
        logger.info("Pushed %s@%s", self.name, digest)
        return digest


__all__ = [
    "MANIFEST_ACCEPT",
    "RegistryAuth",
    "RegistryImageSource",
    "check_response",
    "parse_challenge",
]
