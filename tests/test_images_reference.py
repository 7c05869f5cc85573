"""Tests for image reference parsing."""

import pytest

from packs_lifecycle.errors import ConfigurationError
from packs_lifecycle.images.reference import parse_reference

DIGEST = "sha256:" + "c" * 64


class TestParseReference:
    """Test parse_reference function."""

    def test_docker_hub_short_name(self) -> None:
        """Single-component names live in library/ on Docker Hub."""
        ref = parse_reference("ubuntu")
        assert ref.registry == "index.docker.io"
        assert ref.repository == "library/ubuntu"
        assert ref.tag == "latest"
        assert ref.api_host == "registry-1.docker.io"
        assert ref.name == "ubuntu:latest"

    def test_docker_hub_namespaced(self) -> None:
        """Namespaced names keep their namespace."""
        ref = parse_reference("packs/run:v3")
        assert ref.repository == "packs/run"
        assert ref.tag == "v3"
        assert ref.name == "packs/run:v3"

    def test_docker_io_alias(self) -> None:
        """docker.io should normalize to the Docker Hub registry."""
        ref = parse_reference("docker.io/library/alpine:3")
        assert ref.registry == "index.docker.io"
        assert ref.repository == "library/alpine"

    def test_registry_with_port(self) -> None:
        """Registries with ports should be recognized."""
        ref = parse_reference("localhost:5000/org/app:1.0")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "org/app"
        assert ref.tag == "1.0"
        assert ref.identifier == "1.0"
        assert str(ref) == "localhost:5000/org/app:1.0"
        assert ref.name == "localhost:5000/org/app:1.0"

    def test_digest(self) -> None:
        """Digest references should use the digest as identifier."""
        ref = parse_reference(f"gcr.io/proj/img@{DIGEST}")
        assert ref.registry == "gcr.io"
        assert ref.digest == DIGEST
        assert ref.tag is None
        assert ref.identifier == DIGEST
        assert str(ref) == f"gcr.io/proj/img@{DIGEST}"

    @pytest.mark.parametrize(
        "value",
        ["", "  ", "UPPER/case", "app@sha256:short", "app:bad tag", "app:"],
    )
    def test_invalid(self, value: str) -> None:
        """Malformed references should raise ConfigurationError."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_reference(value)
        assert exc_info.value.code == "invalid_reference"
