"""Tests for metadata models."""

import pytest
from pydantic import ValidationError

from packs_lifecycle.metadata.schema import BuildMetadata, LayerMetadata
from packs_lifecycle.types import LayerRef

DIFF = "sha256:" + "0" * 64


class TestLayerMetadata:
    """Test LayerMetadata model."""

    def test_data_defaults_empty(self) -> None:
        """Data should default to an empty mapping."""
        assert LayerMetadata(diffid=DIFF).data == {}

    @pytest.mark.parametrize("diffid", ["", "deadbeef", "sha256:", "sha256:XYZ"])
    def test_invalid_diffid(self, diffid: str) -> None:
        """diffid must be a sha256 digest reference."""
        with pytest.raises(ValidationError):
            LayerMetadata(diffid=diffid)

    def test_short_hex_accepted(self) -> None:
        """Any lowercase hex digest string is accepted."""
        assert LayerMetadata(diffid="sha256:deadbeef").diffid == "sha256:deadbeef"


class TestBuildMetadata:
    """Test BuildMetadata model."""

    def test_from_layers(self) -> None:
        """Layers should be grouped by buildpack."""
        metadata = BuildMetadata.from_layers(
            [
                (LayerRef("bp.A", "x"), LayerMetadata(diffid=DIFF)),
                (LayerRef("bp.A", "y"), LayerMetadata(diffid=DIFF)),
                (LayerRef("bp.B", "z"), LayerMetadata(diffid=DIFF)),
            ]
        )
        assert sorted(metadata.buildpack("bp.A")) == ["x", "y"]
        assert len(metadata) == 3
        assert not metadata.is_empty()

    def test_layers_sorted(self) -> None:
        """layers() should iterate by buildpack then layer name."""
        metadata = BuildMetadata.from_layers(
            [
                (LayerRef("b", "2"), LayerMetadata(diffid=DIFF)),
                (LayerRef("a", "9"), LayerMetadata(diffid=DIFF)),
                (LayerRef("b", "1"), LayerMetadata(diffid=DIFF)),
            ]
        )
        assert [str(ref) for ref, _ in metadata.layers()] == ["a/9", "b/1", "b/2"]

    def test_missing_lookups(self) -> None:
        """Lookups for unknown buildpacks or layers should be empty."""
        metadata = BuildMetadata()
        assert metadata.is_empty()
        assert metadata.buildpack("nope") == {}
        assert metadata.layer(LayerRef("nope", "x")) is None

    def test_buildpack_returns_copy(self) -> None:
        """Mutating the returned mapping should not affect the metadata."""
        metadata = BuildMetadata.from_layers(
            [(LayerRef("bp.A", "x"), LayerMetadata(diffid=DIFF))]
        )
        metadata.buildpack("bp.A").clear()
        assert len(metadata) == 1
