"""Build metadata module.

This module handles:
- The BuildMetadata / LayerMetadata models
- Label encoding and decoding
- Layer config sidecar files
"""

from packs_lifecycle.metadata.schema import BuildMetadata, LayerMetadata

__all__ = ["BuildMetadata", "LayerMetadata"]
