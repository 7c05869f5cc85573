"""Layer store module.

This module handles:
- Deterministic archiving of layer directories
- DiffID computation
- Restoring layer archives into the launch directory
"""

from packs_lifecycle.layers.archive import (
    LayerArchive,
    build_layer,
    compute_diff_id,
    extract_layer,
    layer_prefix,
)

__all__ = [
    "LayerArchive",
    "build_layer",
    "compute_diff_id",
    "extract_layer",
    "layer_prefix",
]
