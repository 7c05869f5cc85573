"""Image module.

This module handles:
- Immutable Image and Layer values
- Image reference parsing
- Registry-backed and daemon-backed image sources
"""

from packs_lifecycle.images.models import Image, Layer
from packs_lifecycle.images.source import ImageSource, get_image_source

__all__ = ["Image", "ImageSource", "Layer", "get_image_source"]
