"""Packs Lifecycle - Layer cache analyze/export for buildpack builds.

This package restores cached buildpack layers from a previous OCI image
into the launch directory, and assembles new images from a stack run image
plus the layers buildpacks produced.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
