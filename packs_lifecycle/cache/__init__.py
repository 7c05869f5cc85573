"""Layer cache module.

This module handles:
- Analyze: restoring cached layers from a previous image
- Export: assembling a new image from the launch directory
- Resolving image sources and mapping failures to outcomes
"""

from packs_lifecycle.cache.analyzer import analyze
from packs_lifecycle.cache.exporter import ExportResult, export

__all__ = ["ExportResult", "analyze", "export"]

# Source-aware entry points live in packs_lifecycle.cache.service
