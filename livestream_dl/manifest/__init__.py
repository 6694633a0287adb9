"""
Manifest Layer.

This package fetches and parses HLS playlists and exposes the renditions of
a master playlist for selection.
"""

from .catalog import Choice, VariantCatalog
from .client import ManifestClient
from .parser import parse_manifest

__all__ = ["Choice", "ManifestClient", "VariantCatalog", "parse_manifest"]
