"""
Data Models Layer.

This package contains the Pydantic configuration model and the dataclasses
that describe playlists, segments and capture statistics.
"""

from .config import CaptureConfig
from .segment import (
    ByteRange,
    InitSection,
    KeyReference,
    MasterManifest,
    MediaManifest,
    Rendition,
    Role,
    SegmentEntry,
    Variant,
)
from .stats import CaptureReport, CaptureStats, CaptureStatus, MissingSegment

__all__ = [
    "ByteRange",
    "CaptureConfig",
    "CaptureReport",
    "CaptureStats",
    "CaptureStatus",
    "InitSection",
    "KeyReference",
    "MasterManifest",
    "MediaManifest",
    "MissingSegment",
    "Rendition",
    "Role",
    "SegmentEntry",
    "Variant",
]
