"""
Data structures describing parsed playlists and the segments they reference.

Parsing produces flat, fully resolved entries: each SegmentEntry carries its
own effective key, initialization section and discontinuity group, so later
stages never need to re-walk playlist directive scope.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Union

AES_BLOCK_SIZE = 16


class Role(Enum):
    """Role of a rendition inside a master playlist."""

    VIDEO = "video"
    AUDIO = "audio"
    SUBTITLE = "subtitle"


@dataclass(frozen=True)
class ByteRange:
    """A sub-range of a media resource (EXT-X-BYTERANGE)."""

    offset: int
    length: int

    @property
    def end(self) -> int:
        """Offset of the first byte after this range."""
        return self.offset + self.length

    def header_value(self) -> str:
        """Value for the HTTP Range header (inclusive end)."""
        return f"bytes={self.offset}-{self.offset + self.length - 1}"


@dataclass(frozen=True)
class KeyReference:
    """An AES-128 key directive in effect for a segment."""

    uri: str
    method: str = "AES-128"
    iv: Optional[bytes] = None

    def iv_for(self, sequence: int) -> bytes:
        """
        Returns the IV for a segment. Without an explicit IV, the segment's
        media sequence number is used as a 16-byte big-endian integer.
        """
        if self.iv is not None:
            return self.iv
        return sequence.to_bytes(AES_BLOCK_SIZE, "big")


@dataclass(frozen=True)
class InitSection:
    """Media initialization section (EXT-X-MAP)."""

    uri: str
    byte_range: Optional[ByteRange] = None
    key: Optional[KeyReference] = None

    @property
    def cache_key(self) -> Tuple[str, Optional[ByteRange]]:
        return (self.uri, self.byte_range)


@dataclass(frozen=True)
class SegmentEntry:
    """One media segment with every directive that applies to it resolved."""

    sequence: int
    uri: str
    duration: float
    byte_range: Optional[ByteRange] = None
    key: Optional[KeyReference] = None
    discontinuity: int = 0
    generation: int = 0
    init_section: Optional[InitSection] = None

    @property
    def encrypted(self) -> bool:
        return self.key is not None

    def with_discontinuity(self, group: int) -> "SegmentEntry":
        return replace(self, discontinuity=group)


@dataclass(frozen=True)
class MediaManifest:
    """A media playlist: the segment list of one rendition."""

    uri: str
    target_duration: float
    media_sequence: int = 0
    discontinuity_sequence: int = 0
    ended: bool = False
    playlist_type: Optional[str] = None
    segments: Tuple[SegmentEntry, ...] = ()
    generation: int = 0

    @property
    def is_live(self) -> bool:
        return not self.ended and self.playlist_type != "vod"

    @property
    def max_sequence(self) -> Optional[int]:
        return self.segments[-1].sequence if self.segments else None


@dataclass(frozen=True)
class Variant:
    """
    A selectable rendition from a master playlist: either a variant stream
    (EXT-X-STREAM-INF) or an alternate rendition (EXT-X-MEDIA).
    """

    identifier: str
    role: Role
    uri: Optional[str]
    bandwidth: Optional[int] = None
    resolution: Optional[Tuple[int, int]] = None
    codecs: Optional[str] = None
    language: Optional[str] = None
    language_valid: bool = True
    name: Optional[str] = None
    group_id: Optional[str] = None
    is_default: bool = False
    audio_group: Optional[str] = None
    video_group: Optional[str] = None
    subtitle_group: Optional[str] = None

    @property
    def is_alternate(self) -> bool:
        return self.group_id is not None


@dataclass(frozen=True)
class MasterManifest:
    """A master playlist: the list of renditions of one presentation."""

    uri: str
    variants: Tuple[Variant, ...] = field(default_factory=tuple)


Manifest = Union[MasterManifest, MediaManifest]


@dataclass(frozen=True)
class Rendition:
    """A selected stream to capture and the media playlist that describes it."""

    stream_id: str
    uri: str
    role: Role = Role.VIDEO
    language: Optional[str] = None
    name: Optional[str] = None
