"""
Parses m3u8 text into MasterManifest / MediaManifest objects.

The `m3u8` library provides the tag model. On top of it this module validates
the attribute syntax the library tolerates silently and folds the segment list
into flat entries, each carrying the key, init section and discontinuity group
in effect at its position in the playlist.
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin

import m3u8
from m3u8.parser import ParseError

from livestream_dl.exceptions import ManifestParseError, UnsupportedEncryptionError
from livestream_dl.models.segment import (
    ByteRange,
    InitSection,
    KeyReference,
    Manifest,
    MasterManifest,
    MediaManifest,
    Role,
    SegmentEntry,
    Variant,
)

log = logging.getLogger(__name__)

_BYTERANGE_RE = re.compile(r"^(\d+)(?:@(\d+))?$")
_IV_RE = re.compile(r"^0[xX][0-9a-fA-F]{32}$")
_INTEGER_TAGS = ("#EXT-X-MEDIA-SEQUENCE:", "#EXT-X-DISCONTINUITY-SEQUENCE:")
_DECIMAL_RE = re.compile(r"^\d+(\.\d+)?$")
_BANDWIDTH_RE = re.compile(r"(?:^|,)BANDWIDTH=\d+(?:,|$)")

_UNSUPPORTED_METHODS = {"SAMPLE-AES", "SAMPLE-AES-CTR"}
_MEDIA_ROLES = {"AUDIO": Role.AUDIO, "VIDEO": Role.VIDEO, "SUBTITLES": Role.SUBTITLE}


def _check_lines(text: str) -> list[str]:
    """
    Validates the header and the numeric attributes of a playlist and returns
    its stripped, non-empty lines.
    """
    lines = [line.strip() for line in text.splitlines() if line.strip()]
    if not lines or not lines[0].startswith("#EXTM3U"):
        raise ManifestParseError("Playlist does not start with #EXTM3U.")

    for lineno, line in enumerate(lines, 1):
        for tag in _INTEGER_TAGS:
            if line.startswith(tag) and not line[len(tag) :].isdigit():
                raise ManifestParseError(f"Line {lineno}: invalid value in {line!r}")
        if line.startswith("#EXT-X-TARGETDURATION:"):
            if not _DECIMAL_RE.match(line.split(":", 1)[1]):
                raise ManifestParseError(f"Line {lineno}: invalid target duration")
        elif line.startswith("#EXTINF:"):
            duration = line.split(":", 1)[1].split(",", 1)[0].strip()
            if not _DECIMAL_RE.match(duration):
                raise ManifestParseError(f"Line {lineno}: invalid segment duration")
        elif line.startswith("#EXT-X-BYTERANGE:"):
            if not _BYTERANGE_RE.match(line.split(":", 1)[1]):
                raise ManifestParseError(f"Line {lineno}: invalid byte range {line!r}")
        elif line.startswith("#EXT-X-STREAM-INF:"):
            if not _BANDWIDTH_RE.search(line.split(":", 1)[1]):
                raise ManifestParseError(f"Line {lineno}: variant stream without BANDWIDTH")
    return lines


def _parse_byte_range(
    spec: Optional[str], uri: str, previous: Optional[tuple[str, int]]
) -> Optional[ByteRange]:
    """
    Parses `length[@offset]`. Without an offset the range must continue the
    previous sub-range of the same resource.
    """
    if not spec:
        return None
    match = _BYTERANGE_RE.match(spec.strip())
    if not match:
        raise ManifestParseError(f"Invalid byte range: {spec!r}")
    length = int(match.group(1))
    if match.group(2) is not None:
        return ByteRange(offset=int(match.group(2)), length=length)
    if previous is None or previous[0] != uri:
        raise ManifestParseError(
            f"Byte range {spec!r} has no offset and does not follow a sub-range of {uri}"
        )
    return ByteRange(offset=previous[1], length=length)


def _parse_iv(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    if not _IV_RE.match(value):
        raise ManifestParseError(f"IV must be 0x followed by 32 hex digits: {value!r}")
    return bytes.fromhex(value[2:])


def _parse_key(key, base_uri: str) -> Optional[KeyReference]:
    """Converts an m3u8 Key into a KeyReference, or None for METHOD=NONE."""
    if key is None or key.method is None:
        return None
    method = key.method.upper()
    if method == "NONE":
        return None
    if method in _UNSUPPORTED_METHODS:
        raise UnsupportedEncryptionError(f"Encryption method {method} is not supported.")
    if method != "AES-128":
        raise ManifestParseError(f"Unknown key method: {key.method!r}")
    if key.keyformat and key.keyformat != "identity":
        raise UnsupportedEncryptionError(
            f"Key format {key.keyformat!r} is not supported, only 'identity'."
        )
    if not key.uri:
        raise ManifestParseError("AES-128 key directive without URI.")
    return KeyReference(
        uri=urljoin(base_uri, key.uri), method=method, iv=_parse_iv(key.iv)
    )


def _parse_media(playlist: m3u8.M3U8, uri: str, generation: int) -> MediaManifest:
    if playlist.target_duration is None:
        raise ManifestParseError("Media playlist without #EXT-X-TARGETDURATION.")

    media_sequence = playlist.media_sequence or 0
    discontinuity_sequence = playlist.discontinuity_sequence or 0

    entries: list[SegmentEntry] = []
    group = discontinuity_sequence
    previous_range: Optional[tuple[str, int]] = None

    for index, segment in enumerate(playlist.segments):
        if segment.discontinuity:
            group += 1

        segment_uri = urljoin(uri, segment.uri)
        byte_range = _parse_byte_range(segment.byterange, segment_uri, previous_range)
        previous_range = (segment_uri, byte_range.end) if byte_range else None

        key = _parse_key(segment.key, uri)

        init_section = None
        if segment.init_section is not None and segment.init_section.uri:
            init_uri = urljoin(uri, segment.init_section.uri)
            init_range = _parse_byte_range(segment.init_section.byterange, init_uri, None)
            if key is not None and key.iv is None:
                raise ManifestParseError(
                    f"Encrypted init section {init_uri} requires an explicit IV."
                )
            init_section = InitSection(uri=init_uri, byte_range=init_range, key=key)

        entries.append(
            SegmentEntry(
                sequence=media_sequence + index,
                uri=segment_uri,
                duration=float(segment.duration or 0.0),
                byte_range=byte_range,
                key=key,
                discontinuity=group,
                generation=generation,
                init_section=init_section,
            )
        )

    playlist_type = playlist.playlist_type.lower() if playlist.playlist_type else None
    return MediaManifest(
        uri=uri,
        target_duration=float(playlist.target_duration),
        media_sequence=media_sequence,
        discontinuity_sequence=discontinuity_sequence,
        ended=bool(playlist.is_endlist),
        playlist_type=playlist_type,
        segments=tuple(entries),
        generation=generation,
    )


def _parse_resolution(value) -> Optional[tuple[int, int]]:
    if not value:
        return None
    if isinstance(value, tuple):
        return (int(value[0]), int(value[1]))
    width, _, height = str(value).lower().partition("x")
    try:
        return (int(width), int(height))
    except ValueError:
        raise ManifestParseError(f"Invalid resolution: {value!r}")


def _parse_master(playlist: m3u8.M3U8, uri: str) -> MasterManifest:
    variants: list[Variant] = []

    for index, stream in enumerate(playlist.playlists):
        info = stream.stream_info
        if info.bandwidth is None:
            raise ManifestParseError(f"Variant {stream.uri!r} has no BANDWIDTH.")
        variants.append(
            Variant(
                identifier=f"v{index}",
                role=Role.VIDEO,
                uri=urljoin(uri, stream.uri),
                bandwidth=int(info.bandwidth),
                resolution=_parse_resolution(info.resolution),
                codecs=info.codecs,
                audio_group=info.audio,
                video_group=info.video,
                subtitle_group=info.subtitles,
            )
        )

    for index, media in enumerate(playlist.media):
        role = _MEDIA_ROLES.get((media.type or "").upper())
        if role is None:
            # Closed captions are carried inside the video stream
            continue
        variants.append(
            Variant(
                identifier=f"a{index}",
                role=role,
                uri=urljoin(uri, media.uri) if media.uri else None,
                language=media.language,
                name=media.name,
                group_id=media.group_id,
                is_default=(media.default or "").upper() == "YES",
            )
        )

    return MasterManifest(uri=uri, variants=tuple(variants))


def parse_manifest(text: str, uri: str, generation: int = 0) -> Manifest:
    """
    Parses playlist text fetched from `uri`.

    Master and media playlists are told apart from content alone: variant
    stream tags make a master playlist, segment tags a media playlist.

    Args:
        text: The playlist body.
        uri: The final URL the playlist was fetched from, used to resolve relative URIs.
        generation: Poll counter stamped onto every produced segment entry.

    Raises:
        ManifestParseError: On malformed syntax or invalid attribute values.
        UnsupportedEncryptionError: On SAMPLE-AES or non-identity key formats.
    """
    lines = _check_lines(text)
    try:
        playlist = m3u8.M3U8(text, base_uri=uri)
    except ParseError as e:
        raise ManifestParseError(f"Malformed playlist: {e}") from e
    except (LookupError, ValueError, TypeError, AttributeError) as e:
        raise ManifestParseError(f"Invalid attribute value in playlist: {e}") from e

    has_variants = bool(playlist.playlists) or any(
        line.startswith("#EXT-X-STREAM-INF") for line in lines
    )
    has_media_tags = bool(playlist.media)
    has_segments = bool(playlist.segments) or playlist.target_duration is not None

    if has_variants and has_segments:
        raise ManifestParseError("Playlist mixes variant streams and media segments.")
    if has_variants or has_media_tags:
        return _parse_master(playlist, uri)
    if has_segments:
        return _parse_media(playlist, uri, generation)
    raise ManifestParseError("Playlist contains neither variant streams nor segments.")
