"""
Detects the container or elementary stream format of a segment from its
leading bytes, to give output files a matching extension.
"""

from enum import Enum

TS_PACKET_SIZE = 188
TS_SYNC_BYTE = 0x47
MP4_BOX_TYPES = {b"ftyp", b"styp", b"moof", b"moov", b"sidx", b"free", b"emsg"}


class MediaFormat(Enum):
    MPEG_TS = "ts"
    FMP4 = "mp4"
    ADTS = "aac"
    MP3 = "mp3"
    AC3 = "ac3"
    EAC3 = "eac3"
    WEBVTT = "vtt"
    UNKNOWN = "unknown"

    @property
    def extension(self) -> str:
        """File extension; unknown data is stored as `.ts`."""
        return "ts" if self is MediaFormat.UNKNOWN else self.value

    @classmethod
    def detect(cls, data: bytes) -> "MediaFormat":
        if not data:
            return cls.UNKNOWN

        if data[0] == TS_SYNC_BYTE and (
            len(data) <= TS_PACKET_SIZE or data[TS_PACKET_SIZE] == TS_SYNC_BYTE
        ):
            return cls.MPEG_TS
        if data[4:8] in MP4_BOX_TYPES:
            return cls.FMP4

        text_start = data[3:] if data.startswith(b"\xef\xbb\xbf") else data
        if text_start.startswith(b"WEBVTT"):
            return cls.WEBVTT

        # Packed audio usually starts with an ID3 timestamp tag
        if data.startswith(b"ID3") and len(data) >= 10:
            tag_size = (
                (data[6] & 0x7F) << 21
                | (data[7] & 0x7F) << 14
                | (data[8] & 0x7F) << 7
                | (data[9] & 0x7F)
            )
            payload = data[10 + tag_size :]
            return cls._detect_audio_frame(payload) or cls.MP3

        return cls._detect_audio_frame(data) or cls.UNKNOWN

    @classmethod
    def _detect_audio_frame(cls, data: bytes):
        if len(data) < 6:
            return None
        if data[0] == 0x0B and data[1] == 0x77:
            # bsid above 10 means Enhanced AC-3
            return cls.EAC3 if (data[5] >> 3) > 10 else cls.AC3
        if data[0] == 0xFF and (data[1] & 0xF0) == 0xF0:
            layer = (data[1] >> 1) & 0x03
            return cls.ADTS if layer == 0 else cls.MP3
        if data[0] == 0xFF and (data[1] & 0xE0) == 0xE0:
            return cls.MP3
        return None
