import pytest

from livestream_dl.media.media_format import MediaFormat

TS = (b"\x47" + bytes(187)) * 2


class TestMediaFormat:
    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            (TS, MediaFormat.MPEG_TS),
            (b"\x00\x00\x00\x18ftypiso6" + bytes(12), MediaFormat.FMP4),
            (b"\x00\x00\x00\x18moof" + bytes(16), MediaFormat.FMP4),
            (b"WEBVTT\n\n00:00.000 --> 00:01.000\nhi\n", MediaFormat.WEBVTT),
            (b"\xef\xbb\xbfWEBVTT\n", MediaFormat.WEBVTT),
            (b"\xff\xf1\x50\x80\x02\x1f\xfc", MediaFormat.ADTS),
            (b"\xff\xfb\x90\x64\x00\x00", MediaFormat.MP3),
            (b"\x0b\x77\x00\x00\x00\x40", MediaFormat.AC3),
            (b"\x0b\x77\x00\x00\x00\x80", MediaFormat.EAC3),
            (b"", MediaFormat.UNKNOWN),
            (b"plain text", MediaFormat.UNKNOWN),
        ],
    )
    def test_detect(self, data, expected):
        assert MediaFormat.detect(data) is expected

    def test_id3_tag_is_skipped(self):
        id3 = b"ID3\x04\x00\x00\x00\x00\x00\x05" + bytes(5)
        assert MediaFormat.detect(id3 + b"\xff\xf1\x50\x80\x02\x1f") is MediaFormat.ADTS
        assert MediaFormat.detect(id3) is MediaFormat.MP3

    def test_unknown_is_stored_as_ts(self):
        assert MediaFormat.UNKNOWN.extension == "ts"
        assert MediaFormat.ADTS.extension == "aac"
