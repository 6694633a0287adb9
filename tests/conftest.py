import asyncio
from collections import Counter
from typing import Iterable, Optional, Sequence, Union

import pytest
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad

from livestream_dl.exceptions import PermanentDownloadError, TransientDownloadError
from livestream_dl.models.config import CaptureConfig
from livestream_dl.models.segment import ByteRange
from livestream_dl.network.client import FetchResult, is_retryable_status

BASE = "https://cdn.example.com/live/"
PLAYLIST_URL = BASE + "index.m3u8"

MASTER = """#EXTM3U
#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="aud",NAME="English",LANGUAGE="en",DEFAULT=YES,URI="audio/en.m3u8"
#EXT-X-MEDIA:TYPE=AUDIO,GROUP-ID="aud",NAME="Deutsch",LANGUAGE="de",URI="audio/de.m3u8"
#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="subs",NAME="English",LANGUAGE="en",URI="subs/en.m3u8"
#EXT-X-MEDIA:TYPE=CLOSED-CAPTIONS,GROUP-ID="cc",NAME="CC1",INSTREAM-ID="CC1"
#EXT-X-STREAM-INF:BANDWIDTH=800000,RESOLUTION=640x360,CODECS="avc1.4d401e,mp4a.40.2",AUDIO="aud",SUBTITLES="subs"
low/index.m3u8
#EXT-X-STREAM-INF:BANDWIDTH=2500000,RESOLUTION=1280x720,AUDIO="aud",SUBTITLES="subs"
https://other.example.com/high/index.m3u8
"""

Response = Union[bytes, int, BaseException]


class FakeHttp:
    """
    In-memory stand-in for HttpClient.

    Each URL has a script of responses: bytes are served, ints are HTTP
    error statuses, exceptions are raised. Responses are consumed in order
    and the last one repeats forever.
    """

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.routes: dict[str, list[Response]] = {}
        self.calls: Counter = Counter()
        self.ranges: list[tuple[str, Optional[ByteRange]]] = []

    def add(self, url: str, *responses: Response) -> None:
        self.routes[url] = list(responses)

    async def fetch(self, url: str, byte_range: Optional[ByteRange] = None) -> FetchResult:
        self.calls[url] += 1
        self.ranges.append((url, byte_range))
        if self.delay:
            await asyncio.sleep(self.delay)

        script = self.routes.get(url)
        if not script:
            raise PermanentDownloadError(f"HTTP 404 for {url}", status=404)
        response = script[0] if len(script) == 1 else script.pop(0)

        if isinstance(response, BaseException):
            raise response
        if isinstance(response, int):
            message = f"HTTP {response} for {url}"
            if is_retryable_status(response):
                raise TransientDownloadError(message, status=response)
            raise PermanentDownloadError(message, status=response)

        body = response
        if byte_range is not None:
            body = body[byte_range.offset : byte_range.end]
        return FetchResult(body=body, url=url, status=206 if byte_range else 200)


def media_playlist(
    sequences: Iterable[int],
    target: int = 2,
    ended: bool = False,
    discontinuity_before: Sequence[int] = (),
    discontinuity_sequence: Optional[int] = None,
    key_line: Optional[str] = None,
    prefix: str = "seg",
) -> str:
    """Builds a media playlist whose segment `n` is served at `<prefix><n>.ts`."""
    sequences = list(sequences)
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", f"#EXT-X-TARGETDURATION:{target}"]
    lines.append(f"#EXT-X-MEDIA-SEQUENCE:{sequences[0] if sequences else 0}")
    if discontinuity_sequence is not None:
        lines.append(f"#EXT-X-DISCONTINUITY-SEQUENCE:{discontinuity_sequence}")
    if key_line:
        lines.append(key_line)
    for sequence in sequences:
        if sequence in discontinuity_before:
            lines.append("#EXT-X-DISCONTINUITY")
        lines.append(f"#EXTINF:{target}.0,")
        lines.append(f"{prefix}{sequence}.ts")
    if ended:
        lines.append("#EXT-X-ENDLIST")
    return "\n".join(lines) + "\n"


def segment_body(sequence: int, prefix: str = "seg") -> bytes:
    return f"{prefix}-{sequence}-payload".encode()


def serve_segments(http: FakeHttp, sequences: Iterable[int], prefix: str = "seg") -> None:
    for sequence in sequences:
        http.add(f"{BASE}{prefix}{sequence}.ts", segment_body(sequence, prefix))


def encrypt(data: bytes, key: bytes, iv: bytes) -> bytes:
    return AES.new(key, AES.MODE_CBC, iv).encrypt(pad(data, 16))


@pytest.fixture
def http() -> FakeHttp:
    return FakeHttp()


@pytest.fixture
def config(tmp_path) -> CaptureConfig:
    return CaptureConfig(
        source_url=PLAYLIST_URL,
        output_dir=str(tmp_path / "capture"),
        segment_attempts=3,
        manifest_attempts=2,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        poll_interval_factor=0.01,
        drain_timeout=1.0,
    )
