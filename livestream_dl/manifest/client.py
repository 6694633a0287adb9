"""
Fetches master and media playlists over HTTP and parses them.
"""

import asyncio
import logging
from typing import Optional

from livestream_dl.exceptions import (
    DownloadError,
    ManifestFetchError,
    ManifestParseError,
    PlaylistGoneError,
    StreamUnavailableError,
)
from livestream_dl.models.segment import Manifest
from livestream_dl.network.client import HttpClient
from livestream_dl.network.retry import backoff_delay

from .parser import parse_manifest

log = logging.getLogger(__name__)

GONE_STATUSES = (404, 410)


class ManifestClient:
    """Downloads playlists and turns them into Manifest objects."""

    def __init__(
        self,
        http: HttpClient,
        attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
    ):
        self.http = http
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def fetch(self, uri: str, generation: int = 0) -> Manifest:
        """
        Fetches and parses one playlist in a single attempt.

        Relative URIs inside the playlist are resolved against the final URL
        after redirects.

        Raises:
            ManifestFetchError: On any transport failure.
            ManifestParseError: On malformed playlist syntax.
        """
        try:
            result = await self.http.fetch(uri)
        except DownloadError as e:
            raise ManifestFetchError(
                f"Failed to fetch playlist {uri}: {e}", e.status, e.retryable
            ) from e

        try:
            text = result.body.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ManifestParseError(f"Playlist {uri} is not valid UTF-8") from e

        manifest = parse_manifest(text, result.url, generation)
        log.debug(f"Fetched playlist {uri} (generation {generation})")
        return manifest

    async def fetch_with_retry(self, uri: str, generation: int = 0) -> Manifest:
        """
        Fetches a playlist, retrying transport and parse failures with
        exponential backoff.

        A live origin may briefly serve a truncated playlist while rewriting
        it, so parse errors share the attempt budget of transient failures.

        Raises:
            PlaylistGoneError: The server answered 404 or 410.
            StreamUnavailableError: Any other transport failure, after all attempts.
            ManifestParseError: The playlist was still malformed on the last attempt.
        """
        last_error: Optional[Exception] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await self.fetch(uri, generation)
            except ManifestFetchError as e:
                if e.status in GONE_STATUSES:
                    raise PlaylistGoneError(
                        f"Playlist {uri} is gone (HTTP {e.status})", e.status
                    ) from e
                if not e.retryable:
                    raise StreamUnavailableError(str(e), e.status) from e
                last_error = e
            except ManifestParseError as e:
                last_error = e

            log.debug(
                f"Playlist attempt {attempt}/{self.attempts} for {uri} failed: {last_error}"
            )
            if attempt < self.attempts:
                await asyncio.sleep(
                    backoff_delay(attempt, self.base_delay, self.max_delay)
                )

        if isinstance(last_error, ManifestParseError):
            raise last_error
        raise StreamUnavailableError(
            f"Playlist {uri} unavailable after {self.attempts} attempts: {last_error}",
            getattr(last_error, "status", None),
        ) from last_error
