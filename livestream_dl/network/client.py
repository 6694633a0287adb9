"""
Async HTTP client used for playlists, keys and media segments.

Every request goes through one pooled aiohttp session with the configured
cookies, optional copied query parameters and adaptive rate limiting. Library
errors are translated into TransientDownloadError or PermanentDownloadError
here so callers only deal with the application's own exceptions.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

import aiohttp
from yarl import URL

from livestream_dl.exceptions import PermanentDownloadError, TransientDownloadError
from livestream_dl.models.segment import ByteRange

from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)

# Request timeouts and server errors worth another attempt
RETRYABLE_STATUSES = frozenset({408, 425, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class FetchResult:
    """Body and final (post-redirect) URL of a successful GET."""

    body: bytes
    url: str
    status: int


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES or status >= 500


def build_cookie_header(cookies: dict[str, str]) -> str:
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


class HttpClient:
    """
    Pooled async GET client.

    Features:
    - Connection pooling sized to the worker count
    - Cookie header attached to all requests
    - Optional query parameters copied onto every URL
    - Range requests with validation of partial responses
    - Adaptive rate limiting on 429
    """

    def __init__(
        self,
        max_workers: int = 8,
        timeout: float = 10.0,
        cookies: Optional[dict[str, str]] = None,
        query_pairs: Optional[Iterable[tuple[str, str]]] = None,
        user_agent: Optional[str] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
    ):
        """
        Initializes the client.

        Args:
            max_workers: The number of concurrent workers, used to tune the connection pool.
            timeout: Connect and read timeout in seconds for every request.
            cookies: Name/value pairs sent as a Cookie header with every request.
            query_pairs: Query parameters appended to every request URL.
            user_agent: User-Agent header value.
            rate_limiter: Limiter shared by all requests of this client.
        """
        self.max_workers = max_workers
        self.timeout = timeout
        self.cookies = dict(cookies or {})
        self.query_pairs = list(query_pairs or [])
        self.user_agent = user_agent
        self._rate_limiter = rate_limiter or AdaptiveRateLimiter()
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "HttpClient":
        await self._initialize_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            headers = {"Accept-Encoding": "gzip, deflate"}
            if self.user_agent:
                headers["User-Agent"] = self.user_agent
            if self.cookies:
                headers["Cookie"] = build_cookie_header(self.cookies)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=None, sock_connect=self.timeout, sock_read=self.timeout
                ),
            )
            log.debug(f"Created HTTP pool with limit_per_host={self.max_workers}")

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    def _request_url(self, url: str) -> URL:
        target = URL(url)
        if not self.query_pairs:
            return target
        query = list(target.query.items())
        query.extend((k, v) for k, v in self.query_pairs if k not in target.query)
        return target.with_query(query)

    async def fetch(self, url: str, byte_range: Optional[ByteRange] = None) -> FetchResult:
        """
        Performs a single GET, following redirects.

        Raises:
            TransientDownloadError: timeouts, connection errors, 5xx/408/429.
            PermanentDownloadError: other 4xx, invalid URLs, malformed partial content.
        """
        await self._initialize_session()
        await self._rate_limiter.acquire()

        headers = {}
        if byte_range is not None:
            headers["Range"] = byte_range.header_value()

        try:
            async with self._session.get(
                self._request_url(url), headers=headers, allow_redirects=True
            ) as r:
                if r.status == 429:
                    retry_after = r.headers.get("Retry-After")
                    await self._rate_limiter.on_429(
                        float(retry_after) if retry_after and retry_after.isdigit() else None
                    )
                if r.status >= 400:
                    message = f"HTTP {r.status} for {url}"
                    if is_retryable_status(r.status):
                        raise TransientDownloadError(message, status=r.status)
                    raise PermanentDownloadError(message, status=r.status)

                body = await r.read()
                final_url = str(r.url)
                status = r.status
        except (aiohttp.InvalidURL, aiohttp.TooManyRedirects) as e:
            raise PermanentDownloadError(f"Cannot fetch {url}: {e}") from e
        except aiohttp.ClientError as e:
            raise TransientDownloadError(f"Network error for {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransientDownloadError(f"Timed out fetching {url}") from e

        if byte_range is not None:
            body = self._slice_range(url, body, status, byte_range)

        return FetchResult(body=body, url=final_url, status=status)

    @staticmethod
    def _slice_range(url: str, body: bytes, status: int, byte_range: ByteRange) -> bytes:
        """Validates a ranged response, slicing it if the server sent the whole resource."""
        if status == 206:
            if len(body) != byte_range.length:
                raise PermanentDownloadError(
                    f"Malformed byte-range response for {url}: expected "
                    f"{byte_range.length} bytes, got {len(body)}",
                    status=status,
                )
            return body
        if len(body) >= byte_range.end:
            log.debug(f"Server ignored Range header for {url}; slicing full body.")
            return body[byte_range.offset : byte_range.end]
        raise PermanentDownloadError(
            f"Malformed byte-range response for {url}: resource has {len(body)} "
            f"bytes, range ends at {byte_range.end}",
            status=status,
        )
