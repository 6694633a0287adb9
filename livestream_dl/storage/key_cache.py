"""
Bounded LRU caches whose misses are loaded at most once at a time per key.

`KeyCache` resolves AES-128 key URIs to raw key bytes. The same
`SingleFlightCache` also backs the cache of initialization sections.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Awaitable, Callable, Generic, Hashable, TypeVar

from livestream_dl.exceptions import DownloadError, KeyFetchError
from livestream_dl.models.segment import AES_BLOCK_SIZE
from livestream_dl.network.client import HttpClient
from livestream_dl.network.retry import retry_transient

log = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class SingleFlightCache(Generic[K, V]):
    """
    LRU cache with single-flight loading.

    Concurrent misses for the same key share one load task. A failed load is
    not cached, so the next request for that key loads again. Loads run in
    their own task, so a cancelled waiter never cancels the load for others.
    """

    def __init__(self, loader: Callable[[K], Awaitable[V]], capacity: int = 8):
        if capacity < 1:
            raise ValueError("Cache capacity must be at least 1.")
        self._loader = loader
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._inflight: dict[K, asyncio.Task] = {}
        self.hits = 0
        self.loads = 0

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    async def get(self, key: K) -> V:
        # No await between lookup and registration, so the check-then-insert
        # cannot interleave with another coroutine.
        if key in self._entries:
            self._entries.move_to_end(key)
            self.hits += 1
            return self._entries[key]

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._load(key))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _load(self, key: K) -> V:
        self.loads += 1
        try:
            value = await self._loader(key)
        finally:
            self._inflight.pop(key, None)

        self._entries[key] = value
        self._entries.move_to_end(key)
        if len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            log.debug(f"Evicted {evicted!r} from cache")
        return value

    async def close(self) -> None:
        """Cancels loads nobody is waiting for anymore."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class KeyCache(SingleFlightCache[str, bytes]):
    """Resolves key URIs to 16-byte AES-128 keys."""

    def __init__(
        self,
        http: HttpClient,
        capacity: int = 8,
        attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
    ):
        super().__init__(self._fetch_key, capacity)
        self.http = http
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def resolve(self, key_uri: str) -> bytes:
        """
        Returns the key for `key_uri`, fetching it on a miss.

        Raises:
            KeyFetchError: The key could not be fetched or is not 16 bytes long.
        """
        return await self.get(key_uri)

    async def _fetch_key(self, key_uri: str) -> bytes:
        try:
            result = await retry_transient(
                lambda: self.http.fetch(key_uri),
                self.attempts,
                self.base_delay,
                self.max_delay,
                description=f"key {key_uri}",
            )
        except DownloadError as e:
            raise KeyFetchError(f"Failed to fetch key {key_uri}: {e}") from e

        if len(result.body) != AES_BLOCK_SIZE:
            raise KeyFetchError(
                f"Key {key_uri} is {len(result.body)} bytes, expected {AES_BLOCK_SIZE}."
            )
        log.debug(f"Fetched key {key_uri}")
        return result.body
