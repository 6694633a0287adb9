"""
Concurrency-bounded download, decryption and writing of pending segments.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from livestream_dl.exceptions import DecryptionError, DownloadError, KeyFetchError
from livestream_dl.models.segment import InitSection, SegmentEntry
from livestream_dl.models.stats import CaptureStats
from livestream_dl.network.client import HttpClient
from livestream_dl.network.retry import retry_transient
from livestream_dl.storage.key_cache import KeyCache, SingleFlightCache

from .decryptor import Decryptor

if TYPE_CHECKING:
    from livestream_dl.storage.writer import SegmentWriter

log = logging.getLogger(__name__)


class SegmentStatus(Enum):
    WRITTEN = "written"
    MISSING = "missing"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class SegmentOutcome:
    """Terminal result of one acquisition task."""

    entry: SegmentEntry
    status: SegmentStatus
    path: Optional[Path] = None
    error: Optional[BaseException] = None
    size: int = 0

    @property
    def reason(self) -> str:
        if self.error is not None:
            return str(self.error)
        return self.status.value


class AcquisitionPipeline:
    """
    Fetches, decrypts and writes segments with at most `max_workers` in flight.

    Transient download failures are retried with capped exponential backoff.
    Download, key and decryption failures end only the affected segment; a
    WriteError cancels the remaining tasks and propagates.
    """

    def __init__(
        self,
        http: HttpClient,
        key_cache: KeyCache,
        writer: "SegmentWriter",
        decryptor: Optional[Decryptor] = None,
        max_workers: int = 8,
        attempts: int = 5,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        init_cache_size: int = 8,
        drain_timeout: float = 30.0,
        stats: Optional[CaptureStats] = None,
        on_outcome: Optional[Callable[[str, SegmentOutcome], None]] = None,
    ):
        self.http = http
        self.key_cache = key_cache
        self.writer = writer
        self.decryptor = decryptor or Decryptor()
        self.attempts = attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.drain_timeout = drain_timeout
        self.stats = stats or CaptureStats()
        self.on_outcome = on_outcome
        self.init_cache: SingleFlightCache[InitSection, bytes] = SingleFlightCache(
            self._load_init_section, init_cache_size
        )
        self._semaphore = asyncio.Semaphore(max_workers)
        self._stop_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """Stops admitting new tasks; in-flight tasks finish or are drained."""
        self._stop_event.set()

    async def close(self) -> None:
        await self.init_cache.close()
        await self.key_cache.close()

    async def _fetch(self, uri: str, byte_range=None) -> bytes:
        result = await retry_transient(
            lambda: self.http.fetch(uri, byte_range),
            self.attempts,
            self.base_delay,
            self.max_delay,
            description=uri,
            should_stop=lambda: self.stopping,
        )
        return result.body

    async def _load_init_section(self, section: InitSection) -> bytes:
        data = await self._fetch(section.uri, section.byte_range)
        if section.key is None:
            return data
        key = await self.key_cache.resolve(section.key.uri)
        return await asyncio.to_thread(self.decryptor.decrypt_init, data, section.key, key)

    async def _acquire(self, stream_id: str, entry: SegmentEntry) -> SegmentOutcome:
        async with self._semaphore:
            if self.stopping:
                return SegmentOutcome(entry, SegmentStatus.CANCELLED)
            try:
                data = await self._fetch(entry.uri, entry.byte_range)
                key = await self.key_cache.resolve(entry.key.uri) if entry.key else None
                data = await self.decryptor.decrypt_async(data, entry, key)
                if entry.init_section is not None:
                    data = await self.init_cache.get(entry.init_section) + data
            except DownloadError as e:
                if e.retryable and self.stopping:
                    return SegmentOutcome(entry, SegmentStatus.CANCELLED, error=e)
                log.warning(
                    f"[yellow]Segment {entry.sequence} of '{stream_id}' is missing: {e}[/yellow]"
                )
                return SegmentOutcome(entry, SegmentStatus.MISSING, error=e)
            except (KeyFetchError, DecryptionError) as e:
                log.warning(
                    f"[yellow]Segment {entry.sequence} of '{stream_id}' failed: {e}[/yellow]"
                )
                return SegmentOutcome(entry, SegmentStatus.MISSING, error=e)

            path = await self.writer.write(stream_id, entry, data)
            self.stats.record_written(len(data))
            return SegmentOutcome(
                entry, SegmentStatus.WRITTEN, path=path, size=len(data)
            )

    async def _run_one(self, stream_id: str, entry: SegmentEntry) -> SegmentOutcome:
        outcome = await self._acquire(stream_id, entry)
        if outcome.status is SegmentStatus.MISSING:
            self.stats.segments_failed += 1
        if self.on_outcome:
            self.on_outcome(stream_id, outcome)
        return outcome

    async def _wait(self, tasks: list[asyncio.Task]) -> None:
        """
        Waits for all tasks. After a stop request the remaining tasks get
        `drain_timeout` seconds before they are cancelled.
        """
        stop_waiter = asyncio.ensure_future(self._stop_event.wait())
        pending = set(tasks)
        try:
            while pending:
                done, _ = await asyncio.wait(
                    pending | {stop_waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                for task in done - {stop_waiter}:
                    pending.discard(task)
                    if not task.cancelled() and task.exception() is not None:
                        raise task.exception()
                if stop_waiter in done and pending:
                    log.info(
                        f"[cyan]Draining {len(pending)} in-flight segment(s)...[/cyan]"
                    )
                    done, pending = await asyncio.wait(pending, timeout=self.drain_timeout)
                    for task in done:
                        if not task.cancelled() and task.exception() is not None:
                            raise task.exception()
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    return
        finally:
            stop_waiter.cancel()

    async def run(
        self, stream_id: str, entries: Iterable[SegmentEntry]
    ) -> list[SegmentOutcome]:
        """
        Acquires every entry and returns one outcome per entry, in input order.

        Raises:
            WriteError: A segment could not be persisted; other tasks are cancelled.
        """
        entries = list(entries)
        if not entries:
            return []
        tasks = [asyncio.create_task(self._run_one(stream_id, e)) for e in entries]
        try:
            await self._wait(tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        outcomes = []
        for task, entry in zip(tasks, entries):
            if task.cancelled():
                outcomes.append(SegmentOutcome(entry, SegmentStatus.CANCELLED))
            else:
                outcomes.append(task.result())
        return outcomes
