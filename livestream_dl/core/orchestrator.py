"""
The capture state machine: poll playlists, diff against the ledger, acquire
new segments, and wait for the next poll until every stream has ended.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Sequence

from livestream_dl.cli.progress_manager import ProgressManager
from livestream_dl.exceptions import (
    LivestreamDLError,
    ManifestParseError,
    PlaylistGoneError,
)
from livestream_dl.manifest.catalog import VariantCatalog
from livestream_dl.manifest.client import ManifestClient
from livestream_dl.media.acquisition import (
    AcquisitionPipeline,
    SegmentOutcome,
    SegmentStatus,
)
from livestream_dl.models.config import CaptureConfig
from livestream_dl.models.segment import MasterManifest, MediaManifest, Rendition
from livestream_dl.models.stats import (
    CaptureReport,
    CaptureStats,
    CaptureStatus,
    MissingSegment,
)
from livestream_dl.network.client import HttpClient
from livestream_dl.storage.key_cache import KeyCache
from livestream_dl.storage.ledger import SegmentLedger
from livestream_dl.storage.writer import SegmentWriter
from livestream_dl.utils.path import MAIN_STREAM
from livestream_dl.utils.structured_logger import CaptureEventLogger, create_event_logger

log = logging.getLogger(__name__)

# Picks (video_id, alternate_ids) from a catalog, e.g. through a prompt
Chooser = Callable[[VariantCatalog], tuple[Optional[str], Optional[list[str]]]]


class CaptureState(Enum):
    POLLING = "polling"
    DIFFING = "diffing"
    ACQUIRING = "acquiring"
    IDLE = "idle"
    DONE = "done"


@dataclass
class RenditionState:
    """Polling state of one selected rendition."""

    rendition: Rendition
    polled: bool = False
    ended: bool = False
    target_duration: float = 0.0


async def resolve_renditions(
    manifests: ManifestClient,
    url: str,
    config: CaptureConfig,
    chooser: Optional[Chooser] = None,
) -> list[Rendition]:
    """
    Turns the input URL into the renditions to capture. A media playlist is
    captured as-is; a master playlist goes through the variant catalog.
    """
    manifest = await manifests.fetch_with_retry(url)
    if isinstance(manifest, MediaManifest):
        return [Rendition(stream_id=MAIN_STREAM, uri=url)]

    catalog = VariantCatalog.from_manifest(manifest)
    if config.choose_stream and chooser is not None:
        video_id, alternate_ids = chooser(catalog)
        return catalog.select(video_id, alternate_ids)
    if config.video or config.alternates is not None:
        return catalog.select(config.video, config.alternates)
    return catalog.default_selection()


class Orchestrator:
    """
    Drives a capture session.

    Live streams cycle POLLING -> DIFFING -> ACQUIRING -> IDLE; once every
    rendition has ended and nothing is outstanding the session is DONE.
    """

    def __init__(
        self,
        config: CaptureConfig,
        renditions: Sequence[Rendition],
        manifests: ManifestClient,
        ledger: SegmentLedger,
        pipeline: AcquisitionPipeline,
        stats: Optional[CaptureStats] = None,
        events: Optional[CaptureEventLogger] = None,
        progress: Optional[ProgressManager] = None,
    ):
        if not renditions:
            raise ValueError("At least one rendition is required.")
        self.config = config
        self.manifests = manifests
        self.ledger = ledger
        self.pipeline = pipeline
        self.stats = stats or pipeline.stats
        self.events = events or create_event_logger()
        self.progress = progress
        self.renditions = {r.stream_id: RenditionState(r) for r in renditions}

        self._state = CaptureState.POLLING
        self._generation = 0
        self._stop_event = asyncio.Event()
        self._missing: list[MissingSegment] = []
        self._written: dict[str, list[Path]] = {r.stream_id: [] for r in renditions}

        self.pipeline.on_outcome = self._record_progress

    @classmethod
    def create(
        cls,
        config: CaptureConfig,
        renditions: Sequence[Rendition],
        http: HttpClient,
        events: Optional[CaptureEventLogger] = None,
        progress: Optional[ProgressManager] = None,
    ) -> "Orchestrator":
        """Wires up ledger, writer, key cache and pipeline for `config.output_dir`."""
        output_dir = Path(config.output_dir or ".")
        stats = CaptureStats()
        ledger = SegmentLedger(output_dir, config.missing_retry_polls)
        writer = SegmentWriter(output_dir, ledger)
        removed = writer.cleanup_partials()
        if removed:
            log.debug(f"Removed {removed} partial segment file(s) from a previous run.")

        key_cache = KeyCache(
            http,
            capacity=config.key_cache_size,
            attempts=config.segment_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        pipeline = AcquisitionPipeline(
            http,
            key_cache,
            writer,
            max_workers=config.max_workers,
            attempts=config.segment_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
            init_cache_size=config.init_cache_size,
            drain_timeout=config.drain_timeout,
            stats=stats,
        )
        manifests = ManifestClient(
            http,
            attempts=config.manifest_attempts,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        return cls(
            config, renditions, manifests, ledger, pipeline, stats, events, progress
        )

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """
        Requests a graceful stop: no new polls are issued and in-flight
        segments are drained.
        """
        if not self._stop_event.is_set():
            log.info("[yellow]Stopping after in-flight segments finish...[/yellow]")
        self._stop_event.set()
        self.pipeline.stop()

    def _set_state(self, state: CaptureState) -> None:
        self._state = state
        if self.progress:
            self.progress.set_state(state.value)

    def _record_progress(self, stream_id: str, outcome: SegmentOutcome) -> None:
        if self.progress:
            self.progress.on_outcome(stream_id, outcome)

    async def _poll_one(self, rs: RenditionState) -> Optional[MediaManifest]:
        stream_id = rs.rendition.stream_id
        try:
            manifest = await self.manifests.fetch_with_retry(
                rs.rendition.uri, self._generation
            )
        except PlaylistGoneError:
            if rs.polled and self.config.playlist_gone_policy == "end":
                log.warning(
                    f"[yellow]Playlist of '{stream_id}' disappeared; "
                    "treating the stream as ended.[/yellow]"
                )
                rs.ended = True
                for entry in self.ledger.abandon_outstanding(stream_id):
                    self._report_missing(stream_id, entry, "playlist disappeared")
                return None
            raise

        if isinstance(manifest, MasterManifest):
            raise ManifestParseError(
                f"Expected a media playlist for '{stream_id}', got a master playlist."
            )

        rs.polled = True
        rs.target_duration = manifest.target_duration
        if not manifest.is_live:
            rs.ended = True
        return manifest

    async def _gather_or_cancel(self, coros: list) -> list:
        """
        Runs one coroutine per rendition. The first exception cancels the
        remaining ones before it propagates, so no rendition keeps fetching or
        writing after the session has failed.
        """
        tasks = [asyncio.create_task(coro) for coro in coros]
        if not tasks:
            return []
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        except BaseException:
            self.pipeline.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return [task.result() for task in tasks]

    async def _poll(self) -> dict[str, MediaManifest]:
        """Fetches the media playlist of every rendition that has not ended."""
        active = [rs for rs in self.renditions.values() if not rs.ended]
        results = await self._gather_or_cancel([self._poll_one(rs) for rs in active])
        self._generation += 1
        self.stats.polls += 1
        return {
            rs.rendition.stream_id: manifest
            for rs, manifest in zip(active, results)
            if manifest is not None
        }

    def _diff(self, manifests: dict[str, MediaManifest]) -> dict[str, list]:
        pending = {}
        for stream_id, manifest in manifests.items():
            entries = self.ledger.diff(stream_id, manifest)
            pending[stream_id] = entries
            self.events.poll_completed(
                stream_id,
                manifest.generation,
                len(manifest.segments),
                len(entries),
                not manifest.is_live,
            )
            if self.progress:
                self.progress.on_poll(stream_id, manifest, len(entries))
        return pending

    def _report_missing(self, stream_id: str, entry, reason: str) -> None:
        self._missing.append(MissingSegment(stream_id, entry.sequence, entry.uri, reason))

    async def _acquire(self, pending: dict[str, list]) -> None:
        work = {sid: entries for sid, entries in pending.items() if entries}
        results = await self._gather_or_cancel(
            [self.pipeline.run(sid, entries) for sid, entries in work.items()]
        )
        for stream_id, outcomes in zip(work, results):
            ended = self.renditions[stream_id].ended
            for outcome in outcomes:
                self._handle_outcome(stream_id, outcome, ended)

        for stream_id in self.renditions:
            for entry in self.ledger.take_expired(stream_id):
                self._report_missing(stream_id, entry, "left the playlist window")
                self.events.segment_missing(
                    stream_id, entry.sequence, "left the playlist window", True
                )

    def _handle_outcome(self, stream_id: str, outcome: SegmentOutcome, ended: bool) -> None:
        entry = outcome.entry
        if outcome.status is SegmentStatus.WRITTEN:
            self._written[stream_id].append(outcome.path)
            self.events.segment_written(
                stream_id, entry.sequence, entry.discontinuity, outcome.path
            )
        elif outcome.status is SegmentStatus.MISSING:
            abandoned = self.ledger.record_failure(stream_id, entry, final=ended)
            self.events.segment_missing(stream_id, entry.sequence, outcome.reason, abandoned)
            if abandoned:
                self._report_missing(stream_id, entry, outcome.reason)

    def is_done(self) -> bool:
        """All renditions ended and no sequence is still outstanding."""
        return all(rs.ended for rs in self.renditions.values()) and not any(
            self.ledger.outstanding(sid) for sid in self.renditions
        )

    def poll_interval(self) -> float:
        live = [
            rs.target_duration
            for rs in self.renditions.values()
            if not rs.ended and rs.target_duration > 0
        ]
        if not live:
            return 0.0
        return self.config.poll_interval_factor * min(live)

    async def _idle(self, poll_started: float) -> None:
        """Waits until the next poll is due, returning early on stop."""
        remaining = self.poll_interval() - (time.monotonic() - poll_started)
        if remaining <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=remaining)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> CaptureReport:
        """
        Runs the capture until every stream has ended, a fatal error occurs,
        or `stop()` is called. Output written before a failure is kept.
        """
        start = time.monotonic()
        error: Optional[BaseException] = None
        self.events.session_started(
            self.config.source_url, list(self.renditions), self.config.max_workers
        )

        try:
            while not self.stopping:
                self._set_state(CaptureState.POLLING)
                poll_started = time.monotonic()
                manifests = await self._poll()

                self._set_state(CaptureState.DIFFING)
                pending = self._diff(manifests)

                self._set_state(CaptureState.ACQUIRING)
                await self._acquire(pending)

                if self.is_done():
                    self._set_state(CaptureState.DONE)
                    break
                if self.stopping:
                    break

                self._set_state(CaptureState.IDLE)
                await self._idle(poll_started)
        except LivestreamDLError as e:
            error = e
            log.error(f"[red]Capture stopped: {e}[/red]")
        finally:
            await self.pipeline.close()

        self.stats.keys_fetched = self.pipeline.key_cache.loads
        self.stats.key_cache_hits = self.pipeline.key_cache.hits

        if error is not None:
            status = CaptureStatus.FATAL
        elif self._missing:
            status = CaptureStatus.PARTIAL
        else:
            status = CaptureStatus.SUCCESS

        report = CaptureReport(
            status=status,
            stats=self.stats,
            missing=list(self._missing),
            written={sid: list(paths) for sid, paths in self._written.items()},
            error=error,
            cancelled=self.stopping and self._state is not CaptureState.DONE,
            duration_s=time.monotonic() - start,
        )
        self.events.session_completed(
            status.value,
            report.duration_s,
            self.stats.segments_written,
            report.missing_count,
            self.stats.bytes_written,
            str(error) if error else None,
        )
        return report
