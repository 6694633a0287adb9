"""
Tracks which segments of each stream have been seen and durably written.

Confirmed sequence numbers are stored in a SQLite database in the output
directory so that a restarted capture never downloads them again.
"""

import asyncio
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from livestream_dl.exceptions import SequenceResetError, WriteError
from livestream_dl.models.segment import MediaManifest, SegmentEntry

log = logging.getLogger(__name__)

LEDGER_FILENAME = "ledger.sqlite"


@dataclass
class StreamLedger:
    """In-memory state of one stream."""

    confirmed: set[int] = field(default_factory=set)
    groups: dict[int, int] = field(default_factory=dict)
    pending: dict[int, SegmentEntry] = field(default_factory=dict)
    failures: dict[int, int] = field(default_factory=dict)
    abandoned: set[int] = field(default_factory=set)
    expired: list[SegmentEntry] = field(default_factory=list)
    max_sequence: Optional[int] = None
    last_group: Optional[int] = None
    generation: int = -1


class SegmentLedger:
    """
    Sequence-indexed record of segments across polls.

    Only the segment writer confirms entries, and only after the bytes are on
    disk. Everything else (discontinuity anchoring, failure rounds) is kept
    in memory and rebuilt from the confirmed rows on restart.
    """

    def __init__(self, output_dir: Path, missing_retry_polls: int = 3, pool_size: int = 2):
        self.db_path = output_dir / LEDGER_FILENAME
        self.missing_retry_polls = missing_retry_polls
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._streams: dict[str, StreamLedger] = {}
        output_dir.mkdir(parents=True, exist_ok=True)
        self._initialize_db()
        self._load()

    def _get_connection(self) -> sqlite3.Connection:
        """Gets a new database connection with durable PRAGMA settings."""
        conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=FULL;")
        return conn

    def _initialize_db(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS confirmed_segments (
                        stream_id TEXT NOT NULL,
                        sequence INTEGER NOT NULL,
                        discontinuity INTEGER NOT NULL,
                        uri TEXT,
                        path TEXT NOT NULL,
                        confirmed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        PRIMARY KEY (stream_id, sequence)
                    );
                    """
                )
                conn.commit()
        except sqlite3.Error as e:
            raise WriteError(f"Failed to initialize ledger at '{self.db_path}': {e}") from e

    def _load(self) -> None:
        """Restores confirmed sequences from a previous run."""
        try:
            with self._get_connection() as conn:
                rows = conn.execute(
                    "SELECT stream_id, sequence, discontinuity FROM confirmed_segments"
                ).fetchall()
        except sqlite3.Error as e:
            raise WriteError(f"Failed to read ledger at '{self.db_path}': {e}") from e

        for stream_id, sequence, group in rows:
            state = self.stream(stream_id)
            state.confirmed.add(sequence)
            state.groups[sequence] = group
            if state.max_sequence is None or sequence > state.max_sequence:
                state.max_sequence = sequence
                state.last_group = group
        if rows:
            log.info(
                f"[cyan]Resuming: {len(rows)} segment(s) already captured in "
                f"{len(self._streams)} stream(s).[/cyan]"
            )

    def stream(self, stream_id: str) -> StreamLedger:
        if stream_id not in self._streams:
            self._streams[stream_id] = StreamLedger()
        return self._streams[stream_id]

    def is_confirmed(self, stream_id: str, sequence: int) -> bool:
        return sequence in self.stream(stream_id).confirmed

    def confirmed_count(self, stream_id: Optional[str] = None) -> int:
        if stream_id is not None:
            return len(self.stream(stream_id).confirmed)
        return sum(len(s.confirmed) for s in self._streams.values())

    def _anchor_offset(self, state: StreamLedger, segments) -> int:
        """
        Offset that maps parsed discontinuity groups onto the groups already
        assigned to this stream.
        """
        for entry in segments:
            known = state.groups.get(entry.sequence)
            if known is not None:
                return known - entry.discontinuity
        if state.last_group is not None and segments[0].discontinuity < state.last_group:
            return state.last_group - segments[0].discontinuity
        return 0

    def diff(self, stream_id: str, manifest: MediaManifest) -> list[SegmentEntry]:
        """
        Returns the entries of a freshly polled playlist that still need to be
        captured, tagged with their anchored discontinuity group.

        Raises:
            SequenceResetError: A still-live playlist went back in sequence numbers.
        """
        state = self.stream(stream_id)
        segments = manifest.segments
        state.generation = manifest.generation
        if not segments:
            return []

        newest = segments[-1].sequence
        if not manifest.ended and state.max_sequence is not None and newest < state.max_sequence:
            raise SequenceResetError(
                f"Stream '{stream_id}' went back from sequence {state.max_sequence} "
                f"to {newest}; the origin restarted the stream."
            )

        offset = self._anchor_offset(state, segments)
        pending: list[SegmentEntry] = []
        group_floor = state.groups.get(segments[0].sequence - 1, state.last_group)

        for entry in segments:
            group = state.groups.get(entry.sequence)
            if group is None:
                group = entry.discontinuity + offset
                if group_floor is not None and group < group_floor:
                    group = group_floor
                state.groups[entry.sequence] = group
            group_floor = group
            if group != entry.discontinuity:
                entry = entry.with_discontinuity(group)

            if entry.sequence in state.confirmed or entry.sequence in state.abandoned:
                continue
            state.pending[entry.sequence] = entry
            pending.append(entry)

        if state.max_sequence is None or newest > state.max_sequence:
            state.max_sequence = newest
            state.last_group = state.groups[newest]

        self._expire_before(state, segments[0].sequence)
        return pending

    def _expire_before(self, state: StreamLedger, first_sequence: int) -> None:
        """Drops pending entries that slid out of the playlist window."""
        for sequence in [s for s in state.pending if s < first_sequence]:
            state.expired.append(state.pending.pop(sequence))
            state.abandoned.add(sequence)
            state.failures.pop(sequence, None)
        for sequence in [s for s in state.groups if s < first_sequence - 1]:
            del state.groups[sequence]

    def take_expired(self, stream_id: str) -> list[SegmentEntry]:
        """Returns and clears the entries that left the window before capture."""
        state = self.stream(stream_id)
        expired, state.expired = state.expired, []
        return expired

    def _confirm_sync(self, stream_id: str, entry: SegmentEntry, path: Path) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO confirmed_segments "
                "(stream_id, sequence, discontinuity, uri, path) VALUES (?, ?, ?, ?, ?)",
                (stream_id, entry.sequence, entry.discontinuity, entry.uri, str(path)),
            )
            conn.commit()

    async def confirm(self, stream_id: str, entry: SegmentEntry, path: Path) -> None:
        """
        Records a durably written segment.

        Raises:
            WriteError: The confirmation could not be persisted.
        """
        try:
            async with self._connection_semaphore:
                await asyncio.to_thread(self._confirm_sync, stream_id, entry, path)
        except sqlite3.Error as e:
            raise WriteError(f"Failed to record segment {entry.sequence} in ledger: {e}") from e

        state = self.stream(stream_id)
        state.confirmed.add(entry.sequence)
        state.pending.pop(entry.sequence, None)
        state.failures.pop(entry.sequence, None)

    def record_failure(self, stream_id: str, entry: SegmentEntry, final: bool = False) -> bool:
        """
        Counts a failed capture round for an entry.

        Returns True when the entry is abandoned: after `missing_retry_polls`
        rounds, or immediately when `final` is set.
        """
        state = self.stream(stream_id)
        rounds = state.failures.get(entry.sequence, 0) + 1
        state.failures[entry.sequence] = rounds
        if final or rounds >= self.missing_retry_polls:
            state.abandoned.add(entry.sequence)
            state.pending.pop(entry.sequence, None)
            state.failures.pop(entry.sequence, None)
            return True
        return False

    def abandon_outstanding(self, stream_id: str) -> list[SegmentEntry]:
        """Abandons every outstanding entry of a stream that will not be polled again."""
        state = self.stream(stream_id)
        entries = [state.pending[s] for s in sorted(state.pending)]
        state.abandoned.update(state.pending)
        state.pending.clear()
        state.failures.clear()
        return entries

    def outstanding(self, stream_id: str) -> list[int]:
        """Sequences seen in a playlist but neither confirmed nor abandoned."""
        return sorted(self.stream(stream_id).pending)
