"""
Persists decrypted segments under names that encode their playback order.
"""

import asyncio
import logging
import os
import re
from pathlib import Path
from typing import NamedTuple, Optional

import aiofiles
import aiofiles.os

from livestream_dl.exceptions import WriteError
from livestream_dl.media.media_format import MediaFormat
from livestream_dl.models.segment import SegmentEntry

from .ledger import SegmentLedger

log = logging.getLogger(__name__)

SEGMENTS_DIRNAME = "segments"
_NAME_RE = re.compile(r"^d(?P<group>\d{10})_s(?P<sequence>\d{10})\.(?P<ext>\w+)$")


class SegmentName(NamedTuple):
    stream_id: str
    group: int
    sequence: int
    extension: str


def segment_filename(entry: SegmentEntry, extension: str) -> str:
    return f"d{entry.discontinuity:010}_s{entry.sequence:010}.{extension}"


def parse_segment_name(path: Path) -> Optional[SegmentName]:
    """Recovers stream, discontinuity group and sequence from a segment path."""
    match = _NAME_RE.match(path.name)
    if not match:
        return None
    return SegmentName(
        stream_id=path.parent.name,
        group=int(match.group("group")),
        sequence=int(match.group("sequence")),
        extension=match.group("ext"),
    )


def _fsync(path: Path) -> None:
    fd = os.open(path, os.O_RDONLY)
    try:
        os.fsync(fd)
    finally:
        os.close(fd)


class SegmentWriter:
    """
    Writes each segment to a temporary `.part` file, syncs it to disk,
    renames it into place and only then confirms it in the ledger.
    """

    def __init__(self, output_dir: Path, ledger: SegmentLedger):
        self.segments_dir = output_dir / SEGMENTS_DIRNAME
        self.ledger = ledger

    def stream_dir(self, stream_id: str) -> Path:
        return self.segments_dir / stream_id

    async def write(self, stream_id: str, entry: SegmentEntry, data: bytes) -> Path:
        """
        Durably writes one segment and confirms it in the ledger.

        An existing file with the same name is replaced.

        Raises:
            WriteError: The file or its ledger record could not be written.
        """
        extension = MediaFormat.detect(data).extension
        directory = self.stream_dir(stream_id)
        final_path = directory / segment_filename(entry, extension)
        part_path = final_path.with_name(final_path.name + ".part")

        try:
            await aiofiles.os.makedirs(directory, exist_ok=True)
            async with aiofiles.open(part_path, "wb") as f:
                await f.write(data)
                await f.flush()
            await asyncio.to_thread(_fsync, part_path)
            await aiofiles.os.replace(part_path, final_path)
        except OSError as e:
            raise WriteError(f"Failed to write segment {final_path}: {e}") from e

        await self.ledger.confirm(stream_id, entry, final_path)
        log.debug(f"Wrote {final_path} ({len(data)} bytes)")
        return final_path

    def cleanup_partials(self) -> int:
        """Removes `.part` leftovers of an interrupted run."""
        removed = 0
        if not self.segments_dir.is_dir():
            return removed
        for part in self.segments_dir.glob("*/*.part"):
            try:
                part.unlink()
                removed += 1
            except OSError as e:
                log.warning(f"[yellow]Could not remove leftover {part}: {e}[/yellow]")
        return removed
