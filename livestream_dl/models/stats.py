"""
Dataclasses for tracking capture session statistics and the terminal report.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional


class CaptureStatus(Enum):
    """Terminal status of a capture run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FATAL = "fatal"


@dataclass(frozen=True)
class MissingSegment:
    """A segment that could not be captured, with the reason it failed."""

    stream_id: str
    sequence: int
    uri: str
    reason: str


@dataclass
class CaptureStats:
    """Tracks statistics for a capture session, including real-time speed."""

    polls: int = 0
    segments_written: int = 0
    segments_failed: int = 0
    bytes_written: int = 0
    keys_fetched: int = 0
    key_cache_hits: int = 0

    current_speed_bps: float = 0.0
    peak_speed_bps: float = 0.0
    _speed_samples: list[float] = field(default_factory=list, repr=False)
    _last_progress_time: float = field(default=0.0, repr=False)
    _last_progress_bytes: int = field(default=0, repr=False)

    def __post_init__(self):
        self._last_progress_time = time.monotonic()

    def record_written(self, size: int) -> None:
        """Counts a written segment and updates the rolling speed estimate."""
        self.segments_written += 1
        self.bytes_written += size

        now = time.monotonic()
        elapsed = now - self._last_progress_time
        if elapsed > 0.5:
            bytes_diff = self.bytes_written - self._last_progress_bytes
            self._speed_samples.append(bytes_diff / elapsed)
            # Keep a sliding window of the last 10 speed samples
            if len(self._speed_samples) > 10:
                self._speed_samples.pop(0)
            self.current_speed_bps = sum(self._speed_samples) / len(
                self._speed_samples
            )
            self.peak_speed_bps = max(self.peak_speed_bps, self.current_speed_bps)
            self._last_progress_time = now
            self._last_progress_bytes = self.bytes_written


@dataclass
class CaptureReport:
    """Outcome of a capture run, handed back to the caller."""

    status: CaptureStatus
    stats: CaptureStats
    missing: list[MissingSegment] = field(default_factory=list)
    written: dict[str, list[Path]] = field(default_factory=dict)
    error: Optional[BaseException] = None
    cancelled: bool = False
    duration_s: float = 0.0

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    def describe(self) -> str:
        if self.status is CaptureStatus.FATAL:
            return f"fatal: {self.error}"
        if self.status is CaptureStatus.PARTIAL:
            return f"partial: {self.missing_count} segments missing"
        return "success"
