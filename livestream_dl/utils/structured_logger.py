"""
Structured event log for capture sessions.
Writes one JSON object per line with session context, for later analysis.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional


class StructuredLogger:
    """
    Logger that mirrors events to the standard logger and, when a log
    directory is given, to a JSON-lines file.

    Usage:
        logger = StructuredLogger("livestream_dl", log_dir=Path("logs"))
        logger.info("segment_written", stream="main", sequence=42, size=188000)
    """

    def __init__(self, name: str, log_dir: Optional[Path] = None):
        """
        Args:
            name: Name of the standard logger events are mirrored to (at DEBUG).
            log_dir: Directory for JSON log files (None = disabled).
        """
        self.name = name
        self.log_dir = log_dir
        self.enabled = log_dir is not None
        self._logger = logging.getLogger(name)

        self._json_file = None
        self.path: Optional[Path] = None
        if log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.path = log_dir / f"livestream_dl_{timestamp}.jsonl"
            self._json_file = open(self.path, "a", encoding="utf-8")  # noqa: SIM115

        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all entries."""
        self._session_context.update(kwargs)

    def _write_json(self, level: str, event: str, **context) -> None:
        if not self._json_file or self._json_file.closed:
            return
        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }
        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except OSError as e:
            self._logger.warning(f"Event log write failed: {e}")
            self._json_file.close()

    def _emit(self, level: int, event: str, **context) -> None:
        details = " ".join(f"{k}={v}" for k, v in context.items())
        self._logger.debug(f"[{event}] {details}")
        self._write_json(logging.getLevelName(level), event, **context)

    def info(self, event: str, **context) -> None:
        self._emit(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._emit(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._emit(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class CaptureEventLogger:
    """Named events of a capture session."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def session_started(self, source_url: str, streams: list[str], max_workers: int):
        self.logger.set_session_context(source_url=source_url)
        self.logger.info("session_started", streams=streams, max_workers=max_workers)

    def poll_completed(
        self, stream_id: str, generation: int, segments: int, new: int, ended: bool
    ):
        self.logger.info(
            "poll_completed",
            stream=stream_id,
            generation=generation,
            segments=segments,
            new_segments=new,
            ended=ended,
        )

    def segment_written(self, stream_id: str, sequence: int, group: int, path: Path):
        self.logger.info(
            "segment_written",
            stream=stream_id,
            sequence=sequence,
            discontinuity=group,
            path=str(path),
        )

    def segment_missing(self, stream_id: str, sequence: int, reason: str, abandoned: bool):
        self.logger.warning(
            "segment_missing",
            stream=stream_id,
            sequence=sequence,
            reason=reason,
            abandoned=abandoned,
        )

    def session_completed(
        self,
        status: str,
        duration_s: float,
        segments_written: int,
        segments_missing: int,
        bytes_written: int,
        error: Optional[str] = None,
    ):
        self.logger.info(
            "session_completed",
            status=status,
            duration_s=round(duration_s, 2),
            segments_written=segments_written,
            segments_missing=segments_missing,
            total_size_mb=round(bytes_written / (1024 * 1024), 2),
            error=error,
        )


def create_event_logger(log_dir: Optional[Path] = None) -> CaptureEventLogger:
    """Creates the session event logger; JSON output only when `log_dir` is set."""
    return CaptureEventLogger(StructuredLogger("livestream_dl.events", log_dir=log_dir))
