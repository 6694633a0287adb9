"""
Manages a Rich Live display for a running capture.
Shows the capture state, per-stream segment progress and real-time statistics.
"""

import asyncio
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
)
from rich.table import Table
from rich.text import Text

from livestream_dl.media.acquisition import SegmentOutcome, SegmentStatus
from livestream_dl.models.segment import MediaManifest
from livestream_dl.utils.formatting import format_size

_STATE_STYLES = {
    "polling": "cyan",
    "diffing": "blue",
    "acquiring": "magenta",
    "idle": "dim",
    "done": "green",
}


class ProgressManager:
    """
    Live view of a capture: one progress row per stream, counting written
    segments against the segments seen so far.
    """

    def __init__(self, console: Console, enabled: bool = True):
        self.console = console
        self.enabled = enabled

        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}", justify="left"),
            BarColumn(bar_width=30),
            MofNCompleteColumn(),
            TextColumn("{task.fields[status]}"),
            console=console,
            transient=False,
        )

        self._live: Optional[Live] = None
        self._layout: Optional[Layout] = None
        self._tasks: dict[str, TaskID] = {}
        self._totals: dict[str, int] = {}
        self._stats = {
            "state": "starting",
            "start_time": None,
            "polls": 0,
            "written": 0,
            "missing": 0,
            "bytes": 0,
            "live": False,
        }

    def set_state(self, state: str) -> None:
        self._stats["state"] = state
        self._update_display()

    def _task_for(self, stream_id: str) -> TaskID:
        if stream_id not in self._tasks:
            self._tasks[stream_id] = self.progress.add_task(
                stream_id, total=0, status=""
            )
        return self._tasks[stream_id]

    def on_poll(self, stream_id: str, manifest: MediaManifest, new_segments: int) -> None:
        """Grows the stream's total by the segments first seen in this poll."""
        self._stats["polls"] += 1
        self._stats["live"] = self._stats["live"] or manifest.is_live
        task_id = self._task_for(stream_id)
        self._totals[stream_id] = self._totals.get(stream_id, 0) + new_segments
        status = "[green]ended[/green]" if not manifest.is_live else "[red]● live[/red]"
        self.progress.update(
            task_id, total=self._totals[stream_id], status=status
        )
        self._update_display()

    def on_outcome(self, stream_id: str, outcome: SegmentOutcome) -> None:
        task_id = self._task_for(stream_id)
        if outcome.status is SegmentStatus.WRITTEN:
            self._stats["written"] += 1
            self._stats["bytes"] += outcome.size
            self.progress.advance(task_id)
        elif outcome.status is SegmentStatus.MISSING:
            self._stats["missing"] += 1
        self._update_display()

    def get_statistics(self) -> dict:
        return self._stats.copy()

    def _create_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="progress", ratio=1),
        )
        return layout

    def _generate_header(self) -> Panel:
        elapsed = 0.0
        if self._stats["start_time"]:
            elapsed = (datetime.now() - self._stats["start_time"]).total_seconds()
        elapsed_str = (
            f"{int(elapsed // 3600):02d}:{int((elapsed % 3600) // 60):02d}:"
            f"{int(elapsed % 60):02d}"
        )
        state = self._stats["state"]
        header_text = Text()
        header_text.append("📡 livestream-dl ", style="bold cyan")
        header_text.append("│ ", style="dim")
        header_text.append(state.upper(), style=_STATE_STYLES.get(state, "white"))
        header_text.append(" │ ", style="dim")
        header_text.append(f"{elapsed_str}", style="yellow")
        header_text.append(" │ ", style="dim")
        header_text.append(f"polls {self._stats['polls']}", style="white")
        header_text.append(" │ ", style="dim")
        header_text.append(format_size(self._stats["bytes"]), style="magenta")
        if self._stats["missing"]:
            header_text.append(" │ ", style="dim")
            header_text.append(f"missing {self._stats['missing']}", style="red")
        return Panel(header_text, border_style="cyan")

    def _generate_progress_panel(self) -> Panel:
        if not self._tasks:
            body = Table.grid()
            body.add_row(
                Text("Waiting for the first playlist...", style="dim italic")
            )
            return Panel(body, title="[bold]📥 Streams[/bold]", border_style="green")
        return Panel(
            self.progress,
            title=f"[bold]📥 Streams ({len(self._tasks)})[/bold]",
            border_style="green",
        )

    def _update_display(self):
        if not self.enabled or not self._layout:
            return
        self._layout["header"].update(self._generate_header())
        self._layout["progress"].update(self._generate_progress_panel())

    async def __aenter__(self):
        self._stats["start_time"] = datetime.now()
        if not self.enabled:
            return self
        self._layout = self._create_layout()
        self._update_display()
        self._live = Live(
            self._layout,
            console=self.console,
            refresh_per_second=8,
            vertical_overflow="visible",
        )
        self._live.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._live:
            await asyncio.sleep(0.2)
            self._live.stop()
