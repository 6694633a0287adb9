"""
Functions for formatting and displaying data in the console using Rich.
"""

from pathlib import Path
from typing import Any, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from livestream_dl.manifest.catalog import VariantCatalog
from livestream_dl.models.config import CaptureConfig
from livestream_dl.models.segment import Role
from livestream_dl.models.stats import CaptureReport, CaptureStatus
from livestream_dl.utils.formatting import (
    format_bitrate,
    format_duration,
    format_resolution,
    format_size,
)

# Missing segments listed individually in the summary before truncating
MAX_MISSING_ROWS = 10


def format_error_with_suggestions(
    error: Exception, context: Optional[dict] = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Check the values in your config file or on the command line.",
            "• Run `livestream-dl init --force` to write a fresh default config.",
        ],
        "StreamUnavailableError": [
            "• The playlist URL may be wrong or may have expired.",
            "• Signed URLs often need `--copy-query` or cookies (`--cookies-file`).",
            "• Check that the stream is reachable in a browser.",
        ],
        "PlaylistGoneError": [
            "• The origin removed the playlist. The stream has probably ended.",
            "• Use `--gone-policy end` to keep what was captured so far.",
        ],
        "ManifestParseError": [
            "• The server did not return a valid HLS playlist.",
            "• Authentication pages are sometimes served instead of playlists.",
        ],
        "UnsupportedEncryptionError": [
            "• Only AES-128 full-segment encryption is supported.",
            "• SAMPLE-AES and DRM-protected streams cannot be captured.",
        ],
        "SequenceResetError": [
            "• The origin restarted the stream with new sequence numbers.",
            "• Start a new capture into a different output directory.",
        ],
        "SelectionError": [
            "• Run `livestream-dl variants <URL>` to list available renditions.",
            "• Use identifiers such as `v0` or `a1` with --video/--alternate.",
        ],
        "KeyFetchError": [
            "• The decryption key server refused the request.",
            "• Keys often require the same cookies as the playlist.",
        ],
        "WriteError": [
            "• Check free disk space and permissions of the output directory.",
        ],
        "TimeoutError": [
            "• A request timed out, which may indicate network throttling.",
            "• Try raising `--timeout` or reducing `--workers`.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding cookie values."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key == "cookies" and value:
            value = f"[hidden] ({len(value)})"
        elif isinstance(value, list):
            value = ", ".join(value)
        content += f"{key} = {value}\n"

    console.print(
        Panel(
            content.strip(),
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def build_variants_table(catalog: VariantCatalog) -> Table:
    """Table of every selectable rendition, in selection order."""
    table = Table(box=box.SIMPLE_HEAD, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Role")
    table.add_column("Language")
    table.add_column("Bandwidth", justify="right")
    table.add_column("Resolution", justify="right")
    table.add_column("Name / Codecs", style="dim")

    for choice in catalog.choices():
        variant = catalog.get(choice.identifier)
        language = choice.language or "-"
        if not variant.language_valid:
            language = f"[red]{language} (invalid)[/red]"
        details = variant.name or variant.codecs or ""
        if variant.is_default:
            details = f"{details} [green](default)[/green]".strip()
        table.add_row(
            choice.identifier,
            choice.role.value,
            language,
            format_bitrate(choice.bandwidth) if choice.bandwidth else "-",
            format_resolution(variant.resolution) if variant.resolution else "-",
            details,
        )
    return table


def print_variants(catalog: VariantCatalog, console: Optional[Console] = None):
    console = console or Console()
    videos = len(catalog.videos)
    alternates = len(catalog.alternates)
    console.print(
        Panel(
            build_variants_table(catalog),
            title=(
                f"[bold]📺 Renditions[/bold] ([dim]{videos} video, "
                f"{alternates} alternate[/dim])"
            ),
            border_style="cyan",
            expand=False,
        )
    )


def print_selection(renditions, console: Optional[Console] = None):
    """One line per rendition that is about to be captured."""
    console = console or Console()
    for rendition in renditions:
        label = rendition.role.value
        if rendition.role is not Role.VIDEO and rendition.language:
            label = f"{label}, {rendition.language}"
        console.print(
            f"[green]●[/green] [bold]{rendition.stream_id}[/bold] [dim]({label})[/dim]"
        )


def print_summary_panel(
    report: CaptureReport,
    config: CaptureConfig,
    progress_stats: Optional[dict] = None,
):
    """Displays the final summary of a capture session."""
    console = Console()
    stats = report.stats

    stats_table = Table(show_header=False, box=None, padding=(0, 2))
    stats_table.add_column(style="bold cyan", justify="right", width=20)
    stats_table.add_column(style="white", justify="left")

    stats_table.add_row(
        "✓ Written:", f"[bold green]{stats.segments_written}[/bold green]"
    )
    if report.missing_count:
        stats_table.add_row(
            "✗ Missing:", f"[bold red]{report.missing_count}[/bold red]"
        )
    if stats.segments_failed:
        stats_table.add_row(
            "↻ Failed attempts:", f"[yellow]{stats.segments_failed}[/yellow]"
        )

    stats_table.add_row("", "")

    stats_table.add_row("Total Size:", f"[cyan]{format_size(stats.bytes_written)}[/cyan]")
    duration_s = report.duration_s
    avg_speed = stats.bytes_written / duration_s if duration_s > 0 else 0
    stats_table.add_row(
        "Avg. Speed:", f"[magenta]{format_size(int(avg_speed))}/s[/magenta]"
    )
    if stats.peak_speed_bps > 0:
        stats_table.add_row(
            "Peak Speed:",
            f"[magenta]{format_size(int(stats.peak_speed_bps))}/s[/magenta]",
        )
    stats_table.add_row("Time Elapsed:", f"[blue]{format_duration(duration_s)}[/blue]")
    stats_table.add_row("Polls:", str(stats.polls))
    if stats.keys_fetched or stats.key_cache_hits:
        stats_table.add_row(
            "Keys:",
            f"{stats.keys_fetched} fetched, {stats.key_cache_hits} cached",
        )
    if progress_stats and progress_stats.get("live"):
        stats_table.add_row("Source:", "[red]● live[/red]")

    stats_table.add_row("Output:", f"[dim]{config.output_dir}[/dim]")

    if report.missing:
        stats_table.add_row("", "")
        for missing in report.missing[:MAX_MISSING_ROWS]:
            stats_table.add_row(
                f"[red]{missing.stream_id} #{missing.sequence}[/red]",
                f"[dim]{missing.reason}[/dim]",
            )
        if report.missing_count > MAX_MISSING_ROWS:
            stats_table.add_row(
                "", f"[dim]... and {report.missing_count - MAX_MISSING_ROWS} more[/dim]"
            )

    if report.status is CaptureStatus.FATAL:
        title = "✗ [bold]Capture Failed[/bold]"
        border_color = "red"
    elif report.cancelled:
        title = "⏸ [bold]Capture Stopped[/bold] [dim](resumable)[/dim]"
        border_color = "yellow"
    elif report.status is CaptureStatus.PARTIAL:
        title = "⚠ [bold]Capture Incomplete[/bold]"
        border_color = "yellow"
    else:
        title = "📡 [bold]Capture Complete![/bold]"
        border_color = "green"

    console.print()
    console.print(
        Panel(
            stats_table,
            title=title,
            border_style=border_color,
            box=box.DOUBLE,
            expand=False,
            padding=(1, 2),
        )
    )
    console.print()
