"""
Defines the command-line interface for the application using Typer.
"""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.prompt import Prompt

from livestream_dl import __version__
from livestream_dl.core.orchestrator import Orchestrator, resolve_renditions
from livestream_dl.exceptions import LivestreamDLError, SelectionError
from livestream_dl.manifest.catalog import VariantCatalog
from livestream_dl.manifest.client import ManifestClient
from livestream_dl.media.remux import collect_segments, remux
from livestream_dl.models.config import CaptureConfig
from livestream_dl.models.segment import MediaManifest
from livestream_dl.models.stats import CaptureStatus
from livestream_dl.network.client import HttpClient
from livestream_dl.storage.config_manager import ConfigManager, default_config_path
from livestream_dl.storage.writer import SEGMENTS_DIRNAME
from livestream_dl.utils.cookies import load_cookie_file, parse_cookie_options
from livestream_dl.utils.path import query_pairs
from livestream_dl.utils.structured_logger import create_event_logger

from .formatters import (
    print_config,
    print_selection,
    print_summary_panel,
    print_variants,
)
from .progress_manager import ProgressManager

console = Console()

logging.basicConfig(
    level="INFO",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            show_level=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("livestream_dl")

app = typer.Typer(
    name="livestream-dl",
    help=(
        "Capture live and on-demand HLS streams into decrypted, ordered segment"
        " files. Use 'livestream-dl <command> --help' for more info."
    ),
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)

CONFIG_FILE = default_config_path()


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the current configuration."
    ),
):
    """HLS live stream capture"""
    if version:
        console.print(f"[bold]livestream-dl[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    log_level = "INFO"
    if verbose >= 2:
        log_level = "DEBUG"
    elif verbose == 0:
        logging.getLogger("aiohttp").setLevel("WARNING")
    logging.getLogger("livestream_dl").setLevel(log_level)

    if show_config:
        config = ConfigManager(CONFIG_FILE).load_config()
        print_config(CONFIG_FILE, config.model_dump(exclude={"source_url", "output_dir"}))
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing config file without asking."
    ),
):
    """Write a config file holding the default settings."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    ConfigManager(CONFIG_FILE).save_new_config()
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Ready to capture! Try: [cyan]livestream-dl download <URL>[/cyan]")


def prompt_selection(catalog: VariantCatalog) -> tuple[Optional[str], Optional[list[str]]]:
    """Asks for a video rendition and the alternates to capture alongside it."""
    print_variants(catalog, console)
    if not catalog.videos:
        raise SelectionError("The master playlist lists no video renditions.")

    video_ids = [v.identifier for v in catalog.videos]
    video_id = Prompt.ask(
        "Video rendition", choices=video_ids, default=video_ids[0], console=console
    )
    alternate_ids = [v.identifier for v in catalog.alternates if v.uri is not None]
    if not alternate_ids:
        return video_id, []

    answer = Prompt.ask(
        "Alternates (comma separated, [dim]auto[/dim] for the referenced groups,"
        " [dim]none[/dim] to skip)",
        default="auto",
        console=console,
    ).strip()
    if answer.lower() == "auto":
        return video_id, None
    if answer.lower() in ("", "none"):
        return video_id, []
    chosen = [part.strip() for part in answer.split(",") if part.strip()]
    unknown = [i for i in chosen if i not in alternate_ids]
    if unknown:
        raise SelectionError(f"Unknown alternate rendition(s): {', '.join(unknown)}")
    return video_id, chosen


def _collect_cookies(
    cookie_options: Optional[list[str]], cookies_file: Optional[Path]
) -> Optional[dict[str, str]]:
    cookies: dict[str, str] = {}
    if cookies_file is not None:
        cookies.update(load_cookie_file(cookies_file))
    if cookie_options:
        cookies.update(parse_cookie_options(cookie_options))
    return cookies or None


def _build_http(config: CaptureConfig) -> HttpClient:
    return HttpClient(
        max_workers=config.max_workers,
        timeout=config.request_timeout,
        cookies=config.cookies,
        query_pairs=query_pairs(config.source_url) if config.copy_query else None,
        user_agent=config.user_agent,
    )


def _install_interrupt_handler(task: asyncio.Task, holder: dict) -> bool:
    """
    First Ctrl-C stops the orchestrator gracefully, the second cancels the
    capture task. Returns False where the loop cannot take signal handlers.
    """
    loop = asyncio.get_running_loop()

    def _on_interrupt():
        orchestrator = holder.get("orchestrator")
        if orchestrator is not None and not orchestrator.stopping:
            console.print(
                "\n[yellow]⚠️  Stopping after in-flight segments. "
                "Press Ctrl-C again to abort.[/yellow]"
            )
            orchestrator.stop()
        else:
            task.cancel()

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except (NotImplementedError, RuntimeError):
        return False
    return True


@app.command(name="download")
def download_command(
    url: str = typer.Argument(..., help="Master or media playlist URL."),
    output_dir: Path = typer.Option(
        Path("capture"),
        "-o",
        "--output",
        help="Directory for segments, the resume ledger and remuxed output.",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "-w",
        "--workers",
        help="Number of simultaneous segment downloads (default 8).",
    ),
    timeout: Optional[float] = typer.Option(
        None, "--timeout", help="Per-request timeout in seconds."
    ),
    # --- Authentication Options ---
    cookie: Optional[list[str]] = typer.Option(  # noqa: B008
        None, "--cookie", help="Cookie sent with every request, as NAME=VALUE."
    ),
    cookies_file: Optional[Path] = typer.Option(
        None, "--cookies-file", help="Netscape-format cookie file."
    ),
    copy_query: Optional[bool] = typer.Option(
        None,
        "--copy-query/--no-copy-query",
        help="Append the input URL's query parameters to every request.",
    ),
    # --- Selection Options ---
    video: Optional[str] = typer.Option(
        None, "--video", help="Video rendition identifier (see `variants`)."
    ),
    alternate: Optional[list[str]] = typer.Option(  # noqa: B008
        None,
        "--alternate",
        help="Audio/subtitle rendition identifier; repeat for several.",
    ),
    no_alternates: bool = typer.Option(
        False, "--no-alternates", help="Capture the video rendition only."
    ),
    choose_stream: bool = typer.Option(
        False, "--choose-stream", help="Pick renditions interactively."
    ),
    # --- Live Polling Options ---
    poll_factor: Optional[float] = typer.Option(
        None,
        "--poll-factor",
        help="Idle time between polls as a fraction of the target duration.",
    ),
    gone_policy: Optional[str] = typer.Option(
        None,
        "--gone-policy",
        help="What a vanished playlist means: 'end' (default) or 'fatal'.",
    ),
    # --- Output Options ---
    do_remux: Optional[bool] = typer.Option(
        None,
        "--remux/--no-remux",
        help="Remux the captured segments with ffmpeg when the capture finishes.",
    ),
    event_log: Optional[Path] = typer.Option(
        None, "--event-log", help="Directory for a JSON-lines event log."
    ),
    no_progress: bool = typer.Option(
        False, "--no-progress", help="Disable the live progress display."
    ),
):
    """Capture a live or on-demand HLS stream."""
    alternates = [] if no_alternates else alternate or None
    cli_options = {
        "source_url": url,
        "output_dir": str(output_dir),
        "max_workers": workers,
        "request_timeout": timeout,
        "cookies": _collect_cookies(cookie, cookies_file),
        "copy_query": copy_query,
        "video": video,
        "alternates": alternates,
        "choose_stream": choose_stream or None,
        "poll_interval_factor": poll_factor,
        "playlist_gone_policy": gone_policy,
        "remux": do_remux,
        "event_log_dir": str(event_log) if event_log else None,
    }
    config = ConfigManager(CONFIG_FILE).load_config(cli_options)

    async def _capture_async():
        events = create_event_logger(
            Path(config.event_log_dir) if config.event_log_dir else None
        )
        holder: dict = {}
        handled = False
        try:
            async with _build_http(config) as http:
                manifests = ManifestClient(
                    http,
                    attempts=config.manifest_attempts,
                    base_delay=config.retry_base_delay,
                    max_delay=config.retry_max_delay,
                )
                renditions = await resolve_renditions(
                    manifests, url, config, chooser=prompt_selection
                )
                print_selection(renditions, console)

                # The selection prompt blocks the loop, so Ctrl-C keeps its
                # default behaviour until the capture starts.
                handled = _install_interrupt_handler(asyncio.current_task(), holder)
                async with ProgressManager(
                    console=console, enabled=not no_progress
                ) as progress_manager:
                    orchestrator = Orchestrator.create(
                        config, renditions, http, events=events, progress=progress_manager
                    )
                    holder["orchestrator"] = orchestrator
                    report = await orchestrator.run()
                    progress_stats = progress_manager.get_statistics()
        finally:
            events.logger.close()
            if handled:
                asyncio.get_running_loop().remove_signal_handler(signal.SIGINT)

        print_summary_panel(report, config, progress_stats)
        return report, renditions

    report, renditions = asyncio.run(_capture_async())

    if config.remux and report.stats.segments_written:
        groups = collect_segments(Path(config.output_dir) / SEGMENTS_DIRNAME)
        by_stream = {r.stream_id: r for r in renditions}
        console.print("[cyan]Remuxing captured segments...[/cyan]")
        if asyncio.run(remux(groups, Path(config.output_dir), by_stream)):
            console.print("[green]✓ Remux finished.[/green]")
        else:
            console.print("[red]✗ Remux failed; segment files are kept.[/red]")

    if report.status is CaptureStatus.FATAL:
        raise typer.Exit(code=1)


@app.command()
def variants(
    url: str = typer.Argument(..., help="Master playlist URL."),
    cookie: Optional[list[str]] = typer.Option(  # noqa: B008
        None, "--cookie", help="Cookie sent with every request, as NAME=VALUE."
    ),
    cookies_file: Optional[Path] = typer.Option(
        None, "--cookies-file", help="Netscape-format cookie file."
    ),
    copy_query: Optional[bool] = typer.Option(
        None,
        "--copy-query/--no-copy-query",
        help="Append the input URL's query parameters to every request.",
    ),
):
    """List the renditions of a master playlist."""
    config = ConfigManager(CONFIG_FILE).load_config(
        {
            "source_url": url,
            "cookies": _collect_cookies(cookie, cookies_file),
            "copy_query": copy_query,
        }
    )

    async def _variants_async():
        async with _build_http(config) as http:
            manifests = ManifestClient(
                http,
                attempts=config.manifest_attempts,
                base_delay=config.retry_base_delay,
                max_delay=config.retry_max_delay,
            )
            return await manifests.fetch_with_retry(url)

    manifest = asyncio.run(_variants_async())
    if isinstance(manifest, MediaManifest):
        state = "live" if manifest.is_live else "ended"
        console.print(
            f"[cyan]This is a media playlist ({len(manifest.segments)} segments, "
            f"{state}); it is captured as a single stream.[/cyan]"
        )
        return
    try:
        print_variants(VariantCatalog.from_manifest(manifest), console)
    except LivestreamDLError as e:
        console.print(f"[red]✗ Could not list renditions: {e}[/red]")
        raise typer.Exit(code=1) from e
