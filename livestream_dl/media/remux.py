"""
Hands captured segments to ffmpeg: one MP4 per discontinuity group with all
captured streams mapped in and language metadata attached.
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from typing import Mapping, Optional

import aiofiles
import aiofiles.os
from langcodes import Language
from langcodes.tag_parser import LanguageTagError

from livestream_dl.models.segment import Rendition, Role
from livestream_dl.storage.writer import parse_segment_name
from livestream_dl.utils.path import MAIN_STREAM

log = logging.getLogger(__name__)

OUTPUT_BASENAME = "video"
# stream id -> ordered segment files, per discontinuity group
SegmentGroups = dict[int, dict[str, list[Path]]]


def collect_segments(segments_dir: Path) -> SegmentGroups:
    """Groups captured segment files by discontinuity group and stream, in sequence order."""
    found: dict[int, dict[str, list[tuple[int, Path]]]] = {}
    if not segments_dir.is_dir():
        return {}
    for path in segments_dir.glob("*/*"):
        name = parse_segment_name(path)
        if name is None:
            continue
        found.setdefault(name.group, {}).setdefault(name.stream_id, []).append(
            (name.sequence, path)
        )
    return {
        group: {
            stream: [p for _, p in sorted(items)] for stream, items in sorted(streams.items())
        }
        for group, streams in sorted(found.items())
    }


async def concat_files(paths: list[Path], destination: Path) -> Path:
    """Joins segment files byte for byte into `destination`."""
    async with aiofiles.open(destination, "wb") as out:
        for path in paths:
            async with aiofiles.open(path, "rb") as f:
                await out.write(await f.read())
    return destination


def iso639_2(tag: Optional[str]) -> Optional[str]:
    """Three-letter language code for container metadata, if the tag is usable."""
    if not tag:
        return None
    try:
        return Language.get(tag).to_alpha3()
    except (LanguageTagError, LookupError, ValueError):
        return None


async def probe_stream_types(path: Path) -> list[str]:
    """Returns the codec types (video, audio, subtitle) of the streams in a file."""
    process = await asyncio.create_subprocess_exec(
        "ffprobe",
        "-v",
        "quiet",
        "-show_entries",
        "stream=codec_type",
        "-print_format",
        "json",
        str(path),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL,
    )
    stdout, _ = await process.communicate()
    if process.returncode != 0:
        return []
    try:
        streams = json.loads(stdout.decode("utf-8", "replace")).get("streams", [])
    except json.JSONDecodeError:
        return []
    return [s.get("codec_type", "") for s in streams]


_TYPE_SPECIFIERS = {Role.VIDEO: "v", Role.AUDIO: "a", Role.SUBTITLE: "s"}


async def build_command(
    inputs: list[tuple[str, Path]],
    renditions: Mapping[str, Rendition],
    output_path: Path,
) -> list[str]:
    """Assembles the ffmpeg invocation for one discontinuity group."""
    cmd = ["ffmpeg", "-y", "-copyts"]
    for _, path in inputs:
        cmd += ["-i", str(path)]
    for index in range(len(inputs)):
        cmd += ["-map", str(index)]

    counts = {"v": 0, "a": 0, "s": 0}
    for stream_id, path in inputs:
        rendition = renditions.get(stream_id)
        if stream_id == MAIN_STREAM or rendition is None:
            for codec_type in await probe_stream_types(path):
                if codec_type and codec_type[0] in counts:
                    counts[codec_type[0]] += 1
            continue

        spec = _TYPE_SPECIFIERS[rendition.role]
        target = f"-metadata:s:{spec}:{counts[spec]}"
        if language := iso639_2(rendition.language):
            cmd += [target, f"language={language}"]
        if rendition.name:
            cmd += [target, f"title={rendition.name}", target, f"handler={rendition.name}"]
        counts[spec] += 1

    cmd += [
        "-muxpreload", "0",
        "-muxdelay", "0",
        "-avoid_negative_ts", "make_zero",
        "-c:v", "copy",
        "-c:a", "copy",
        "-c:s", "mov_text",
        "-dn",
        "-movflags", "+faststart",
        str(output_path),
    ]  # fmt: skip
    return cmd


async def remux(
    groups: SegmentGroups,
    output_dir: Path,
    renditions: Optional[Mapping[str, Rendition]] = None,
) -> bool:
    """
    Runs ffmpeg once per discontinuity group.

    Returns True when every group was muxed. Intermediate concatenated files
    are removed afterwards; segment files are left untouched.
    """
    if not groups:
        log.warning("[yellow]No captured segments to remux.[/yellow]")
        return False
    if shutil.which("ffmpeg") is None:
        log.error("[red]ffmpeg was not found on PATH; skipping remux.[/red]")
        return False

    renditions = renditions or {}
    work_dir = output_dir / "concat"
    await aiofiles.os.makedirs(work_dir, exist_ok=True)
    success = True

    for group, streams in groups.items():
        inputs = []
        for stream_id, paths in streams.items():
            destination = work_dir / f"{stream_id}_d{group:010}{paths[0].suffix}"
            inputs.append((stream_id, await concat_files(paths, destination)))

        name = OUTPUT_BASENAME if len(groups) == 1 else f"{OUTPUT_BASENAME}_{group:010}"
        output_path = output_dir / f"{name}.mp4"
        cmd = await build_command(inputs, renditions, output_path)
        log.info(f"[cyan]Remuxing group {group} into {output_path.name}[/cyan]")
        log.debug(" ".join(cmd))

        process = await asyncio.create_subprocess_exec(
            *cmd, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            success = False
            log.error(
                f"[red]ffmpeg failed for group {group}: "
                f"{stderr.decode('utf-8', 'replace').strip()[-500:]}[/red]"
            )

        for _, path in inputs:
            await aiofiles.os.remove(path)

    return success
