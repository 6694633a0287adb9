"""
Helper functions for formatting data into human-readable strings.
"""

from typing import Optional


def format_size(bytes_size: float) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    while bytes_size >= 1024 and i < len(units) - 1:
        bytes_size /= 1024
        i += 1
    return f"{bytes_size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_bitrate(bandwidth: Optional[int]) -> str:
    """Formats a BANDWIDTH value in bits per second (e.g., '5.1 Mb/s')."""
    if not bandwidth:
        return "-"
    if bandwidth >= 1_000_000:
        return f"{bandwidth / 1_000_000:.1f} Mb/s"
    if bandwidth >= 1_000:
        return f"{bandwidth / 1_000:.0f} Kb/s"
    return f"{bandwidth} b/s"


def format_resolution(resolution: Optional[tuple[int, int]]) -> str:
    if not resolution:
        return "-"
    return f"{resolution[0]}x{resolution[1]}"
