"""
Loads cookies from Netscape-format cookie files and `NAME=VALUE` options.
"""

import logging
from pathlib import Path
from typing import Iterable

from livestream_dl.exceptions import ConfigurationError

log = logging.getLogger(__name__)


def parse_netscape_cookies(text: str) -> dict[str, str]:
    """
    Parses the content of a Netscape cookie file into name/value pairs.

    Each data line has seven tab-separated fields; the last two are the
    cookie name and value. Comments and blank lines are ignored, any other
    malformed line is logged and skipped.
    """
    cookies: dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), 1):
        # Values may be empty, so only the line ending is stripped
        line = raw.rstrip("\r\n")
        # curl marks HttpOnly cookies with a comment-like prefix
        if line.startswith("#HttpOnly_"):
            line = line[len("#HttpOnly_") :]
        elif not line.strip() or line.startswith("#"):
            continue

        fields = line.split("\t")
        if len(fields) != 7 or not fields[5]:
            log.warning(f"[yellow]Skipping invalid cookie on line {lineno}: {line}[/yellow]")
            continue
        cookies[fields[5]] = fields[6]
    return cookies


def load_cookie_file(path: Path) -> dict[str, str]:
    """Reads and parses a Netscape cookie file."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read cookie file {path}: {e}") from e
    cookies = parse_netscape_cookies(text)
    log.debug(f"Loaded {len(cookies)} cookies from {path}")
    return cookies


def parse_cookie_options(values: Iterable[str]) -> dict[str, str]:
    """Parses repeated `--cookie NAME=VALUE` options."""
    cookies: dict[str, str] = {}
    for value in values:
        name, sep, cookie_value = value.partition("=")
        if not sep or not name.strip():
            raise ConfigurationError(
                f"Invalid cookie {value!r}, expected NAME=VALUE."
            )
        cookies[name.strip()] = cookie_value.strip()
    return cookies
