"""
Utilities for naming output directories and reading the input URL.
"""

from typing import Optional
from urllib.parse import parse_qsl, urlsplit

from pathvalidate import sanitize_filename

from livestream_dl.models.segment import Role

MAIN_STREAM = "main"


def stream_name(role: Role, name: Optional[str] = None) -> str:
    """
    Builds the directory name of a rendition: `main` for the primary stream,
    otherwise `<role>_<name>` with the name sanitised for the filesystem.
    """
    if name is None:
        return MAIN_STREAM
    safe = sanitize_filename(name.strip().replace(" ", "_"), platform="universal")
    return f"{role.value}_{safe or 'unnamed'}"


def query_pairs(url: str) -> list[tuple[str, str]]:
    """Returns the query parameters of a URL in order, blanks included."""
    return parse_qsl(urlsplit(url).query, keep_blank_values=True)
