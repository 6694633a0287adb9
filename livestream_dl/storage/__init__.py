"""
Storage Layer.

This package handles all data persistence: the configuration file, the
segment ledger database, the key cache and the segment files themselves.
"""

from .config_manager import ConfigManager
from .key_cache import KeyCache, SingleFlightCache
from .ledger import SegmentLedger
from .writer import SegmentWriter, parse_segment_name

__all__ = [
    "ConfigManager",
    "KeyCache",
    "SegmentLedger",
    "SegmentWriter",
    "SingleFlightCache",
    "parse_segment_name",
]
