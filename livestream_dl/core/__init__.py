"""
Core capture engine.

This package contains the `Orchestrator`, the state machine that polls the
selected playlists and feeds new segments through the acquisition pipeline.
"""

from .orchestrator import CaptureState, Orchestrator, resolve_renditions

__all__ = ["CaptureState", "Orchestrator", "resolve_renditions"]
