"""
Media Processing Layer.

This package is responsible for everything done to segment payloads:
downloading them, decrypting them, detecting their format and handing the
result to the remuxer.
"""

from .acquisition import AcquisitionPipeline, SegmentOutcome, SegmentStatus
from .decryptor import Decryptor
from .media_format import MediaFormat

__all__ = [
    "AcquisitionPipeline",
    "Decryptor",
    "MediaFormat",
    "SegmentOutcome",
    "SegmentStatus",
]
