"""
Data Models
===========

Frame, detection and decode-result types used across CodeStream.
"""

from codestream.models.frame import Frame, DecodedFrame
from codestream.models.detection import (
    Rect,
    Detection,
    RawDetection,
    DetectionBatch,
)
from codestream.models.decode import DecodeResult


__all__ = [
    "Frame",
    "DecodedFrame",
    "Rect",
    "Detection",
    "RawDetection",
    "DetectionBatch",
    "DecodeResult",
]
