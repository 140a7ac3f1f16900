"""
Detection Module
================

Throttled code detection over the live frame stream.

Components:
    - AdmissionGate: single-slot non-blocking gate
    - CodeDetector: Protocol for detection backends
    - OpenCVCodeDetector / YoloCodeDetector / MockCodeDetector: backends
    - DetectionThrottle: one-in-flight pipeline emitting DetectionBatch

Design Philosophy:
    The detector is a pluggable black box. The pipeline only cares that it
    returns boxes, and never lets a slow or failing detector stall frame
    delivery.
"""

from codestream.detection.gate import AdmissionGate
from codestream.detection.detectors import (
    CodeDetector,
    OpenCVCodeDetector,
    YoloCodeDetector,
    MockCodeDetector,
    create_detector,
)
from codestream.detection.throttle import (
    DetectionThrottle,
    ThrottleMetrics,
    pad_and_filter,
)

__all__ = [
    "AdmissionGate",
    "CodeDetector",
    "OpenCVCodeDetector",
    "YoloCodeDetector",
    "MockCodeDetector",
    "create_detector",
    "DetectionThrottle",
    "ThrottleMetrics",
    "pad_and_filter",
]
