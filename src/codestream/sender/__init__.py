"""
Sender Module
=============

Producer side: capture sources, frame orientation and the connection
lifecycle that streams frames to a FrameBroadcastHub.

Example:
    from codestream.sender import FrameSender, StaticImageSource
    
    sender = FrameSender(StaticImageSource(image), max_attempts=3)
    await sender.start("127.0.0.1", 12345)
"""

from codestream.sender.orientation import (
    Facing,
    compute_frame_rotation,
    normalize_rotation,
    rotate_image,
)
from codestream.sender.capture import (
    CaptureSource,
    OpenCVCaptureSource,
    StaticImageSource,
    create_capture_source,
    preferred_capture_api,
)
from codestream.sender.lifecycle import (
    ConnectionState,
    FrameSender,
    SenderMetrics,
    open_tcp_connection,
)


__all__ = [
    "Facing",
    "compute_frame_rotation",
    "normalize_rotation",
    "rotate_image",
    "CaptureSource",
    "OpenCVCaptureSource",
    "StaticImageSource",
    "create_capture_source",
    "preferred_capture_api",
    "ConnectionState",
    "FrameSender",
    "SenderMetrics",
    "open_tcp_connection",
]
