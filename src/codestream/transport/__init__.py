"""
Transport Module
================

Frame wire format and the receiver-side broadcast hub.

This module provides the ingestion layer for CodeStream:
    - encode_frame / read_frame: length-prefixed frame codec
    - FrameBroadcastHub: TCP listener that multicasts received frames
    - BroadcastBuffer: bounded drop-oldest queue for async consumers
    - LatestFrameTracker: most recent decoded frame

Example:
    from codestream.transport import FrameBroadcastHub, LatestFrameTracker
    
    hub = FrameBroadcastHub()
    tracker = LatestFrameTracker()
    tracker.attach(hub.frames)
    
    await hub.start("0.0.0.0", 12345)
"""

from codestream.transport.codec import encode_frame, read_frame, write_frame
from codestream.transport.hub import FrameBroadcastHub, HubMetrics
from codestream.transport.buffer import BroadcastBuffer, LatestFrameTracker
from codestream.transport.image_decoder import decode_image, decode_frame, encode_jpeg


__all__ = [
    "encode_frame",
    "read_frame",
    "write_frame",
    "FrameBroadcastHub",
    "HubMetrics",
    "BroadcastBuffer",
    "LatestFrameTracker",
    "decode_image",
    "decode_frame",
    "encode_jpeg",
]
