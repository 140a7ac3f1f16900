"""
Frame Data Model
=================

Frame representations shared by the transport, detection and decoding layers.

Design Rules:
    - Frames are immutable once created
    - The hub assigns frame_id; it increases across all connections
    - DecodedFrame wraps the Frame it came from instead of copying it
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One encoded image payload as received from a producer.
    
    Attributes:
        frame_id: Hub-assigned sequence number
        connection_id: Id of the producer connection it arrived on
        timestamp: UNIX time when the frame was fully read
        payload: Encoded image bytes (typically JPEG), passed through unchanged
    """
    
    frame_id: int
    connection_id: int
    timestamp: float
    payload: bytes
    
    @property
    def length(self) -> int:
        """Payload byte count (the value of the wire length prefix)."""
        return len(self.payload)
    
    def __repr__(self) -> str:
        """Compact repr that doesn't dump the payload."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"connection_id={self.connection_id}, "
            f"length={self.length})"
        )


@dataclass(frozen=True, slots=True, eq=False)
class DecodedFrame:
    """
    A Frame together with its decoded bitmap.
    
    Attributes:
        frame: The encoded frame the bitmap was decoded from
        image: BGR image, shape (H, W, 3), dtype uint8
    """
    
    frame: Frame
    image: np.ndarray
    
    @property
    def frame_id(self) -> int:
        return self.frame.frame_id
    
    @property
    def width(self) -> int:
        return int(self.image.shape[1])
    
    @property
    def height(self) -> int:
        return int(self.image.shape[0])
    
    def __repr__(self) -> str:
        return (
            f"DecodedFrame(frame_id={self.frame_id}, "
            f"size={self.width}x{self.height})"
        )
