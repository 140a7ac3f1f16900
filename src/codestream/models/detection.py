"""
Detection Models
================

Region-of-interest models produced by the detection pipeline.

A RawDetection is what a detector backend reports, in corner form and in
source-image pixels. A Detection is the validated, padded region that
consumers see. DetectionBatch groups the Detections computed from exactly
one frame and is always published as a unit.

Example:
    from codestream.models.detection import Detection, Rect
    
    detection = Detection(
        label="barcode",
        bounds=Rect(x=50, y=50, width=100, height=40),
        confidence=0.91,
    )
"""

import time
from dataclasses import dataclass, field
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from codestream.models.frame import DecodedFrame


class Rect(BaseModel):
    """Axis-aligned pixel rectangle (top-left corner plus size)."""
    
    model_config = ConfigDict(frozen=True)
    
    x: int = Field(..., ge=0, description="Left edge in pixels")
    y: int = Field(..., ge=0, description="Top edge in pixels")
    width: int = Field(..., gt=0, description="Width in pixels")
    height: int = Field(..., gt=0, description="Height in pixels")
    
    @property
    def right(self) -> int:
        return self.x + self.width
    
    @property
    def bottom(self) -> int:
        return self.y + self.height
    
    def fits_within(self, width: int, height: int) -> bool:
        """Whether the rectangle lies entirely inside a width x height image."""
        return self.right <= width and self.bottom <= height


class Detection(BaseModel):
    """
    One validated code region.
    
    Bounds are already padded and guaranteed to lie inside the frame the
    detection was computed from.
    """
    
    model_config = ConfigDict(frozen=True)
    
    label: str = Field(..., description="Class name reported by the detector")
    bounds: Rect = Field(..., description="Padded region in frame pixels")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detector score")


@dataclass(frozen=True, slots=True)
class RawDetection:
    """
    Unvalidated detector output.
    
    Coordinates are absolute pixels in the detector's input image:
        (x1, y1) = top-left corner
        (x2, y2) = bottom-right corner
    """
    
    label: str
    x1: float
    y1: float
    x2: float
    y2: float
    confidence: float


@dataclass(frozen=True, slots=True, eq=False)
class DetectionBatch:
    """
    All detections computed from a single frame.
    
    Attributes:
        frame_id: Id of the source frame
        detections: Validated detections (may be empty)
        timestamp: UNIX time the batch was produced
        frame: Source frame, kept for snapshot decoding
    """
    
    frame_id: int
    detections: Tuple[Detection, ...]
    timestamp: float = field(default_factory=time.time)
    frame: Optional[DecodedFrame] = None
    
    def __len__(self) -> int:
        return len(self.detections)
    
    def to_dict(self) -> dict:
        """JSON-ready view (the source frame is omitted)."""
        return {
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "detections": [d.model_dump() for d in self.detections],
        }
