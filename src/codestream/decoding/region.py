"""
Region Decoder
==============

On-demand decoding of one selected detection at full frame resolution.

Frame Selection:
    By default the region is cut from the most recent frame, not from the
    frame the detection was computed on. The bounds are historical, so if
    the scene moved between detection and selection the crop can miss the
    symbol. Setting use_detection_frame=True decodes against the batch's
    own frame instead.

Luminance:
    gray = (R * 19562 + G * 38550 + B * 7424) >> 16

    i.e. 0.2990 / 0.5870 / 0.1140 weights at 16-bit fixed point, so the
    result is identical on every platform.
"""

import asyncio
import logging
from typing import Optional

import numpy as np

from codestream.decoding.symbols import SymbolDecoder
from codestream.models.decode import DecodeResult
from codestream.models.detection import Detection, DetectionBatch, Rect
from codestream.models.frame import DecodedFrame
from codestream.transport.buffer import LatestFrameTracker


logger = logging.getLogger(__name__)


LUMA_WEIGHTS_FIXED = (19562, 38550, 7424)  # R, G, B; sums to 1 << 16


def to_luminance(image: np.ndarray) -> np.ndarray:
    """
    Convert a BGR or BGRA image to an 8-bit luminance buffer.

    Args:
        image: uint8 image, shape (H, W, 3|4) in BGR(A) order, or (H, W)

    Returns:
        uint8 array of shape (H, W)
    """
    if image.ndim == 2:
        return np.ascontiguousarray(image, dtype=np.uint8)
    if image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Unsupported image shape: {image.shape}")

    pixels = image.astype(np.uint32)
    r_weight, g_weight, b_weight = LUMA_WEIGHTS_FIXED
    gray = (
        pixels[..., 2] * r_weight
        + pixels[..., 1] * g_weight
        + pixels[..., 0] * b_weight
    ) >> 16
    return gray.astype(np.uint8)


def crop(image: np.ndarray, bounds: Rect) -> np.ndarray:
    """Slice a region out of an image (a view, not a copy)."""
    return image[bounds.y:bounds.bottom, bounds.x:bounds.right]


class DecoderMetrics:
    """Metrics for RegionDecoder observability."""

    __slots__ = ("requests", "found", "not_found", "errors")

    def __init__(self) -> None:
        self.requests: int = 0
        self.found: int = 0
        self.not_found: int = 0
        self.errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "requests": self.requests,
            "found": self.found,
            "not_found": self.not_found,
            "errors": self.errors,
        }


class RegionDecoder:
    """
    Resolves a human-selected detection into decoded text.

    Attributes:
        symbol_decoder: Symbol decoding backend
        tracker: Source of the most recent frame
        use_detection_frame: Decode against the detection's own frame
        metrics: Operational metrics

    Example:
        decoder = RegionDecoder(ZXingSymbolDecoder(), tracker)
        result = decoder.decode(batch.detections[0], batch)
        if result.found:
            print(result.text)
    """

    def __init__(
        self,
        symbol_decoder: SymbolDecoder,
        tracker: Optional[LatestFrameTracker] = None,
        use_detection_frame: bool = False,
    ) -> None:
        self.symbol_decoder = symbol_decoder
        self.tracker = tracker
        self.use_detection_frame = use_detection_frame
        self.metrics = DecoderMetrics()

    def resolve_frame(self, batch: Optional[DetectionBatch] = None) -> Optional[DecodedFrame]:
        """Pick the frame a decode request runs against."""
        if self.use_detection_frame and batch is not None and batch.frame is not None:
            return batch.frame
        if self.tracker is not None:
            return self.tracker.latest
        return None

    def decode(
        self,
        detection: Detection,
        batch: Optional[DetectionBatch] = None,
    ) -> DecodeResult:
        """
        Decode the symbol inside one detection.

        Args:
            detection: Selected detection
            batch: Batch the detection came from (used in snapshot mode)

        Returns:
            DecodeResult; found=False when no frame is available or no
            symbol is recognized
        """
        frame = self.resolve_frame(batch)
        if frame is None:
            self.metrics.requests += 1
            self.metrics.not_found += 1
            logger.warning("Decode requested before any frame was received")
            return DecodeResult.not_found()
        return self.decode_region(frame, detection.bounds)

    def decode_bounds(
        self,
        bounds: Rect,
        batch: Optional[DetectionBatch] = None,
    ) -> DecodeResult:
        """Decode an arbitrary region, resolving the frame like decode()."""
        return self.decode(Detection(label="region", bounds=bounds, confidence=1.0), batch)

    def decode_region(self, frame: DecodedFrame, bounds: Rect) -> DecodeResult:
        """
        Crop, convert and decode one region of a frame.

        Args:
            frame: Frame to cut the region from
            bounds: Region in frame pixels

        Returns:
            DecodeResult for the region
        """
        self.metrics.requests += 1

        if not bounds.fits_within(frame.width, frame.height):
            self.metrics.not_found += 1
            logger.warning(
                f"Region {bounds.x},{bounds.y} {bounds.width}x{bounds.height} "
                f"outside frame {frame.frame_id} ({frame.width}x{frame.height})"
            )
            return DecodeResult.not_found(frame.frame_id)

        luminance = to_luminance(crop(frame.image, bounds))

        try:
            symbol = self.symbol_decoder.decode(luminance)
        except Exception as e:
            self.metrics.errors += 1
            logger.error(f"Symbol decoder error (frame={frame.frame_id}): {e}")
            return DecodeResult.not_found(frame.frame_id)

        if symbol is None:
            self.metrics.not_found += 1
            logger.debug(f"No symbol in region of frame {frame.frame_id}")
            return DecodeResult.not_found(frame.frame_id)

        self.metrics.found += 1
        logger.info(f"Decoded {symbol.format} from frame {frame.frame_id}")
        return DecodeResult(
            found=True,
            text=symbol.text,
            raw=symbol.raw,
            format=symbol.format,
            frame_id=frame.frame_id,
        )

    async def decode_async(
        self,
        detection: Detection,
        batch: Optional[DetectionBatch] = None,
    ) -> DecodeResult:
        """decode() in a worker thread, for callers on the event loop."""
        return await asyncio.to_thread(self.decode, detection, batch)
