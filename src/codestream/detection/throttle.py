"""
Detection Throttle
==================

Feeds live frames to an expensive code detector without building backlog.

This module provides the DetectionThrottle class which:
    - Subscribes to the hub's decoded frame broadcast
    - Admits at most one detector run at a time through an AdmissionGate
    - Drops (never queues) frames that arrive while a run is in flight
    - Pads every detection and drops those that would leave the frame
    - Publishes one DetectionBatch per run on `batches`

Design Rules:
    - A batch always comes from exactly one frame
    - A detector failure or timeout counts as zero detections
    - The gate is released on every path, including cancellation
    - A short cooldown after each successful run caps the detection rate
"""

import asyncio
import logging
import time
from typing import Iterable, Optional, Tuple

import numpy as np

from codestream.detection.detectors import CodeDetector
from codestream.detection.gate import AdmissionGate
from codestream.events import Broadcaster, Subscription
from codestream.models.detection import Detection, DetectionBatch, RawDetection, Rect
from codestream.models.frame import DecodedFrame


logger = logging.getLogger(__name__)


def pad_and_filter(
    raw_detections: Iterable[RawDetection],
    image_width: int,
    image_height: int,
    padding: int,
) -> Tuple[Detection, ...]:
    """
    Grow each raw box by `padding` pixels on every side.

    Boxes whose padded bounds leave the image on any side are dropped,
    never clamped.

    Args:
        raw_detections: Detector output in image pixels
        image_width: Source image width
        image_height: Source image height
        padding: Pixels added on each side

    Returns:
        Validated detections in detector order
    """
    detections = []
    for raw in raw_detections:
        left = int(round(raw.x1)) - padding
        top = int(round(raw.y1)) - padding
        right = int(round(raw.x2)) + padding
        bottom = int(round(raw.y2)) + padding

        if left < 0 or top < 0 or right > image_width or bottom > image_height:
            continue
        if right <= left or bottom <= top:
            continue

        detections.append(
            Detection(
                label=raw.label,
                bounds=Rect(x=left, y=top, width=right - left, height=bottom - top),
                confidence=min(1.0, max(0.0, float(raw.confidence))),
            )
        )
    return tuple(detections)


class ThrottleMetrics:
    """Metrics for DetectionThrottle observability."""

    __slots__ = (
        "frames_seen",
        "frames_dropped",
        "runs",
        "detector_errors",
        "batches_published",
        "last_latency_ms",
    )

    def __init__(self) -> None:
        self.frames_seen: int = 0
        self.frames_dropped: int = 0
        self.runs: int = 0
        self.detector_errors: int = 0
        self.batches_published: int = 0
        self.last_latency_ms: float = 0.0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_seen": self.frames_seen,
            "frames_dropped": self.frames_dropped,
            "runs": self.runs,
            "detector_errors": self.detector_errors,
            "batches_published": self.batches_published,
            "last_latency_ms": round(self.last_latency_ms, 2),
        }


class DetectionThrottle:
    """
    One-in-flight detection pipeline.

    Attributes:
        detector: Detection backend
        padding: Pixels added around each detection
        cooldown_seconds: Pause after a successful run before the gate reopens
        detector_timeout_seconds: Bound on one detector call
        shutdown_timeout_seconds: How long close() waits for an in-flight run
        batches: Broadcaster of DetectionBatch
        metrics: Operational metrics

    Example:
        throttle = DetectionThrottle(OpenCVCodeDetector())
        throttle.attach(hub.frames)
        throttle.batches.subscribe(show_overlays)
        ...
        await throttle.close()
    """

    def __init__(
        self,
        detector: CodeDetector,
        padding: int = 25,
        cooldown_ms: int = 25,
        detector_timeout_seconds: float = 5.0,
        shutdown_timeout_seconds: float = 2.0,
    ) -> None:
        """
        Initialize throttle.

        Args:
            detector: Detection backend
            padding: Pixels added on each side of a detection
            cooldown_ms: Delay after each successful run
            detector_timeout_seconds: Timeout for one detector call
            shutdown_timeout_seconds: Wait bound for close()
        """
        if padding < 0:
            raise ValueError("padding must be >= 0")

        self.detector = detector
        self.padding = padding
        self.cooldown_seconds = cooldown_ms / 1000.0
        self.detector_timeout_seconds = detector_timeout_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds

        self.batches: Broadcaster[DetectionBatch] = Broadcaster("detections")
        self.metrics = ThrottleMetrics()

        self._gate = AdmissionGate()
        self._closed: bool = False
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._subscription: Optional[Subscription] = None
        self._latest: Optional[DetectionBatch] = None

    @property
    def busy(self) -> bool:
        """Whether a detector run holds the gate."""
        return self._gate.held

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def latest_batch(self) -> Optional[DetectionBatch]:
        """Most recently published batch."""
        return self._latest

    def attach(self, frames: Broadcaster[DecodedFrame]) -> Subscription:
        """
        Subscribe to a decoded frame broadcast.

        Must be called from the event loop that will run detections.
        """
        self._loop = asyncio.get_running_loop()
        self._subscription = frames.subscribe(self.submit)
        return self._subscription

    def submit(self, frame: DecodedFrame) -> bool:
        """
        Offer one frame to the detector.

        Args:
            frame: Decoded frame

        Returns:
            True if a detector run was started, False if the frame was dropped
        """
        if self._closed:
            return False

        self.metrics.frames_seen += 1
        if not self._gate.try_acquire():
            self.metrics.frames_dropped += 1
            logger.debug(f"Detector busy, dropped frame {frame.frame_id}")
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._task = loop.create_task(self._run(frame), name="detection_run")
        elif self._loop is not None:
            self._loop.call_soon_threadsafe(self._spawn, frame)
        else:
            self._gate.release()
            raise RuntimeError("DetectionThrottle.submit requires an event loop")
        return True

    def _spawn(self, frame: DecodedFrame) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run(frame), name="detection_run")

    def _to_detector_input(self, frame: DecodedFrame) -> np.ndarray:
        """BGR, contiguous, uint8: the shape every backend accepts."""
        return np.ascontiguousarray(frame.image, dtype=np.uint8)

    async def _run(self, frame: DecodedFrame) -> None:
        """One detector run. Owns the gate until it returns."""
        started = time.monotonic()
        succeeded = False
        try:
            try:
                image = self._to_detector_input(frame)
                raw = await asyncio.wait_for(
                    self.detector.detect(image),
                    timeout=self.detector_timeout_seconds,
                )
                detections = pad_and_filter(raw, frame.width, frame.height, self.padding)
                succeeded = True
            except asyncio.TimeoutError:
                self.metrics.detector_errors += 1
                logger.error(
                    f"Detector timed out after {self.detector_timeout_seconds}s "
                    f"(frame={frame.frame_id})"
                )
                detections = ()
            except Exception as e:
                self.metrics.detector_errors += 1
                logger.error(f"Detector error (frame={frame.frame_id}): {e}")
                detections = ()

            self.metrics.runs += 1
            self.metrics.last_latency_ms = (time.monotonic() - started) * 1000.0

            if not self._closed:
                batch = DetectionBatch(
                    frame_id=frame.frame_id,
                    detections=detections,
                    frame=frame,
                )
                self._latest = batch
                self.metrics.batches_published += 1
                self.batches.publish(batch)

            if succeeded and self.cooldown_seconds > 0:
                await asyncio.sleep(self.cooldown_seconds)
        finally:
            self._gate.release()

    async def close(self) -> None:
        """
        Stop accepting frames and release the detector.

        Waits up to shutdown_timeout_seconds for an in-flight run; a run
        that takes longer is cancelled and abandoned.
        """
        if self._closed:
            return
        self._closed = True

        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

        task = self._task
        if task is not None and not task.done():
            _, pending = await asyncio.wait([task], timeout=self.shutdown_timeout_seconds)
            if pending:
                logger.warning("Abandoning in-flight detector run on shutdown")
                task.cancel()

        try:
            await asyncio.to_thread(self.detector.close)
        except Exception as e:
            logger.error(f"Error closing detector: {e}")

        self.batches.clear()
        logger.info("DetectionThrottle closed")
