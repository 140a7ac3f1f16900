"""
Code Detectors
==============

Black-box code detection backends.

This module provides the CodeDetector protocol and its implementations:
    - OpenCVCodeDetector: OpenCV QR and 1D barcode localizers (default)
    - YoloCodeDetector: Ultralytics YOLO model trained on barcodes
    - MockCodeDetector: Deterministic detector for testing

Design Rules:
    - Input is a BGR uint8 image, output is a list of RawDetection in
      input-image pixels
    - Blocking inference runs in a worker thread
    - Detectors may fail; the caller decides what a failure means
"""

import asyncio
import logging
from typing import List, Optional, Protocol, Sequence

import cv2
import numpy as np

from codestream.errors import ConfigurationError, DetectorError
from codestream.models.detection import RawDetection


logger = logging.getLogger(__name__)


class CodeDetector(Protocol):
    """
    Protocol for detection backends.

    All implementations provide an async `detect` method and a `close`
    method that releases model resources.
    """

    async def detect(self, image: np.ndarray) -> List[RawDetection]:
        """
        Locate candidate code regions.

        Args:
            image: BGR image, shape (H, W, 3), dtype uint8

        Returns:
            Raw detections in image pixels
        """
        ...

    def close(self) -> None:
        ...


def _corners_to_raw(label: str, corners: np.ndarray, confidence: float) -> RawDetection:
    """Axis-aligned box around a quadrilateral given as (4, 2) points."""
    xs = corners[:, 0]
    ys = corners[:, 1]
    return RawDetection(
        label=label,
        x1=float(xs.min()),
        y1=float(ys.min()),
        x2=float(xs.max()),
        y2=float(ys.max()),
        confidence=confidence,
    )


class OpenCVCodeDetector:
    """
    Detector built on OpenCV's QR and barcode localizers.

    OpenCV reports no score, so every detection carries confidence 1.0.

    Attributes:
        detect_qr: Run the QR localizer
        detect_barcodes: Run the 1D barcode localizer
    """

    def __init__(self, detect_qr: bool = True, detect_barcodes: bool = True) -> None:
        self.detect_qr = detect_qr
        self.detect_barcodes = detect_barcodes

        self._qr = cv2.QRCodeDetector() if detect_qr else None
        self._barcode = None
        if detect_barcodes:
            if hasattr(cv2, "barcode"):
                self._barcode = cv2.barcode.BarcodeDetector()
            else:
                logger.warning("cv2.barcode not available in this OpenCV build; 1D detection disabled")

        logger.info(
            f"OpenCVCodeDetector initialized: qr={self._qr is not None}, "
            f"barcode={self._barcode is not None}"
        )

    async def detect(self, image: np.ndarray) -> List[RawDetection]:
        return await asyncio.to_thread(self._detect_sync, image)

    def _detect_sync(self, image: np.ndarray) -> List[RawDetection]:
        detections: List[RawDetection] = []

        if self._qr is not None:
            found, points = self._qr.detectMulti(image)
            if found and points is not None:
                for corners in points.reshape(-1, 4, 2):
                    detections.append(_corners_to_raw("qrcode", corners, 1.0))

        if self._barcode is not None:
            result = self._barcode.detect(image)
            found, points = result[0], result[1]
            if found and points is not None:
                for corners in points.reshape(-1, 4, 2):
                    detections.append(_corners_to_raw("barcode", corners, 1.0))

        return detections

    def close(self) -> None:
        self._qr = None
        self._barcode = None


class YoloCodeDetector:
    """
    Thin wrapper around an Ultralytics YOLO model.

    Responsibilities:
      - Load the model once (PyTorch weights or an exported ONNX file)
      - Run inference on a BGR image in a worker thread
      - Return RawDetection objects above the confidence threshold

    Attributes:
        model_path: Weights file
        confidence: Minimum score
        iou: NMS IoU threshold
        device: Inference device ("cpu", "cuda", "0", ...; None = auto)
    """

    def __init__(
        self,
        model_path: str,
        confidence: float = 0.3,
        iou: float = 0.5,
        device: Optional[str] = None,
        imgsz: int = 640,
    ) -> None:
        self.model_path = model_path
        self.confidence = confidence
        self.iou = iou
        self.device = device
        self.imgsz = imgsz

        self._model = None
        self._load_model()

    def _load_model(self) -> None:
        try:
            from ultralytics import YOLO
        except ImportError:
            raise ImportError(
                "ultralytics is required for YoloCodeDetector. "
                "Install with: pip install codestream[yolo]"
            )

        logger.info(f"Loading YOLO model '{self.model_path}'")
        try:
            self._model = YOLO(self.model_path, task="detect")
        except Exception as e:
            logger.exception(f"Failed to load YOLO model from '{self.model_path}'")
            raise ConfigurationError(f"Could not load YOLO model: {e}") from e
        logger.info("YOLO model ready")

    async def detect(self, image: np.ndarray) -> List[RawDetection]:
        if self._model is None:
            raise DetectorError("YOLO model is closed")
        return await asyncio.to_thread(self._detect_sync, image)

    def _detect_sync(self, image: np.ndarray) -> List[RawDetection]:
        kwargs = {
            "conf": self.confidence,
            "iou": self.iou,
            "imgsz": self.imgsz,
            "verbose": False,
        }
        if self.device:
            kwargs["device"] = self.device

        results = self._model.predict(image, **kwargs)
        if not results:
            return []

        result = results[0]
        boxes = result.boxes
        if boxes is None or len(boxes) == 0:
            return []

        xyxy = boxes.xyxy.cpu().numpy()
        scores = boxes.conf.cpu().numpy()
        classes = boxes.cls.cpu().numpy().astype(int)
        names = result.names or {}

        detections = []
        for (x1, y1, x2, y2), score, cls_id in zip(xyxy, scores, classes):
            detections.append(
                RawDetection(
                    label=str(names.get(int(cls_id), cls_id)),
                    x1=float(x1),
                    y1=float(y1),
                    x2=float(x2),
                    y2=float(y2),
                    confidence=float(score),
                )
            )
        return detections

    def close(self) -> None:
        self._model = None


class MockCodeDetector:
    """
    Deterministic detector for testing.

    Returns a fixed list of detections after an optional delay, and can be
    told to fail. Tracks how many calls were made and the peak number of
    calls in flight at once.

    Attributes:
        detections: Returned by every call
        delay_seconds: Simulated inference latency
        fail: Raise DetectorError instead of returning
        call_count: Number of detect() calls
        max_concurrent: Highest number of overlapping calls observed
    """

    def __init__(
        self,
        detections: Optional[Sequence[RawDetection]] = None,
        delay_seconds: float = 0.0,
        fail: bool = False,
    ) -> None:
        self.detections = list(detections or [])
        self.delay_seconds = delay_seconds
        self.fail = fail

        self.call_count: int = 0
        self.max_concurrent: int = 0
        self.closed: bool = False
        self._in_flight: int = 0

    async def detect(self, image: np.ndarray) -> List[RawDetection]:
        self.call_count += 1
        self._in_flight += 1
        self.max_concurrent = max(self.max_concurrent, self._in_flight)
        try:
            if self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
            if self.fail:
                raise DetectorError("Mock detector failure")
            return list(self.detections)
        finally:
            self._in_flight -= 1

    def close(self) -> None:
        self.closed = True


def create_detector(config) -> CodeDetector:
    """
    Create a detector from a DetectionConfig.

    Fails fast if the configured backend is unknown.
    """
    backend = config.backend

    if backend == "opencv":
        logger.info("Using OpenCVCodeDetector")
        return OpenCVCodeDetector()

    if backend == "yolo":
        logger.info(
            f"Using YoloCodeDetector: model={config.model_path}, "
            f"confidence={config.confidence}, iou={config.iou}"
        )
        return YoloCodeDetector(
            model_path=config.model_path,
            confidence=config.confidence,
            iou=config.iou,
            device=config.device,
        )

    if backend == "mock":
        logger.info("Using MockCodeDetector")
        return MockCodeDetector()

    raise ConfigurationError(f"Unknown detector backend: {backend}")
