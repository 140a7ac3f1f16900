"""
Capture Sources
===============

Producer-side frame acquisition behind a common capability.

This module provides:
    - CaptureSource: Protocol the sender talks to
    - OpenCVCaptureSource: camera index or video file via cv2.VideoCapture
    - StaticImageSource: repeats one image (demos, tests, smoke checks)
    - create_capture_source: picks a variant from configuration

Design Rules:
    - read() returns one JPEG-encoded frame, already rotated upright
    - read() returns None when the source has no more frames
    - The backend API is chosen once, at construction, from the platform
"""

import logging
import sys
import threading
from pathlib import Path
from typing import Optional, Protocol, Union

import cv2
import numpy as np

from codestream.errors import CaptureError, ConfigurationError
from codestream.sender.orientation import Facing, normalize_rotation, rotate_image
from codestream.transport.image_decoder import encode_jpeg


logger = logging.getLogger(__name__)


class CaptureSource(Protocol):
    """
    Protocol for frame producers.

    The sender never depends on a concrete variant.
    """

    facing: Facing
    sensor_orientation: int

    def open(self) -> None:
        """Acquire the device. Raises CaptureError on failure."""
        ...

    def read(self) -> Optional[bytes]:
        """Blocking read of the next encoded frame, None at end of stream."""
        ...

    def close(self) -> None:
        """Release the device. Idempotent."""
        ...

    def switch_facing(self) -> Facing:
        """Toggle front/back; takes effect on the next open()."""
        ...

    def set_rotation(self, degrees: int) -> None:
        """Clockwise rotation applied to frames read after this call."""
        ...


def preferred_capture_api(platform: Optional[str] = None) -> int:
    """
    OpenCV capture backend for the running platform.

    Args:
        platform: Override for sys.platform (testing)

    Returns:
        cv2.CAP_* constant
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return cv2.CAP_DSHOW
    if platform.startswith("linux"):
        return cv2.CAP_V4L2
    if platform == "darwin":
        return cv2.CAP_AVFOUNDATION
    return cv2.CAP_ANY


class OpenCVCaptureSource:
    """
    Camera or video file source backed by cv2.VideoCapture.

    Attributes:
        device: Camera index, device path or video file path
        front_device: Camera used when facing front (None = same device)
        facing: Current facing
        sensor_orientation: Sensor mounting angle in degrees
    """

    def __init__(
        self,
        device: Union[int, str] = 0,
        front_device: Optional[Union[int, str]] = None,
        facing: Facing = Facing.BACK,
        sensor_orientation: int = 0,
        jpeg_quality: int = 90,
        max_width: int = 1920,
        max_height: int = 1080,
        api_preference: Optional[int] = None,
    ) -> None:
        self.device = device
        self.front_device = front_device
        self.facing = facing
        self.sensor_orientation = normalize_rotation(sensor_orientation)
        self.jpeg_quality = jpeg_quality
        self.max_width = max_width
        self.max_height = max_height

        # Files and URLs go through whatever backend can open them
        if isinstance(device, str) and not device.startswith("/dev/"):
            self.api_preference = cv2.CAP_ANY
        else:
            self.api_preference = (
                api_preference if api_preference is not None else preferred_capture_api()
            )

        self._capture: Optional[cv2.VideoCapture] = None
        self._rotation: int = 0
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._capture is not None

    def _active_device(self) -> Union[int, str]:
        if self.facing is Facing.FRONT and self.front_device is not None:
            return self.front_device
        return self.device

    def open(self) -> None:
        with self._lock:
            if self._capture is not None:
                return

            device = self._active_device()
            capture = cv2.VideoCapture(device, self.api_preference)
            if not capture.isOpened():
                capture.release()
                raise CaptureError(f"Camera not opened: {device!r}")

            width = capture.get(cv2.CAP_PROP_FRAME_WIDTH)
            height = capture.get(cv2.CAP_PROP_FRAME_HEIGHT)
            if width > self.max_width or height > self.max_height:
                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.max_width)
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.max_height)

            self._capture = capture
            logger.info(
                f"Capture opened: device={device!r}, backend={capture.getBackendName()}, "
                f"resolution={int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))}x"
                f"{int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))}"
            )

    def read(self) -> Optional[bytes]:
        with self._lock:
            if self._capture is None:
                raise CaptureError("Capture source is not open")
            ok, image = self._capture.read()
            rotation = self._rotation

        if not ok or image is None:
            return None
        return encode_jpeg(rotate_image(image, rotation), self.jpeg_quality)

    def close(self) -> None:
        with self._lock:
            if self._capture is not None:
                self._capture.release()
                self._capture = None
                logger.info("Capture released")

    def switch_facing(self) -> Facing:
        self.facing = self.facing.toggled()
        return self.facing

    def set_rotation(self, degrees: int) -> None:
        self._rotation = normalize_rotation(degrees)


class StaticImageSource:
    """
    Source that serves the same image over and over.

    Attributes:
        max_frames: Stop after this many frames (None = never)
        frames_read: Frames served since the last open()
    """

    def __init__(
        self,
        image: np.ndarray,
        facing: Facing = Facing.BACK,
        sensor_orientation: int = 0,
        jpeg_quality: int = 90,
        max_frames: Optional[int] = None,
    ) -> None:
        if image.ndim != 3 or image.shape[2] != 3:
            raise ConfigurationError(f"Expected a BGR image, got shape {image.shape}")

        self.image = image
        self.facing = facing
        self.sensor_orientation = normalize_rotation(sensor_orientation)
        self.jpeg_quality = jpeg_quality
        self.max_frames = max_frames
        self.frames_read = 0

        self._rotation = 0
        self._is_open = False
        self._encoded: Optional[bytes] = None
        self._encoded_rotation: Optional[int] = None

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "StaticImageSource":
        image = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if image is None:
            raise ConfigurationError(f"Cannot read image file: {path}")
        return cls(image, **kwargs)

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        self._is_open = True
        self.frames_read = 0

    def read(self) -> Optional[bytes]:
        if not self._is_open:
            raise CaptureError("Capture source is not open")
        if self.max_frames is not None and self.frames_read >= self.max_frames:
            return None

        rotation = self._rotation
        if self._encoded is None or self._encoded_rotation != rotation:
            self._encoded = encode_jpeg(rotate_image(self.image, rotation), self.jpeg_quality)
            self._encoded_rotation = rotation

        self.frames_read += 1
        return self._encoded

    def close(self) -> None:
        self._is_open = False

    def switch_facing(self) -> Facing:
        self.facing = self.facing.toggled()
        return self.facing

    def set_rotation(self, degrees: int) -> None:
        self._rotation = normalize_rotation(degrees)


def _parse_device(device: Union[int, str]) -> Union[int, str]:
    if isinstance(device, str) and device.isdigit():
        return int(device)
    return device


def create_capture_source(config) -> CaptureSource:
    """
    Build the capture source described by a SenderConfig.

    Args:
        config: codestream.config.SenderConfig

    Returns:
        A CaptureSource variant

    Raises:
        ConfigurationError: Unknown source or missing static image
    """
    facing = Facing(config.facing)

    if config.source == "camera":
        front_device = config.front_device
        return OpenCVCaptureSource(
            device=_parse_device(config.device),
            front_device=_parse_device(front_device) if front_device is not None else None,
            facing=facing,
            sensor_orientation=config.sensor_orientation,
            jpeg_quality=config.jpeg_quality,
            max_width=config.max_width,
            max_height=config.max_height,
        )

    if config.source == "static":
        if not config.static_image_path:
            raise ConfigurationError("sender.static_image_path is required for the static source")
        return StaticImageSource.from_file(
            config.static_image_path,
            facing=facing,
            sensor_orientation=config.sensor_orientation,
            jpeg_quality=config.jpeg_quality,
        )

    raise ConfigurationError(f"Unknown capture source: {config.source}")
