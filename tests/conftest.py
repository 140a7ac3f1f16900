"""
Test Configuration
==================

Pytest fixtures and test configuration for CodeStream.
"""

import os
from typing import Optional

# Settings are loaded on first import of codestream.config; keep the
# service tests off real cameras, real ports and heavy detectors.
os.environ.setdefault("CODESTREAM_DETECTOR_BACKEND", "mock")
os.environ.setdefault("CODESTREAM_HUB_BIND_HOST", "127.0.0.1")
os.environ.setdefault("CODESTREAM_HUB_BIND_PORT", "0")
os.environ.setdefault("CODESTREAM_LOG_LEVEL", "DEBUG")

import cv2
import numpy as np
import pytest

from codestream.models import DecodedFrame
from codestream.transport import FrameBroadcastHub


def make_qr_image(
    text: str,
    scale: int = 4,
    canvas: tuple = (480, 640),
    offset: tuple = (40, 60),
) -> np.ndarray:
    """White BGR canvas with one QR code pasted at `offset` (top, left)."""
    symbol = cv2.QRCodeEncoder.create().encode(text)
    symbol = cv2.resize(
        symbol,
        (symbol.shape[1] * scale, symbol.shape[0] * scale),
        interpolation=cv2.INTER_NEAREST,
    )
    image = np.full((canvas[0], canvas[1], 3), 255, dtype=np.uint8)
    top, left = offset
    h, w = symbol.shape[:2]
    image[top:top + h, left:left + w] = cv2.cvtColor(symbol, cv2.COLOR_GRAY2BGR)
    return image


@pytest.fixture
def bgr_image():
    """Plain 320x240 BGR test image with a gradient."""
    image = np.zeros((240, 320, 3), dtype=np.uint8)
    image[..., 0] = np.linspace(0, 255, 320, dtype=np.uint8)
    image[..., 1] = 128
    image[..., 2] = np.linspace(255, 0, 240, dtype=np.uint8)[:, None]
    return image


@pytest.fixture
def jpeg_bytes(bgr_image):
    """bgr_image encoded as JPEG."""
    ok, encoded = cv2.imencode(".jpg", bgr_image)
    assert ok
    return encoded.tobytes()


@pytest.fixture
def decoded_frame_factory():
    """Build DecodedFrame instances with increasing ids."""
    from codestream.models import Frame

    counter = {"next": 1}

    def _make(image: np.ndarray, frame_id: Optional[int] = None) -> DecodedFrame:
        if frame_id is None:
            frame_id = counter["next"]
        counter["next"] = frame_id + 1
        frame = Frame(frame_id=frame_id, connection_id=1, timestamp=0.0, payload=b"")
        return DecodedFrame(frame=frame, image=image)

    return _make


@pytest.fixture
async def hub():
    """FrameBroadcastHub listening on an ephemeral loopback port."""
    instance = FrameBroadcastHub(stop_grace_seconds=1.0)
    await instance.start("127.0.0.1", 0)
    yield instance
    await instance.stop()


@pytest.fixture
def qr_image_factory():
    """Build BGR canvases carrying one QR code (see make_qr_image)."""
    return make_qr_image
