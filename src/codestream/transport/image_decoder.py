"""
Image Decoder
=============

Conversion between encoded frame payloads and OpenCV matrices.

Design Rules:
    - This is the ONLY place in the codebase that decodes payloads
    - Validates shape and dtype
    - Fails fast on corrupt payloads with ImageDecodeError
    - Decoded images are BGR, uint8, shape (H, W, 3)
"""

import logging

import cv2
import numpy as np

from codestream.errors import ImageDecodeError
from codestream.models.frame import DecodedFrame, Frame


logger = logging.getLogger(__name__)


def decode_image(payload: bytes) -> np.ndarray:
    """
    Decode an encoded image payload to a BGR numpy array.

    Args:
        payload: Encoded image bytes (JPEG, PNG, ...)

    Returns:
        BGR image as np.ndarray (H, W, 3), dtype=uint8

    Raises:
        ImageDecodeError: If decoding fails or image is invalid
    """
    if not payload:
        raise ImageDecodeError("Empty payload")

    try:
        nparr = np.frombuffer(payload, np.uint8)
        bgr = cv2.imdecode(nparr, cv2.IMREAD_COLOR)
    except cv2.error as e:
        raise ImageDecodeError(f"cv2.imdecode failed: {e}") from e

    if bgr is None:
        raise ImageDecodeError(
            f"Failed to decode {len(payload)} byte payload: cv2.imdecode returned None"
        )

    if len(bgr.shape) != 3 or bgr.shape[2] != 3:
        raise ImageDecodeError(f"Invalid image shape: {bgr.shape}")

    if bgr.dtype != np.uint8:
        raise ImageDecodeError(f"Invalid dtype: {bgr.dtype}")

    return bgr


def decode_frame(frame: Frame) -> DecodedFrame:
    """
    Decode a received Frame.

    Args:
        frame: Frame with encoded payload

    Returns:
        DecodedFrame wrapping the frame and its bitmap

    Raises:
        ImageDecodeError: If the payload is not a decodable image
    """
    try:
        image = decode_image(frame.payload)
    except ImageDecodeError as e:
        raise ImageDecodeError(f"Frame {frame.frame_id}: {e}") from e
    return DecodedFrame(frame=frame, image=image)


def encode_jpeg(image: np.ndarray, quality: int = 90) -> bytes:
    """
    Encode a BGR image as JPEG.

    Args:
        image: BGR image, dtype uint8
        quality: JPEG quality 1-100

    Returns:
        JPEG bytes

    Raises:
        ImageDecodeError: If OpenCV refuses the image
    """
    ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        raise ImageDecodeError(f"cv2.imencode failed for image of shape {image.shape}")
    return buffer.tobytes()
