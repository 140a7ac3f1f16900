"""
CodeStream
==========

Live barcode/QR scanning over a framed TCP video link.

A producer captures camera frames, compresses them to JPEG and streams them
to a receiver. The receiver decodes each frame, runs a throttled code
detector over the live stream, and decodes a selected region on demand.

Components:
    - transport: frame codec, broadcast hub, subscriber buffers
    - sender: capture sources, orientation, connection lifecycle
    - detection: admission gate, detector backends, detection throttle
    - decoding: luminance conversion and region decoding
    - models: Frame, Detection, DetectionBatch, DecodeResult

Example:
    from codestream.config import settings

    # Receiver is started via the FastAPI application (see main.py),
    # the producer via the codestream-sender console script.
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
