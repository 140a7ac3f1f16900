"""
Error Taxonomy
==============

Exceptions raised inside the CodeStream core.

Failures local to one connection or one frame are caught at the component
boundary and reported on the status channel; only configuration and
listen-address failures reach the caller.

    CodeStreamError
        ConnectFailureError   - one connect attempt failed (retryable)
        StreamClosedError     - stream ended before a full frame
        FrameTooLargeError    - declared frame length above the ceiling
        ImageDecodeError      - payload is not a decodable image
        DetectorError         - external detector failed or timed out
        CaptureError          - capture source failed to open or read
        InvalidAddressError   - listen address cannot be parsed or bound
        ConfigurationError    - invalid component configuration
"""


class CodeStreamError(Exception):
    """Base class for all CodeStream errors."""
    pass


class ConnectFailureError(CodeStreamError):
    """Raised when a single transport connect attempt fails."""
    pass


class StreamClosedError(CodeStreamError):
    """Raised when the byte stream closes before a complete frame was read."""
    pass


class FrameTooLargeError(CodeStreamError):
    """Raised when a length prefix exceeds the configured ceiling."""

    def __init__(self, length: int, limit: int) -> None:
        super().__init__(f"Declared frame length {length} exceeds limit {limit}")
        self.length = length
        self.limit = limit


class ImageDecodeError(CodeStreamError):
    """Raised when a frame payload cannot be decoded into an image."""
    pass


class DetectorError(CodeStreamError):
    """Raised when the external code detector fails."""
    pass


class CaptureError(CodeStreamError):
    """Raised when a capture source cannot be opened or read."""
    pass


class InvalidAddressError(CodeStreamError):
    """Raised when the hub listen address is invalid or cannot be bound."""
    pass


class ConfigurationError(CodeStreamError):
    """Raised on invalid configuration (a programming error)."""
    pass
