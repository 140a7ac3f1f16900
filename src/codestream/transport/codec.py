"""
Frame Codec
===========

Length-prefixed frame wire format.

Wire Format:
    [4-byte little-endian unsigned length][length bytes of payload]

    Repeated for every frame. There is no handshake, no checksum and no
    termination frame; closing the connection ends the stream.

Design Rules:
    - A partial frame is never returned
    - The length ceiling is a local guard only; compliant peers see the
      same format whether or not it is enabled
"""

import asyncio
import struct
from typing import Optional

from codestream.errors import FrameTooLargeError, StreamClosedError


LENGTH_PREFIX = struct.Struct("<I")
HEADER_SIZE = LENGTH_PREFIX.size
MAX_PAYLOAD_SIZE = 0xFFFFFFFF


def encode_frame(payload: bytes) -> bytes:
    """
    Serialize one payload for the wire.

    Args:
        payload: Encoded image bytes (may be empty)

    Returns:
        Length prefix followed by the payload

    Raises:
        ValueError: If the payload does not fit a 32-bit length
    """
    if len(payload) > MAX_PAYLOAD_SIZE:
        raise ValueError(f"Payload of {len(payload)} bytes exceeds wire limit")
    return LENGTH_PREFIX.pack(len(payload)) + bytes(payload)


def decode_header(header: bytes) -> int:
    """Interpret a 4-byte length prefix."""
    return LENGTH_PREFIX.unpack(header)[0]


async def read_frame(
    reader: asyncio.StreamReader,
    max_frame_bytes: Optional[int] = None,
) -> bytes:
    """
    Read exactly one frame payload from a stream.

    Blocks until the 4-byte prefix and then the full payload are available.

    Args:
        reader: Stream to read from
        max_frame_bytes: Reject declared lengths above this (None or 0 = no limit)

    Returns:
        The complete payload

    Raises:
        StreamClosedError: If the stream ends before the frame is complete
        FrameTooLargeError: If the declared length exceeds max_frame_bytes
    """
    try:
        header = await reader.readexactly(HEADER_SIZE)
    except asyncio.IncompleteReadError as e:
        raise StreamClosedError(
            f"Stream closed after {len(e.partial)} of {HEADER_SIZE} length bytes"
        ) from None

    length = decode_header(header)
    if max_frame_bytes and length > max_frame_bytes:
        raise FrameTooLargeError(length, max_frame_bytes)

    if length == 0:
        return b""

    try:
        return await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise StreamClosedError(
            f"Stream closed after {len(e.partial)} of {length} payload bytes"
        ) from None


async def write_frame(writer: asyncio.StreamWriter, payload: bytes) -> None:
    """
    Write one encoded frame and wait for the transport to drain.

    Args:
        writer: Open stream writer
        payload: Encoded image bytes
    """
    writer.write(encode_frame(payload))
    await writer.drain()
