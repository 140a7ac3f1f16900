"""
Frame Broadcast Hub
===================

Receiver-side TCP listener that turns producer byte streams into a shared
sequence of frames.

This module provides the FrameBroadcastHub class which:
    - Listens on one address and accepts any number of producers
    - Deframes each connection with the frame codec
    - Publishes every payload on `payloads` (encoded Frame)
    - Decodes every payload off the event loop and publishes the bitmap
      on `frames` (DecodedFrame)

Design Rules:
    - One read task per connection; a failure ends only that connection
    - A malformed image is logged and skipped, the connection continues
    - Frames of one connection are published in arrival order
    - Hot stream: subscribers never receive frames published before they
      subscribed
"""

import asyncio
import contextlib
import ipaddress
import itertools
import logging
import time
from typing import Dict, Optional

from codestream.errors import (
    FrameTooLargeError,
    ImageDecodeError,
    InvalidAddressError,
    StreamClosedError,
)
from codestream.events import Broadcaster, StatusChannel
from codestream.models.frame import DecodedFrame, Frame
from codestream.transport.codec import read_frame
from codestream.transport.image_decoder import decode_frame


logger = logging.getLogger(__name__)


DEFAULT_MAX_FRAME_BYTES = 16 * 1024 * 1024


class HubMetrics:
    """Metrics for FrameBroadcastHub observability."""

    __slots__ = (
        "connections_accepted",
        "frames_received",
        "bytes_received",
        "frames_decoded",
        "malformed_frames",
        "oversize_frames",
    )

    def __init__(self) -> None:
        self.connections_accepted: int = 0
        self.frames_received: int = 0
        self.bytes_received: int = 0
        self.frames_decoded: int = 0
        self.malformed_frames: int = 0
        self.oversize_frames: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "connections_accepted": self.connections_accepted,
            "frames_received": self.frames_received,
            "bytes_received": self.bytes_received,
            "frames_decoded": self.frames_decoded,
            "malformed_frames": self.malformed_frames,
            "oversize_frames": self.oversize_frames,
        }


class FrameBroadcastHub:
    """
    TCP frame receiver with multicast delivery.

    Attributes:
        payloads: Broadcaster of every received Frame (encoded payload)
        frames: Broadcaster of every successfully decoded frame
        status: Human-readable status events
        metrics: Operational metrics

    Example:
        hub = FrameBroadcastHub()
        hub.frames.subscribe(lambda frame: print(frame.frame_id))

        await hub.start("127.0.0.1", 12345)
        ...
        await hub.stop()
    """

    def __init__(
        self,
        max_frame_bytes: Optional[int] = DEFAULT_MAX_FRAME_BYTES,
        stop_grace_seconds: float = 2.0,
    ) -> None:
        """
        Initialize hub.

        Args:
            max_frame_bytes: Reject frames declaring more bytes (None or 0 = no limit)
            stop_grace_seconds: How long stop() waits for read tasks to finish
        """
        self.max_frame_bytes = max_frame_bytes
        self.stop_grace_seconds = stop_grace_seconds

        self.payloads: Broadcaster[Frame] = Broadcaster("payloads")
        self.frames: Broadcaster[DecodedFrame] = Broadcaster("frames")
        self.status = StatusChannel("hub")
        self.metrics = HubMetrics()

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Dict[int, asyncio.Task] = {}
        self._frame_ids = itertools.count(1)
        self._connection_ids = itertools.count(1)
        self._bind_host: Optional[str] = None
        self._port: Optional[int] = None

    @property
    def running(self) -> bool:
        """Whether the hub is listening."""
        return self._server is not None

    @property
    def port(self) -> Optional[int]:
        """Bound port (resolved when started with port 0)."""
        return self._port

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def start(self, bind_host: str, bind_port: int) -> None:
        """
        Start listening for producers.

        Args:
            bind_host: IP address literal to bind
            bind_port: TCP port (0 = ephemeral)

        Raises:
            InvalidAddressError: If the address cannot be parsed or bound
        """
        if self._server is not None:
            logger.info("Hub already running")
            return

        try:
            ipaddress.ip_address(bind_host)
        except ValueError:
            raise InvalidAddressError(f"Invalid IP address: {bind_host!r}") from None

        if not 0 <= bind_port <= 65535:
            raise InvalidAddressError(f"Invalid port: {bind_port}")

        try:
            server = await asyncio.start_server(
                self._handle_connection,
                host=bind_host,
                port=bind_port,
            )
        except OSError as e:
            raise InvalidAddressError(
                f"Cannot bind {bind_host}:{bind_port}: {e}"
            ) from e

        self._server = server
        self._bind_host = bind_host
        self._port = server.sockets[0].getsockname()[1]
        self.status.emit(f"Listening on {bind_host}:{self._port}")

    async def stop(self) -> None:
        """
        Stop listening and end all producer connections.

        Idempotent. Waits at most stop_grace_seconds for read tasks.
        """
        if self._server is None:
            return

        server, self._server = self._server, None
        server.close()

        tasks = list(self._connections.values())
        for task in tasks:
            task.cancel()

        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.stop_grace_seconds)
            if pending:
                logger.warning(f"{len(pending)} read task(s) did not finish in time")

        try:
            await asyncio.wait_for(server.wait_closed(), timeout=self.stop_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Listener did not close within grace period")

        self._connections.clear()
        self.status.emit("Hub stopped")

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        """Per-connection task spawned by the asyncio server."""
        connection_id = next(self._connection_ids)
        peer = writer.get_extra_info("peername")

        task = asyncio.current_task()
        if task is not None:
            self._connections[connection_id] = task
        self.metrics.connections_accepted += 1
        self.status.emit(f"Producer {connection_id} connected from {peer}")

        try:
            await self._read_loop(connection_id, reader)
        finally:
            self._connections.pop(connection_id, None)
            writer.close()
            with contextlib.suppress(Exception):
                await writer.wait_closed()
            self.status.emit(f"Producer {connection_id} disconnected")

    async def _read_loop(self, connection_id: int, reader: asyncio.StreamReader) -> None:
        """Deframe, publish and decode until the connection ends."""
        while True:
            try:
                payload = await read_frame(reader, self.max_frame_bytes)
            except StreamClosedError as e:
                logger.info(f"Connection {connection_id} closed: {e}")
                return
            except FrameTooLargeError as e:
                self.metrics.oversize_frames += 1
                logger.warning(f"Connection {connection_id}: {e}")
                self.status.emit(f"Producer {connection_id} sent an oversize frame")
                return
            except (ConnectionError, OSError) as e:
                logger.warning(f"Connection {connection_id} read error: {e}")
                return

            frame = Frame(
                frame_id=next(self._frame_ids),
                connection_id=connection_id,
                timestamp=time.time(),
                payload=payload,
            )
            self.metrics.frames_received += 1
            self.metrics.bytes_received += frame.length
            self.payloads.publish(frame)

            # Nobody wants bitmaps; skip the decode cost
            if self.frames.subscriber_count == 0:
                continue

            try:
                decoded = await asyncio.to_thread(decode_frame, frame)
            except ImageDecodeError as e:
                self.metrics.malformed_frames += 1
                logger.warning(f"Skipping malformed frame: {e}")
                continue

            self.metrics.frames_decoded += 1
            self.frames.publish(decoded)
