"""
Frame Sender
============

Producer-side connection lifecycle and capture -> encode -> send loop.

State Machine:
    IDLE -> CONNECTING -> STREAMING -> STOPPING -> STOPPED

    A failed connect attempt drops back to IDLE, waits a fixed backoff and
    re-enters CONNECTING, up to max_attempts. Exhausting the attempts, or
    any failure while streaming, ends in STOPPED (via ERROR for failures).

Design Rules:
    - Exactly one live connection per sender
    - start() while connecting or streaming is a reported no-op
    - stop() is idempotent and safe to call from inside the send loop
    - Nothing raised by capture or send escapes the loop; it is reported
      on the status channel and the sender stops
"""

import asyncio
import contextlib
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from codestream.errors import CaptureError, ConfigurationError, ConnectFailureError
from codestream.events import StatusChannel
from codestream.sender.capture import CaptureSource
from codestream.sender.orientation import Facing, compute_frame_rotation, normalize_rotation
from codestream.transport.codec import write_frame


logger = logging.getLogger(__name__)


Connector = Callable[[str, int], Awaitable[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


async def open_tcp_connection(
    host: str,
    port: int,
) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Default connector: plain TCP via asyncio streams."""
    return await asyncio.open_connection(host, port)


class ConnectionState(str, Enum):
    """Sender connection states."""

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    STREAMING = "STREAMING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class SenderMetrics:
    """Metrics for FrameSender observability."""

    __slots__ = (
        "connect_attempts",
        "frames_sent",
        "bytes_sent",
        "send_errors",
    )

    def __init__(self) -> None:
        self.connect_attempts: int = 0
        self.frames_sent: int = 0
        self.bytes_sent: int = 0
        self.send_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "connect_attempts": self.connect_attempts,
            "frames_sent": self.frames_sent,
            "bytes_sent": self.bytes_sent,
            "send_errors": self.send_errors,
        }


class FrameSender:
    """
    Streams frames from a capture source to a FrameBroadcastHub.

    Attributes:
        source: Capture source frames are read from
        max_attempts: Default number of connect attempts per start()
        retry_backoff_seconds: Fixed wait between failed attempts
        connect_timeout_seconds: Bound on a single connect attempt
        frame_interval_ms: Minimum spacing between frames (0 = as fast as
            the source delivers)
        status: Human-readable status events
        metrics: Operational metrics

    Example:
        sender = FrameSender(source, max_attempts=3)
        sender.status.subscribe(print)

        if await sender.start("127.0.0.1", 12345):
            ...
        await sender.stop()
    """

    def __init__(
        self,
        source: CaptureSource,
        max_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        connect_timeout_seconds: float = 5.0,
        frame_interval_ms: int = 0,
        stop_grace_seconds: float = 2.0,
        connector: Optional[Connector] = None,
    ) -> None:
        """
        Initialize frame sender.

        Args:
            source: Capture source to stream
            max_attempts: Default connect attempts (>= 1)
            retry_backoff_seconds: Fixed delay between attempts
            connect_timeout_seconds: Timeout for one connect attempt
            frame_interval_ms: Minimum spacing between frames
            stop_grace_seconds: How long stop() waits for the send loop
            connector: Coroutine opening the transport (defaults to TCP)
        """
        if max_attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")

        self.source = source
        self.max_attempts = max_attempts
        self.retry_backoff_seconds = retry_backoff_seconds
        self.connect_timeout_seconds = connect_timeout_seconds
        self.frame_interval_ms = frame_interval_ms
        self.stop_grace_seconds = stop_grace_seconds
        self._connector: Connector = connector or open_tcp_connection

        self.status = StatusChannel("sender")
        self.metrics = SenderMetrics()

        self._state = ConnectionState.IDLE
        self._starting: bool = False
        self._stop_event: asyncio.Event = asyncio.Event()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._stream_task: Optional[asyncio.Task] = None
        self._host: Optional[str] = None
        self._port: Optional[int] = None
        self._device_rotation: int = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def running(self) -> bool:
        """Whether the sender is connecting or streaming."""
        return self._starting or self._state in (
            ConnectionState.CONNECTING,
            ConnectionState.STREAMING,
        )

    @property
    def address(self) -> Optional[Tuple[str, int]]:
        """Last host/port passed to start()."""
        if self._host is None or self._port is None:
            return None
        return self._host, self._port

    @property
    def stream_task(self) -> Optional[asyncio.Task]:
        return self._stream_task

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"Sender state {self._state.value} -> {state.value}")
            self._state = state

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, host: str, port: int, max_attempts: Optional[int] = None) -> bool:
        """
        Connect and begin streaming.

        Args:
            host: Hub host
            port: Hub port
            max_attempts: Connect attempts for this call (default: self.max_attempts)

        Returns:
            True when streaming started, False otherwise
        """
        if self.running:
            self.status.emit("Already running")
            return False

        attempts = self.max_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ConfigurationError("max_attempts must be >= 1")

        self._starting = True
        self._stop_event.clear()
        self._host, self._port = host, port

        try:
            connection = await self._connect_with_retries(host, port, attempts)
            if connection is None:
                return False

            self._reader, self._writer = connection
            try:
                await asyncio.to_thread(self.source.open)
            except CaptureError as e:
                self._set_state(ConnectionState.ERROR)
                self.status.emit(f"Camera error: {e}")
                await self._close_transport()
                self._set_state(ConnectionState.STOPPED)
                return False

            if self._stop_event.is_set():
                # stop() ran while the source was opening
                try:
                    await asyncio.to_thread(self.source.close)
                except Exception as e:
                    logger.error(f"Error closing capture source: {e}")
                await self._close_transport()
                self._set_state(ConnectionState.STOPPED)
                return False

            self.apply_orientation()
            self._set_state(ConnectionState.STREAMING)
            self.status.emit("Connected")
            self._stream_task = asyncio.create_task(self._stream_loop(), name="frame_sender")
            return True
        finally:
            self._starting = False

    async def _connect_with_retries(
        self,
        host: str,
        port: int,
        attempts: int,
    ) -> Optional[Tuple[asyncio.StreamReader, asyncio.StreamWriter]]:
        """Run the bounded connect loop; None when it did not connect."""
        for attempt in range(1, attempts + 1):
            self._set_state(ConnectionState.CONNECTING)
            self.status.emit(f"Connecting to {host}:{port}...")
            self.metrics.connect_attempts += 1

            try:
                reader, writer = await self._connect_once(host, port)
            except ConnectFailureError as e:
                logger.warning(f"Connect attempt {attempt}/{attempts} failed: {e}")
                if self._stop_event.is_set():
                    return None
                self._set_state(ConnectionState.IDLE)
                self.status.emit(f"Connection failed (attempt {attempt})")

                if attempt < attempts and await self._wait_backoff():
                    return None
                continue

            if self._stop_event.is_set():
                # stop() ran while the connect was in flight
                writer.close()
                return None
            return reader, writer

        self.status.emit("Connection failed")
        self._set_state(ConnectionState.STOPPED)
        return None

    async def _connect_once(
        self,
        host: str,
        port: int,
    ) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            return await asyncio.wait_for(
                self._connector(host, port),
                timeout=self.connect_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ConnectFailureError(
                f"Timed out after {self.connect_timeout_seconds}s"
            ) from None
        except OSError as e:
            raise ConnectFailureError(str(e)) from e

    async def _wait_backoff(self) -> bool:
        """Sleep the fixed backoff. Returns True if stop() was requested."""
        try:
            await asyncio.wait_for(
                self._stop_event.wait(),
                timeout=self.retry_backoff_seconds,
            )
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self) -> None:
        """
        Stop streaming and release the capture source and socket.

        No-op when idle or already stopped.
        """
        if self._state == ConnectionState.STOPPING:
            return
        if not self._starting and self._state in (ConnectionState.IDLE, ConnectionState.STOPPED):
            return

        self._set_state(ConnectionState.STOPPING)
        self._stop_event.set()

        task, self._stream_task = self._stream_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            await asyncio.wait([task], timeout=self.stop_grace_seconds)

        try:
            await asyncio.to_thread(self.source.close)
        except Exception as e:
            logger.error(f"Error closing capture source: {e}")
        await self._close_transport()

        self._set_state(ConnectionState.STOPPED)
        self.status.emit("Stopped")

    async def _close_transport(self) -> None:
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is None:
            return
        writer.close()
        with contextlib.suppress(Exception):
            await asyncio.wait_for(writer.wait_closed(), timeout=self.stop_grace_seconds)

    async def switch_source(self) -> bool:
        """
        Toggle camera facing and reconnect to the last address.

        Only acts while streaming.

        Returns:
            Result of the restart, False when not streaming
        """
        if self._state != ConnectionState.STREAMING or self.address is None:
            self.status.emit("Switch ignored: not streaming")
            return False

        host, port = self.address
        await self.stop()

        facing = self.source.switch_facing()
        self.status.emit(f"Switching to {facing.value} camera")
        return await self.start(host, port)

    # =========================================================================
    # Orientation
    # =========================================================================

    def update_orientation(self, device_rotation: int) -> int:
        """
        Record a new device rotation and recompute the frame rotation.

        Frames already captured are not affected.

        Args:
            device_rotation: Display rotation in degrees

        Returns:
            Clockwise rotation applied to subsequent frames
        """
        self._device_rotation = normalize_rotation(device_rotation)
        return self.apply_orientation()

    def apply_orientation(self) -> int:
        rotation = compute_frame_rotation(
            self.source.sensor_orientation,
            self._device_rotation,
            Facing(self.source.facing),
        )
        self.source.set_rotation(rotation)
        return rotation

    # =========================================================================
    # Send loop
    # =========================================================================

    def _transport_connected(self) -> bool:
        return (
            self._writer is not None
            and not self._writer.is_closing()
            and self._reader is not None
            and not self._reader.at_eof()
        )

    async def _stream_loop(self) -> None:
        """Capture, encode and send until stopped or a failure occurs."""
        loop = asyncio.get_running_loop()
        interval = self.frame_interval_ms / 1000.0

        try:
            while self._state == ConnectionState.STREAMING:
                started = loop.time()

                payload = await asyncio.to_thread(self.source.read)
                if payload is None:
                    self.status.emit("Capture source ended")
                    break

                if not self._transport_connected():
                    self.status.emit("Connection lost")
                    break

                await write_frame(self._writer, payload)
                self.metrics.frames_sent += 1
                self.metrics.bytes_sent += len(payload)

                if interval > 0:
                    remaining = interval - (loop.time() - started)
                    if remaining > 0:
                        await asyncio.sleep(remaining)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.metrics.send_errors += 1
            logger.exception(f"Send loop failed: {e}")
            self._set_state(ConnectionState.ERROR)
            self.status.emit(f"Transmission error: {e}")

        if self._state in (ConnectionState.STREAMING, ConnectionState.ERROR):
            await self.stop()
