"""
Broadcast Hub Tests
===================

End-to-end tests over real loopback sockets.
"""

import asyncio
import time

import pytest

from codestream.errors import InvalidAddressError
from codestream.transport import FrameBroadcastHub, encode_frame


async def _eventually(predicate, timeout: float = 3.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _send(port: int, payloads, close: bool = True):
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    for payload in payloads:
        writer.write(encode_frame(payload))
    await writer.drain()
    if close:
        writer.close()
        await writer.wait_closed()
    return reader, writer


class TestHubLifecycle:
    """Tests for start/stop and address validation."""

    async def test_start_binds_ephemeral_port(self, hub):
        assert hub.running
        assert hub.port and hub.port > 0
        assert hub.status.last.startswith("Listening on 127.0.0.1:")

    async def test_rejects_hostnames(self):
        hub = FrameBroadcastHub()
        with pytest.raises(InvalidAddressError):
            await hub.start("localhost", 0)
        assert not hub.running

    async def test_rejects_out_of_range_port(self):
        hub = FrameBroadcastHub()
        with pytest.raises(InvalidAddressError):
            await hub.start("127.0.0.1", 70000)

    async def test_rejects_port_in_use(self, hub):
        other = FrameBroadcastHub()
        with pytest.raises(InvalidAddressError):
            await other.start("127.0.0.1", hub.port)

    async def test_start_twice_is_noop(self, hub):
        port = hub.port
        await hub.start("127.0.0.1", 0)
        assert hub.port == port

    async def test_stop_is_idempotent(self):
        hub = FrameBroadcastHub()
        await hub.stop()

        await hub.start("127.0.0.1", 0)
        await hub.stop()
        await hub.stop()

        assert not hub.running
        assert hub.status.last == "Hub stopped"

    async def test_stop_ends_producer_connections(self):
        hub = FrameBroadcastHub(stop_grace_seconds=1.0)
        await hub.start("127.0.0.1", 0)
        reader, writer = await _send(hub.port, [b"hello"], close=False)
        await _eventually(lambda: hub.active_connections == 1)

        await hub.stop()

        assert hub.active_connections == 0
        assert await asyncio.wait_for(reader.read(), timeout=2.0) == b""
        writer.close()


class TestHubFrames:
    """Tests for deframing and broadcast."""

    async def test_delivers_frames_exactly_once_in_order(self, hub):
        received = []
        hub.payloads.subscribe(received.append)

        await _send(hub.port, [b"a" * 10, b"", b"b" * 500])
        await _eventually(lambda: len(received) == 3)
        await asyncio.sleep(0.05)

        assert [frame.length for frame in received] == [10, 0, 500]
        assert received[1].payload == b""
        ids = [frame.frame_id for frame in received]
        assert ids == sorted(ids)
        assert len(set(ids)) == 3

    async def test_every_subscriber_sees_every_frame(self, hub):
        first, second = [], []
        hub.payloads.subscribe(first.append)
        hub.payloads.subscribe(second.append)

        await _send(hub.port, [b"1", b"22", b"333"])
        await _eventually(lambda: len(first) == 3 and len(second) == 3)

        assert [f.frame_id for f in first] == [f.frame_id for f in second]

    async def test_decodes_images_and_skips_malformed(self, hub, jpeg_bytes, bgr_image):
        payloads, decoded = [], []
        hub.payloads.subscribe(payloads.append)
        hub.frames.subscribe(decoded.append)

        await _send(hub.port, [jpeg_bytes, b"definitely not an image", jpeg_bytes])
        await _eventually(lambda: len(payloads) == 3 and hub.metrics.malformed_frames == 1)
        await _eventually(lambda: len(decoded) == 2)

        assert decoded[0].width == bgr_image.shape[1]
        assert decoded[0].height == bgr_image.shape[0]
        assert [d.frame_id for d in decoded] == [payloads[0].frame_id, payloads[2].frame_id]
        assert hub.metrics.frames_decoded == 2

    async def test_skips_decoding_without_frame_subscribers(self, hub, jpeg_bytes):
        payloads = []
        hub.payloads.subscribe(payloads.append)

        await _send(hub.port, [jpeg_bytes])
        await _eventually(lambda: len(payloads) == 1)

        assert hub.metrics.frames_decoded == 0

    async def test_multiple_producers(self, hub):
        received = []
        hub.payloads.subscribe(received.append)

        await asyncio.gather(
            _send(hub.port, [b"x"] * 5),
            _send(hub.port, [b"y"] * 5),
        )
        await _eventually(lambda: len(received) == 10)

        assert {frame.connection_id for frame in received} == {1, 2}
        for connection_id in (1, 2):
            ids = [f.frame_id for f in received if f.connection_id == connection_id]
            assert ids == sorted(ids)

    async def test_oversize_frame_closes_connection(self):
        hub = FrameBroadcastHub(max_frame_bytes=16)
        await hub.start("127.0.0.1", 0)
        received = []
        hub.payloads.subscribe(received.append)
        try:
            reader, writer = await _send(hub.port, [b"ok", b"z" * 100], close=False)
            await _eventually(lambda: hub.metrics.oversize_frames == 1)

            assert await asyncio.wait_for(reader.read(), timeout=2.0) == b""
            assert [frame.payload for frame in received] == [b"ok"]
            writer.close()
        finally:
            await hub.stop()

    async def test_partial_frame_is_discarded(self, hub):
        received = []
        hub.payloads.subscribe(received.append)

        reader, writer = await asyncio.open_connection("127.0.0.1", hub.port)
        writer.write(encode_frame(b"complete") + b"\x10\x00\x00\x00" + b"part")
        await writer.drain()
        writer.close()
        await writer.wait_closed()

        await _eventually(lambda: hub.active_connections == 0 and len(received) >= 1)
        await asyncio.sleep(0.05)

        assert [frame.payload for frame in received] == [b"complete"]
