"""
Broadcast Tests
===============

Tests for Broadcaster, Subscription, StatusChannel and the subscriber-side
buffers.
"""

import asyncio
import threading

from codestream.events import Broadcaster, StatusChannel
from codestream.transport.buffer import BroadcastBuffer, LatestFrameTracker


class TestBroadcaster:
    """Tests for multicast delivery."""

    def test_every_subscriber_receives_every_item(self):
        broadcaster = Broadcaster("test")
        first, second = [], []
        broadcaster.subscribe(first.append)
        broadcaster.subscribe(second.append)

        for item in (1, 2, 3):
            assert broadcaster.publish(item) == 2

        assert first == [1, 2, 3]
        assert second == [1, 2, 3]
        assert broadcaster.published_count == 3

    def test_late_subscriber_misses_earlier_items(self):
        broadcaster = Broadcaster("test")
        broadcaster.publish("early")

        received = []
        broadcaster.subscribe(received.append)
        broadcaster.publish("late")

        assert received == ["late"]

    def test_cancelled_subscription_stops_delivery(self):
        broadcaster = Broadcaster("test")
        received = []
        subscription = broadcaster.subscribe(received.append)

        broadcaster.publish(1)
        subscription.cancel()
        subscription.cancel()
        broadcaster.publish(2)

        assert received == [1]
        assert not subscription.active
        assert broadcaster.subscriber_count == 0

    def test_subscription_context_manager(self):
        broadcaster = Broadcaster("test")
        received = []
        with broadcaster.subscribe(received.append):
            broadcaster.publish("inside")
        broadcaster.publish("outside")

        assert received == ["inside"]

    def test_failing_subscriber_does_not_stop_delivery(self):
        broadcaster = Broadcaster("test")
        received = []

        def broken(item):
            raise RuntimeError("boom")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(received.append)

        assert broadcaster.publish("x") == 1
        assert received == ["x"]

    def test_unsubscribe_during_publish(self):
        broadcaster = Broadcaster("test")
        received = []
        holder = {}

        def once(item):
            received.append(("once", item))
            holder["subscription"].cancel()

        holder["subscription"] = broadcaster.subscribe(once)
        broadcaster.subscribe(lambda item: received.append(("always", item)))

        broadcaster.publish(1)
        broadcaster.publish(2)

        assert received == [("once", 1), ("always", 1), ("always", 2)]

    def test_subscribe_during_publish_waits_for_next_item(self):
        broadcaster = Broadcaster("test")
        late = []

        def add_late(item):
            if not late and item == 1:
                broadcaster.subscribe(late.append)

        broadcaster.subscribe(add_late)
        broadcaster.publish(1)
        broadcaster.publish(2)

        assert late == [2]

    def test_publish_from_threads(self):
        broadcaster = Broadcaster("test")
        received = []
        lock = threading.Lock()

        def collect(item):
            with lock:
                received.append(item)

        broadcaster.subscribe(collect)
        threads = [
            threading.Thread(target=lambda n=n: [broadcaster.publish((n, i)) for i in range(50)])
            for n in range(4)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(received) == 200

    def test_clear(self):
        broadcaster = Broadcaster("test")
        broadcaster.subscribe(lambda item: None)
        broadcaster.clear()

        assert broadcaster.subscriber_count == 0
        assert broadcaster.publish("x") == 0


class TestStatusChannel:
    """Tests for status messages."""

    def test_emit_publishes_and_remembers(self):
        channel = StatusChannel("test")
        messages = []
        channel.subscribe(messages.append)

        channel.emit("Connecting")
        channel.emit("Connected")

        assert messages == ["Connecting", "Connected"]
        assert channel.last == "Connected"

    def test_emit_without_subscribers(self):
        channel = StatusChannel("test")
        channel.emit("nobody listening")
        assert channel.last == "nobody listening"


class TestBroadcastBuffer:
    """Tests for the drop-oldest subscriber queue."""

    async def test_buffers_published_items(self):
        broadcaster = Broadcaster("test")
        buffer = BroadcastBuffer(maxsize=4)
        buffer.attach(broadcaster)

        broadcaster.publish("a")
        broadcaster.publish("b")

        assert await buffer.get(timeout=1.0) == "a"
        assert await buffer.get(timeout=1.0) == "b"

    async def test_drops_oldest_when_full(self):
        broadcaster = Broadcaster("test")
        buffer = BroadcastBuffer(maxsize=2)
        buffer.attach(broadcaster)

        for item in range(5):
            broadcaster.publish(item)

        assert buffer.dropped_count == 3
        assert buffer.get_nowait() == 3
        assert buffer.get_nowait() == 4
        assert buffer.get_nowait() is None

    async def test_get_times_out(self):
        buffer = BroadcastBuffer(maxsize=1)
        assert await buffer.get(timeout=0.01) is None

    async def test_publish_from_worker_thread(self):
        broadcaster = Broadcaster("test")
        buffer = BroadcastBuffer(maxsize=4)
        buffer.attach(broadcaster)

        await asyncio.to_thread(broadcaster.publish, "from-thread")

        assert await buffer.get(timeout=1.0) == "from-thread"

    async def test_detach(self):
        broadcaster = Broadcaster("test")
        buffer = BroadcastBuffer(maxsize=4)
        buffer.attach(broadcaster)
        buffer.detach()

        broadcaster.publish("ignored")

        assert buffer.size == 0
        assert broadcaster.subscriber_count == 0

    def test_metrics(self):
        buffer = BroadcastBuffer(maxsize=3)
        metrics = buffer.metrics()
        assert metrics["maxsize"] == 3
        assert metrics["dropped_count"] == 0


class TestLatestFrameTracker:
    """Tests for latest-frame tracking."""

    def test_tracks_most_recent(self, bgr_image, decoded_frame_factory):
        broadcaster = Broadcaster("frames")
        tracker = LatestFrameTracker()
        tracker.attach(broadcaster)

        assert tracker.latest is None

        first = decoded_frame_factory(bgr_image)
        second = decoded_frame_factory(bgr_image)
        broadcaster.publish(first)
        broadcaster.publish(second)

        assert tracker.latest is second

        tracker.detach()
        broadcaster.publish(first)
        assert tracker.latest is second

        tracker.clear()
        assert tracker.latest is None
