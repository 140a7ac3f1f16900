"""
Broadcast Sinks
===============

Subscriber-side helpers that sit between a Broadcaster and its consumers.

This module provides:
    - BroadcastBuffer: async-safe bounded queue (drops oldest on overflow)
    - LatestFrameTracker: keeps a reference to the most recent frame

Design Rules:
    - offer() never blocks the publisher
    - Fixed maximum size; memory does not grow with a slow consumer
    - Does NOT process or modify items
"""

import asyncio
import logging
import threading
from typing import Generic, Optional, TypeVar

from codestream.events import Broadcaster, Subscription
from codestream.models.frame import DecodedFrame


logger = logging.getLogger(__name__)

T = TypeVar("T")


class BroadcastBuffer(Generic[T]):
    """
    Bounded asyncio queue fed by a Broadcaster.

    Lets an async consumer (for example a websocket push loop) follow a
    broadcast at its own pace. When the consumer falls behind, the oldest
    buffered item is dropped.

    Attributes:
        maxsize: Maximum number of items to buffer
        dropped_count: Number of items dropped due to overflow

    Example:
        buffer = BroadcastBuffer(maxsize=8)
        buffer.attach(throttle.batches)

        while True:
            batch = await buffer.get()
            await websocket.send_json(batch.to_dict())
    """

    def __init__(self, maxsize: int = 8) -> None:
        """
        Initialize buffer.

        Args:
            maxsize: Maximum items to buffer. Must be >= 1.
        """
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")

        self._maxsize = maxsize
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._dropped_count: int = 0
        self._total_put: int = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._subscription: Optional[Subscription] = None

    @property
    def maxsize(self) -> int:
        return self._maxsize

    @property
    def size(self) -> int:
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count

    def attach(self, broadcaster: Broadcaster) -> Subscription:
        """
        Subscribe this buffer to a broadcaster.

        Must be called from the event loop that will consume the buffer.
        Items published from other threads are handed over thread-safely.
        """
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._subscription = broadcaster.subscribe(self.offer)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def offer(self, item: T) -> None:
        """Subscriber callback: enqueue without blocking."""
        if self._loop is not None and threading.get_ident() != self._loop_thread:
            self._loop.call_soon_threadsafe(self._put, item)
        else:
            self._put(item)

    def _put(self, item: T) -> None:
        self._total_put += 1

        # If queue is full, drop oldest
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._dropped_count += 1
                logger.debug(
                    f"Buffer full, dropped oldest item. "
                    f"Total dropped: {self._dropped_count}"
                )
            except asyncio.QueueEmpty:
                pass

        self._queue.put_nowait(item)

    async def get(self, timeout: Optional[float] = None) -> Optional[T]:
        """
        Get next item.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next item, or None if timeout occurred.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def get_nowait(self) -> Optional[T]:
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def metrics(self) -> dict:
        return {
            "size": self.size,
            "maxsize": self._maxsize,
            "dropped_count": self._dropped_count,
            "total_put": self._total_put,
        }


class LatestFrameTracker:
    """
    Remembers the most recently broadcast decoded frame.

    RegionDecoder resolves "the current frame" through this tracker.
    """

    def __init__(self) -> None:
        self._latest: Optional[DecodedFrame] = None
        self._subscription: Optional[Subscription] = None

    @property
    def latest(self) -> Optional[DecodedFrame]:
        return self._latest

    def attach(self, broadcaster: Broadcaster) -> Subscription:
        self._subscription = broadcaster.subscribe(self.update)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    def update(self, frame: DecodedFrame) -> None:
        self._latest = frame

    def clear(self) -> None:
        self._latest = None
