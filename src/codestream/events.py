"""
Broadcast Primitives
====================

Publish/subscribe building blocks used by every CodeStream component.

This module provides:
    - Broadcaster: multicasts each published item to all current subscribers
    - Subscription: handle returned by subscribe(), cancels itself
    - StatusChannel: Broadcaster of human-readable status strings

Design Rules:
    - publish() iterates a snapshot of the subscriber list, so subscribing
      or unsubscribing from inside a callback never corrupts a broadcast
    - A failing subscriber is logged and skipped; it never stops delivery
      to the others
    - Hot stream: late subscribers never receive earlier items

Example:
    frames: Broadcaster[Frame] = Broadcaster("frames")
    subscription = frames.subscribe(lambda frame: print(frame.frame_id))
    frames.publish(frame)
    subscription.cancel()
"""

import itertools
import logging
import threading
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    """
    Handle for one registered subscriber.

    Cancelling is idempotent and safe to call from inside the callback.
    """

    __slots__ = ("_broadcaster", "_token")

    def __init__(self, broadcaster: "Broadcaster", token: int) -> None:
        self._broadcaster: Optional[Broadcaster] = broadcaster
        self._token = token

    @property
    def active(self) -> bool:
        return self._broadcaster is not None

    def cancel(self) -> None:
        """Stop receiving items."""
        if self._broadcaster is not None:
            self._broadcaster._remove(self._token)
            self._broadcaster = None

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *args) -> None:
        self.cancel()


class Broadcaster(Generic[T]):
    """
    Thread-safe multicast of items to subscriber callbacks.

    Subscribers are kept in an insertion-ordered map keyed by a token.
    Each publish takes a snapshot tuple of the callbacks under the lock,
    then calls them outside the lock.

    Attributes:
        name: Name used in log messages
        published_count: Number of items published so far
    """

    def __init__(self, name: str = "broadcast") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: Dict[int, Callable[[T], None]] = {}
        self._tokens = itertools.count(1)
        self._snapshot: Tuple[Callable[[T], None], ...] = ()
        self._published_count: int = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._snapshot)

    @property
    def published_count(self) -> int:
        return self._published_count

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        """
        Register a callback for future items.

        Args:
            callback: Called with each published item

        Returns:
            Subscription handle; call cancel() to unsubscribe
        """
        with self._lock:
            token = next(self._tokens)
            self._subscribers[token] = callback
            self._snapshot = tuple(self._subscribers.values())
        return Subscription(self, token)

    def _remove(self, token: int) -> None:
        with self._lock:
            if self._subscribers.pop(token, None) is not None:
                self._snapshot = tuple(self._subscribers.values())

    def clear(self) -> None:
        """Drop every subscriber."""
        with self._lock:
            self._subscribers.clear()
            self._snapshot = ()

    def publish(self, item: T) -> int:
        """
        Deliver an item to every current subscriber.

        Args:
            item: Item to deliver (subscribers must not mutate it)

        Returns:
            Number of subscribers the item was delivered to
        """
        snapshot = self._snapshot
        self._published_count += 1

        delivered = 0
        for callback in snapshot:
            try:
                callback(item)
                delivered += 1
            except Exception as e:
                logger.exception(f"Subscriber of '{self.name}' failed: {e}")
        return delivered


class StatusChannel(Broadcaster[str]):
    """
    Human-readable status events for one component instance.

    Every emitted message is also logged, so the channel doubles as an
    audit trail when nothing is subscribed.
    """

    def __init__(self, name: str = "status") -> None:
        super().__init__(name)
        self._last: Optional[str] = None
        self._log = logging.getLogger(f"{__name__}.{name}")

    @property
    def last(self) -> Optional[str]:
        """Most recently emitted status, if any."""
        return self._last

    def emit(self, message: str) -> None:
        """Publish a status message."""
        self._last = message
        self._log.info(message)
        self.publish(message)
