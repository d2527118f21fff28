"""In-process fan-out of frames to independent subscribers.

Every subscriber gets its own bounded queue. When a queue is full the oldest
queued frame is dropped so a slow consumer never stalls ingestion.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from queue import Empty, Full, Queue
from typing import Optional

from aprs_gate.aprs.frame import Frame

DEFAULT_CAPACITY = 100

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class Subscription:
    """Receiving end of a broadcaster registration.

    Iterating blocks for the next frame and stops once the subscription is
    unregistered.
    """

    def __init__(self, name: str, capacity: int) -> None:
        self.name = name
        self._queue: "Queue[Optional[Frame]]" = Queue(maxsize=capacity)
        self.dropped = 0

    def get(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """Return the next frame, or ``None`` when closed or on timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except Empty:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()

    def __iter__(self) -> Iterator[Frame]:
        while True:
            frame = self._queue.get()
            if frame is None:
                return
            yield frame

    def _offer(self, item: Optional[Frame]) -> bool:
        """Enqueue ``item``, evicting the oldest entry if full.

        Only the broadcaster puts (under its lock), so after one eviction
        the put cannot fail. Returns False when a frame was evicted.
        """
        try:
            self._queue.put_nowait(item)
            return True
        except Full:
            pass
        evicted = True
        try:
            self._queue.get_nowait()
        except Empty:
            evicted = False
        else:
            self.dropped += 1
        self._queue.put_nowait(item)
        return not evicted


class Broadcaster:
    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._subscribers: list[Subscription] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def register(self, name: str = "subscriber") -> Subscription:
        subscription = Subscription(name, self._capacity)
        with self._lock:
            self._subscribers.append(subscription)
        logger.debug("Registered subscriber %s", name)
        return subscription

    def unregister(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscribers.remove(subscription)
            except ValueError:
                return
            subscription._offer(None)
        logger.debug("Unregistered subscriber %s", subscription.name)

    def submit(self, frame: Frame) -> None:
        """Deliver ``frame`` to every registered subscriber without blocking."""
        with self._lock:
            for subscription in self._subscribers:
                if not subscription._offer(frame):
                    logger.warning(
                        "Subscriber %s is falling behind; dropped oldest frame (%d dropped so far)",
                        subscription.name,
                        subscription.dropped,
                    )

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)
