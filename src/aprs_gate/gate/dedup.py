"""Time-windowed suppression of repeated frames.

The same report commonly arrives several times: via different digipeater
paths, via RF and APRS-IS, or re-wrapped as third-party traffic. Frames are
keyed on (destination, source, body) of their innermost report.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from aprs_gate.aprs.frame import Frame

DEFAULT_WINDOW = 600.0
DEFAULT_SWEEP_INTERVAL = 60.0

DedupKey = tuple[str, str, bytes]

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def dedup_key(frame: Frame) -> DedupKey:
    inner = frame.unwrap()
    return (str(inner.dest), str(inner.source), inner.body)


class Deduplicator:
    """Thread-safe expiring set of recently seen frame keys."""

    def __init__(
        self,
        window: float = DEFAULT_WINDOW,
        *,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if window <= 0:
            raise ValueError("window must be positive")
        self._window = window
        self._sweep_interval = sweep_interval
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        self._expiry: dict[DedupKey, float] = {}
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @property
    def window(self) -> float:
        return self._window

    def check(self, frame: Frame) -> bool:
        """Record ``frame`` and return True if it was not seen in the window."""
        key = dedup_key(frame)
        now = self._clock()
        with self._lock:
            expires = self._expiry.get(key)
            if expires is not None and expires > now:
                return False
            self._expiry[key] = now + self._window
        return True

    def purge_expired(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [key for key, expires in self._expiry.items() if expires <= now]
            for key in stale:
                del self._expiry[key]
        return len(stale)

    def start(self) -> None:
        """Start the background sweep that reclaims memory."""
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep, name="dedup-sweep", daemon=True)
        self._sweeper.start()

    def stop(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1)
            self._sweeper = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiry)

    def _sweep(self) -> None:
        while not self._stop.wait(self._sweep_interval):
            removed = self.purge_expired()
            if removed:
                logger.debug("Evicted %d expired dedup entries", removed)
