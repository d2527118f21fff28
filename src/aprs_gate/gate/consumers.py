"""Broadcaster subscribers: the frame reporter and the notification pipeline."""

from __future__ import annotations

import logging
import threading

from aprs_gate.aprs.frame import Frame
from aprs_gate.gate.broadcast import Broadcaster
from aprs_gate.gate.dedup import Deduplicator
from aprs_gate.gate.notify import NotificationDispatcher

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class _Consumer:
    name = "consumer"

    def __init__(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster
        # Register up front so nothing submitted before start() is missed.
        self._subscription = broadcaster.register(self.name)

    def process(self, frame: Frame) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def run(self) -> None:
        for frame in self._subscription:
            try:
                self.process(frame)
            except Exception:
                logger.exception("%s failed on frame %s", self.name, frame)

    def start(self) -> threading.Thread:
        thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        self._broadcaster.unregister(self._subscription)


class FrameReporter(_Consumer):
    """Log every frame heard on any source."""

    name = "reporter"

    def process(self, frame: Frame) -> None:
        logger.info("%s sent a '%s' to %s: '%s'", frame.source, frame.type.label, frame.dest, frame.text)


class NotifyPipeline(_Consumer):
    """Unwrap, de-duplicate and route frames to notifiers."""

    name = "notify"

    def __init__(
        self,
        broadcaster: Broadcaster,
        deduplicator: Deduplicator,
        dispatcher: NotificationDispatcher,
    ) -> None:
        super().__init__(broadcaster)
        self._dedup = deduplicator
        self._dispatcher = dispatcher

    def process(self, frame: Frame) -> None:
        inner = frame.unwrap()
        if not self._dedup.check(inner):
            logger.debug("Skipping duplicate message: %s", inner)
            return
        self._dispatcher.dispatch(inner)
