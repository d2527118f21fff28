"""Frame distribution: fan-out, de-duplication, notifications and sources."""

from .broadcast import Broadcaster, Subscription  # noqa: F401
from .consumers import FrameReporter, NotifyPipeline  # noqa: F401
from .dedup import Deduplicator  # noqa: F401
from .notify import (  # noqa: F401
    Driver,
    DriverError,
    Notification,
    NotificationDispatcher,
    Notifier,
    load_notifiers,
)
from .sources import KissSource, NetSource  # noqa: F401

__all__ = [
    "Broadcaster",
    "Subscription",
    "FrameReporter",
    "NotifyPipeline",
    "Deduplicator",
    "Driver",
    "DriverError",
    "Notification",
    "NotificationDispatcher",
    "Notifier",
    "load_notifiers",
    "KissSource",
    "NetSource",
]
