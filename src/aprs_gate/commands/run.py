"""Runtime command: start the ingestion sources and frame consumers."""

from __future__ import annotations

import logging
import signal
import threading
from argparse import Namespace
from typing import Any

from aprs_gate import __version__
from aprs_gate import config as config_module
from aprs_gate.config import ConfigError, GateConfig
from aprs_gate.gate.broadcast import Broadcaster
from aprs_gate.gate.consumers import FrameReporter, NotifyPipeline
from aprs_gate.gate.dedup import Deduplicator
from aprs_gate.gate.notify import NotificationDispatcher, Notifier, load_notifiers
from aprs_gate.gate.sources import KissSource, NetSource

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def run_gateway(args: Namespace) -> int:
    """Run the gateway until interrupted."""
    try:
        gate_config = config_module.load_config(getattr(args, "config", None), cli_overrides(args))
        notifiers = load_gate_notifiers(gate_config)
    except ConfigError as exc:
        logger.error("Config invalid: %s", exc)
        return 1

    if not gate_config.aprs_enabled and not gate_config.kiss_enabled:
        logger.error("Neither APRS-IS nor a KISS port is configured; nothing to do.")
        return 1

    logger.info(
        "aprs-gate v%s starting (callsign=%s, aprs_server=%s:%s, notifiers=%d)",
        __version__,
        gate_config.callsign or "-",
        gate_config.aprs_server,
        gate_config.aprs_port,
        len(notifiers),
    )

    stop_event = threading.Event()
    broadcaster = Broadcaster(gate_config.queue_capacity)
    deduplicator = Deduplicator(gate_config.dedup_window)
    dispatcher = NotificationDispatcher(notifiers)

    consumers: list[Any] = [NotifyPipeline(broadcaster, deduplicator, dispatcher)]
    if not getattr(args, "quiet", False):
        consumers.append(FrameReporter(broadcaster))

    sources: list[Any] = []
    if gate_config.aprs_enabled:
        sources.append(NetSource(gate_config, broadcaster, stop_event))
    else:
        logger.info("APRS-IS feed disabled")
    if gate_config.kiss_enabled:
        sources.append(KissSource(gate_config, broadcaster, stop_event))

    previous_signals = {
        signal.SIGINT: signal.getsignal(signal.SIGINT),
        signal.SIGTERM: signal.getsignal(signal.SIGTERM),
    }

    def _handle_shutdown(signum, frame):  # type: ignore[override]
        stop_event.set()

    for sig in previous_signals:
        signal.signal(sig, _handle_shutdown)

    deduplicator.start()
    for consumer in consumers:
        consumer.start()
    for source in sources:
        source.start()

    try:
        stop_event.wait()
        logger.info("Stopping gateway...")
    finally:
        for source in sources:
            source.stop()
        for consumer in consumers:
            consumer.stop()
        deduplicator.stop()
        dispatcher.close()
        for sig, previous in previous_signals.items():
            signal.signal(sig, previous)

    logger.info(
        "Frames received: %s",
        ", ".join(f"{source.name}={source.frames_received}" for source in sources),
    )
    return 0


def load_gate_notifiers(gate_config: GateConfig) -> list[Notifier]:
    try:
        return load_notifiers(gate_config.notify_path)
    except FileNotFoundError:
        logger.info("No notifiers loaded because %s does not exist", gate_config.notify_path)
        return []


def cli_overrides(args: Namespace) -> dict[str, Any]:
    """Translate CLI flags into a nested config override dictionary."""
    overrides: dict[str, dict[str, Any]] = {}

    def _set(section: str, key: str, value: Any) -> None:
        if value is not None:
            overrides.setdefault(section, {})[key] = value

    server = getattr(args, "server", None)
    if server is not None:
        if server == "":
            _set("aprsis", "enabled", False)
        else:
            host, _, port = server.rpartition(":")
            if host and port.isdigit():
                _set("aprsis", "server", host)
                _set("aprsis", "port", int(port))
            else:
                _set("aprsis", "server", server)
    _set("station", "callsign", getattr(args, "call", None))
    _set("station", "passcode", getattr(args, "passcode", None))
    _set("aprsis", "filter", getattr(args, "filter", None))
    _set("aprsis", "raw_log", getattr(args, "rawlog", None))
    _set("aprsis", "watchdog_seconds", getattr(args, "watchdog_time", None))
    _set("kiss", "serial_port", getattr(args, "port", None))
    _set("kiss", "baud", getattr(args, "baud", None))
    _set("kiss", "host", getattr(args, "kiss_host", None))
    _set("kiss", "port", getattr(args, "kiss_port", None))
    _set("gate", "notify_path", getattr(args, "notify", None))
    return overrides
