"""Ingestion loops feeding the broadcaster.

Each source runs its own blocking read loop on a dedicated thread and
reconnects after any stream or session error with a fixed delay, until the
stop event is set.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack
from typing import Any, Callable, Optional

from aprs_gate import __version__
from aprs_gate.aprs.aprsis_client import (
    APRSISClient,
    APRSISClientError,
    APRSISConfig,
    RetryBackoff,
    Watchdog,
)
from aprs_gate.aprs.kiss import (
    KISSClient,
    KISSClientConfig,
    KISSClientError,
    KISSStreamReader,
    open_serial,
)
from aprs_gate.config import GateConfig
from aprs_gate.gate.broadcast import Broadcaster

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class _Source:
    name = "source"

    def __init__(
        self,
        config: GateConfig,
        broadcaster: Broadcaster,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._config = config
        self._broadcaster = broadcaster
        self._stop = stop_event or threading.Event()
        self._backoff = RetryBackoff(config.reconnect_delay)
        self._lock = threading.Lock()
        self._active: Any = None
        self.frames_received = 0
        self.sessions = 0

    def run(self) -> None:
        """Run sessions back to back until stopped."""
        while not self._stop.is_set():
            self.sessions += 1
            try:
                self.run_session()
            except self.session_errors as exc:
                if self._stop.is_set():
                    break
                delay = self._backoff.record_failure()
                logger.warning(
                    "*** Error reading from %s: %s (failure %d, restarting in %ss)",
                    self.name,
                    exc,
                    self._backoff.failures,
                    delay,
                )
                self._stop.wait(delay)

    def start(self) -> threading.Thread:
        thread = threading.Thread(target=self.run, name=f"{self.name}-reader", daemon=True)
        thread.start()
        return thread

    def stop(self) -> None:
        self._stop.set()
        with self._lock:
            active = self._active
        if active is not None:
            active.close()

    def run_session(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    session_errors: tuple[type[BaseException], ...] = ()

    def _set_active(self, resource: Any) -> None:
        with self._lock:
            self._active = resource

    def _submit(self, frame) -> None:
        self.frames_received += 1
        self._backoff.reset()
        self._broadcaster.submit(frame)


class NetSource(_Source):
    """APRS-IS feed: dial, log in, then stream under an idle watchdog."""

    name = "net"
    session_errors = (APRSISClientError, OSError)

    def __init__(
        self,
        config: GateConfig,
        broadcaster: Broadcaster,
        stop_event: Optional[threading.Event] = None,
        *,
        client_factory: Callable[[APRSISConfig], APRSISClient] = APRSISClient,
    ) -> None:
        super().__init__(config, broadcaster, stop_event)
        self._client_factory = client_factory
        self._aprs_config = APRSISConfig(
            host=config.aprs_server,
            port=config.aprs_port,
            callsign=config.callsign,
            passcode=config.passcode,
            software_version=__version__,
            filter_string=config.filter_string,
        )

    def run_session(self) -> None:
        with ExitStack() as stack:
            client = self._client_factory(self._aprs_config)
            stack.callback(client.close)
            self._set_active(client)
            stack.callback(self._set_active, None)
            if self._config.raw_log is not None:
                raw_log = stack.enter_context(self._config.raw_log.open("ab"))
                client.set_raw_log(raw_log)
            client.connect()
            watchdog = stack.enter_context(Watchdog(self._config.watchdog_seconds, client.close))
            for frame in client.frames():
                self._submit(frame)
                watchdog.reset()
                if self._stop.is_set():
                    return


class KissSource(_Source):
    """Serial or KISS-over-TCP TNC feed."""

    name = "kiss"
    session_errors = (KISSClientError, OSError, EOFError)

    def __init__(
        self,
        config: GateConfig,
        broadcaster: Broadcaster,
        stop_event: Optional[threading.Event] = None,
        *,
        opener: Optional[Callable[[], Any]] = None,
    ) -> None:
        super().__init__(config, broadcaster, stop_event)
        self._opener = opener or self._open

    def run_session(self) -> None:
        stream = self._opener()
        self._set_active(stream)
        try:
            logger.info("Reading KISS frames from %s", self.describe())
            for frame in KISSStreamReader(stream):
                self._submit(frame)
                if self._stop.is_set():
                    return
        finally:
            self._set_active(None)
            stream.close()

    def describe(self) -> str:
        if self._config.serial_port:
            return f"serial port {self._config.serial_port}"
        return f"{self._config.kiss_host}:{self._config.kiss_port}"

    def _open(self) -> Any:
        if self._config.serial_port:
            return open_serial(self._config.serial_port, self._config.serial_baud)
        client = KISSClient(
            KISSClientConfig(host=self._config.kiss_host or "127.0.0.1", port=self._config.kiss_port)
        )
        client.connect()
        return client
