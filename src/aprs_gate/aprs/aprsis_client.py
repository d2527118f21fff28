"""Receive-side APRS-IS client.

Logs in with a callsign/passcode and optional server-side filter, then
streams traffic lines as :class:`~aprs_gate.aprs.frame.Frame` values.
Comment lines (``#``) go to an info handler instead.
"""

from __future__ import annotations

import io
import logging
import socket
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional

from .frame import Frame, FrameParseError

try:
    from aprs_gate import __version__
except ImportError:  # pragma: no cover - partial installs
    __version__ = "0.0.0"

BANNER_PREFIX = "# aprsc"
LOGIN_RESPONSE_LINES = 5

InfoHandler = Callable[[str], None]

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class APRSISClientError(RuntimeError):
    pass


class APRSISAuthError(APRSISClientError):
    """The server rejected the login."""


@dataclass(slots=True)
class APRSISConfig:
    host: str
    port: int
    callsign: str
    passcode: str
    software_name: str = "aprs-gate"
    software_version: str = __version__
    filter_string: str | None = None
    timeout: float = 5.0


class RetryBackoff:
    """Fixed reconnect interval that counts consecutive failures."""

    def __init__(self, delay: float = 1.0) -> None:
        if delay < 0:
            raise ValueError("delay must not be negative")
        self._delay = delay
        self.failures = 0

    @property
    def delay(self) -> float:
        return self._delay

    def record_failure(self) -> float:
        self.failures += 1
        return self._delay

    def reset(self) -> None:
        self.failures = 0


class Watchdog:
    """Call ``on_expire`` once if :meth:`reset` is not called within ``timeout``.

    A single background thread tracks the deadline, so resetting on every
    received line is cheap.
    """

    def __init__(
        self,
        timeout: float,
        on_expire: Callable[[], None],
        *,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._timeout = timeout
        self._on_expire = on_expire
        self._clock = clock or time.monotonic
        self._cond = threading.Condition()
        self._deadline = 0.0
        self._stopped = False
        self._expired = False
        self._thread: threading.Thread | None = None

    @property
    def expired(self) -> bool:
        return self._expired

    def start(self) -> None:
        with self._cond:
            self._deadline = self._clock() + self._timeout
        self._thread = threading.Thread(target=self._run, name="aprsis-watchdog", daemon=True)
        self._thread.start()

    def reset(self) -> None:
        with self._cond:
            self._deadline = self._clock() + self._timeout

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._cond.notify_all()

    def __enter__(self) -> Watchdog:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _run(self) -> None:
        with self._cond:
            while not self._stopped:
                remaining = self._deadline - self._clock()
                if remaining <= 0:
                    self._expired = True
                    break
                self._cond.wait(remaining)
        if self._expired:
            logger.warning("No APRS-IS traffic for %.0fs; closing connection", self._timeout)
            self._on_expire()


class APRSISClient:
    def __init__(self, config: APRSISConfig) -> None:
        self._config = config
        self._socket: Optional[socket.socket] = None
        self._reader: Optional[io.BufferedReader] = None
        self._writer: Optional[io.BufferedWriter] = None
        self._raw_log: Optional[BinaryIO] = None
        self._info_handler: InfoHandler = _log_info
        self._banner_logged = False
        self._close_lock = threading.Lock()

    @property
    def peer(self) -> str:
        return f"{self._config.host}:{self._config.port}"

    def set_raw_log(self, writer: Optional[BinaryIO]) -> None:
        """Tee every line read from the server to ``writer``."""
        self._raw_log = writer

    def set_info_handler(self, handler: InfoHandler) -> None:
        self._info_handler = handler

    def dial(self) -> None:
        if self._socket is not None:
            logger.debug("APRS-IS session already active for %s", self.peer)
            return
        logger.debug("Opening APRS-IS session to %s as %s", self.peer, self._config.callsign)
        try:
            sock = socket.create_connection(
                (self._config.host, self._config.port), timeout=self._config.timeout
            )
        except OSError as exc:
            raise APRSISClientError(f"Unable to connect to APRS-IS server {self.peer}: {exc}") from exc
        sock.settimeout(self._config.timeout)
        self._socket = sock
        self._reader = sock.makefile("rb")
        self._writer = sock.makefile("wb")
        self._banner_logged = False

    def login(self) -> None:
        writer = self._require_writer()
        login = self._build_login_line().encode("ascii") + b"\n"
        try:
            writer.write(login)
            writer.flush()
        except OSError as exc:
            raise APRSISClientError(f"Failed to send APRS-IS login: {exc}") from exc
        self._await_logresp()
        # Streaming reads block; the idle watchdog bounds them instead.
        if self._socket is not None:
            self._socket.settimeout(None)
        logger.info("Connected to APRS-IS %s as %s", self.peer, self._config.callsign)

    def connect(self) -> None:
        self.dial()
        try:
            self.login()
        except Exception:
            self.close()
            raise

    def next_frame(self) -> Frame:
        """Block until the next traffic line arrives and return it parsed."""
        while True:
            text = self._read_line()
            if not text:
                continue
            if text.startswith(b"#"):
                self._handle_comment(text.decode("utf-8", errors="replace"))
                continue
            try:
                return Frame.parse(text)
            except FrameParseError as exc:
                logger.warning("Skipping unparseable APRS-IS line from %s: %s", self.peer, exc)

    def frames(self) -> Iterator[Frame]:
        """Yield frames for the lifetime of this connection.

        Ends by raising :class:`APRSISClientError` when the connection drops.
        """
        while True:
            yield self.next_frame()

    def close(self) -> None:
        """Close the session; safe to call from the watchdog and reader threads at once."""
        with self._close_lock:
            sock, self._socket = self._socket, None
            writer, self._writer = self._writer, None
            reader, self._reader = self._reader, None
        had = any(c is not None for c in (writer, reader, sock))
        if sock is not None:
            # Unblocks a readline() in progress on another thread.
            try:
                sock.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        for handle in (writer, reader, sock):
            if handle is None:
                continue
            try:
                handle.close()
            except (OSError, ValueError):
                pass
        if had:
            logger.info("Closed APRS-IS connection to %s", self.peer)
        else:
            logger.debug("APRS-IS close requested with no active session for %s", self.peer)

    def __enter__(self) -> "APRSISClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _read_line(self) -> bytes:
        reader = self._require_reader()
        try:
            line = reader.readline()
        except (OSError, ValueError) as exc:
            raise APRSISClientError(f"Error reading from APRS-IS {self.peer}: {exc}") from exc
        if not line:
            raise APRSISClientError(f"APRS-IS connection to {self.peer} closed")
        if self._raw_log is not None:
            try:
                self._raw_log.write(line)
                self._raw_log.flush()
            except (OSError, ValueError) as exc:
                logger.warning("Unable to write APRS-IS raw log: %s", exc)
        return line.rstrip(b"\r\n")

    def _handle_comment(self, line: str) -> None:
        if line.startswith(BANNER_PREFIX):
            # The server repeats its banner as a keepalive.
            if self._banner_logged:
                return
            self._banner_logged = True
        self._info_handler(line)

    def _await_logresp(self) -> None:
        for _ in range(LOGIN_RESPONSE_LINES):
            text = self._read_line().decode("utf-8", errors="replace")
            if not text.startswith("#"):
                continue
            self._handle_comment(text)
            # "# logresp CALL STATUS[,] server NAME"
            tokens = text.split()
            if tokens[:2] == ["#", "logresp"]:
                status = tokens[3].rstrip(",").lower() if len(tokens) > 3 else ""
                if status == "unverified":
                    logger.warning("APRS-IS login for %s is unverified; receiving only", self._config.callsign)
                elif status != "verified":
                    raise APRSISAuthError(f"APRS-IS login failed: {text}")
                return
        raise APRSISClientError("APRS-IS login response not received")

    def _build_login_line(self) -> str:
        base = f"user {self._config.callsign} pass {self._config.passcode} vers {self._config.software_name} {self._config.software_version}"
        if self._config.filter_string:
            base += f" filter {self._config.filter_string}"
        return base

    def _require_reader(self) -> io.BufferedReader:
        if self._reader is None:
            raise APRSISClientError("APRS-IS connection not established")
        return self._reader

    def _require_writer(self) -> io.BufferedWriter:
        if self._writer is None:
            raise APRSISClientError("APRS-IS connection not established")
        return self._writer


def _log_info(line: str) -> None:
    logger.info("info: %s", line)
