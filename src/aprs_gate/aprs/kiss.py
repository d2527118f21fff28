"""KISS framing over serial ports and KISS-over-TCP TNCs.

:class:`KISSStreamReader` turns any blocking byte stream into decoded
:class:`~aprs_gate.aprs.frame.Frame` values. Stream errors (including end of
stream) propagate unchanged; malformed frames raise
:class:`~aprs_gate.aprs.ax25.AX25DecodeError` subclasses instead.
"""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from enum import IntEnum
from typing import BinaryIO, Protocol

from . import ax25
from .ax25 import AX25DecodeError
from .frame import Frame

try:  # Only required for serial-attached TNCs
    import serial  # type: ignore[import]
except ImportError:  # pragma: no cover - surfaced when opening a port
    serial = None  # type: ignore[assignment]

FEND = 0xC0
FESC = 0xDB
TFEND = 0xDC
TFESC = 0xDD

# Runs between delimiters shorter than this are line noise.
MIN_RECORD_SIZE = ax25.MIN_FRAME_SIZE

DEFAULT_BAUD = 57600

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


class KISSCommand(IntEnum):
    DATA = 0x00
    TX_DELAY = 0x01
    PERSISTENCE = 0x02
    SLOT_TIME = 0x03
    TX_TAIL = 0x04
    FULL_DUPLEX = 0x05
    SET_HARDWARE = 0x06
    RETURN = 0x0F


class KISSClientError(RuntimeError):
    """Raised when a KISS transport cannot be opened or written."""


class KISSFrameError(AX25DecodeError):
    """Raised for a KISS record with a broken escape sequence or header."""


@dataclass(slots=True)
class KISSClientConfig:
    host: str = "127.0.0.1"
    port: int = 8001
    timeout: float = 2.0


@dataclass(slots=True)
class KISSFrame:
    port: int
    command: KISSCommand
    payload: bytes


class ByteStream(Protocol):
    def read(self, size: int = ...) -> bytes:  # pragma: no cover - typing hook
        ...


class KISSStreamReader:
    """Split a KISS byte stream into frames and decode them."""

    def __init__(self, stream: ByteStream, *, chunk_size: int = 4096) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._buffer = bytearray()

    def read_record(self) -> KISSFrame:
        """Return the next data record that is long enough to be a frame."""
        while True:
            record = self._next_record()
            if len(record) < MIN_RECORD_SIZE:
                if record:
                    logger.debug("Discarding %d octet KISS run: %s", len(record), record.hex())
                continue
            # High nibble is the TNC port, low nibble the command.
            header = record[0]
            port = header >> 4
            try:
                command = KISSCommand(header & 0x0F)
            except ValueError:
                raise KISSFrameError(f"Unknown KISS command byte {header:#04x}") from None
            if command is not KISSCommand.DATA:
                logger.debug("Ignoring KISS %s record on port %d", command.name, port)
                continue
            return KISSFrame(port=port, command=command, payload=_kiss_unescape(record[1:]))

    def next(self) -> Frame:
        """Read and decode the next frame.

        Raises :class:`AX25DecodeError` for malformed frames; the stream is
        still usable afterwards.
        """
        record = self.read_record()
        return ax25.decode(record.payload)

    def __iter__(self) -> Iterator[Frame]:
        """Yield frames until the stream fails, skipping undecodable ones."""
        while True:
            try:
                yield self.next()
            except AX25DecodeError as exc:
                logger.warning("Skipping undecodable KISS frame: %s", exc)

    def _next_record(self) -> bytes:
        while True:
            end = self._buffer.find(FEND)
            if end != -1:
                record = bytes(self._buffer[:end])
                del self._buffer[: end + 1]
                return record
            self._fill()

    def _fill(self) -> None:
        read1 = getattr(self._stream, "read1", None)
        chunk = read1(self._chunk_size) if read1 is not None else self._stream.read(1)
        if not chunk:
            raise EOFError("KISS stream closed")
        self._buffer.extend(chunk)


class KISSClient:
    """KISS-over-TCP connection to a software TNC such as Direwolf."""

    def __init__(self, config: KISSClientConfig | None = None) -> None:
        self._config = config or KISSClientConfig()
        self._socket: socket.socket | None = None
        self._reader: BinaryIO | None = None
        self._close_lock = threading.Lock()

    @property
    def is_connected(self) -> bool:
        return self._socket is not None

    def connect(self) -> None:
        if self._socket is not None:
            return
        try:
            sock = socket.create_connection(
                (self._config.host, self._config.port), timeout=self._config.timeout
            )
        except OSError as exc:
            raise KISSClientError(
                f"Unable to connect to KISS server at {self._config.host}:{self._config.port}: {exc}"
            ) from exc
        # RF channels can stay quiet for a long time; reads block.
        sock.settimeout(None)
        self._socket = sock
        self._reader = sock.makefile("rb")

    def read1(self, size: int = 4096) -> bytes:
        reader = self._reader
        if reader is None:
            raise KISSClientError("KISS connection not established")
        try:
            return reader.read1(size)
        except ValueError as exc:
            # Closed from another thread mid-read.
            raise KISSClientError(f"KISS connection closed: {exc}") from exc

    def read(self, size: int = 1) -> bytes:
        return self.read1(size)

    def send_frame(self, frame: Frame, *, port: int = 0) -> None:
        sock = self._require_socket()
        try:
            sock.sendall(kiss_encode(ax25.encode_command(frame), port=port))
        except OSError as exc:
            raise KISSClientError(f"Failed to send KISS frame: {exc}") from exc

    def close(self) -> None:
        with self._close_lock:
            sock, self._socket = self._socket, None
            reader, self._reader = self._reader, None
        if sock is None:
            return
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        for handle in (reader, sock):
            if handle is None:
                continue
            try:
                handle.close()
            except (OSError, ValueError):
                pass

    def __enter__(self) -> "KISSClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            raise KISSClientError("KISS connection not established")
        return self._socket


def open_serial(device: str, baud: int = DEFAULT_BAUD):
    """Open a serial-attached TNC at 8N1 with blocking reads."""
    if serial is None:
        raise KISSClientError("The 'pyserial' package is required for serial KISS ports")
    try:
        return serial.Serial(
            port=device,
            baudrate=baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=None,
        )
    except (serial.SerialException, OSError) as exc:
        raise KISSClientError(f"Unable to open serial port {device}: {exc}") from exc


def kiss_encode(
    payload: bytes, *, port: int = 0, command: KISSCommand | int = KISSCommand.DATA
) -> bytes:
    """Wrap ``payload`` in a delimited, escaped KISS record."""
    command_value = int(KISSCommand(command))
    frame = bytearray()
    frame.append(FEND)
    frame.append(((port & 0x0F) << 4) | (command_value & 0x0F))
    frame.extend(_kiss_escape(payload))
    frame.append(FEND)
    return bytes(frame)


def _kiss_escape(payload: bytes) -> bytes:
    """Escape a payload per the KISS protocol rules."""
    escaped = bytearray()
    for value in bytes(payload):
        if value == FEND:
            escaped.extend((FESC, TFEND))
        elif value == FESC:
            escaped.extend((FESC, TFESC))
        else:
            escaped.append(value)
    return bytes(escaped)


def _kiss_unescape(payload: bytes) -> bytes:
    """Reverse KISS-specific escape sequences within a payload."""
    decoded = bytearray()
    iterator = iter(payload)
    for value in iterator:
        if value == FESC:
            try:
                nxt = next(iterator)
            except StopIteration:
                raise KISSFrameError("Truncated KISS escape sequence") from None
            if nxt == TFEND:
                decoded.append(FEND)
            elif nxt == TFESC:
                decoded.append(FESC)
            else:
                raise KISSFrameError(f"Invalid KISS escape byte: {nxt:#x}")
        else:
            decoded.append(value)
    return bytes(decoded)
