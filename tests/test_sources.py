"""Tests for the APRS-IS and KISS ingestion loops."""

from __future__ import annotations

import io
import threading
from pathlib import Path

from aprs_gate.aprs import ax25
from aprs_gate.aprs.aprsis_client import APRSISClientError, APRSISConfig
from aprs_gate.aprs.frame import Frame
from aprs_gate.aprs.kiss import kiss_encode
from aprs_gate.config import GateConfig
from aprs_gate.gate.broadcast import Broadcaster
from aprs_gate.gate.sources import KissSource, NetSource

FIRST = Frame.parse("N0CALL-9>APRS,WIDE1-1:!4903.50N/07201.75W-test")
SECOND = Frame.parse("K1ABC>APRS::N0CALL   :hello{3")


def _config(**overrides) -> GateConfig:
    values = dict(callsign="N0CALL", passcode="12345", reconnect_delay=0.01, watchdog_seconds=5.0)
    values.update(overrides)
    return GateConfig(**values)


def _drain(subscription) -> list[Frame]:
    frames = []
    while True:
        frame = subscription.get(timeout=0.05)
        if frame is None:
            return frames
        frames.append(frame)


class FakeClient:
    def __init__(self, frames: list[Frame], *, block: bool = False, fail_connect: bool = False) -> None:
        self._frames = frames
        self._block = block
        self._fail_connect = fail_connect
        self.closed = threading.Event()
        self.connected = threading.Event()
        self.raw_log = None

    def set_raw_log(self, writer) -> None:
        self.raw_log = writer

    def connect(self) -> None:
        if self._fail_connect:
            raise APRSISClientError("Unable to connect to APRS-IS server")
        self.connected.set()

    def frames(self):
        yield from self._frames
        if self._block:
            self.closed.wait(2.0)
        raise APRSISClientError("APRS-IS connection closed")

    def close(self) -> None:
        self.closed.set()


def test_kiss_source_submits_frames_and_reconnects() -> None:
    broadcaster = Broadcaster()
    subscription = broadcaster.register("test")
    stop = threading.Event()
    opened: list[io.BytesIO] = []

    def opener() -> io.BytesIO:
        if opened:
            stop.set()
            stream = io.BytesIO(b"")
        else:
            stream = io.BytesIO(
                kiss_encode(ax25.encode_command(FIRST)) + b"\xc0\x00junk\xc0" + kiss_encode(ax25.encode_command(SECOND))
            )
        opened.append(stream)
        return stream

    source = KissSource(_config(serial_port="/dev/null"), broadcaster, stop, opener=opener)
    source.run()

    assert _drain(subscription) == [FIRST, SECOND]
    assert source.frames_received == 2
    assert source.sessions == 2
    assert all(stream.closed for stream in opened)


def test_kiss_source_describe() -> None:
    serial_source = KissSource(_config(serial_port="/dev/ttyUSB0"), Broadcaster())
    tcp_source = KissSource(_config(kiss_host="tnc.local", kiss_port=8010), Broadcaster())

    assert serial_source.describe() == "serial port /dev/ttyUSB0"
    assert tcp_source.describe() == "tnc.local:8010"


def test_net_source_streams_and_reconnects() -> None:
    broadcaster = Broadcaster()
    subscription = broadcaster.register("test")
    stop = threading.Event()
    configs: list[APRSISConfig] = []
    clients: list[FakeClient] = []

    def factory(config: APRSISConfig) -> FakeClient:
        configs.append(config)
        if clients:
            stop.set()
            client = FakeClient([], fail_connect=True)
        else:
            client = FakeClient([FIRST, SECOND])
        clients.append(client)
        return client

    source = NetSource(_config(filter_string="r/45/-93/50"), broadcaster, stop, client_factory=factory)
    source.run()

    assert _drain(subscription) == [FIRST, SECOND]
    assert configs[0].callsign == "N0CALL"
    assert configs[0].filter_string == "r/45/-93/50"
    assert configs[0].host == "noam.aprs2.net"
    assert all(client.closed.is_set() for client in clients)
    assert source.sessions == 2


def test_net_source_opens_raw_log(tmp_path: Path) -> None:
    stop = threading.Event()
    clients: list[FakeClient] = []

    def factory(_config: APRSISConfig) -> FakeClient:
        stop.set()
        client = FakeClient([FIRST])
        clients.append(client)
        return client

    raw_log = tmp_path / "raw.log"
    source = NetSource(_config(raw_log=raw_log), Broadcaster(), stop, client_factory=factory)
    source.run()

    assert raw_log.exists()
    assert clients[0].raw_log is not None
    assert clients[0].raw_log.closed


def test_stop_closes_active_session() -> None:
    stop = threading.Event()
    client = FakeClient([FIRST], block=True)
    source = NetSource(_config(), Broadcaster(), stop, client_factory=lambda _cfg: client)

    thread = source.start()
    assert client.connected.wait(1.0)
    source.stop()
    thread.join(timeout=2.0)

    assert not thread.is_alive()
    assert client.closed.is_set()
    assert source.sessions == 1
