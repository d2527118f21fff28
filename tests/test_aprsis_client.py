"""Tests for the receive-side APRS-IS client."""

from __future__ import annotations

import io
import queue
import socket
import threading
import time

import pytest

from aprs_gate.aprs import aprsis_client as aprsis_module
from aprs_gate.aprs.aprsis_client import (
    APRSISAuthError,
    APRSISClient,
    APRSISClientError,
    APRSISConfig,
    RetryBackoff,
    Watchdog,
)
from aprs_gate.aprs.frame import Frame


def _start_server(responder) -> tuple[int, threading.Thread]:
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    port = server.getsockname()[1]

    def _run() -> None:
        conn, _ = server.accept()
        try:
            responder(conn)
        finally:
            conn.close()
            server.close()

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    return port, thread


def _config(port: int, **overrides) -> APRSISConfig:
    values = dict(
        host="127.0.0.1",
        port=port,
        callsign="TEST",
        passcode="12345",
        software_name="tester",
        software_version="1.0",
        timeout=2.0,
    )
    values.update(overrides)
    return APRSISConfig(**values)


def _login(conn: socket.socket, logins: "queue.Queue[str]", response: bytes = b"# logresp TEST verified, server T2TEST\n") -> None:
    conn.sendall(b"# aprsc 2.1.14 test\n")
    data = conn.recv(1024)
    logins.put(data.decode().strip())
    conn.sendall(response)


def test_login_line_includes_filter() -> None:
    logins: "queue.Queue[str]" = queue.Queue()

    port, thread = _start_server(lambda conn: _login(conn, logins))
    client = APRSISClient(_config(port, filter_string="r/45.0/-93.0/50"))
    client.connect()
    client.close()
    thread.join(timeout=1)

    assert logins.get_nowait() == "user TEST pass 12345 vers tester 1.0 filter r/45.0/-93.0/50"


def test_login_line_without_filter() -> None:
    client = APRSISClient(_config(14580))
    assert client._build_login_line() == "user TEST pass 12345 vers tester 1.0"


def test_streams_frames_and_comments() -> None:
    logins: "queue.Queue[str]" = queue.Queue()

    def responder(conn: socket.socket) -> None:
        _login(conn, logins)
        conn.sendall(
            b"N0CALL-9>APRS,TCPIP*,qAC,T2TEST:!4903.50N/07201.75W-test\r\n"
            b"# aprsc 2.1.14 test\r\n"
            b"this line is not a frame\r\n"
            b"\r\n"
            b"K1ABC>APRS::N0CALL   :hello{1\r\n"
        )
        time.sleep(0.1)

    port, thread = _start_server(responder)
    client = APRSISClient(_config(port))
    info: list[str] = []
    raw = io.BytesIO()
    client.set_info_handler(info.append)
    client.set_raw_log(raw)
    with client:
        first = client.next_frame()
        second = client.next_frame()
        with pytest.raises(APRSISClientError):
            client.next_frame()
    thread.join(timeout=1)

    assert first == Frame.parse("N0CALL-9>APRS,TCPIP*,qAC,T2TEST:!4903.50N/07201.75W-test")
    assert second.body == b":N0CALL   :hello{1"
    # Banner is reported once per connection.
    assert info == ["# aprsc 2.1.14 test", "# logresp TEST verified, server T2TEST"]
    assert raw.getvalue().startswith(b"# aprsc 2.1.14 test\n# logresp TEST verified")
    assert b"this line is not a frame\r\n" in raw.getvalue()


def test_frames_generator_ends_with_error_on_close() -> None:
    logins: "queue.Queue[str]" = queue.Queue()

    def responder(conn: socket.socket) -> None:
        _login(conn, logins)
        conn.sendall(b"A>B:>one\nC>D:>two\n")

    port, thread = _start_server(responder)
    received: list[Frame] = []
    with APRSISClient(_config(port)) as client:
        with pytest.raises(APRSISClientError, match="closed"):
            for frame in client.frames():
                received.append(frame)
    thread.join(timeout=1)

    assert [str(frame) for frame in received] == ["A>B:>one", "C>D:>two"]


@pytest.mark.parametrize(
    "response",
    [b"# logresp TEST unverified, server T2TEST\n"],
)
def test_unverified_login_is_accepted(response: bytes) -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    port, thread = _start_server(lambda conn: _login(conn, logins, response))

    client = APRSISClient(_config(port))
    client.connect()
    assert client._socket is not None
    client.close()
    thread.join(timeout=1)


@pytest.mark.parametrize(
    "response",
    [
        b"# logresp KB1BAD verified, server T2TEST\n",
        b"# logresp KB1BAD verified, server T2BADGER\n",
    ],
)
def test_verified_login_with_bad_in_names(response: bytes) -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    port, thread = _start_server(lambda conn: _login(conn, logins, response))

    client = APRSISClient(_config(port, callsign="KB1BAD"))
    client.connect()
    assert client._socket is not None
    client.close()
    thread.join(timeout=1)

    assert logins.get_nowait().startswith("user KB1BAD pass")


@pytest.mark.parametrize(
    "response",
    [
        b"# logresp TEST invalid passcode\n",
        b"# Login by user not allowed (Reject)\n# logresp TEST rejected\n",
        b"# logresp TEST bad login\n",
    ],
)
def test_rejected_login_raises(response: bytes) -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    port, thread = _start_server(lambda conn: _login(conn, logins, response))

    client = APRSISClient(_config(port))
    with pytest.raises(APRSISAuthError):
        client.connect()
    thread.join(timeout=1)

    assert client._socket is None
    assert client._reader is None


def test_missing_logresp_raises() -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    port, thread = _start_server(lambda conn: _login(conn, logins, b"# hello\n" * 6))

    client = APRSISClient(_config(port))
    with pytest.raises(APRSISClientError, match="login response"):
        client.connect()
    thread.join(timeout=1)


def test_connect_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    def _refuse(*_args, **_kwargs):
        raise ConnectionRefusedError("refused")

    monkeypatch.setattr(aprsis_module.socket, "create_connection", _refuse)

    client = APRSISClient(_config(1))
    with pytest.raises(APRSISClientError, match="Unable to connect"):
        client.connect()


def test_next_frame_requires_connection() -> None:
    with pytest.raises(APRSISClientError):
        APRSISClient(_config(1)).next_frame()


def test_watchdog_close_unblocks_reader() -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    done = threading.Event()

    def responder(conn: socket.socket) -> None:
        _login(conn, logins)
        done.wait(2.0)

    port, thread = _start_server(responder)
    client = APRSISClient(_config(port))
    client.connect()
    started = time.monotonic()
    with Watchdog(0.2, client.close) as watchdog:
        with pytest.raises(APRSISClientError):
            client.next_frame()
    elapsed = time.monotonic() - started
    done.set()
    thread.join(timeout=1)

    assert watchdog.expired
    assert elapsed < 1.5


def test_watchdog_expires_once() -> None:
    fired = threading.Event()
    calls: list[int] = []

    def _expire() -> None:
        calls.append(1)
        fired.set()

    watchdog = Watchdog(0.05, _expire)
    watchdog.start()
    assert fired.wait(1.0)
    time.sleep(0.1)
    watchdog.stop()

    assert calls == [1]
    assert watchdog.expired


def test_watchdog_reset_postpones_expiry() -> None:
    fired = threading.Event()
    with Watchdog(0.3, fired.set) as watchdog:
        for _ in range(8):
            time.sleep(0.05)
            watchdog.reset()
        assert not fired.is_set()
    time.sleep(0.4)

    assert not fired.is_set()
    assert not watchdog.expired


def test_watchdog_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        Watchdog(0, lambda: None)

def test_concurrent_close_is_safe() -> None:
    logins: "queue.Queue[str]" = queue.Queue()
    done = threading.Event()

    def responder(conn: socket.socket) -> None:
        _login(conn, logins)
        done.wait(2.0)

    port, thread = _start_server(responder)
    client = APRSISClient(_config(port))
    client.connect()
    errors: list[Exception] = []
    barrier = threading.Barrier(8)

    def _close() -> None:
        barrier.wait()
        try:
            client.close()
        except Exception as exc:
            errors.append(exc)

    closers = [threading.Thread(target=_close) for _ in range(8)]
    for closer in closers:
        closer.start()
    with pytest.raises(APRSISClientError):
        client.next_frame()
    for closer in closers:
        closer.join(timeout=2)
    done.set()
    thread.join(timeout=1)

    assert errors == []
    assert client._socket is None
    assert client._reader is None
    assert client._writer is None


def test_retry_backoff_fixed_interval() -> None:
    backoff = RetryBackoff(1.5)

    assert backoff.delay == 1.5
    assert [backoff.record_failure() for _ in range(3)] == [1.5, 1.5, 1.5]
    assert backoff.failures == 3


def test_retry_backoff_reset_clears_failures() -> None:
    backoff = RetryBackoff(2.0)
    backoff.record_failure()
    backoff.reset()

    assert backoff.failures == 0
    assert backoff.record_failure() == 2.0


def test_retry_backoff_rejects_negative_delay() -> None:
    with pytest.raises(ValueError):
        RetryBackoff(-1.0)
