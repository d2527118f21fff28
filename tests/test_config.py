"""Tests for gateway configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from aprs_gate import config as config_module
from aprs_gate.config import (
    ConfigError,
    GateConfig,
    config_summary,
    get_logs_dir,
    load_config,
    resolve_config_path,
)


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_load_config_from_file(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "config.toml",
        """
[station]
callsign = "N0CALL"
passcode = "12345"

[aprsis]
server = "rotate.aprs2.net"
port = 10152
filter = "r/45.0/-93.0/100"
raw_log = "~/aprs-raw.log"
watchdog_seconds = 120

[kiss]
serial_port = "/dev/ttyUSB0"
baud = 9600

[gate]
notify_path = "notify.toml"
dedup_window = 300
queue_capacity = 50
""",
    )

    cfg = load_config(path)

    assert cfg.callsign == "N0CALL"
    assert cfg.passcode == "12345"
    assert cfg.aprs_server == "rotate.aprs2.net"
    assert cfg.aprs_port == 10152
    assert cfg.filter_string == "r/45.0/-93.0/100"
    assert cfg.raw_log == Path("~/aprs-raw.log").expanduser()
    assert cfg.watchdog_seconds == 120
    assert cfg.serial_port == "/dev/ttyUSB0"
    assert cfg.serial_baud == 9600
    assert cfg.kiss_enabled
    assert cfg.notify_path == Path("notify.toml")
    assert cfg.dedup_window == 300
    assert cfg.queue_capacity == 50


def test_defaults_when_only_identity_given() -> None:
    cfg = GateConfig.from_dict({"station": {"callsign": "N0CALL", "passcode": 12345}})

    assert cfg.passcode == "12345"
    assert cfg.aprs_enabled
    assert cfg.aprs_server == "noam.aprs2.net"
    assert cfg.aprs_port == 14580
    assert cfg.watchdog_seconds == 300
    assert cfg.dedup_window == 600
    assert cfg.queue_capacity == 100
    assert cfg.notify_path == Path("notify.json")
    assert not cfg.kiss_enabled


def test_callsign_required_for_aprsis() -> None:
    with pytest.raises(ConfigError, match="callsign is required"):
        GateConfig.from_dict({"station": {"passcode": "12345"}})


def test_passcode_required_for_aprsis() -> None:
    with pytest.raises(ConfigError, match="passcode"):
        GateConfig.from_dict({"station": {"callsign": "N0CALL"}})


def test_empty_server_disables_aprsis() -> None:
    cfg = GateConfig.from_dict({"aprsis": {"server": ""}, "kiss": {"host": "127.0.0.1"}})

    assert not cfg.aprs_enabled
    assert cfg.kiss_enabled
    assert cfg.kiss_port == 8001


@pytest.mark.parametrize(
    "data",
    [
        {"aprsis": {"port": "not-a-port"}, "station": {"callsign": "N0CALL", "passcode": "1"}},
        {"aprsis": {"watchdog_seconds": 0}, "station": {"callsign": "N0CALL", "passcode": "1"}},
        {"gate": {"queue_capacity": 0}, "station": {"callsign": "N0CALL", "passcode": "1"}},
    ],
)
def test_invalid_values_are_config_errors(data: dict) -> None:
    with pytest.raises(ConfigError):
        GateConfig.from_dict(data)


def test_keyring_sentinel_reads_keyring(monkeypatch: pytest.MonkeyPatch) -> None:
    class FakeKeyring:
        @staticmethod
        def get_password(service: str, username: str) -> str | None:
            assert service == "aprs-gate"
            return "54321" if username == "N0CALL" else None

    monkeypatch.setattr(config_module, "_keyring", FakeKeyring)

    cfg = GateConfig.from_dict({"station": {"callsign": "N0CALL", "passcode": "__KEYRING__"}})

    assert cfg.passcode == "54321"
    assert cfg.passcode_in_keyring

    with pytest.raises(ConfigError, match="No APRS-IS passcode stored"):
        GateConfig.from_dict({"station": {"callsign": "K1ABC", "passcode": "__KEYRING__"}})


def test_env_and_cli_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = _write(tmp_path / "config.toml", '[station]\ncallsign = "FILE"\npasscode = "1"\n')
    monkeypatch.setenv("APRS_GATE_STATION__CALLSIGN", "ENV")
    monkeypatch.setenv("APRS_GATE_APRSIS__PORT", "14581")

    cfg = load_config(path, {"aprsis": {"port": 14582}})

    assert cfg.callsign == "ENV"
    assert cfg.aprs_port == 14582


def test_explicit_missing_path_is_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="Config not found"):
        load_config(tmp_path / "absent.toml")


def test_default_path_may_be_missing() -> None:
    cfg = load_config(cli_overrides={"station": {"callsign": "N0CALL", "passcode": "1"}})
    assert cfg.callsign == "N0CALL"


def test_unreadable_toml_is_config_error(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.toml", "[station\ncallsign = ")

    with pytest.raises(ConfigError, match="Unable to read"):
        load_config(path)


def test_resolve_config_path_env_override(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    target = tmp_path / "custom.toml"
    monkeypatch.setenv("APRS_GATE_CONFIG_PATH", str(target))

    assert resolve_config_path() == target
    assert resolve_config_path(tmp_path / "explicit.toml") == tmp_path / "explicit.toml"


def test_default_dirs_follow_xdg(tmp_path: Path) -> None:
    assert resolve_config_path() == tmp_path / "xdg-config" / "aprs-gate" / "config.toml"
    assert get_logs_dir() == tmp_path / "xdg-data" / "aprs-gate" / "logs"


def test_config_summary_mentions_sources() -> None:
    cfg = GateConfig(callsign="N0CALL", kiss_host="tnc.local", kiss_port=8010)

    summary = config_summary(cfg)

    assert "N0CALL" in summary
    assert "noam.aprs2.net:14580" in summary
    assert "tcp tnc.local:8010" in summary
