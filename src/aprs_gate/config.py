"""Process configuration for the gateway."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from aprs_gate.config_layering import load_layered_config

try:  # Optional dependency for secure credential storage
    import keyring as _keyring  # type: ignore[import]
    from keyring.errors import KeyringError  # type: ignore[import]
except ImportError:  # pragma: no cover - keyring not installed
    _keyring = None
    KeyringError = Exception

CONFIG_ENV_VAR = "APRS_GATE_CONFIG_PATH"
CONFIG_DIR_NAME = "aprs-gate"
CONFIG_FILENAME = "config.toml"
KEYRING_SERVICE = "aprs-gate"
KEYRING_SENTINEL = "__KEYRING__"


class ConfigError(ValueError):
    """Configuration is missing, unreadable or invalid."""


def _xdg_path(env_var: str, default: Path) -> Path:
    value = os.environ.get(env_var)
    if value:
        return Path(value).expanduser()
    return default


def get_config_dir() -> Path:
    """Return the directory containing configuration files."""
    default = Path.home() / ".config"
    return _xdg_path("XDG_CONFIG_HOME", default) / CONFIG_DIR_NAME


def get_data_dir() -> Path:
    """Return the directory for runtime data/log files."""
    default = Path.home() / ".local" / "share"
    return _xdg_path("XDG_DATA_HOME", default) / CONFIG_DIR_NAME


def get_logs_dir() -> Path:
    return get_data_dir() / "logs"


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Resolve the configuration file path, honouring overrides."""
    if path is not None:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return get_config_dir() / CONFIG_FILENAME


@dataclass(slots=True)
class GateConfig:
    """Station identity, APRS-IS session and KISS port settings."""

    callsign: str = ""
    passcode: str = ""
    passcode_in_keyring: bool = False
    aprs_enabled: bool = True
    aprs_server: str = "noam.aprs2.net"
    aprs_port: int = 14580
    filter_string: str | None = None
    raw_log: Path | None = None
    watchdog_seconds: float = 300.0
    reconnect_delay: float = 1.0
    serial_port: str | None = None
    serial_baud: int = 57600
    kiss_host: str | None = None
    kiss_port: int = 8001
    notify_path: Path = Path("notify.json")
    dedup_window: float = 600.0
    queue_capacity: int = 100

    @property
    def kiss_enabled(self) -> bool:
        return bool(self.serial_port or self.kiss_host)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GateConfig:
        """Construct from a dictionary (typically merged TOML/env/CLI)."""
        station = data.get("station", {})
        aprsis = data.get("aprsis", {})
        kiss = data.get("kiss", {})
        gate = data.get("gate", {})

        try:
            config = cls(
                callsign=str(station.get("callsign") or "").strip(),
                passcode=str(station.get("passcode") or "").strip(),
                aprs_enabled=bool(aprsis.get("enabled", True)),
                aprs_server=str(aprsis.get("server", "noam.aprs2.net")),
                aprs_port=int(aprsis.get("port", 14580)),
                filter_string=aprsis.get("filter") or None,
                raw_log=_optional_path(aprsis.get("raw_log")),
                watchdog_seconds=float(aprsis.get("watchdog_seconds", 300.0)),
                reconnect_delay=float(aprsis.get("reconnect_delay", 1.0)),
                serial_port=kiss.get("serial_port") or None,
                serial_baud=int(kiss.get("baud", 57600)),
                kiss_host=kiss.get("host") or None,
                kiss_port=int(kiss.get("port", 8001)),
                notify_path=Path(str(gate.get("notify_path", "notify.json"))).expanduser(),
                dedup_window=float(gate.get("dedup_window", 600.0)),
                queue_capacity=int(gate.get("queue_capacity", 100)),
            )
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"Invalid configuration value: {exc}") from exc

        if not config.aprs_server:
            config.aprs_enabled = False
        if config.aprs_enabled:
            if not config.callsign:
                raise ConfigError("Your callsign is required for APRS-IS")
            if not config.passcode:
                raise ConfigError("Your APRS-IS passcode is required")
        if config.passcode == KEYRING_SENTINEL:
            config.passcode = _retrieve_passcode_from_keyring(config.callsign)
            config.passcode_in_keyring = True
        if config.watchdog_seconds <= 0:
            raise ConfigError("watchdog_seconds must be positive")
        if config.queue_capacity < 1:
            raise ConfigError("queue_capacity must be at least 1")
        return config


def _optional_path(value: Any) -> Path | None:
    if value in (None, ""):
        return None
    return Path(str(value)).expanduser()


def load_config(
    path: str | Path | None = None, cli_overrides: dict[str, Any] | None = None
) -> GateConfig:
    """Load configuration from file, environment and CLI overrides.

    The file is optional unless ``path`` names it explicitly.
    """
    config_path = resolve_config_path(path)
    if path is not None and not config_path.exists():
        raise ConfigError(f"Config not found at {config_path}")
    try:
        data = load_layered_config(config_path, cli_overrides)
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Unable to read {config_path}: {exc}") from exc
    return GateConfig.from_dict(data)


def config_summary(config: GateConfig) -> str:
    """Generate a human-readable summary of key settings."""
    aprs = f"{config.aprs_server}:{config.aprs_port}" if config.aprs_enabled else "disabled"
    if config.serial_port:
        kiss = f"serial {config.serial_port} @ {config.serial_baud} baud"
    elif config.kiss_host:
        kiss = f"tcp {config.kiss_host}:{config.kiss_port}"
    else:
        kiss = "disabled"
    return (
        f"  Callsign : {config.callsign or 'not set'}\n"
        f"  APRS-IS  : {aprs}\n"
        f"  Filter   : {config.filter_string or 'none'}\n"
        f"  KISS     : {kiss}\n"
        f"  Notify   : {config.notify_path}\n"
        f"  Watchdog : {config.watchdog_seconds:.0f}s, dedup window {config.dedup_window:.0f}s"
    )


def _retrieve_passcode_from_keyring(callsign: str) -> str:
    if _keyring is None:
        raise ConfigError("Keyring backend not available for stored passcode")
    try:
        value = _keyring.get_password(KEYRING_SERVICE, callsign)
    except KeyringError as exc:  # pragma: no cover - backend dependent
        raise ConfigError(f"Failed to read passcode from keyring: {exc}") from exc
    if not value:
        raise ConfigError(f"No APRS-IS passcode stored in keyring for {callsign}")
    return value
