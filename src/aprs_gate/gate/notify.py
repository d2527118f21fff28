"""Push notifications for frames addressed to configured stations.

Notifiers are loaded once from a side-car file (JSON list or TOML
``[[notifiers]]`` tables). Each names a delivery driver; an unknown driver
name is a configuration error. Delivery runs on a small thread pool with a
fixed retry budget so a slow or failing service never blocks routing.
"""

from __future__ import annotations

import json
import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Protocol

from aprs_gate import __version__
from aprs_gate.aprs.frame import Frame
from aprs_gate.aprs.info import parse_message
from aprs_gate.config import ConfigError

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for <3.11
    import tomli as tomllib  # type: ignore[no-redef]

try:  # HTTP drivers
    import requests
except ImportError:  # pragma: no cover - surfaced when a driver is built
    requests = None  # type: ignore[assignment]

try:  # MQTT driver
    import paho.mqtt.publish as mqtt_publish  # type: ignore[import]
except ImportError:  # pragma: no cover - surfaced when a driver is built
    mqtt_publish = None  # type: ignore[assignment]

MAX_ATTEMPTS = 10
RETRY_DELAY_S = 1.0
BULLETIN_SENTINEL = "BLN"

PROWL_ENDPOINT = "https://api.prowlapp.com/publicapi/add"
NMA_ENDPOINT = "https://www.notifymyandroid.com/publicapi/notify"
CONNECT_TIMEOUT_S = 5
READ_TIMEOUT_S = 10

LOG = logging.getLogger(__name__)


class DriverError(RuntimeError):
    """A single delivery attempt failed."""


class Driver(str, Enum):
    PROWL = "prowl"
    WEBHOOK = "webhook"
    NMA = "nma"
    MQTT = "mqtt"


REQUIRED_KEYS: dict[Driver, tuple[str, ...]] = {
    Driver.PROWL: ("apikey",),
    Driver.WEBHOOK: ("url",),
    Driver.NMA: ("apikey",),
    Driver.MQTT: (),
}


@dataclass(frozen=True, slots=True)
class Notifier:
    name: str
    driver: Driver
    to: str
    disabled: bool = False
    config: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Notification:
    event: str
    msg: str

    def to_dict(self) -> dict[str, str]:
        return {"event": self.event, "msg": self.msg}


class NotificationDriver(Protocol):
    def deliver(self, notifier: Notifier, note: Notification) -> None:  # pragma: no cover - interface
        ...


# --- Loading ---------------------------------------------------------------


def load_notifiers(path: str | Path) -> list[Notifier]:
    """Load notifier definitions.

    A missing file raises ``FileNotFoundError`` so callers can treat it as
    "no notifiers"; anything else wrong with the file is a ``ConfigError``.
    """
    config_path = Path(path).expanduser()
    try:
        if config_path.suffix == ".toml":
            with config_path.open("rb") as handle:
                data: Any = tomllib.load(handle)
        else:
            with config_path.open("r", encoding="utf-8") as handle:
                data = json.load(handle)
    except FileNotFoundError:
        raise
    except (OSError, ValueError) as exc:
        raise ConfigError(f"Unable to read notifiers from {config_path}: {exc}") from exc

    if isinstance(data, dict):
        data = data.get("notifiers", [])
    if not isinstance(data, list):
        raise ConfigError(f"{config_path}: expected a list of notifiers")
    return [_notifier_from_dict(record, config_path) for record in data]


def _notifier_from_dict(record: Any, source: Path) -> Notifier:
    if not isinstance(record, dict):
        raise ConfigError(f"{source}: notifier entries must be tables/objects")
    values = {str(key).lower(): value for key, value in record.items()}
    name = str(values.get("name", ""))
    driver_name = str(values.get("driver", ""))
    try:
        driver = Driver(driver_name.lower())
    except ValueError:
        raise ConfigError(f"Unknown driver '{driver_name}' in '{name}'") from None
    settings = {str(key): str(value) for key, value in (values.get("config") or {}).items()}
    notifier = Notifier(
        name=name,
        driver=driver,
        to=str(values.get("to", "")).strip(),
        disabled=bool(values.get("disabled", False)),
        config=settings,
    )
    if not notifier.disabled:
        missing = [key for key in REQUIRED_KEYS[driver] if not settings.get(key)]
        if missing:
            raise ConfigError(f"Notifier '{name}' ({driver.value}) missing config: {', '.join(missing)}")
    return notifier


# --- Drivers ---------------------------------------------------------------


class _HttpDriver:
    def __init__(self, session: object | None = None) -> None:
        if requests is None:  # pragma: no cover - exercised when dependency missing
            raise RuntimeError("The 'requests' package is required for HTTP notification drivers")
        self._timeout = (CONNECT_TIMEOUT_S, READ_TIMEOUT_S)
        self._session: Any = session or requests.Session()
        self._session.headers.setdefault("User-Agent", f"aprs-gate/{__version__}")

    def _post(self, url: str, **kwargs: Any) -> None:
        try:
            response = self._session.post(url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise DriverError(f"POST {url} failed: {exc}") from exc
        if not 200 <= response.status_code < 300:
            raise DriverError(f"POST {url} returned HTTP {response.status_code}")


class ProwlDriver(_HttpDriver):
    def deliver(self, notifier: Notifier, note: Notification) -> None:
        self._post(
            PROWL_ENDPOINT,
            data={
                "apikey": notifier.config["apikey"],
                "application": notifier.config.get("application", "aprs-gate"),
                "event": note.event,
                "description": note.msg,
                "priority": notifier.config.get("priority", "0"),
            },
        )


class NMADriver(_HttpDriver):
    def deliver(self, notifier: Notifier, note: Notification) -> None:
        try:
            priority = int(notifier.config.get("priority", "0"))
        except ValueError as exc:
            raise DriverError(f"Invalid NMA priority for {notifier.name}: {exc}") from exc
        self._post(
            NMA_ENDPOINT,
            data={
                "apikey": notifier.config["apikey"],
                "application": notifier.config.get("application", "aprs-gate"),
                "event": note.event,
                "description": note.msg,
                "priority": priority,
            },
        )


class WebhookDriver(_HttpDriver):
    def deliver(self, notifier: Notifier, note: Notification) -> None:
        self._post(notifier.config["url"], json=note.to_dict())


class MqttDriver:
    def __init__(self) -> None:
        if mqtt_publish is None:  # pragma: no cover - exercised when dependency missing
            raise RuntimeError("paho-mqtt is required for the MQTT notification driver")

    def deliver(self, notifier: Notifier, note: Notification) -> None:
        topic = notifier.config.get("topic", f"aprs-gate/notify/{notifier.to}")
        try:
            mqtt_publish.single(
                topic,
                payload=json.dumps(note.to_dict()),
                hostname=notifier.config.get("host", "127.0.0.1"),
                port=int(notifier.config.get("port", "1883")),
            )
        except (OSError, ValueError) as exc:
            raise DriverError(f"MQTT publish to {topic} failed: {exc}") from exc


def default_drivers() -> dict[Driver, NotificationDriver]:
    return {
        Driver.PROWL: ProwlDriver(),
        Driver.WEBHOOK: WebhookDriver(),
        Driver.NMA: NMADriver(),
        Driver.MQTT: MqttDriver(),
    }


# --- Delivery --------------------------------------------------------------


def deliver_with_retry(
    driver: NotificationDriver,
    notifier: Notifier,
    note: Notification,
    *,
    max_attempts: int = MAX_ATTEMPTS,
    delay: float = RETRY_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Deliver ``note``, retrying failed attempts; never raises."""
    LOG.info("Sending notification via %s: %s", notifier.name, note)
    for attempt in range(1, max_attempts + 1):
        try:
            driver.deliver(notifier, note)
        except Exception as exc:
            LOG.warning(
                "Notification %s attempt %d/%d failed: %s", notifier.name, attempt, max_attempts, exc
            )
            if attempt < max_attempts:
                sleep(delay)
        else:
            return True
    LOG.error("Giving up on notification %s after %d attempts", notifier.name, max_attempts)
    return False


class NotificationDispatcher:
    """Route frames to matching notifiers and deliver in the background."""

    def __init__(
        self,
        notifiers: list[Notifier],
        drivers: Optional[Mapping[Driver, NotificationDriver]] = None,
        *,
        max_attempts: int = MAX_ATTEMPTS,
        retry_delay: float = RETRY_DELAY_S,
        max_workers: int = 4,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._notifiers = [n for n in notifiers if not n.disabled]
        self._drivers = dict(drivers) if drivers is not None else default_drivers()
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._sleep = sleep
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    @property
    def notifiers(self) -> list[Notifier]:
        return list(self._notifiers)

    def route(self, frame: Frame) -> list[tuple[Notifier, Notification]]:
        """Return the notifications ``frame`` should produce, one per notifier."""
        event = frame.type.label
        message = parse_message(frame.body)
        matches = []
        for notifier in self._notifiers:
            to = notifier.to.upper()
            if frame.dest.call.upper() == to:
                matches.append((notifier, Notification(event, f"{frame.source}: {frame.text}")))
            elif message is not None and message.recipient_call.upper() == to and not message.is_ack:
                matches.append((notifier, Notification(event, f"{frame.source}: {message.text}")))
            elif message is not None and message.is_bulletin and to == BULLETIN_SENTINEL:
                matches.append((notifier, Notification(event, f"{frame.source}: {message.text}")))
        return matches

    def dispatch(self, frame: Frame) -> list["Future[bool]"]:
        """Queue delivery of every notification ``frame`` matches."""
        return [self._executor.submit(self.deliver, notifier, note) for notifier, note in self.route(frame)]

    def deliver(self, notifier: Notifier, note: Notification) -> bool:
        return deliver_with_retry(
            self._drivers[notifier.driver],
            notifier,
            note,
            max_attempts=self._max_attempts,
            delay=self._retry_delay,
            sleep=self._sleep,
        )

    def close(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)
