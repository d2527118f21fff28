"""Minimal interpretation of APRS information fields.

Only what the gateway needs for routing is decoded here: the data type
identifier, station-to-station messages/bulletins, and third-party
encapsulation. Position, weather and telemetry decoding are not handled.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

BULLETIN_PREFIX = "BLN"
THIRD_PARTY_MARKER = b"}"


class PacketType(Enum):
    MIC_E_OLD_BETA = "\x1c"
    MIC_E_BETA = "\x1d"
    POSITION = "!"
    PEET_BROS_WX = "#"
    RAW_GPS = "$"
    AGRELO_DF = "%"
    MAP_FEATURE = "&"
    MIC_E_OLD = "'"
    ITEM = ")"
    PEET_BROS_WX_ALT = "*"
    SHELTER = "+"
    TEST = ","
    SPACE_WEATHER = "."
    POSITION_TIMESTAMP = "/"
    MESSAGE = ":"
    OBJECT = ";"
    CAPABILITIES = "<"
    POSITION_MESSAGING = "="
    STATUS = ">"
    QUERY = "?"
    POSITION_TIMESTAMP_MESSAGING = "@"
    TELEMETRY = "T"
    MAIDENHEAD = "["
    WEATHER = "_"
    MIC_E = "`"
    USER_DEFINED = "{"
    THIRD_PARTY = "}"
    UNKNOWN = ""

    @property
    def label(self) -> str:
        return _LABELS[self]

    def is_message(self) -> bool:
        return self is PacketType.MESSAGE

    def __str__(self) -> str:
        return self.label


_LABELS = {
    PacketType.MIC_E_OLD_BETA: "Old Mic-E Data (Rev 0 beta)",
    PacketType.MIC_E_BETA: "Current Mic-E Data (Rev 0 beta)",
    PacketType.POSITION: "Position without timestamp (no APRS messaging)",
    PacketType.PEET_BROS_WX: "Peet Bros U-II Weather Station",
    PacketType.RAW_GPS: "Raw GPS data",
    PacketType.AGRELO_DF: "Agrelo DFJr / MicroFinder",
    PacketType.MAP_FEATURE: "Map Feature",
    PacketType.MIC_E_OLD: "Old Mic-E Data",
    PacketType.ITEM: "Item",
    PacketType.PEET_BROS_WX_ALT: "Peet Bros U-II Weather Station",
    PacketType.SHELTER: "Shelter data with time",
    PacketType.TEST: "Invalid data or test data",
    PacketType.SPACE_WEATHER: "Space Weather",
    PacketType.POSITION_TIMESTAMP: "Position with timestamp (no APRS messaging)",
    PacketType.MESSAGE: "Message",
    PacketType.OBJECT: "Object",
    PacketType.CAPABILITIES: "Station Capabilities",
    PacketType.POSITION_MESSAGING: "Position without timestamp (with APRS messaging)",
    PacketType.STATUS: "Status",
    PacketType.QUERY: "Query",
    PacketType.POSITION_TIMESTAMP_MESSAGING: "Position with timestamp (with APRS messaging)",
    PacketType.TELEMETRY: "Telemetry data",
    PacketType.MAIDENHEAD: "Maidenhead grid locator beacon",
    PacketType.WEATHER: "Weather Report (without position)",
    PacketType.MIC_E: "Current Mic-E Data",
    PacketType.USER_DEFINED: "User-Defined APRS packet format",
    PacketType.THIRD_PARTY: "Third-party traffic",
    PacketType.UNKNOWN: "Unknown packet type",
}


def packet_type(body: bytes) -> PacketType:
    """Classify a body by its data type identifier (first byte)."""
    if not body:
        return PacketType.UNKNOWN
    try:
        return PacketType(chr(body[0]))
    except ValueError:
        return PacketType.UNKNOWN


@dataclass(frozen=True, slots=True)
class Message:
    """A decoded ``:ADDRESSEE:text{id`` message body."""

    recipient: str
    text: str
    message_id: str | None = None

    @property
    def recipient_call(self) -> str:
        """Recipient callsign without its SSID."""
        return self.recipient.partition("-")[0]

    @property
    def is_ack(self) -> bool:
        return self.text.startswith("ack")

    @property
    def is_bulletin(self) -> bool:
        return self.recipient.upper().startswith(BULLETIN_PREFIX)


def parse_message(body: bytes) -> Message | None:
    """Return the message carried by ``body`` or ``None`` if it is not one."""
    if packet_type(body) is not PacketType.MESSAGE:
        return None
    text = body[1:].decode("utf-8", errors="replace")
    recipient, sep, rest = text.partition(":")
    if not sep:
        return None
    rest = rest.rstrip("\r\n")
    message_id = None
    if "{" in rest:
        rest, _, message_id = rest.partition("{")
    return Message(recipient=recipient.strip(), text=rest, message_id=message_id)
