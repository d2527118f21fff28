"""Transport-independent APRS frame model and its TNC2 text form.

Frames arrive either as AX.25 from a KISS TNC or as ``SRC>DEST,PATH:BODY``
lines from APRS-IS; both are decoded into the same :class:`Frame` value.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .info import THIRD_PARTY_MARKER, PacketType, packet_type

MAX_PATH_LENGTH = 8


class FrameParseError(ValueError):
    """Raised when a TNC2 text line cannot be parsed into a frame."""


@dataclass(frozen=True, slots=True)
class Address:
    """A station address: callsign plus SSID.

    ``ssid`` keeps the textual form seen on the wire ("0" when absent).
    ``repeated`` is the digipeated marker (``*`` in text, H bit in AX.25)
    and is only meaningful on path entries.
    """

    call: str
    ssid: str = "0"
    repeated: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "call", self.call.strip())
        ssid = self.ssid.strip() if isinstance(self.ssid, str) else str(self.ssid)
        object.__setattr__(self, "ssid", ssid or "0")

    @classmethod
    def parse(cls, text: str) -> Address:
        text = text.strip()
        repeated = text.endswith("*")
        if repeated:
            text = text[:-1]
        call, sep, ssid = text.partition("-")
        if not call:
            raise FrameParseError(f"Empty callsign in address {text!r}")
        return cls(call=call, ssid=ssid if sep else "0", repeated=repeated)

    def __str__(self) -> str:
        suffix = "" if self.ssid == "0" else f"-{self.ssid}"
        marker = "*" if self.repeated else ""
        return f"{self.call}{suffix}{marker}"


@dataclass(frozen=True, slots=True)
class Frame:
    source: Address
    dest: Address
    path: tuple[Address, ...] = field(default_factory=tuple)
    body: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.path, tuple):
            object.__setattr__(self, "path", tuple(self.path))
        if isinstance(self.body, str):
            object.__setattr__(self, "body", self.body.encode("utf-8"))

    @property
    def type(self) -> PacketType:
        return packet_type(self.body)

    @property
    def text(self) -> str:
        """Body decoded for display; invalid UTF-8 is replaced."""
        return self.body.decode("utf-8", errors="replace")

    def header(self) -> str:
        parts = [str(self.dest), *(str(hop) for hop in self.path)]
        return f"{self.source}>{','.join(parts)}"

    def to_tnc2(self) -> bytes:
        """Return the exact ``SRC>DEST[,PATH]:BODY`` bytes."""
        return self.header().encode("ascii", errors="replace") + b":" + self.body

    def __str__(self) -> str:
        return f"{self.header()}:{self.text}"

    @classmethod
    def parse(cls, line: str | bytes) -> Frame:
        """Parse a TNC2 line (as carried by APRS-IS) into a frame."""
        raw = line.encode("utf-8") if isinstance(line, str) else bytes(line)
        raw = raw.rstrip(b"\r\n")
        header, sep, body = raw.partition(b":")
        if not sep:
            raise FrameParseError(f"Missing ':' separator in {raw!r}")
        try:
            header_text = header.decode("ascii")
        except UnicodeDecodeError as exc:
            raise FrameParseError(f"Non-ASCII frame header {header!r}") from exc
        source_text, sep, rest = header_text.partition(">")
        if not sep or not rest:
            raise FrameParseError(f"Missing '>' in frame header {header_text!r}")
        hops = rest.split(",")
        return cls(
            source=Address.parse(source_text),
            dest=Address.parse(hops[0]),
            path=tuple(Address.parse(hop) for hop in hops[1:]),
            body=body,
        )

    def unwrap(self) -> Frame:
        """Return the innermost frame of a third-party (``}``) encapsulation.

        Malformed inner frames leave the outer frame as-is.
        """
        frame = self
        while frame.body.startswith(THIRD_PARTY_MARKER):
            try:
                frame = Frame.parse(frame.body[1:])
            except FrameParseError:
                break
        return frame
