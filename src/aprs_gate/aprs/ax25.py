"""AX.25 UI frame encoding and decoding.

Frames handled here are bare AX.25 (KISS framing and escaping already
removed): destination, source, up to eight digipeaters, then the UI control
octet, the "no layer 3" PID and the information field.
"""

from __future__ import annotations

from collections.abc import Iterable

from .frame import Address, Frame

ADDRESS_LENGTH = 7
CALLSIGN_LENGTH = 6
MIN_FRAME_SIZE = 2 * ADDRESS_LENGTH

CONTROL_UI = 0x03
PID_NO_LAYER3 = 0xF0

SET_SSID_MASK = 0x70 << 1
CLEAR_SSID_MASK = 0x30 << 1
REPEATED_BIT = 0x80
END_OF_PATH_BIT = 0x01


class AX25DecodeError(ValueError):
    """Raised when bytes cannot be decoded into an AX.25 UI frame."""


class ShortFrameError(AX25DecodeError):
    """Frame is smaller than the two mandatory address fields."""


class TruncatedFrameError(AX25DecodeError):
    """Frame ends before a valid control/PID pair was found."""


class AddressError(ValueError):
    """Raised when an address cannot be represented in AX.25."""


def decode_address(field: bytes) -> Address:
    """Decode one 7-octet address field.

    Only the callsign and SSID are returned; the C/H, reserved and
    end-of-path bits are left for the frame decoder.
    """
    if len(field) != ADDRESS_LENGTH:
        raise AX25DecodeError(
            f"AX.25 address must be {ADDRESS_LENGTH} octets, got {len(field)}"
        )
    chars = []
    for byte in field[:CALLSIGN_LENGTH]:
        value = (byte >> 1) & 0x7F
        if value != 0:
            chars.append(chr(value))
    ssid = (field[CALLSIGN_LENGTH] >> 1) & 0x0F
    return Address(call="".join(chars).strip(), ssid=str(ssid))


def encode_address(address: Address, ssid_mask: int) -> bytes:
    """Encode an address with ``ssid_mask`` supplying the control bits."""
    call = address.call
    if len(call) > CALLSIGN_LENGTH or not call.isascii():
        raise AddressError(f"Callsign {call!r} cannot be encoded in AX.25")
    ssid = _ssid_value(address)
    field = bytearray((ord(char) << 1) & 0xFF for char in call.ljust(CALLSIGN_LENGTH))
    field.append((ssid_mask | (ssid << 1)) & 0xFF)
    return bytes(field)


def _ssid_value(address: Address) -> int:
    try:
        ssid = int(address.ssid)
    except ValueError:
        raise AddressError(
            f"SSID {address.ssid!r} of {address.call} is not a number"
        ) from None
    if not 0 <= ssid <= 15:
        raise AddressError(f"SSID {ssid} of {address.call} is outside 0-15")
    return ssid


def decode(payload: bytes) -> Frame:
    """Decode a bare AX.25 UI frame."""
    if len(payload) <= MIN_FRAME_SIZE:
        raise ShortFrameError(f"AX.25 frame too short ({len(payload)} octets)")

    dest = decode_address(payload[0:ADDRESS_LENGTH])
    source = decode_address(payload[ADDRESS_LENGTH:MIN_FRAME_SIZE])

    path: list[Address] = []
    offset = MIN_FRAME_SIZE
    while len(payload) - offset >= ADDRESS_LENGTH and payload[offset] != CONTROL_UI:
        field = payload[offset : offset + ADDRESS_LENGTH]
        hop = decode_address(field)
        path.append(
            Address(hop.call, hop.ssid, repeated=bool(field[-1] & REPEATED_BIT))
        )
        offset += ADDRESS_LENGTH

    if (
        len(payload) - offset < 2
        or payload[offset] != CONTROL_UI
        or payload[offset + 1] != PID_NO_LAYER3
    ):
        raise TruncatedFrameError(
            f"AX.25 frame missing UI control/PID after {len(path)} path entries"
        )

    return Frame(source=source, dest=dest, path=tuple(path), body=payload[offset + 2 :])


def _encode(frame: Frame, source_mask: int, dest_mask: int) -> bytes:
    out = bytearray(encode_address(frame.dest, dest_mask))
    if not frame.path:
        source_mask |= END_OF_PATH_BIT
    out += encode_address(frame.source, source_mask)
    out += _encode_path(frame.path)
    out += bytes((CONTROL_UI, PID_NO_LAYER3))
    out += frame.body
    return bytes(out)


def _encode_path(path: Iterable[Address]) -> bytes:
    hops = list(path)
    out = bytearray()
    for index, hop in enumerate(hops):
        mask = CLEAR_SSID_MASK
        if hop.repeated:
            mask |= REPEATED_BIT
        if index == len(hops) - 1:
            mask |= END_OF_PATH_BIT
        out += encode_address(hop, mask)
    return bytes(out)


def encode_command(frame: Frame) -> bytes:
    """Encode ``frame`` as an outbound command frame."""
    return _encode(frame, SET_SSID_MASK, CLEAR_SSID_MASK)


def encode_response(frame: Frame) -> bytes:
    """Encode ``frame`` as an outbound response frame."""
    return _encode(frame, CLEAR_SSID_MASK, SET_SSID_MASK)
