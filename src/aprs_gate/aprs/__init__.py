"""APRS protocol stack: frame model, AX.25/KISS codecs and APRS-IS client."""

from .frame import Address, Frame, FrameParseError  # noqa: F401
from .info import PacketType, parse_message  # noqa: F401
from .ax25 import (  # noqa: F401
    AddressError,
    AX25DecodeError,
    ShortFrameError,
    TruncatedFrameError,
    encode_command,
    encode_response,
)
from .kiss import KISSClient, KISSClientConfig, KISSClientError, KISSStreamReader  # noqa: F401
from .aprsis_client import (  # noqa: F401
    APRSISAuthError,
    APRSISClient,
    APRSISClientError,
    APRSISConfig,
)

__all__ = [
    "Address",
    "Frame",
    "FrameParseError",
    "PacketType",
    "parse_message",
    "AddressError",
    "AX25DecodeError",
    "ShortFrameError",
    "TruncatedFrameError",
    "encode_command",
    "encode_response",
    "KISSClient",
    "KISSClientConfig",
    "KISSClientError",
    "KISSStreamReader",
    "APRSISAuthError",
    "APRSISClient",
    "APRSISClientError",
    "APRSISConfig",
]
