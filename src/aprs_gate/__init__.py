"""APRS gateway bridging KISS/AX.25 radio traffic and APRS-IS.

Expose a single runtime version value (``__version__``) so modules can
report the package version without duplicating fallback logic.
"""

from importlib import metadata as _importlib_metadata

try:
    __version__ = _importlib_metadata.version("aprs-gate")
except _importlib_metadata.PackageNotFoundError:  # pragma: no cover - source checkout
    __version__ = "0.0.0"

__all__ = ["__version__"]
