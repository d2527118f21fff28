"""Command implementations for the aprs-gate CLI."""

from .check import run_check
from .run import run_gateway

__all__ = ["run_check", "run_gateway"]
