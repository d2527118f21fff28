"""Command-line interface entry points for the APRS gateway."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from argparse import Namespace
from typing import Callable

from aprs_gate import __version__
from aprs_gate import config as config_module
from aprs_gate.commands import run_check, run_gateway

DEFAULT_COMMAND = "run"

CommandHandler = Callable[[Namespace], int]

_LOG_LEVEL_ALIASES: dict[str, int] = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


def _resolve_log_level(candidate: str | None) -> int:
    for value in (candidate, os.getenv("APRS_GATE_LOG_LEVEL")):
        if not value:
            continue
        stripped = value.strip()
        if not stripped:
            continue
        lower = stripped.lower()
        if lower in _LOG_LEVEL_ALIASES:
            return _LOG_LEVEL_ALIASES[lower]
        if stripped.isdigit():
            return int(stripped)
    return logging.INFO


def _configure_logging(level_name: str | None) -> None:
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))
    handlers: list[logging.Handler] = [stream_handler]

    try:
        log_dir = config_module.get_logs_dir()
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "aprs-gate.log", encoding="utf-8")
        file_formatter = logging.Formatter(
            "%(asctime)sZ %(levelname)s %(name)s %(message)s", datefmt="%Y-%m-%dT%H:%M:%S"
        )
        file_formatter.converter = time.gmtime
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)
    except OSError:
        # If we can't create the log directory or file, continue without file logging.
        pass

    logging.basicConfig(
        level=_resolve_log_level(level_name),
        handlers=handlers,
        force=True,
    )


def _add_config_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help="Path to configuration file (overrides default location)",
    )
    parser.add_argument("--server", help="APRS-IS upstream host:port (empty string disables)")
    parser.add_argument("--call", help="Your callsign (for APRS-IS)")
    parser.add_argument("--pass", dest="passcode", help="Your call pass (for APRS-IS)")
    parser.add_argument("--filter", help="Optional filter for APRS-IS server")
    parser.add_argument("--rawlog", help="Path to raw log of APRS-IS lines")
    parser.add_argument(
        "--watchdog-time",
        type=float,
        help="Close the APRS-IS connection if nothing is heard for this many seconds",
    )
    parser.add_argument("--port", help="Serial port of a KISS TNC")
    parser.add_argument("--baud", type=int, help="Serial port speed (default 57600)")
    parser.add_argument("--kiss-host", help="KISS-over-TCP TNC host (e.g. Direwolf)")
    parser.add_argument("--kiss-port", type=int, help="KISS-over-TCP TNC port")
    parser.add_argument("--notify", help="Path to notifier definitions (JSON or TOML)")


def build_parser(handlers: dict[str, CommandHandler] | None = None) -> argparse.ArgumentParser:
    """Construct the top-level argument parser."""

    handlers = handlers or _command_handlers()

    parser = argparse.ArgumentParser(
        prog="aprs-gate",
        description="Bridge KISS/AX.25 radio traffic and APRS-IS into notifiers and logs.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Environment overrides:\n"
            "  APRS_GATE_CONFIG_PATH      Configuration file location.\n"
            "  APRS_GATE_LOG_LEVEL        Default logging level when --log-level is omitted.\n"
            "  APRS_GATE_SECTION__KEY     Override any config key, e.g. APRS_GATE_APRSIS__SERVER."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        help="Logging level (debug, info, warning, error, critical)",
    )
    parser.set_defaults(command=DEFAULT_COMMAND, handler=handlers[DEFAULT_COMMAND])

    subparsers = parser.add_subparsers(dest="command", required=False)

    run_parser = subparsers.add_parser("run", help="Run the gateway")
    run_parser.set_defaults(command="run", handler=handlers["run"])
    _add_config_arguments(run_parser)
    run_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Do not log every received frame",
    )

    check_parser = subparsers.add_parser(
        "check", help="Validate configuration and notifier definitions"
    )
    check_parser.set_defaults(command="check", handler=handlers["check"])
    _add_config_arguments(check_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Process CLI arguments and dispatch to the requested command."""

    handlers = _command_handlers()
    parser = build_parser(handlers)

    argv_list = list(sys.argv[1:] if argv is None else argv)
    normalized = _normalize_argv(argv_list, handlers)
    args = parser.parse_args(normalized)

    _configure_logging(getattr(args, "log_level", None))

    handler = getattr(args, "handler", None)
    if handler is None:
        parser.print_help()
        return 0

    return handler(args)


def _command_handlers() -> dict[str, CommandHandler]:
    """Return the mapping of subcommand names to handler callables."""

    return {
        "run": run_gateway,
        "check": run_check,
    }


def _normalize_argv(argv: list[str], handlers: dict[str, CommandHandler]) -> list[str]:
    """Inject the default subcommand when the user omits one."""

    if not argv:
        return [DEFAULT_COMMAND]

    first = argv[0]
    if first in ("-h", "--help", "--version"):
        return argv

    if first == "--log-level":
        return argv[:2] + _normalize_argv(argv[2:], handlers)
    if first.startswith("--log-level="):
        return argv[:1] + _normalize_argv(argv[1:], handlers)

    if first.startswith("-"):
        return [DEFAULT_COMMAND, *argv]

    return argv


if __name__ == "__main__":  # pragma: no cover - direct CLI execution path
    raise SystemExit(main())
