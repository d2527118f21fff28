"""Validate configuration and the notifier file without starting the gateway."""

from __future__ import annotations

import logging
from argparse import Namespace

from aprs_gate import config as config_module
from aprs_gate.config import ConfigError

from .run import cli_overrides, load_gate_notifiers

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())


def run_check(args: Namespace) -> int:
    try:
        gate_config = config_module.load_config(getattr(args, "config", None), cli_overrides(args))
        notifiers = load_gate_notifiers(gate_config)
    except ConfigError as exc:
        logger.error("Config invalid: %s", exc)
        return 1

    print("Configuration OK\n")
    print(config_module.config_summary(gate_config))
    if gate_config.passcode_in_keyring:
        print("  Passcode : stored in keyring")
    print(f"\nNotifiers ({len(notifiers)}):")
    for notifier in notifiers:
        state = " (disabled)" if notifier.disabled else ""
        print(f"  {notifier.name:<16} {notifier.driver.value:<8} to {notifier.to}{state}")
    return 0
