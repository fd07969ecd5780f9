"""Config command: check or generate the courier configuration."""

import argparse
import logging
from pathlib import Path

from .. import __util__
from ..__logger__ import create_logger
from ..config import Config, ConfigError, find_config_file, load_config
from ..config.loader import API_KEY_ENV, CONFIG_PATHS, generate_example_config
from .common import get_log_level, missing_ledger_settings

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(level=get_log_level(args))

    action = getattr(args, "config_action", None)
    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)

    print("Usage: backup-courier config <validate|init>")
    return 1


def _mask(secret: str | None) -> str:
    if not secret:
        return "(not set)"
    return f"{secret[:4]}..." if len(secret) > 8 else "****"


def _print_summary(config: Config) -> None:
    ledger = config.ledger
    print(f"  Watch root:     {config.watch.root}")
    print(f"  Extensions:     {', '.join(config.normalized_extensions())}")
    print(f"  Part size:      {__util__.format_size(config.transfer.part_size)}")
    print(f"  Temp directory: {config.global_config.temp_dir}")
    print(f"  Ledger API:     {ledger.api_url}")
    print(f"  API key:        {_mask(ledger.api_key)}")
    print(f"  List id:        {ledger.list_id or '(not set)'}")
    print(f"  Link field id:  {ledger.link_field_id or '(not set)'}")
    print(f"  Download URL:   {config.reassembly.base_url}/<id>/<file>")
    print(f"  Download TTL:   {config.reassembly.ttl} seconds")


def _validate_config(args: argparse.Namespace) -> int:
    """Load the configuration and check it is complete enough to transfer."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            for path in CONFIG_PATHS:
                print(f"  {path}")
            return 1

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    if warnings:
        print("")
        print("Warnings:")
        for warning in warnings:
            print(f"  - {warning}")

    print("")
    _print_summary(config)
    print("")

    missing = missing_ledger_settings(config)
    if missing:
        print(f"Ledger settings missing: {', '.join(missing)}")
        if "ledger.api_key" in missing:
            print(f"  The API key can also be given in {API_KEY_ENV}")
        return 1

    print("Configuration is valid.")
    return 0


def _init_config(args: argparse.Namespace) -> int:
    """Print or write an example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if not output:
        print(content)
        return 0

    path = Path(output).expanduser()
    if path.exists() and not getattr(args, "force", False):
        print(f"Refusing to overwrite {path} (use --force)")
        return 1
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    except OSError as e:
        print(f"Error writing file: {e}")
        return 1

    print(f"Example configuration written to: {path}")
    return 0
