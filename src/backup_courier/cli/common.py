"""Shared CLI utilities and argument parsers."""

import argparse
import logging

from ..__logger__ import create_logger
from ..config import Config, ConfigError, find_config_file, load_config
from ..transaction import set_transaction_log

logger = logging.getLogger(__name__)


def create_global_parser() -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent."""
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser)
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def load_runtime_config(args: argparse.Namespace) -> Config | None:
    """Find and load the configuration, then set up logging and the journal.

    Returns:
        The loaded Config, or None if it could not be loaded (already reported)
    """
    log_level = get_log_level(args)
    create_logger(level=log_level)

    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Create one with: backup-courier config init")
            return None

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    # Command line flags win over config defaults
    if log_level == "INFO":
        if config.global_config.verbose:
            log_level = "DEBUG"
        elif config.global_config.quiet:
            log_level = "WARNING"
    create_logger(level=log_level, log_file=config.global_config.log_file)
    set_transaction_log(config.global_config.transaction_log)

    for warning in warnings:
        logger.warning("Config: %s", warning)

    return config


def missing_ledger_settings(config: Config) -> list[str]:
    """Ledger settings a transfer cannot run without, by config key."""
    required = {
        "ledger.api_key": config.ledger.api_key,
        "ledger.list_id": config.ledger.list_id,
        "ledger.link_field_id": config.ledger.link_field_id,
    }
    return [key for key, value in required.items() if not value]
