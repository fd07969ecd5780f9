"""Split and merge commands: local chunking without the ledger."""

import argparse
import logging
from pathlib import Path

from .. import __util__
from ..__logger__ import create_logger
from ..config import ConfigError, find_config_file, load_config
from ..config.schema import DEFAULT_PART_SIZE
from ..core.chunking import ChunkingError, find_parts, get_base_name, merge_parts, split_file
from .common import get_log_level

logger = logging.getLogger(__name__)


def _default_part_size(args: argparse.Namespace) -> int:
    """Part size from the config file if there is one."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is not None:
            config, _ = load_config(config_path)
            return config.transfer.part_size
    except ConfigError as e:
        logger.warning("Ignoring configuration: %s", e)
    return DEFAULT_PART_SIZE


def execute_split(args: argparse.Namespace) -> int:
    """Execute the split command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(level=get_log_level(args))

    source = Path(args.file)
    if not source.is_file():
        logger.error("Not a file: %s", source)
        return 1

    try:
        if getattr(args, "part_size", None):
            part_size = __util__.parse_size(args.part_size)
        else:
            part_size = _default_part_size(args)
        if part_size <= 0:
            raise ValueError("part size must be greater than zero")
    except ValueError as e:
        logger.error("Invalid part size: %s", e)
        return 1

    output_dir = Path(args.output_dir) if getattr(args, "output_dir", None) else source.parent

    try:
        parts = split_file(source, output_dir, part_size)
    except OSError as e:
        logger.error("Error splitting %s: %s", source, e)
        return 1

    for part in parts:
        print(part)
    return 0


def execute_merge(args: argparse.Namespace) -> int:
    """Execute the merge command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(level=get_log_level(args))

    part = Path(args.part)
    if not part.is_file():
        logger.error("Not a file: %s", part)
        return 1

    try:
        parts = find_parts(part.parent, get_base_name(part.name))
        merged = merge_parts(part)
    except (ChunkingError, OSError) as e:
        logger.error("Error merging files: %s", e)
        return 1

    if getattr(args, "delete_parts", False):
        for p in parts:
            p.unlink(missing_ok=True)
        logger.info("Deleted %d part(s)", len(parts))

    print(merged)
    return 0
