"""Watch command: transfer every backup that lands under the root."""

import argparse
import logging
import signal
import time

from .. import __util__
from ..core.service import TransferService, build_ledger
from .common import load_runtime_config, missing_ledger_settings

logger = logging.getLogger(__name__)


def execute_watch(args: argparse.Namespace) -> int:
    """Execute the watch command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for clean shutdown, non-zero for failure)
    """
    config = load_runtime_config(args)
    if config is None:
        return 1

    # Command line overrides
    if getattr(args, "root", None):
        config.watch.root = args.root
    if getattr(args, "workers", None):
        config.watch.workers = args.workers
    if getattr(args, "upload_workers", None):
        config.transfer.upload_workers = args.upload_workers

    missing = missing_ledger_settings(config)
    if missing:
        logger.error("Cannot transfer backups, not configured: %s", ", ".join(missing))
        return 1

    service = TransferService(config, build_ledger(config))

    def _terminate(signum, frame):
        logger.info("Received signal %d, stopping", signum)
        service.stop_event.set()

    signal.signal(signal.SIGTERM, _terminate)

    logger.info(__util__.log_heading(f"Started at {time.ctime()}"))
    logger.info(
        "Root: %s, extensions: %s, part size: %s",
        config.watch.root,
        ", ".join(config.normalized_extensions()),
        __util__.format_size(config.transfer.part_size),
    )
    logger.info(
        "Processing workers: %d, upload workers: %d",
        config.watch.workers,
        config.transfer.upload_workers,
    )

    try:
        service.run()
    except OSError as e:
        logger.error("Cannot watch %s: %s", config.watch.root, e)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info(__util__.log_heading(f"Finished at {time.ctime()}"))

    return 0
