"""Reassemble and sweep commands: temporary downloads of split backups."""

import argparse
import logging
import time

from ..core.reassembly import ReassemblyError
from ..core.service import build_ledger, build_reassembly_service
from .common import load_runtime_config

logger = logging.getLogger(__name__)


def execute_reassemble(args: argparse.Namespace) -> int:
    """Execute the reassemble command.

    Unless ``--detach`` is given, the command stays up until the
    directory's deferred deletion has run; interrupting it deletes the
    directory right away.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    config = load_runtime_config(args)
    if config is None:
        return 1
    if getattr(args, "no_comment", False):
        config.reassembly.post_comment = False

    service = build_reassembly_service(config, build_ledger(config))
    service.sweep_expired()

    try:
        result = service.reassemble(args.task_id)
    except ReassemblyError as e:
        logger.error("%s", e)
        service.shutdown(cleanup=True)
        return 1

    print(f"Download URL (valid until {time.ctime(result.expires_at)}): {result.url}")

    if getattr(args, "detach", False):
        return 0

    try:
        while service.cleanup.pending:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, deleting %s now", result.directory)
        service.shutdown(cleanup=True)
    return 0


def execute_sweep(args: argparse.Namespace) -> int:
    """Execute the sweep command."""
    config = load_runtime_config(args)
    if config is None:
        return 1

    service = build_reassembly_service(config, ledger=None)
    removed = service.sweep_expired()
    print(f"Removed {len(removed)} expired reassembly director{'y' if len(removed) == 1 else 'ies'}")
    return 0
